"""Fixed-point money handling - all ledger amounts are integer minor units (pesewas/cents)"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable

from clinic_ledger.domain.exceptions import InvalidAmountError

MINOR_UNITS_PER_MAJOR = 100
# Largest value a BIGINT amount column holds
MAX_AMOUNT_MINOR = 2**63 - 1


def parse_amount(value: str | int | Decimal) -> int:
    """
    Convert a major-unit amount from a request payload into minor units.

    Rounds half-up to the nearest minor unit on an exact Decimal, so
    "10.005" -> 1001 and "0.1" -> 10 with no float drift.

    Raises:
        InvalidAmountError: On non-numeric, non-finite or out-of-range input
    """
    if isinstance(value, bool):
        raise InvalidAmountError(f"Invalid amount: {value!r}")
    try:
        major = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmountError(f"Invalid amount: {value!r}") from e

    if not major.is_finite():
        raise InvalidAmountError(f"Invalid amount: {value!r}")

    try:
        minor = int((major * MINOR_UNITS_PER_MAJOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation as e:
        raise InvalidAmountError(f"Amount out of range: {value!r}") from e

    if abs(minor) > MAX_AMOUNT_MINOR:
        raise InvalidAmountError(f"Amount out of range: {value!r}")
    return minor


def parse_positive_amount(value: str | int | Decimal) -> int:
    """Parse an amount that must be strictly positive after rounding"""
    minor = parse_amount(value)
    require_positive(minor)
    return minor


def require_positive(amount_minor: int) -> None:
    if amount_minor <= 0:
        raise InvalidAmountError(f"Amount must be greater than zero, got {amount_minor} minor units")


def format_amount(amount_minor: int) -> str:
    """
    Render minor units as a 2-decimal major-unit string.

    Example:
        12345 -> "123.45", -5000 -> "-50.00"
    """
    sign = "-" if amount_minor < 0 else ""
    major, minor = divmod(abs(amount_minor), MINOR_UNITS_PER_MAJOR)
    return f"{sign}{major}.{minor:02d}"


def format_currency(amount_minor: int, currency: str = "GHS") -> str:
    """Render minor units with the currency code, e.g. "GHS 100.00" """
    return f"{currency} {format_amount(amount_minor)}"


def total(amounts: Iterable[int]) -> int:
    """Exact integer sum of minor-unit amounts"""
    return sum(amounts, 0)
