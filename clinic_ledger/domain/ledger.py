"""Ledger engine - balance arithmetic over a plan and its completed payments"""

from typing import Iterable, Optional, Protocol

from clinic_ledger.domain.models import PaymentStatus
from clinic_ledger.domain.money import require_positive, total


class PaymentLike(Protocol):
    amount: int
    status: str


def completed_total(payments: Iterable[PaymentLike]) -> int:
    """Sum of amounts for completed payments only"""
    return total(p.amount for p in payments if PaymentStatus(p.status) == PaymentStatus.COMPLETED)


def outstanding_balance(total_amount: int, total_paid: int) -> int:
    """
    Plan total minus everything paid. Negative means overpaid and is
    returned as-is, never clamped.
    """
    return total_amount - total_paid


def balance_after_payment(total_amount: int, prior_completed_sum: int, amount: int) -> int:
    """Outstanding balance once this payment is applied on top of prior completed payments"""
    return total_amount - prior_completed_sum - amount


def snapshot_balance(
    plan_total_amount: Optional[int],
    prior_completed_sum: int,
    amount: int,
    status: PaymentStatus,
) -> Optional[int]:
    """
    Balance snapshot stored on a new payment row.

    Only plan payments recorded as completed carry a snapshot; one-time
    payments and non-completed plan payments store None.
    """
    require_positive(amount)
    if plan_total_amount is None or PaymentStatus(status) != PaymentStatus.COMPLETED:
        return None
    return balance_after_payment(plan_total_amount, prior_completed_sum, amount)
