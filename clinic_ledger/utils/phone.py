"""Phone number normalization for the SMS gateway"""

import re

_NON_DIGITS = re.compile(r"\D")


def format_phone_number(phone: str | None, country_code: str = "233") -> str:
    """
    Normalize a phone number to international digits without "+".

    "024 123 4567" -> "233241234567", "+233241234567" -> "233241234567"
    """
    if not phone:
        return ""
    cleaned = _NON_DIGITS.sub("", phone)
    if cleaned.startswith(country_code):
        return cleaned
    if cleaned.startswith("0"):
        return f"{country_code}{cleaned[1:]}"
    return f"{country_code}{cleaned}"
