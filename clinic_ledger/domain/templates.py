"""SMS receipt and reminder message rendering"""

from typing import Optional

from clinic_ledger.domain.money import format_amount

DEFAULT_PATIENT_NAME = "Patient"


def render_message(template: str, **values: str) -> str:
    """
    Substitute {Placeholder} tokens literally.

    Unknown tokens and stray braces are left untouched, so templates coming
    from configuration can never raise on formatting.
    """
    message = template
    for key, value in values.items():
        message = message.replace("{" + key + "}", value)
    return message


def render_payment_receipt(
    template: str,
    patient_name: Optional[str],
    amount_minor: int,
    treatment_text: str,
    balance_minor: Optional[int] = None,
) -> str:
    """
    Render the payment receipt SMS.

    Plan payment templates also use {balance}; a missing snapshot renders
    as 0.00.
    """
    return render_message(
        template,
        Patientname=patient_name or DEFAULT_PATIENT_NAME,
        amount=format_amount(amount_minor),
        treatmenttypes=treatment_text,
        balance=format_amount(balance_minor if balance_minor is not None else 0),
    )


def render_payment_reminder(template: str, patient_name: Optional[str], amount_minor: int, clinic_name: str) -> str:
    """Render the outstanding-balance reminder SMS"""
    return render_message(
        template,
        Patientname=patient_name or DEFAULT_PATIENT_NAME,
        amount=format_amount(amount_minor),
        Clinicname=clinic_name,
    )
