"""Receipt derivation shared by the on-screen view and the printable rendering"""

import uuid
from datetime import datetime
from typing import List, Optional

from clinic_ledger.domain.descriptions import treatment_parts
from clinic_ledger.domain.models import ReceiptData
from clinic_ledger.domain.money import format_currency

RECEIPT_WIDTH = 40


def build_receipt(
    payment_id: uuid.UUID,
    patient_name: Optional[str],
    amount_paid: int,
    method: str,
    description: Optional[str],
    balance: Optional[int],
    plan_total_amount: Optional[int],
    is_plan_payment: bool,
    paid_at: datetime,
    generated_at: datetime,
    currency: str,
    clinic_name: str,
    clinic_phone: Optional[str] = None,
    clinic_address: Optional[str] = None,
    treatment_types: Optional[List[str]] = None,
    treatment_note: Optional[str] = None,
) -> ReceiptData:
    """
    Derive receipt figures from a persisted payment.

    The balance shown is the snapshot stored on the payment, never a fresh
    recomputation, so the receipt matches what the patient was told.
    Structured treatment fields take precedence over the description text.
    """
    payment_for, notes = treatment_parts(treatment_types, treatment_note, description)
    return ReceiptData(
        payment_id=payment_id,
        patient_name=patient_name or "Patient",
        payment_method=method,
        payment_type="plan" if is_plan_payment else "one-time",
        payment_for=payment_for,
        notes=notes,
        amount_paid=amount_paid,
        balance=balance,
        total_amount=plan_total_amount if is_plan_payment else None,
        currency=currency,
        clinic_name=clinic_name,
        clinic_phone=clinic_phone,
        clinic_address=clinic_address,
        paid_at=paid_at,
        generated_at=generated_at,
    )


def _row(label: str, value: str) -> str:
    gap = max(RECEIPT_WIDTH - len(label) - len(value), 1)
    return f"{label}{' ' * gap}{value}"


def render_receipt_text(receipt: ReceiptData) -> str:
    """Fixed-width plain-text receipt for printing"""
    rule = "-" * RECEIPT_WIDTH
    lines: List[str] = [receipt.clinic_name.center(RECEIPT_WIDTH).rstrip()]
    if receipt.clinic_phone:
        lines.append(receipt.clinic_phone.center(RECEIPT_WIDTH).rstrip())
    if receipt.clinic_address:
        lines.append(receipt.clinic_address.center(RECEIPT_WIDTH).rstrip())
    lines.append(receipt.generated_at.strftime("%Y-%m-%d %H:%M").center(RECEIPT_WIDTH).rstrip())
    lines += [rule, "PAYMENT RECEIPT".center(RECEIPT_WIDTH).rstrip(), rule]

    lines.append(_row("Patient:", receipt.patient_name))
    lines.append(_row("Date:", receipt.paid_at.strftime("%B %d, %Y %I:%M %p")))
    lines.append(_row("Method:", receipt.payment_method.replace("_", " ").title()))
    lines.append(_row("Service:", receipt.payment_for))
    if receipt.notes:
        lines += ["Notes:", receipt.notes]

    lines.append(rule)
    lines.append(_row("PAID:", format_currency(receipt.amount_paid, receipt.currency)))
    if receipt.balance is not None:
        lines.append(_row("Balance:", format_currency(receipt.balance, receipt.currency)))
    if receipt.total_amount is not None:
        lines.append(_row("Total Amount:", format_currency(receipt.total_amount, receipt.currency)))
    lines += [rule, "Thank you!"]
    return "\n".join(lines) + "\n"
