"""Unit tests for receipt derivation and printing"""

import uuid
from datetime import datetime, timezone
from clinic_ledger.domain.receipts import RECEIPT_WIDTH, build_receipt, render_receipt_text

PAID_AT = datetime(2024, 3, 5, 14, 30, tzinfo=timezone.utc)


def _receipt(**overrides):
    kwargs = dict(
        payment_id=uuid.uuid4(),
        patient_name="Ama Mensah",
        amount_paid=10000,
        method="momo",
        description="Scaling, Filling - bring x-rays",
        balance=20000,
        plan_total_amount=30000,
        is_plan_payment=True,
        paid_at=PAID_AT,
        generated_at=PAID_AT,
        currency="GHS",
        clinic_name="Framada Dental Clinic",
        clinic_phone="030 000 0000",
    )
    kwargs.update(overrides)
    return build_receipt(**kwargs)


def test_plan_receipt_figures():
    receipt = _receipt()
    assert receipt.payment_type == "plan"
    assert receipt.payment_for == "Scaling, Filling"
    assert receipt.notes == "bring x-rays"
    assert receipt.balance == 20000
    assert receipt.total_amount == 30000


def test_one_time_receipt_has_no_plan_total():
    receipt = _receipt(balance=None, plan_total_amount=None, is_plan_payment=False, description=None)
    assert receipt.payment_type == "one-time"
    assert receipt.payment_for == "Service Payment"
    assert receipt.total_amount is None


def test_missing_patient_name():
    assert _receipt(patient_name=None).patient_name == "Patient"


def test_printed_receipt():
    text = render_receipt_text(_receipt(balance=-5000))
    lines = text.splitlines()

    assert "PAYMENT RECEIPT" in text
    assert any(line.startswith("PAID:") and line.endswith("GHS 100.00") for line in lines)
    assert any(line.startswith("Balance:") and line.endswith("GHS -50.00") for line in lines)
    assert any(line.startswith("Method:") and line.endswith("Momo") for line in lines)
    assert "March 05, 2024 02:30 PM" in text
    assert lines[-1] == "Thank you!"
    assert all(len(line) <= RECEIPT_WIDTH for line in lines if not line.startswith("bring"))
