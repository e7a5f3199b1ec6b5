"""/v1/payments - payment recording, corrections and receipts"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import PlainTextResponse

from clinic_ledger.api.dependencies import get_actor, get_reconciliation_service, get_request_id
from clinic_ledger.api.errors import translate_errors
from clinic_ledger.api.v1.schemas import (
    PaymentCreateRequest,
    PaymentListResponse,
    PaymentResponse,
    PaymentStatusUpdateRequest,
    ReceiptResponse,
)
from clinic_ledger.domain.descriptions import TreatmentNote
from clinic_ledger.domain.money import format_amount, parse_positive_amount
from clinic_ledger.domain.receipts import render_receipt_text
from clinic_ledger.infrastructure.database.models import Payment
from clinic_ledger.infrastructure.observability.logging import log_payment_recorded
from clinic_ledger.services.access import Actor
from clinic_ledger.services.reconciliation import ReconciliationService

router = APIRouter()


def payment_response(payment: Payment, notification_error: Optional[str] = None) -> PaymentResponse:
    balance = payment.balance
    return PaymentResponse(
        payment_id=str(payment.id),
        patient_id=str(payment.patient_id),
        payment_plan_id=str(payment.payment_plan_id) if payment.payment_plan_id else None,
        amount_minor=payment.amount,
        amount=format_amount(payment.amount),
        method=payment.method,
        status=payment.status,
        description=payment.description,
        treatment_types=list(payment.treatment_types or []),
        note=payment.treatment_note,
        balance_minor=balance,
        balance=format_amount(balance) if balance is not None else None,
        overpaid=balance is not None and balance < 0,
        created_at=payment.created_at.isoformat(),
        notification_error=notification_error,
    )


@router.post("/payments", response_model=PaymentResponse, status_code=201)
async def record_payment(
    body: PaymentCreateRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Record a payment against a plan or as a one-time payment.

    Flow:
    1. Parse the major-unit amount into minor units (must be > 0)
    2. Under the plan lock, snapshot the balance and insert the payment
    3. Commit, then send the receipt SMS if requested

    An SMS failure never fails the request; it comes back as notification_error.
    """
    request_id = get_request_id(request)
    with translate_errors(service.db, "record_payment", request_id, actor, str(body.payment_plan_id or body.patient_id)):
        amount = parse_positive_amount(body.amount)
        description = body.description or TreatmentNote(body.treatment_types, body.note).encode() or None

        result = await service.record_payment(
            actor,
            patient_id=body.patient_id,
            plan_id=body.payment_plan_id,
            amount=amount,
            method=body.method.value,
            status=body.status,
            description=description,
            send_notification=body.send_notification,
            transaction_id=body.transaction_id,
            treatment_types=body.treatment_types or None,
            treatment_note=body.note or None,
        )

    payment = result.payment
    log_payment_recorded(
        request_id,
        actor.user_id,
        str(payment.id),
        str(payment.payment_plan_id) if payment.payment_plan_id else None,
        payment.amount,
        payment.balance,
        result.notification_error,
    )
    return payment_response(payment, result.notification_error)


@router.get("/payments", response_model=PaymentListResponse)
def list_payments(
    request: Request,
    patient_id: Optional[uuid.UUID] = None,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    with translate_errors(service.db, "list_payments", get_request_id(request), actor):
        payments = service.list_payments(actor, patient_id)
        return PaymentListResponse(payments=[payment_response(p) for p in payments])


@router.patch("/payments/{payment_id}", response_model=PaymentResponse)
def update_payment_status(
    payment_id: uuid.UUID,
    body: PaymentStatusUpdateRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Administrative status correction; stored balance snapshots are not rewritten"""
    with translate_errors(service.db, "update_payment", get_request_id(request), actor, str(payment_id)):
        return payment_response(service.update_payment_status(actor, payment_id, body.status))


@router.delete("/payments/{payment_id}", status_code=204)
def delete_payment(
    payment_id: uuid.UUID,
    request: Request,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    with translate_errors(service.db, "delete_payment", get_request_id(request), actor, str(payment_id)):
        service.delete_payment(actor, payment_id)
        return Response(status_code=204)


@router.get("/payments/{payment_id}/receipt", response_model=ReceiptResponse)
def get_receipt(
    payment_id: uuid.UUID,
    request: Request,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Receipt figures for on-screen display"""
    with translate_errors(service.db, "generate_receipt", get_request_id(request), actor, str(payment_id)):
        receipt = service.generate_receipt_view(actor, payment_id)

    return ReceiptResponse(
        payment_id=str(receipt.payment_id),
        patient_name=receipt.patient_name,
        payment_method=receipt.payment_method,
        payment_type=receipt.payment_type,
        payment_for=receipt.payment_for,
        notes=receipt.notes,
        currency=receipt.currency,
        amount_paid_minor=receipt.amount_paid,
        amount_paid=format_amount(receipt.amount_paid),
        balance_minor=receipt.balance,
        balance=format_amount(receipt.balance) if receipt.balance is not None else None,
        total_amount_minor=receipt.total_amount,
        total_amount=format_amount(receipt.total_amount) if receipt.total_amount is not None else None,
        clinic_name=receipt.clinic_name,
        clinic_phone=receipt.clinic_phone,
        clinic_address=receipt.clinic_address,
        paid_at=receipt.paid_at.isoformat(),
        generated_at=receipt.generated_at.isoformat(),
    )


@router.get("/payments/{payment_id}/receipt/print", response_class=PlainTextResponse)
def print_receipt(
    payment_id: uuid.UUID,
    request: Request,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Same receipt as fixed-width text for the receipt printer"""
    with translate_errors(service.db, "print_receipt", get_request_id(request), actor, str(payment_id)):
        receipt = service.generate_receipt_view(actor, payment_id)
    return PlainTextResponse(render_receipt_text(receipt))
