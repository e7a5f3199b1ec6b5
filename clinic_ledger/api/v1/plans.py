"""/v1/plans - payment plan lifecycle, balances and dashboard lists"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from clinic_ledger.api.dependencies import get_actor, get_reconciliation_service, get_request_id
from clinic_ledger.api.errors import translate_errors
from clinic_ledger.api.v1.notifications import notification_response
from clinic_ledger.api.v1.payments import payment_response
from clinic_ledger.api.v1.schemas import (
    BalanceResponse,
    PlanContextItem,
    PlanCreateRequest,
    PlanListResponse,
    PlanResponse,
    PlanUpdateRequest,
    RefreshResponse,
    ReminderResponse,
)
from clinic_ledger.domain.descriptions import TreatmentNote
from clinic_ledger.domain.exceptions import NotFoundError
from clinic_ledger.domain.models import PlanTerms, PlanWithContext
from clinic_ledger.domain.money import format_amount, parse_amount
from clinic_ledger.services.access import Actor
from clinic_ledger.services.reconciliation import PlanDetails, ReconciliationService

router = APIRouter()


def _optional_amount(value: Optional[str]) -> Optional[int]:
    return parse_amount(value) if value is not None else None


def plan_treatment(plan) -> TreatmentNote:
    """Structured treatment of a plan; plans created before the columns existed are parsed from notes"""
    if plan.treatment_types or plan.treatment_note:
        return TreatmentNote(list(plan.treatment_types or []), plan.treatment_note)
    return TreatmentNote.parse(plan.notes)


def plan_response(details: PlanDetails, include_payments: bool = True) -> PlanResponse:
    plan = details.plan
    note = plan_treatment(plan)
    return PlanResponse(
        plan_id=str(plan.id),
        patient_id=str(plan.patient_id),
        template_id=str(plan.template_id) if plan.template_id else None,
        type=plan.type,
        status=details.status,
        stored_status=plan.status,
        total_amount_minor=plan.total_amount,
        total_amount=format_amount(plan.total_amount),
        amount_per_installment_minor=plan.amount_per_installment,
        payment_frequency=plan.payment_frequency,
        start_date=plan.start_date.isoformat(),
        notes=plan.notes,
        treatment_types=note.treatment_types,
        note=note.note,
        total_paid_minor=details.total_paid,
        outstanding_balance_minor=details.outstanding_balance,
        outstanding_balance=format_amount(details.outstanding_balance),
        expected_amount_minor=details.expected_amount,
        created_at=plan.created_at.isoformat(),
        payments=[payment_response(p) for p in details.payments] if include_payments else [],
    )


def context_item(item: PlanWithContext) -> PlanContextItem:
    return PlanContextItem(
        plan_id=str(item.plan_id),
        patient_id=str(item.patient_id),
        patient_name=item.patient_name,
        contact_phone=item.contact_phone,
        type=item.type,
        status=item.status,
        total_amount_minor=item.total_amount,
        amount_per_installment_minor=item.amount_per_installment,
        payment_frequency=item.payment_frequency,
        start_date=item.start_date.isoformat(),
        total_paid_minor=item.total_paid,
        outstanding_balance_minor=item.outstanding_balance,
        outstanding_balance=format_amount(item.outstanding_balance),
        expected_amount_minor=item.expected_amount,
    )


@router.post("/plans", response_model=PlanResponse, status_code=201)
def create_plan(
    body: PlanCreateRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Create the patient's payment plan.

    Fixed plans start "activated", flexible plans "outstanding". A second
    plan for the same patient is rejected with 409.
    """
    request_id = get_request_id(request)
    with translate_errors(service.db, "create_plan", request_id, actor, str(body.patient_id)):
        treatment = TreatmentNote(body.treatment_types or [], body.note)
        terms = PlanTerms(
            type=body.type,
            total_amount=_optional_amount(body.total_amount),
            amount_per_installment=_optional_amount(body.amount_per_installment),
            payment_frequency=body.payment_frequency,
            template_id=body.template_id,
            start_date=body.start_date,
            notes=treatment.encode() or None,
            treatment_types=treatment.treatment_types or None,
            treatment_note=treatment.note or None,
        )
        plan = service.create_plan(actor, body.patient_id, terms)
        return plan_response(service.get_plan_details(actor, plan.id))


@router.get("/plans/overdue", response_model=PlanListResponse)
def list_overdue_plans(
    request: Request,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Fixed plans whose cumulative expected installments exceed what has been paid"""
    with translate_errors(service.db, "list_overdue_plans", get_request_id(request), actor):
        return PlanListResponse(plans=[context_item(p) for p in service.list_overdue_plans(actor)])


@router.get("/plans/outstanding", response_model=PlanListResponse)
def list_outstanding_plans(
    request: Request,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Outstanding/activated plans that still need any payment, regardless of cadence"""
    with translate_errors(service.db, "list_outstanding_plans", get_request_id(request), actor):
        return PlanListResponse(plans=[context_item(p) for p in service.list_outstanding_plans(actor)])


@router.post("/plans/overdue/refresh", response_model=RefreshResponse)
def refresh_overdue(
    request: Request,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Persist the overdue overlay so list views can filter on stored status"""
    with translate_errors(service.db, "refresh_overdue", get_request_id(request), actor):
        marked, cleared = service.refresh_overdue_statuses(actor)
        return RefreshResponse(marked_overdue=marked, cleared=cleared)


@router.get("/patients/{patient_id}/plan", response_model=PlanResponse)
def get_patient_plan(
    patient_id: uuid.UUID,
    request: Request,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    with translate_errors(service.db, "get_patient_plan", get_request_id(request), actor, str(patient_id)):
        details = service.get_plan_by_patient(actor, patient_id)
        if details is None:
            raise NotFoundError("Payment plan not found")
        return plan_response(details)


@router.get("/plans/{plan_id}", response_model=PlanResponse)
def get_plan(
    plan_id: uuid.UUID,
    request: Request,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Plan with read-time status, totals and payment history"""
    with translate_errors(service.db, "get_plan", get_request_id(request), actor, str(plan_id)):
        return plan_response(service.get_plan_details(actor, plan_id))


@router.patch("/plans/{plan_id}", response_model=PlanResponse)
def update_plan_terms(
    plan_id: uuid.UUID,
    body: PlanUpdateRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Administrator-only edit of plan terms; anyone else gets 423 Locked"""
    with translate_errors(service.db, "update_plan_terms", get_request_id(request), actor, str(plan_id)):
        treatment = None
        if body.treatment_types is not None or body.note is not None:
            current = plan_treatment(service.get_plan_details(actor, plan_id).plan)
            treatment = TreatmentNote(
                body.treatment_types if body.treatment_types is not None else current.treatment_types,
                body.note if body.note is not None else current.note,
            )
        changes = PlanTerms(
            type=body.type,
            total_amount=_optional_amount(body.total_amount),
            amount_per_installment=_optional_amount(body.amount_per_installment),
            payment_frequency=body.payment_frequency,
            template_id=body.template_id,
            start_date=body.start_date,
            notes=treatment.encode() if treatment else None,
            treatment_types=treatment.treatment_types if treatment else None,
            treatment_note=treatment.note if treatment else None,
        )
        plan = service.update_plan_terms(actor, plan_id, changes)
        return plan_response(service.get_plan_details(actor, plan.id))


@router.delete("/plans/{plan_id}", status_code=204)
def delete_plan(
    plan_id: uuid.UUID,
    request: Request,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    with translate_errors(service.db, "delete_plan", get_request_id(request), actor, str(plan_id)):
        service.delete_plan(actor, plan_id)
        return Response(status_code=204)


@router.post("/plans/{plan_id}/pause", response_model=PlanResponse)
def pause_plan(
    plan_id: uuid.UUID,
    request: Request,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Suspend the plan; pausing an already paused plan is a no-op"""
    with translate_errors(service.db, "pause_plan", get_request_id(request), actor, str(plan_id)):
        service.pause_plan(actor, plan_id)
        return plan_response(service.get_plan_details(actor, plan_id), include_payments=False)


@router.post("/plans/{plan_id}/resume", response_model=PlanResponse)
def resume_plan(
    plan_id: uuid.UUID,
    request: Request,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    with translate_errors(service.db, "resume_plan", get_request_id(request), actor, str(plan_id)):
        service.resume_plan(actor, plan_id)
        return plan_response(service.get_plan_details(actor, plan_id), include_payments=False)


@router.get("/plans/{plan_id}/balance", response_model=BalanceResponse)
def get_balance(
    plan_id: uuid.UUID,
    request: Request,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Outstanding balance computed fresh from completed payments"""
    with translate_errors(service.db, "get_balance", get_request_id(request), actor, str(plan_id)):
        balance = service.get_outstanding_balance(actor, plan_id)
        return BalanceResponse(
            plan_id=str(balance.plan_id),
            total_amount_minor=balance.total_amount,
            total_paid_minor=balance.total_paid,
            outstanding_balance_minor=balance.outstanding_balance,
            outstanding_balance=format_amount(balance.outstanding_balance),
            overpaid=balance.overpaid,
        )


@router.post("/plans/{plan_id}/reminder", response_model=ReminderResponse)
async def send_reminder(
    plan_id: uuid.UUID,
    request: Request,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Text the patient a reminder of the amount due on their plan.

    A gateway failure is still recorded as a failed message (retryable from
    /v1/notifications) and answered with 502.
    """
    with translate_errors(service.db, "send_payment_reminder", get_request_id(request), actor, str(plan_id)):
        context, result = await service.send_payment_reminder(actor, plan_id)
        if not result.ok:
            raise result.exception
        return ReminderResponse(
            plan_id=str(context.plan_id),
            amount_due_minor=context.amount_due,
            amount_due=format_amount(context.amount_due),
            message=notification_response(result.records[0]) if result.records else None,
        )
