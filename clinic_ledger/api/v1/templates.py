"""/v1/plan-templates - reusable plan terms managed by administrators"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from clinic_ledger.api.dependencies import get_actor, get_request_id, get_template_service
from clinic_ledger.api.errors import translate_errors
from clinic_ledger.api.v1.schemas import (
    TemplateCreateRequest,
    TemplateListResponse,
    TemplateResponse,
    TemplateUpdateRequest,
)
from clinic_ledger.domain.models import TemplateFields
from clinic_ledger.domain.money import format_amount, parse_amount
from clinic_ledger.infrastructure.database.models import PaymentPlanTemplate
from clinic_ledger.services.access import Actor
from clinic_ledger.services.templates import PlanTemplateService

router = APIRouter()


def template_response(template: PaymentPlanTemplate) -> TemplateResponse:
    return TemplateResponse(
        template_id=str(template.id),
        name=template.name,
        total_amount_minor=template.total_amount,
        total_amount=format_amount(template.total_amount),
        amount_per_installment_minor=template.amount_per_installment,
        amount_per_installment=format_amount(template.amount_per_installment),
        payment_frequency=template.payment_frequency,
        is_default=template.is_default,
        is_active=template.is_active,
        description=template.description,
    )


@router.get("/plan-templates", response_model=TemplateListResponse)
def list_templates(
    request: Request,
    active_only: bool = False,
    actor: Actor = Depends(get_actor),
    service: PlanTemplateService = Depends(get_template_service),
):
    """Default template first, then alphabetical"""
    with translate_errors(service.db, "list_templates", get_request_id(request), actor):
        templates = service.list_templates(actor, active_only)
        return TemplateListResponse(templates=[template_response(t) for t in templates])


@router.get("/plan-templates/default", response_model=Optional[TemplateResponse])
def get_default_template(
    request: Request,
    actor: Actor = Depends(get_actor),
    service: PlanTemplateService = Depends(get_template_service),
):
    """The active default template, or null when none is marked default"""
    with translate_errors(service.db, "get_default_template", get_request_id(request), actor):
        template = service.get_default_template(actor)
        return template_response(template) if template is not None else None


@router.get("/plan-templates/{template_id}", response_model=TemplateResponse)
def get_template(
    template_id: uuid.UUID,
    request: Request,
    actor: Actor = Depends(get_actor),
    service: PlanTemplateService = Depends(get_template_service),
):
    with translate_errors(service.db, "get_template", get_request_id(request), actor, str(template_id)):
        return template_response(service.get_template(actor, template_id))


@router.post("/plan-templates", response_model=TemplateResponse, status_code=201)
def create_template(
    body: TemplateCreateRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
    service: PlanTemplateService = Depends(get_template_service),
):
    with translate_errors(service.db, "create_template", get_request_id(request), actor):
        data = TemplateFields(
            name=body.name,
            total_amount=parse_amount(body.total_amount),
            amount_per_installment=parse_amount(body.amount_per_installment),
            payment_frequency=body.payment_frequency,
            is_default=body.is_default,
            is_active=body.is_active,
            description=body.description,
        )
        return template_response(service.create_template(actor, data))


@router.patch("/plan-templates/{template_id}", response_model=TemplateResponse)
def update_template(
    template_id: uuid.UUID,
    body: TemplateUpdateRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
    service: PlanTemplateService = Depends(get_template_service),
):
    with translate_errors(service.db, "update_template", get_request_id(request), actor, str(template_id)):
        changes = TemplateFields(
            name=body.name,
            total_amount=parse_amount(body.total_amount) if body.total_amount is not None else None,
            amount_per_installment=(
                parse_amount(body.amount_per_installment) if body.amount_per_installment is not None else None
            ),
            payment_frequency=body.payment_frequency,
            is_default=body.is_default,
            is_active=body.is_active,
            description=body.description,
        )
        return template_response(service.update_template(actor, template_id, changes))


@router.delete("/plan-templates/{template_id}", status_code=204)
def delete_template(
    template_id: uuid.UUID,
    request: Request,
    actor: Actor = Depends(get_actor),
    service: PlanTemplateService = Depends(get_template_service),
):
    with translate_errors(service.db, "delete_template", get_request_id(request), actor, str(template_id)):
        service.delete_template(actor, template_id)
        return Response(status_code=204)
