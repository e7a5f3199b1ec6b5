"""Integration tests for payment plan template management"""

import pytest
import uuid
from datetime import timedelta
from clinic_ledger.domain.exceptions import InvalidPlanTermsError, NotFoundError, UnauthorizedError
from clinic_ledger.domain.models import PaymentFrequency, PlanTerms, TemplateFields
from clinic_ledger.infrastructure.database.models import PaymentPlan, PaymentPlanTemplate
from clinic_ledger.services.access import Actor


def _fields(name="Braces", **overrides):
    fields = dict(
        name=name,
        total_amount=120000,
        amount_per_installment=20000,
        payment_frequency=PaymentFrequency.MONTHLY,
    )
    fields.update(overrides)
    return TemplateFields(**fields)


def test_admin_creates_template(template_service, admin):
    template = template_service.create_template(admin, _fields(name=" Braces ", description="Two-year course"))

    assert template.id is not None
    assert template.name == "Braces"
    assert template.payment_frequency == "monthly"
    assert template.is_active is True
    assert template.is_default is False
    assert template_service.get_template(admin, template.id).description == "Two-year course"


def test_only_admin_can_write(template_service, admin, receptionist):
    template = template_service.create_template(admin, _fields())

    with pytest.raises(UnauthorizedError):
        template_service.create_template(receptionist, _fields(name="Scaling"))
    with pytest.raises(UnauthorizedError):
        template_service.update_template(receptionist, template.id, TemplateFields(name="Renamed"))
    with pytest.raises(UnauthorizedError):
        template_service.delete_template(receptionist, template.id)

    assert [t.name for t in template_service.list_templates(receptionist)] == ["Braces"]


def test_doctor_can_read(template_service, admin):
    template_service.create_template(admin, _fields())
    assert len(template_service.list_templates(Actor("doc", "doctor"))) == 1


def test_invalid_template_rejected(template_service, admin):
    with pytest.raises(InvalidPlanTermsError):
        template_service.create_template(admin, _fields(payment_frequency=None))


def test_list_puts_default_first_then_name(template_service, admin):
    template_service.create_template(admin, _fields(name="Scaling"))
    template_service.create_template(admin, _fields(name="Whitening", is_default=True))
    template_service.create_template(admin, _fields(name="Crown", is_active=False))

    assert [t.name for t in template_service.list_templates(admin)] == ["Whitening", "Crown", "Scaling"]
    assert [t.name for t in template_service.list_templates(admin, active_only=True)] == ["Whitening", "Scaling"]


def test_single_default(template_service, db, admin):
    first = template_service.create_template(admin, _fields(name="First", is_default=True))
    second = template_service.create_template(admin, _fields(name="Second", is_default=True))

    db.refresh(first)
    assert first.is_default is False
    assert template_service.get_default_template(admin).id == second.id

    template_service.update_template(admin, first.id, TemplateFields(is_default=True))
    db.refresh(second)
    assert second.is_default is False
    assert db.query(PaymentPlanTemplate).filter(PaymentPlanTemplate.is_default.is_(True)).count() == 1


def test_inactive_default_is_not_offered(template_service, admin):
    template = template_service.create_template(admin, _fields(is_default=True))
    template_service.update_template(admin, template.id, TemplateFields(is_active=False))

    assert template_service.get_default_template(admin) is None


def test_update_merges_fields(template_service, clock, admin):
    template = template_service.create_template(admin, _fields())
    clock.now = clock.now + timedelta(days=1)

    updated = template_service.update_template(
        admin, template.id, TemplateFields(amount_per_installment=30000, payment_frequency=PaymentFrequency.BIWEEKLY)
    )

    assert updated.name == "Braces"
    assert updated.total_amount == 120000
    assert updated.amount_per_installment == 30000
    assert updated.payment_frequency == "biweekly"
    assert updated.updated_at.replace(tzinfo=None) == clock.now.replace(tzinfo=None)


def test_update_revalidates_merged_template(template_service, admin):
    template = template_service.create_template(admin, _fields())

    with pytest.raises(InvalidPlanTermsError):
        template_service.update_template(admin, template.id, TemplateFields(name="   "))
    with pytest.raises(NotFoundError):
        template_service.update_template(admin, uuid.uuid4(), TemplateFields(name="Other"))


def test_delete_keeps_plans(template_service, make_service, db, admin, patient):
    template = template_service.create_template(admin, _fields())
    plan = make_service().create_plan(admin, patient.id, PlanTerms(template_id=template.id))

    template_service.delete_template(admin, template.id)

    db.expire_all()
    kept = db.get(PaymentPlan, plan.id)
    assert kept.template_id is None
    assert kept.total_amount == 120000
    with pytest.raises(NotFoundError):
        template_service.get_template(admin, template.id)
    with pytest.raises(NotFoundError):
        template_service.delete_template(admin, template.id)
