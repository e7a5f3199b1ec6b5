"""Payment plan state machine and term validation"""

from datetime import datetime
from typing import Optional, Tuple

from clinic_ledger.domain.delinquency import is_overdue
from clinic_ledger.domain.exceptions import InvalidPlanTermsError, InvalidTransitionError
from clinic_ledger.domain.ledger import outstanding_balance
from clinic_ledger.domain.models import PaymentFrequency, PlanStatus, PlanTerms, PlanType, TemplateFields
from clinic_ledger.domain.money import require_positive

PAUSABLE_STATUSES = (PlanStatus.ACTIVATED, PlanStatus.OVERDUE, PlanStatus.OUTSTANDING)


def initial_status(plan_type: PlanType) -> PlanStatus:
    """Flexible plans start outstanding, fixed plans start activated"""
    if PlanType(plan_type) == PlanType.FLEXIBLE:
        return PlanStatus.OUTSTANDING
    return PlanStatus.ACTIVATED


def validate_terms(terms: PlanTerms) -> PlanTerms:
    """
    Check a complete set of plan terms and normalize them for the plan type.

    - total_amount must be > 0
    - fixed plans need a positive installment amount and a frequency
    - flexible plans drop installment amount and frequency

    Raises:
        InvalidAmountError: On non-positive amounts
        InvalidPlanTermsError: On missing fixed-plan terms
    """
    plan_type = PlanType(terms.type or PlanType.FIXED)

    if terms.total_amount is None:
        raise InvalidPlanTermsError("total_amount is required")
    require_positive(terms.total_amount)

    if plan_type == PlanType.FIXED:
        if terms.amount_per_installment is None or terms.payment_frequency is None:
            raise InvalidPlanTermsError(
                "Fixed plans require amount_per_installment and payment_frequency"
            )
        require_positive(terms.amount_per_installment)
        frequency: Optional[PaymentFrequency] = PaymentFrequency(terms.payment_frequency)
        installment = terms.amount_per_installment
    else:
        frequency = None
        installment = None

    return PlanTerms(
        type=plan_type,
        total_amount=terms.total_amount,
        amount_per_installment=installment,
        payment_frequency=frequency,
        template_id=terms.template_id,
        start_date=terms.start_date,
        notes=terms.notes,
        treatment_types=terms.treatment_types,
        treatment_note=terms.treatment_note,
    )


def validate_template(fields: TemplateFields) -> TemplateFields:
    """
    Check a complete template: a name, positive amounts and a frequency.

    Raises:
        InvalidAmountError: On non-positive amounts
        InvalidPlanTermsError: On a missing name, amount or frequency
    """
    name = (fields.name or "").strip()
    if not name:
        raise InvalidPlanTermsError("Template name is required")
    if fields.total_amount is None or fields.amount_per_installment is None or fields.payment_frequency is None:
        raise InvalidPlanTermsError("Templates require total_amount, amount_per_installment and payment_frequency")
    require_positive(fields.total_amount)
    require_positive(fields.amount_per_installment)
    return TemplateFields(
        name=name,
        total_amount=fields.total_amount,
        amount_per_installment=fields.amount_per_installment,
        payment_frequency=PaymentFrequency(fields.payment_frequency),
        is_default=bool(fields.is_default),
        is_active=True if fields.is_active is None else fields.is_active,
        description=fields.description,
    )


def pause(current: PlanStatus) -> Tuple[PlanStatus, bool]:
    """
    Returns (new_status, changed). Pausing a paused plan is a no-op.

    Raises:
        InvalidTransitionError: When the plan is completed
    """
    current = PlanStatus(current)
    if current == PlanStatus.PAUSED:
        return current, False
    if current not in PAUSABLE_STATUSES:
        raise InvalidTransitionError(f"Cannot pause a plan in status '{current.value}'")
    return PlanStatus.PAUSED, True


def resume(current: PlanStatus, plan_type: PlanType) -> Tuple[PlanStatus, bool]:
    """Returns (new_status, changed). Resuming a plan that is not paused is a no-op."""
    current = PlanStatus(current)
    if current != PlanStatus.PAUSED:
        return current, False
    return initial_status(plan_type), True


def effective_status(
    plan_type: PlanType,
    stored_status: PlanStatus,
    total_amount: int,
    total_paid: int,
    start_date: datetime,
    amount_per_installment: Optional[int],
    frequency: Optional[PaymentFrequency],
    now: datetime,
) -> PlanStatus:
    """
    Read-time status overlay.

    completed and overdue are derived from persisted payments rather than
    written on every evaluation; a stale persisted "overdue" never wins
    over the on-demand check.
    """
    stored_status = PlanStatus(stored_status)
    if stored_status == PlanStatus.PAUSED:
        return stored_status
    if outstanding_balance(total_amount, total_paid) <= 0:
        return PlanStatus.COMPLETED
    if stored_status == PlanStatus.COMPLETED:
        # Balance reopened (e.g. a payment was deleted)
        return initial_status(plan_type)
    if is_overdue(plan_type, stored_status, start_date, amount_per_installment, frequency, total_paid, now):
        return PlanStatus.OVERDUE
    if stored_status == PlanStatus.OVERDUE:
        return PlanStatus.ACTIVATED
    return stored_status
