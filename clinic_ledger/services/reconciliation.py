"""Reconciliation service - the ledger operations used by the rest of the clinic application"""

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_ledger.config import settings
from clinic_ledger.domain import plans as plan_rules
from clinic_ledger.domain.delinquency import EVALUATED_STATUSES, expected_amount, is_overdue
from clinic_ledger.domain.exceptions import (
    AlreadyExistsError,
    ConfigurationError,
    InvalidPlanTermsError,
    InvalidTransitionError,
    LockedError,
    NotFoundError,
    UnauthorizedError,
)
from clinic_ledger.domain.ledger import outstanding_balance, snapshot_balance
from clinic_ledger.domain.models import (
    PaymentFrequency,
    PaymentStatus,
    PlanStatus,
    PlanTerms,
    PlanType,
    PlanWithContext,
    ReceiptData,
)
from clinic_ledger.domain.money import require_positive
from clinic_ledger.domain.receipts import build_receipt
from clinic_ledger.infrastructure.cache import OUTSTANDING_PLANS_KEY, OVERDUE_PLANS_KEY, PLANS_PREFIX, TTLCache, dashboard_cache
from clinic_ledger.infrastructure.database.models import Payment, PaymentPlan
from clinic_ledger.infrastructure.database.repositories import (
    PatientRepository,
    PaymentRepository,
    PlanRepository,
    TemplateRepository,
    to_contact,
)
from clinic_ledger.infrastructure.observability.metrics import overdue_plans_gauge, record_payment
from clinic_ledger.services.access import (
    CREATE,
    DELETE,
    MESSAGING,
    PATIENTS,
    PAYMENTS,
    READ,
    UPDATE,
    Actor,
    PermissionPolicy,
    PlanEditCapability,
    RoleCapability,
    RolePermissionPolicy,
    require_permission,
)
from clinic_ledger.services.notifications import NotificationDispatcher, SendResult
from clinic_ledger.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


class PlanLocks:
    """
    Process-local lock per plan id serializing balance read-then-insert.

    An entry lives only while some thread holds or waits for it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[uuid.UUID, threading.Lock] = {}
        self._users: Dict[uuid.UUID, int] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, plan_id: uuid.UUID) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(plan_id, threading.Lock())
            self._users[plan_id] = self._users.get(plan_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[plan_id] -= 1
                if not self._users[plan_id]:
                    del self._users[plan_id]
                    del self._locks[plan_id]


plan_locks = PlanLocks()


@dataclass
class RecordedPayment:
    payment: Payment
    notification_error: Optional[str] = None


@dataclass
class PlanBalance:
    plan_id: uuid.UUID
    total_amount: int
    total_paid: int
    outstanding_balance: int

    @property
    def overpaid(self) -> bool:
        return self.outstanding_balance < 0


@dataclass
class PlanDetails:
    plan: PaymentPlan
    status: PlanStatus
    total_paid: int
    outstanding_balance: int
    expected_amount: Optional[int]
    payments: List[Payment] = field(default_factory=list)


class ReconciliationService:
    """
    Plan lifecycle, payment recording and ledger queries.

    Owns the transaction for every write: the payment row and its balance
    snapshot commit under the plan lock, and the receipt SMS goes out only
    after that commit.
    """

    def __init__(
        self,
        db: Session,
        dispatcher: Optional[NotificationDispatcher] = None,
        capability: Optional[PlanEditCapability] = None,
        permissions: Optional[PermissionPolicy] = None,
        cache: Optional[TTLCache] = None,
        clock: Callable[[], datetime] = utcnow,
        locks: Optional[PlanLocks] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.capability = capability or RoleCapability()
        self.permissions = permissions or RolePermissionPolicy()
        self.cache = cache if cache is not None else dashboard_cache
        self.clock = clock
        self.locks = locks if locks is not None else plan_locks
        self.plans = PlanRepository(db)
        self.payments = PaymentRepository(db)
        self.patients = PatientRepository(db)
        self.templates = TemplateRepository(db)

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def create_plan(self, actor: Actor, patient_id: uuid.UUID, terms: PlanTerms) -> PaymentPlan:
        """
        Create the patient's single payment plan.

        Raises:
            NotFoundError: Patient or template missing
            AlreadyExistsError: Patient already has a plan
            InvalidAmountError / InvalidPlanTermsError: Bad terms
        """
        require_permission(self.permissions, actor, PATIENTS, CREATE)

        if self.patients.get_patient(patient_id) is None:
            raise NotFoundError(f"Patient {patient_id} not found")
        if self.plans.get_plan_by_patient(patient_id) is not None:
            raise AlreadyExistsError("Payment plan already exists for this patient")

        terms = self._apply_template(terms)
        validated = plan_rules.validate_terms(terms)
        start_date = validated.start_date or self.clock()

        try:
            plan = self.plans.create_plan(
                patient_id=patient_id,
                terms=validated,
                status=plan_rules.initial_status(validated.type),
                start_date=start_date,
            )
            self.db.commit()
        except IntegrityError as e:
            # Lost a race with a concurrent create for the same patient
            self.db.rollback()
            raise AlreadyExistsError("Payment plan already exists for this patient") from e

        self.cache.invalidate_prefix(PLANS_PREFIX)
        logger.info(
            "Payment plan created",
            extra={
                "user_id": actor.user_id,
                "action": "create_plan",
                "plan_id": str(plan.id),
                "patient_id": str(patient_id),
                "plan_type": plan.type,
            },
        )
        return plan

    def _apply_template(self, terms: PlanTerms) -> PlanTerms:
        """
        Fill terms the caller left empty from the referenced template.

        Without a template or a total, the active default template is used
        when one exists.
        """
        if terms.template_id is None:
            template = self.templates.get_default_template() if terms.total_amount is None else None
            if template is None:
                return terms
        else:
            template = self.templates.get_template(terms.template_id)
            if template is None:
                raise NotFoundError(f"Payment plan template {terms.template_id} not found")
            if not template.is_active:
                raise InvalidPlanTermsError("Payment plan template is not active")

        plan_type = terms.type or PlanType.FIXED
        return PlanTerms(
            type=plan_type,
            total_amount=terms.total_amount if terms.total_amount is not None else template.total_amount,
            amount_per_installment=(
                terms.amount_per_installment
                if terms.amount_per_installment is not None
                else template.amount_per_installment
            ),
            payment_frequency=terms.payment_frequency or PaymentFrequency(template.payment_frequency),
            template_id=template.id,
            start_date=terms.start_date,
            notes=terms.notes,
            treatment_types=terms.treatment_types,
            treatment_note=terms.treatment_note,
        )

    def _get_plan(self, plan_id: uuid.UUID) -> PaymentPlan:
        plan = self.plans.get_plan_by_id(plan_id)
        if plan is None:
            raise NotFoundError("Payment plan not found")
        return plan

    def get_plan_details(self, actor: Actor, plan_id: uuid.UUID) -> PlanDetails:
        require_permission(self.permissions, actor, PATIENTS, READ)
        return self._details(self._get_plan(plan_id))

    def get_plan_by_patient(self, actor: Actor, patient_id: uuid.UUID) -> Optional[PlanDetails]:
        require_permission(self.permissions, actor, PATIENTS, READ)
        plan = self.plans.get_plan_by_patient(patient_id)
        return self._details(plan) if plan is not None else None

    def _details(self, plan: PaymentPlan) -> PlanDetails:
        total_paid = self.payments.completed_sum(plan.id)
        now = self.clock()
        expected = None
        if plan.amount_per_installment and plan.payment_frequency:
            expected = expected_amount(plan.start_date, plan.amount_per_installment, plan.payment_frequency, now)
        return PlanDetails(
            plan=plan,
            status=self._effective_status(plan, total_paid, now),
            total_paid=total_paid,
            outstanding_balance=outstanding_balance(plan.total_amount, total_paid),
            expected_amount=expected,
            payments=self.payments.list_for_plan(plan.id),
        )

    @staticmethod
    def _effective_status(plan: PaymentPlan, total_paid: int, now: datetime) -> PlanStatus:
        return plan_rules.effective_status(
            plan.type,
            plan.status,
            plan.total_amount,
            total_paid,
            plan.start_date,
            plan.amount_per_installment,
            plan.payment_frequency,
            now,
        )

    def update_plan_terms(self, actor: Actor, plan_id: uuid.UUID, changes: PlanTerms) -> PaymentPlan:
        """
        Administrative edit of plan terms. Only fields set on changes are applied.

        Raises:
            LockedError: Actor is not allowed to edit a plan once it exists
            NotFoundError: Plan missing
        """
        if not self.capability.can_edit_locked_plan(actor):
            raise LockedError("Only administrators can change payment plans once they have been selected.")
        require_permission(self.permissions, actor, PATIENTS, UPDATE)

        plan = self._get_plan(plan_id)
        current = PlanTerms(
            type=PlanType(plan.type),
            total_amount=plan.total_amount,
            amount_per_installment=plan.amount_per_installment,
            payment_frequency=PaymentFrequency(plan.payment_frequency) if plan.payment_frequency else None,
            template_id=plan.template_id,
            start_date=plan.start_date,
            notes=plan.notes,
            treatment_types=plan.treatment_types,
            treatment_note=plan.treatment_note,
        )
        requested = {f.name: getattr(changes, f.name) for f in fields(PlanTerms) if getattr(changes, f.name) is not None}
        merged = PlanTerms(**{**current.__dict__, **requested})
        if merged.type == PlanType.FLEXIBLE:
            merged.amount_per_installment = None
            merged.payment_frequency = None
        validated = plan_rules.validate_terms(merged)

        touched = set(requested)
        if validated.type != current.type:
            touched |= {"amount_per_installment", "payment_frequency"}
        updates: Dict[str, Any] = {
            name: getattr(validated, name)
            for name in touched
            if getattr(validated, name) != getattr(current, name)
        }
        if not updates:
            return plan

        if "type" in updates and PlanStatus(plan.status) == plan_rules.initial_status(current.type):
            updates["status"] = plan_rules.initial_status(validated.type)

        self.plans.apply_terms(plan, updates, self.clock())
        self.db.commit()
        self.cache.invalidate_prefix(PLANS_PREFIX)
        logger.info(
            "Payment plan terms updated",
            extra={
                "user_id": actor.user_id,
                "action": "update_plan_terms",
                "plan_id": str(plan.id),
                "fields": sorted(updates),
            },
        )
        return plan

    def pause_plan(self, actor: Actor, plan_id: uuid.UUID) -> PaymentPlan:
        require_permission(self.permissions, actor, PATIENTS, UPDATE)
        plan = self._get_plan(plan_id)
        new_status, changed = plan_rules.pause(PlanStatus(plan.status))
        return self._transition(actor, plan, new_status, changed, "pause_plan")

    def resume_plan(self, actor: Actor, plan_id: uuid.UUID) -> PaymentPlan:
        require_permission(self.permissions, actor, PATIENTS, UPDATE)
        plan = self._get_plan(plan_id)
        new_status, changed = plan_rules.resume(PlanStatus(plan.status), PlanType(plan.type))
        return self._transition(actor, plan, new_status, changed, "resume_plan")

    def _transition(
        self, actor: Actor, plan: PaymentPlan, new_status: PlanStatus, changed: bool, action: str
    ) -> PaymentPlan:
        if not changed:
            return plan
        self.plans.set_status(plan, new_status, self.clock())
        self.db.commit()
        self.cache.invalidate_prefix(PLANS_PREFIX)
        logger.info(
            "Payment plan status changed",
            extra={"user_id": actor.user_id, "action": action, "plan_id": str(plan.id), "status": new_status.value},
        )
        return plan

    def delete_plan(self, actor: Actor, plan_id: uuid.UUID) -> None:
        """Administrative hard delete; payments are kept with their plan reference cleared"""
        if not self.capability.can_edit_locked_plan(actor):
            raise UnauthorizedError("Only administrators can delete payment plans")
        require_permission(self.permissions, actor, PATIENTS, DELETE)

        plan = self._get_plan(plan_id)
        self.plans.delete_plan(plan)
        self.db.commit()
        self.cache.invalidate_prefix(PLANS_PREFIX)
        logger.info(
            "Payment plan deleted",
            extra={"user_id": actor.user_id, "action": "delete_plan", "plan_id": str(plan_id)},
        )

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    async def record_payment(
        self,
        actor: Actor,
        patient_id: uuid.UUID,
        plan_id: Optional[uuid.UUID],
        amount: int,
        method: str,
        status: PaymentStatus,
        description: Optional[str] = None,
        send_notification: bool = False,
        transaction_id: Optional[str] = None,
        treatment_types: Optional[List[str]] = None,
        treatment_note: Optional[str] = None,
    ) -> RecordedPayment:
        """
        Persist a payment with its balance snapshot, then send the receipt SMS.

        Paused plans still accept payments (catch-up of historical payments).
        The description is the display text; treatment_types and
        treatment_note keep the structured selection alongside it.

        Raises:
            InvalidAmountError: amount <= 0
            NotFoundError: Patient or plan missing, or plan belongs to another patient
        """
        require_permission(self.permissions, actor, PAYMENTS, CREATE)
        require_positive(amount)
        status = PaymentStatus(status)

        patient = self.patients.get_patient(patient_id)
        if patient is None:
            raise NotFoundError(f"Patient {patient_id} not found")

        plan: Optional[PaymentPlan] = None
        try:
            if plan_id is not None:
                with self.locks.hold(plan_id):
                    plan = self.plans.get_plan_for_update(plan_id)
                    if plan is None or plan.patient_id != patient_id:
                        raise NotFoundError("Payment plan not found")
                    prior = self.payments.completed_sum(plan_id, patient_id)
                    balance = snapshot_balance(plan.total_amount, prior, amount, status)
                    payment = self._insert_payment(
                        patient_id, plan_id, amount, method, status, description, balance,
                        send_notification, transaction_id, treatment_types, treatment_note,
                    )
                    self.db.commit()
            else:
                payment = self._insert_payment(
                    patient_id, None, amount, method, status, description, None,
                    send_notification, transaction_id, treatment_types, treatment_note,
                )
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.cache.invalidate_prefix(PLANS_PREFIX)
        record_payment(str(plan_id) if plan_id else None, status.value, payment.balance)

        notification_error = None
        if send_notification and status == PaymentStatus.COMPLETED and self.dispatcher is not None:
            notification_error = await self.dispatcher.dispatch_payment_receipt(
                payment, plan, to_contact(patient), sent_by_id=actor.user_id
            )
        return RecordedPayment(payment=payment, notification_error=notification_error)

    def _insert_payment(
        self,
        patient_id: uuid.UUID,
        plan_id: Optional[uuid.UUID],
        amount: int,
        method: str,
        status: PaymentStatus,
        description: Optional[str],
        balance: Optional[int],
        send_notification: bool,
        transaction_id: Optional[str],
        treatment_types: Optional[List[str]],
        treatment_note: Optional[str],
    ) -> Payment:
        return self.payments.create_payment(
            patient_id=patient_id,
            plan_id=plan_id,
            amount=amount,
            method=method,
            status=status,
            description=description,
            balance=balance,
            send_notification=send_notification,
            created_at=self.clock(),
            transaction_id=transaction_id,
            treatment_types=treatment_types,
            treatment_note=treatment_note,
        )

    def list_payments(self, actor: Actor, patient_id: Optional[uuid.UUID] = None) -> List[Payment]:
        require_permission(self.permissions, actor, PAYMENTS, READ)
        return self.payments.list_payments(patient_id)

    def update_payment_status(self, actor: Actor, payment_id: uuid.UUID, status: PaymentStatus) -> Payment:
        """
        Administrative status correction. Stored balance snapshots (this
        payment's and others') are left exactly as they were.
        """
        if not self.capability.can_edit_locked_plan(actor):
            raise UnauthorizedError("Only administrators can change recorded payments")
        require_permission(self.permissions, actor, PAYMENTS, UPDATE)

        payment = self.payments.get_payment(payment_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        payment.status = PaymentStatus(status).value
        self.db.commit()
        self.cache.invalidate_prefix(PLANS_PREFIX)
        logger.info(
            "Payment status updated",
            extra={"user_id": actor.user_id, "action": "update_payment", "payment_id": str(payment_id)},
        )
        return payment

    def delete_payment(self, actor: Actor, payment_id: uuid.UUID) -> None:
        require_permission(self.permissions, actor, PAYMENTS, DELETE)
        payment = self.payments.get_payment(payment_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        self.payments.delete_payment(payment)
        self.db.commit()
        self.cache.invalidate_prefix(PLANS_PREFIX)
        logger.info(
            "Payment deleted",
            extra={"user_id": actor.user_id, "action": "delete_payment", "payment_id": str(payment_id)},
        )

    # ------------------------------------------------------------------
    # Ledger queries
    # ------------------------------------------------------------------

    def get_outstanding_balance(self, actor: Actor, plan_id: uuid.UUID) -> PlanBalance:
        """Fresh total - sum(completed); never served from cache"""
        require_permission(self.permissions, actor, PATIENTS, READ)
        plan = self._get_plan(plan_id)
        total_paid = self.payments.completed_sum(plan.id)
        return PlanBalance(
            plan_id=plan.id,
            total_amount=plan.total_amount,
            total_paid=total_paid,
            outstanding_balance=outstanding_balance(plan.total_amount, total_paid),
        )

    def list_overdue_plans(self, actor: Actor) -> List[PlanWithContext]:
        require_permission(self.permissions, actor, PATIENTS, READ)
        now = self.clock()
        return self.cache.get_or_load(
            f"{OVERDUE_PLANS_KEY}:{now.date().isoformat()}",
            lambda: self._overdue_plans(now),
            settings.dashboard_cache_ttl_seconds,
        )

    def _overdue_plans(self, now: datetime) -> List[PlanWithContext]:
        candidates = self.plans.list_plans(EVALUATED_STATUSES, PlanType.FIXED)
        paid = self.payments.completed_sums(p.id for p in candidates)
        overdue = [
            self._with_context(plan, paid[plan.id], now)
            for plan in candidates
            if is_overdue(
                plan.type,
                plan.status,
                plan.start_date,
                plan.amount_per_installment,
                plan.payment_frequency,
                paid[plan.id],
                now,
            )
        ]
        overdue_plans_gauge.set(len(overdue))
        return overdue

    def list_outstanding_plans(self, actor: Actor) -> List[PlanWithContext]:
        require_permission(self.permissions, actor, PATIENTS, READ)
        now = self.clock()
        return self.cache.get_or_load(
            OUTSTANDING_PLANS_KEY,
            lambda: self._outstanding_plans(now),
            settings.dashboard_cache_ttl_seconds,
        )

    def _outstanding_plans(self, now: datetime) -> List[PlanWithContext]:
        candidates = self.plans.list_plans((PlanStatus.OUTSTANDING, PlanStatus.ACTIVATED))
        paid = self.payments.completed_sums(p.id for p in candidates)
        return [
            self._with_context(plan, paid[plan.id], now)
            for plan in candidates
            if plan.total_amount > paid[plan.id]
        ]

    def _with_context(self, plan: PaymentPlan, total_paid: int, now: datetime) -> PlanWithContext:
        contact = to_contact(plan.patient)
        expected = None
        if plan.amount_per_installment and plan.payment_frequency:
            expected = expected_amount(plan.start_date, plan.amount_per_installment, plan.payment_frequency, now)
        return PlanWithContext(
            plan_id=plan.id,
            patient_id=plan.patient_id,
            patient_name=contact.name,
            contact_phone=contact.contact_phone,
            type=PlanType(plan.type),
            status=self._effective_status(plan, total_paid, now),
            total_amount=plan.total_amount,
            amount_per_installment=plan.amount_per_installment,
            payment_frequency=PaymentFrequency(plan.payment_frequency) if plan.payment_frequency else None,
            start_date=plan.start_date,
            total_paid=total_paid,
            outstanding_balance=outstanding_balance(plan.total_amount, total_paid),
            expected_amount=expected,
        )

    def refresh_overdue_statuses(self, actor: Optional[Actor] = None) -> Tuple[int, int]:
        """
        Persist the overdue overlay for list views.

        Marks behind activated plans "overdue" and returns caught-up overdue
        plans to "activated". Returns (marked_overdue, cleared).
        """
        if actor is not None:
            require_permission(self.permissions, actor, PATIENTS, UPDATE)
        now = self.clock()
        candidates = self.plans.list_plans(EVALUATED_STATUSES, PlanType.FIXED)
        paid = self.payments.completed_sums(p.id for p in candidates)

        marked = cleared = behind_total = 0
        for plan in candidates:
            behind = is_overdue(
                plan.type,
                plan.status,
                plan.start_date,
                plan.amount_per_installment,
                plan.payment_frequency,
                paid[plan.id],
                now,
            )
            behind_total += behind
            if behind and plan.status != PlanStatus.OVERDUE.value:
                self.plans.set_status(plan, PlanStatus.OVERDUE, now)
                marked += 1
            elif not behind and plan.status == PlanStatus.OVERDUE.value:
                self.plans.set_status(plan, PlanStatus.ACTIVATED, now)
                cleared += 1

        self.db.commit()
        overdue_plans_gauge.set(behind_total)
        self.cache.invalidate_prefix(PLANS_PREFIX)
        logger.info(
            "Overdue statuses refreshed",
            extra={"action": "refresh_overdue", "marked_overdue": marked, "cleared": cleared},
        )
        return marked, cleared

    async def send_payment_reminder(self, actor: Actor, plan_id: uuid.UUID) -> Tuple[PlanWithContext, SendResult]:
        """
        Send the outstanding-balance reminder SMS for a plan.

        The amount quoted is the arrears when the plan is behind its cadence,
        otherwise the whole outstanding balance.

        Raises:
            NotFoundError: Plan missing, or no phone on file for the patient or guardian
            InvalidTransitionError: Nothing is owed on the plan
        """
        require_permission(self.permissions, actor, MESSAGING, CREATE)
        if self.dispatcher is None:
            raise ConfigurationError("SMS dispatch is not configured")
        plan = self._get_plan(plan_id)
        context = self._with_context(plan, self.payments.completed_sum(plan.id), self.clock())
        if context.amount_due <= 0:
            raise InvalidTransitionError("Payment plan has no outstanding balance")
        if not context.contact_phone:
            raise NotFoundError("No phone number available for this patient")

        result = await self.dispatcher.send_payment_reminder(context, sent_by_id=actor.user_id)
        return context, result

    # ------------------------------------------------------------------
    # Receipts
    # ------------------------------------------------------------------

    def generate_receipt_view(self, actor: Actor, payment_id: uuid.UUID) -> ReceiptData:
        """Pure derivation from persisted rows; same figures for screen and print"""
        require_permission(self.permissions, actor, PAYMENTS, READ)
        payment = self.payments.get_payment(payment_id)
        if payment is None:
            raise NotFoundError("Payment not found")

        plan = self.plans.get_plan_by_id(payment.payment_plan_id) if payment.payment_plan_id else None
        patient = self.patients.get_patient(payment.patient_id)
        source = payment
        if plan is not None and not (payment.treatment_types or payment.treatment_note or payment.description):
            source = plan
        description = payment.description if source is payment else plan.notes

        return build_receipt(
            payment_id=payment.id,
            patient_name=patient.name if patient else None,
            amount_paid=payment.amount,
            method=payment.method,
            description=description,
            treatment_types=source.treatment_types,
            treatment_note=source.treatment_note,
            balance=payment.balance,
            plan_total_amount=plan.total_amount if plan else None,
            is_plan_payment=payment.payment_plan_id is not None or payment.balance is not None,
            paid_at=payment.created_at,
            generated_at=self.clock(),
            currency=settings.currency,
            clinic_name=settings.clinic_name,
            clinic_phone=settings.clinic_phone,
            clinic_address=settings.clinic_address,
        )
