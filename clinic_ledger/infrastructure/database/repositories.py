"""Data access layer for ledger entities"""

import enum
import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, update
from sqlalchemy.orm import Session, joinedload

from clinic_ledger.domain.models import (
    NotificationStatus,
    PatientContact,
    PaymentFrequency,
    PaymentStatus,
    PlanStatus,
    PlanTerms,
    PlanType,
    TemplateFields,
)
from clinic_ledger.infrastructure.database.models import (
    NotificationRecord,
    Patient,
    Payment,
    PaymentPlan,
    PaymentPlanTemplate,
)


class PatientRepository:
    """Read-only access to the patient collaborator"""

    def __init__(self, db: Session):
        self.db = db

    def get_patient(self, patient_id: uuid.UUID) -> Optional[Patient]:
        return self.db.get(Patient, patient_id)


def to_contact(patient: Patient) -> PatientContact:
    return PatientContact(
        patient_id=patient.id,
        name=patient.name,
        phone=patient.phone,
        guardian_phone=patient.guardian_phone,
        is_child=bool(patient.is_child),
    )


class TemplateRepository:
    """Repository for payment plan templates"""

    def __init__(self, db: Session):
        self.db = db

    def get_template(self, template_id: uuid.UUID) -> Optional[PaymentPlanTemplate]:
        return self.db.get(PaymentPlanTemplate, template_id)

    def get_default_template(self) -> Optional[PaymentPlanTemplate]:
        return (
            self.db.query(PaymentPlanTemplate)
            .filter(PaymentPlanTemplate.is_default.is_(True), PaymentPlanTemplate.is_active.is_(True))
            .first()
        )

    def list_templates(self, active_only: bool = False) -> List[PaymentPlanTemplate]:
        """Default template first, then by name"""
        query = self.db.query(PaymentPlanTemplate)
        if active_only:
            query = query.filter(PaymentPlanTemplate.is_active.is_(True))
        return query.order_by(PaymentPlanTemplate.is_default.desc(), PaymentPlanTemplate.name.asc()).all()

    def create_template(self, fields: TemplateFields, now: datetime) -> PaymentPlanTemplate:
        db_template = PaymentPlanTemplate(
            name=fields.name,
            total_amount=fields.total_amount,
            amount_per_installment=fields.amount_per_installment,
            payment_frequency=PaymentFrequency(fields.payment_frequency).value,
            is_default=bool(fields.is_default),
            is_active=bool(fields.is_active),
            description=fields.description,
            created_at=now,
            updated_at=now,
        )
        self.db.add(db_template)
        self.db.flush()
        return db_template

    def apply_changes(
        self, template: PaymentPlanTemplate, changes: Dict[str, object], now: datetime
    ) -> PaymentPlanTemplate:
        for name, value in changes.items():
            setattr(template, name, value.value if isinstance(value, enum.Enum) else value)
        template.updated_at = now
        self.db.flush()
        return template

    def clear_default(self, keep_id: Optional[uuid.UUID] = None) -> None:
        """Unset is_default on every template except keep_id"""
        query = update(PaymentPlanTemplate).where(PaymentPlanTemplate.is_default.is_(True))
        if keep_id is not None:
            query = query.where(PaymentPlanTemplate.id != keep_id)
        self.db.execute(query.values(is_default=False).execution_options(synchronize_session="fetch"))

    def delete_template(self, template: PaymentPlanTemplate) -> None:
        """Remove the template; plans created from it keep their terms and lose the reference"""
        self.db.execute(
            update(PaymentPlan)
            .where(PaymentPlan.template_id == template.id)
            .values(template_id=None)
            .execution_options(synchronize_session="fetch")
        )
        self.db.delete(template)
        self.db.flush()


class PlanRepository:
    """Repository for payment plans"""

    def __init__(self, db: Session):
        self.db = db

    def create_plan(
        self,
        patient_id: uuid.UUID,
        terms: PlanTerms,
        status: PlanStatus,
        start_date: datetime,
    ) -> PaymentPlan:
        """Insert a plan; uniqueness on patient_id is enforced by the database on flush"""
        db_plan = PaymentPlan(
            patient_id=patient_id,
            template_id=terms.template_id,
            type=PlanType(terms.type).value,
            total_amount=terms.total_amount,
            amount_per_installment=terms.amount_per_installment,
            payment_frequency=terms.payment_frequency.value if terms.payment_frequency else None,
            start_date=start_date,
            status=status.value,
            notes=terms.notes,
            treatment_types=terms.treatment_types,
            treatment_note=terms.treatment_note,
            created_at=start_date,
            updated_at=start_date,
        )
        self.db.add(db_plan)
        self.db.flush()
        return db_plan

    def get_plan_by_id(self, plan_id: uuid.UUID) -> Optional[PaymentPlan]:
        return self.db.query(PaymentPlan).filter(PaymentPlan.id == plan_id).first()

    def get_plan_for_update(self, plan_id: uuid.UUID) -> Optional[PaymentPlan]:
        """Fetch plan holding a row lock until the transaction ends (no-op on SQLite)"""
        return (
            self.db.query(PaymentPlan)
            .filter(PaymentPlan.id == plan_id)
            .with_for_update()
            .first()
        )

    def get_plan_by_patient(self, patient_id: uuid.UUID) -> Optional[PaymentPlan]:
        return self.db.query(PaymentPlan).filter(PaymentPlan.patient_id == patient_id).first()

    def list_plans(
        self,
        statuses: Sequence[PlanStatus],
        plan_type: Optional[PlanType] = None,
    ) -> List[PaymentPlan]:
        """Plans in the given statuses with their patient eagerly loaded"""
        query = (
            self.db.query(PaymentPlan)
            .options(joinedload(PaymentPlan.patient))
            .filter(PaymentPlan.status.in_([PlanStatus(s).value for s in statuses]))
        )
        if plan_type is not None:
            query = query.filter(PaymentPlan.type == PlanType(plan_type).value)
        return query.order_by(PaymentPlan.created_at.desc()).all()

    def set_status(self, plan: PaymentPlan, status: PlanStatus, now: datetime) -> PaymentPlan:
        plan.status = PlanStatus(status).value
        plan.updated_at = now
        self.db.flush()
        return plan

    def apply_terms(self, plan: PaymentPlan, changes: Dict[str, object], now: datetime) -> PaymentPlan:
        for name, value in changes.items():
            setattr(plan, name, value.value if isinstance(value, enum.Enum) else value)
        plan.updated_at = now
        self.db.flush()
        return plan

    def delete_plan(self, plan: PaymentPlan) -> None:
        """Remove the plan row; payments stay as history with their plan reference cleared"""
        self.db.execute(
            update(Payment)
            .where(Payment.payment_plan_id == plan.id)
            .values(payment_plan_id=None)
            .execution_options(synchronize_session="fetch")
        )
        self.db.delete(plan)
        self.db.flush()


class PaymentRepository:
    """Repository for payments"""

    def __init__(self, db: Session):
        self.db = db

    def create_payment(
        self,
        patient_id: uuid.UUID,
        plan_id: Optional[uuid.UUID],
        amount: int,
        method: str,
        status: PaymentStatus,
        description: Optional[str],
        balance: Optional[int],
        send_notification: bool,
        created_at: datetime,
        transaction_id: Optional[str] = None,
        treatment_types: Optional[List[str]] = None,
        treatment_note: Optional[str] = None,
    ) -> Payment:
        db_payment = Payment(
            patient_id=patient_id,
            payment_plan_id=plan_id,
            amount=amount,
            method=method,
            status=PaymentStatus(status).value,
            description=description,
            treatment_types=treatment_types,
            treatment_note=treatment_note,
            transaction_id=transaction_id,
            send_notification=send_notification,
            balance=balance,
            created_at=created_at,
        )
        self.db.add(db_payment)
        self.db.flush()
        return db_payment

    def get_payment(self, payment_id: uuid.UUID) -> Optional[Payment]:
        return self.db.query(Payment).filter(Payment.id == payment_id).first()

    def completed_sum(self, plan_id: uuid.UUID, patient_id: Optional[uuid.UUID] = None) -> int:
        """Exact integer sum of completed payments on a plan (optionally restricted to one patient)"""
        query = self.db.query(func.coalesce(func.sum(Payment.amount), 0)).filter(
            Payment.payment_plan_id == plan_id,
            Payment.status == PaymentStatus.COMPLETED.value,
        )
        if patient_id is not None:
            query = query.filter(Payment.patient_id == patient_id)
        return int(query.scalar())

    def completed_sums(self, plan_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, int]:
        """Completed totals for many plans in one grouped query; plans without payments map to 0"""
        ids = list(plan_ids)
        if not ids:
            return {}
        rows = (
            self.db.query(Payment.payment_plan_id, func.sum(Payment.amount))
            .filter(
                Payment.payment_plan_id.in_(ids),
                Payment.status == PaymentStatus.COMPLETED.value,
            )
            .group_by(Payment.payment_plan_id)
            .all()
        )
        totals = {plan_id: 0 for plan_id in ids}
        totals.update({plan_id: int(amount) for plan_id, amount in rows})
        return totals

    def list_payments(self, patient_id: Optional[uuid.UUID] = None, limit: int = 100) -> List[Payment]:
        query = self.db.query(Payment)
        if patient_id is not None:
            query = query.filter(Payment.patient_id == patient_id)
        return query.order_by(Payment.created_at.desc()).limit(limit).all()

    def list_for_plan(self, plan_id: uuid.UUID) -> List[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.payment_plan_id == plan_id)
            .order_by(Payment.created_at.desc())
            .all()
        )

    def delete_payment(self, payment: Payment) -> None:
        self.db.delete(payment)
        self.db.flush()


class NotificationRepository:
    """Repository for SMS notification records"""

    def __init__(self, db: Session):
        self.db = db

    def create_records(self, records: List[Dict[str, object]]) -> List[NotificationRecord]:
        db_records = [NotificationRecord(**record) for record in records]
        self.db.add_all(db_records)
        self.db.flush()
        return db_records

    def get_failed_record(self, record_id: uuid.UUID) -> Optional[NotificationRecord]:
        return (
            self.db.query(NotificationRecord)
            .filter(
                NotificationRecord.id == record_id,
                NotificationRecord.status == NotificationStatus.FAILED.value,
            )
            .first()
        )

    def list_records(
        self, status: Optional[NotificationStatus] = None, limit: int = 100
    ) -> List[NotificationRecord]:
        query = self.db.query(NotificationRecord)
        if status is not None:
            query = query.filter(NotificationRecord.status == NotificationStatus(status).value)
        return query.order_by(NotificationRecord.sent_at.desc()).limit(limit).all()

    def mark_status(self, record: NotificationRecord, status: NotificationStatus) -> NotificationRecord:
        record.status = NotificationStatus(status).value
        self.db.flush()
        return record
