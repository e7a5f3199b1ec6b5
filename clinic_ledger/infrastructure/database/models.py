"""SQLAlchemy ORM models for plans, payments and SMS notification records"""

import uuid
from sqlalchemy import JSON, Column, BigInteger, Boolean, DateTime, ForeignKey, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class Patient(Base):
    """Patient record, owned by the patients module and read-only here"""

    __tablename__ = "patients"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    phone = Column(Text, nullable=True)
    guardian_phone = Column(Text, nullable=True)
    is_child = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    payment_plan = relationship("PaymentPlan", back_populates="patient", uselist=False)


class PaymentPlanTemplate(Base):
    """Reusable plan terms offered when setting up a plan"""

    __tablename__ = "payment_plan_templates"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    total_amount = Column(BigInteger, nullable=False)
    amount_per_installment = Column(BigInteger, nullable=False)
    payment_frequency = Column(Text, nullable=False)
    is_default = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PaymentPlan(Base):
    """Installment plan, at most one per patient"""

    __tablename__ = "payment_plans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    patient_id = Column(
        UUID(as_uuid=True), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    template_id = Column(
        UUID(as_uuid=True), ForeignKey("payment_plan_templates.id", ondelete="SET NULL"), nullable=True
    )
    type = Column(Text, nullable=False, default="fixed")
    total_amount = Column(BigInteger, nullable=False)
    amount_per_installment = Column(BigInteger, nullable=True)
    payment_frequency = Column(Text, nullable=True)
    start_date = Column(DateTime(timezone=True), nullable=False)
    status = Column(Text, nullable=False, default="activated")
    notes = Column(Text, nullable=True)
    treatment_types = Column(JSON, nullable=True)
    treatment_note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    patient = relationship("Patient", back_populates="payment_plan")
    template = relationship("PaymentPlanTemplate")
    payments = relationship("Payment", back_populates="plan", passive_deletes=True)


class Payment(Base):
    """Payment fact; balance is the plan balance snapshot taken at insert time"""

    __tablename__ = "payments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_plan_id = Column(
        UUID(as_uuid=True), ForeignKey("payment_plans.id", ondelete="SET NULL"), nullable=True, index=True
    )
    amount = Column(BigInteger, nullable=False)
    method = Column(Text, nullable=False)
    status = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    treatment_types = Column(JSON, nullable=True)
    treatment_note = Column(Text, nullable=True)
    transaction_id = Column(Text, nullable=True)
    send_notification = Column(Boolean, nullable=False, default=False)
    balance = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    patient = relationship("Patient")
    plan = relationship("PaymentPlan", back_populates="payments")


class NotificationRecord(Base):
    """Outcome of one SMS send attempt to one recipient"""

    __tablename__ = "sms_messages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    message_id = Column(Text, nullable=True)
    batch_id = Column(Text, nullable=True)
    recipient = Column(Text, nullable=False)
    content = Column(Text, nullable=False)
    type = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="sent")
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id", ondelete="SET NULL"), nullable=True)
    sender = Column(Text, nullable=False)
    sent_by_id = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    patient = relationship("Patient")
