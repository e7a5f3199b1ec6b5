"""Domain models - pure Python dataclasses and enums for the payment plan ledger"""

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional


class PlanType(str, enum.Enum):
    FIXED = "fixed"
    FLEXIBLE = "flexible"


class PlanStatus(str, enum.Enum):
    OUTSTANDING = "outstanding"  # flexible plan, no cadence
    ACTIVATED = "activated"  # fixed plan in force
    PAUSED = "paused"
    OVERDUE = "overdue"
    COMPLETED = "completed"


class PaymentFrequency(str, enum.Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    INSURANCE = "insurance"
    TRANSFER = "transfer"
    MOMO = "momo"
    BANK_TRANSFER = "bank_transfer"


class NotificationStatus(str, enum.Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    PENDING = "pending"
    RETRIED = "retried"


class NotificationType(str, enum.Enum):
    PAYMENT = "payment"
    PAYMENT_PLAN = "payment_plan"
    BULK = "bulk"
    BIRTHDAY = "birthday"
    FOLLOWUP = "followup"
    APPOINTMENT = "appointment"
    PAYMENT_REMINDER = "payment_reminder"


@dataclass
class PlanTerms:
    """Terms supplied when creating or editing a payment plan (amounts in minor units)"""

    type: Optional[PlanType] = None
    total_amount: Optional[int] = None
    amount_per_installment: Optional[int] = None
    payment_frequency: Optional[PaymentFrequency] = None
    template_id: Optional[uuid.UUID] = None
    start_date: Optional[datetime] = None
    notes: Optional[str] = None
    treatment_types: Optional[List[str]] = None
    treatment_note: Optional[str] = None


@dataclass
class TemplateFields:
    """Fields of a reusable plan template; None leaves a field unchanged on update"""

    name: Optional[str] = None
    total_amount: Optional[int] = None
    amount_per_installment: Optional[int] = None
    payment_frequency: Optional[PaymentFrequency] = None
    is_default: Optional[bool] = None
    is_active: Optional[bool] = None
    description: Optional[str] = None


@dataclass
class PatientContact:
    """Read-only view of the patient collaborator used for messaging"""

    patient_id: uuid.UUID
    name: str
    phone: Optional[str]
    guardian_phone: Optional[str]
    is_child: bool

    @property
    def contact_phone(self) -> Optional[str]:
        """Guardian phone for minors when available, otherwise the patient's own phone"""
        if self.is_child and self.guardian_phone:
            return self.guardian_phone
        return self.phone or None


@dataclass
class PlanWithContext:
    """Plan annotated with ledger totals and patient contact for dashboard lists"""

    plan_id: uuid.UUID
    patient_id: uuid.UUID
    patient_name: str
    contact_phone: Optional[str]
    type: PlanType
    status: PlanStatus
    total_amount: int
    amount_per_installment: Optional[int]
    payment_frequency: Optional[PaymentFrequency]
    start_date: datetime
    total_paid: int
    outstanding_balance: int
    expected_amount: Optional[int] = None

    @property
    def amount_due(self) -> int:
        """Arrears against the cadence when behind schedule, otherwise the whole outstanding balance"""
        if self.expected_amount is not None and self.expected_amount > self.total_paid:
            return min(self.expected_amount - self.total_paid, self.outstanding_balance)
        return self.outstanding_balance


@dataclass
class ReceiptData:
    """Everything needed to show or print a payment receipt"""

    payment_id: uuid.UUID
    patient_name: str
    payment_method: str
    payment_type: str  # "one-time" or "plan"
    payment_for: str
    notes: Optional[str]
    amount_paid: int
    balance: Optional[int]
    total_amount: Optional[int]
    currency: str
    clinic_name: str
    clinic_phone: Optional[str]
    clinic_address: Optional[str]
    paid_at: datetime
    generated_at: datetime
