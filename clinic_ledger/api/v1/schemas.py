"""Pydantic schemas for API request/response validation

Amounts arrive as major-unit decimal strings ("150.00") and leave both as
minor-unit integers (``*_minor``) and as formatted 2-decimal strings.
"""

import uuid
from datetime import datetime
from pydantic import BaseModel, Field
from typing import List, Optional

from clinic_ledger.domain.models import (
    NotificationType,
    PaymentFrequency,
    PaymentMethod,
    PaymentStatus,
    PlanStatus,
    PlanType,
)


class PlanCreateRequest(BaseModel):
    """Request body for POST /v1/plans"""

    patient_id: uuid.UUID
    type: PlanType = PlanType.FIXED
    total_amount: Optional[str] = Field(None, description="Major units, e.g. '300.00'")
    amount_per_installment: Optional[str] = Field(None, description="Required for fixed plans")
    payment_frequency: Optional[PaymentFrequency] = None
    template_id: Optional[uuid.UUID] = None
    start_date: Optional[datetime] = None
    treatment_types: List[str] = Field(default_factory=list)
    note: Optional[str] = None


class PlanUpdateRequest(BaseModel):
    """Request body for PATCH /v1/plans/{plan_id}; omitted fields are left unchanged"""

    type: Optional[PlanType] = None
    total_amount: Optional[str] = None
    amount_per_installment: Optional[str] = None
    payment_frequency: Optional[PaymentFrequency] = None
    template_id: Optional[uuid.UUID] = None
    start_date: Optional[datetime] = None
    treatment_types: Optional[List[str]] = None
    note: Optional[str] = None


class PaymentCreateRequest(BaseModel):
    """Request body for POST /v1/payments"""

    patient_id: uuid.UUID
    payment_plan_id: Optional[uuid.UUID] = None
    amount: str = Field(..., min_length=1, description="Major units, e.g. '100.00'")
    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.COMPLETED
    description: Optional[str] = None
    treatment_types: List[str] = Field(default_factory=list)
    note: Optional[str] = None
    transaction_id: Optional[str] = None
    send_notification: bool = False


class PaymentStatusUpdateRequest(BaseModel):
    status: PaymentStatus


class PaymentResponse(BaseModel):
    payment_id: str
    patient_id: str
    payment_plan_id: Optional[str] = None
    amount_minor: int
    amount: str
    method: str
    status: str
    description: Optional[str] = None
    treatment_types: List[str] = Field(default_factory=list)
    note: Optional[str] = None
    balance_minor: Optional[int] = None
    balance: Optional[str] = None
    overpaid: bool = False
    created_at: str
    notification_error: Optional[str] = None


class PaymentListResponse(BaseModel):
    payments: List[PaymentResponse]


class PlanResponse(BaseModel):
    plan_id: str
    patient_id: str
    template_id: Optional[str] = None
    type: PlanType
    status: PlanStatus
    stored_status: PlanStatus
    total_amount_minor: int
    total_amount: str
    amount_per_installment_minor: Optional[int] = None
    payment_frequency: Optional[PaymentFrequency] = None
    start_date: str
    notes: Optional[str] = None
    treatment_types: List[str] = Field(default_factory=list)
    note: Optional[str] = None
    total_paid_minor: int = 0
    outstanding_balance_minor: int
    outstanding_balance: str
    expected_amount_minor: Optional[int] = None
    created_at: str
    payments: List[PaymentResponse] = Field(default_factory=list)


class BalanceResponse(BaseModel):
    """Response for GET /v1/plans/{plan_id}/balance"""

    plan_id: str
    total_amount_minor: int
    total_paid_minor: int
    outstanding_balance_minor: int
    outstanding_balance: str
    overpaid: bool


class PlanContextItem(BaseModel):
    """Dashboard row for overdue/outstanding plan lists"""

    plan_id: str
    patient_id: str
    patient_name: str
    contact_phone: Optional[str] = None
    type: PlanType
    status: PlanStatus
    total_amount_minor: int
    amount_per_installment_minor: Optional[int] = None
    payment_frequency: Optional[PaymentFrequency] = None
    start_date: str
    total_paid_minor: int
    outstanding_balance_minor: int
    outstanding_balance: str
    expected_amount_minor: Optional[int] = None


class PlanListResponse(BaseModel):
    plans: List[PlanContextItem]


class RefreshResponse(BaseModel):
    marked_overdue: int
    cleared: int


class ReceiptResponse(BaseModel):
    payment_id: str
    patient_name: str
    payment_method: str
    payment_type: str
    payment_for: str
    notes: Optional[str] = None
    currency: str
    amount_paid_minor: int
    amount_paid: str
    balance_minor: Optional[int] = None
    balance: Optional[str] = None
    total_amount_minor: Optional[int] = None
    total_amount: Optional[str] = None
    clinic_name: str
    clinic_phone: Optional[str] = None
    clinic_address: Optional[str] = None
    paid_at: str
    generated_at: str


class NotificationResponse(BaseModel):
    id: str
    recipient: str
    content: str
    type: str
    status: str
    batch_id: Optional[str] = None
    message_id: Optional[str] = None
    patient_id: Optional[str] = None
    sender: str
    error: Optional[str] = None
    sent_at: str


class NotificationListResponse(BaseModel):
    messages: List[NotificationResponse]


class BulkRecipient(BaseModel):
    phone: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    patient_id: Optional[uuid.UUID] = None


class BulkSmsRequest(BaseModel):
    """Request body for POST /v1/notifications/bulk"""

    recipients: List[BulkRecipient] = Field(..., min_length=1)
    type: NotificationType = NotificationType.BULK
    sender: Optional[str] = None


class BulkSmsResponse(BaseModel):
    sent: int
    messages: List[NotificationResponse]


class ReminderResponse(BaseModel):
    """Response for POST /v1/plans/{plan_id}/reminder"""

    plan_id: str
    amount_due_minor: int
    amount_due: str
    message: Optional[NotificationResponse] = None


class TemplateCreateRequest(BaseModel):
    """Request body for POST /v1/plan-templates"""

    name: str = Field(..., min_length=1)
    total_amount: str = Field(..., description="Major units, e.g. '1200.00'")
    amount_per_installment: str
    payment_frequency: PaymentFrequency
    is_default: bool = False
    is_active: bool = True
    description: Optional[str] = None


class TemplateUpdateRequest(BaseModel):
    """Request body for PATCH /v1/plan-templates/{template_id}; omitted fields are left unchanged"""

    name: Optional[str] = None
    total_amount: Optional[str] = None
    amount_per_installment: Optional[str] = None
    payment_frequency: Optional[PaymentFrequency] = None
    is_default: Optional[bool] = None
    is_active: Optional[bool] = None
    description: Optional[str] = None


class TemplateResponse(BaseModel):
    template_id: str
    name: str
    total_amount_minor: int
    total_amount: str
    amount_per_installment_minor: int
    amount_per_installment: str
    payment_frequency: PaymentFrequency
    is_default: bool
    is_active: bool
    description: Optional[str] = None


class TemplateListResponse(BaseModel):
    templates: List[TemplateResponse]
