"""Notification dispatcher - SMS receipts and manual sends with durable outcome records"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_ledger.config import settings
from clinic_ledger.domain.descriptions import payment_treatment
from clinic_ledger.domain.exceptions import ConfigurationError, DomainException, GatewayError, NotFoundError
from clinic_ledger.domain.models import NotificationStatus, NotificationType, PatientContact, PlanWithContext
from clinic_ledger.domain.templates import render_payment_receipt, render_payment_reminder
from clinic_ledger.infrastructure.clients.sms_gateway import GatewayResponse, SmsGatewayClient
from clinic_ledger.infrastructure.database.models import NotificationRecord, Payment, PaymentPlan
from clinic_ledger.infrastructure.database.repositories import NotificationRepository
from clinic_ledger.infrastructure.observability.metrics import record_notification
from clinic_ledger.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Recipient:
    phone: str
    message: str
    patient_id: Optional[uuid.UUID] = None


@dataclass
class SendResult:
    """Outcome of one gateway call; error is set when the send failed"""

    records: List[NotificationRecord] = field(default_factory=list)
    error: Optional[str] = None
    response: Optional[Dict[str, Any]] = None
    exception: Optional[DomainException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class NotificationDispatcher:
    """
    Sends SMS through the gateway and records one NotificationRecord per
    recipient, whether the send succeeded or not.

    Runs after the ledger transaction has committed and never raises gateway
    or persistence failures into the payment flow.
    """

    def __init__(
        self,
        db: Session,
        gateway: SmsGatewayClient,
        sender: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.gateway = gateway
        self.sender = sender or settings.sms_sender_id
        self.clock = clock
        self.repo = NotificationRepository(db)

    async def send(
        self,
        recipients: List[Recipient],
        notification_type: NotificationType,
        sent_by_id: Optional[str] = None,
        sender: Optional[str] = None,
    ) -> SendResult:
        """Send a batch and persist its outcome; failures come back as SendResult.error"""
        sender = sender or self.sender
        notification_type = NotificationType(notification_type)
        try:
            response = await self.gateway.send_personalized(
                sender, [(r.phone, r.message) for r in recipients]
            )
        except (GatewayError, ConfigurationError) as e:
            logger.warning(
                f"SMS send failed: {e}",
                extra={"action": "send_sms", "type": notification_type.value, "recipients": len(recipients)},
            )
            record_notification(notification_type.value, "failed", len(recipients))
            records = self._persist_failed(recipients, notification_type, sender, sent_by_id, str(e))
            return SendResult(records=records, error=str(e), exception=e)

        record_notification(notification_type.value, "sent", len(recipients))
        records = self._persist_sent(recipients, response, notification_type, sender, sent_by_id)
        logger.info(
            "SMS sent successfully",
            extra={"action": "send_sms", "type": notification_type.value, "recipients": len(recipients)},
        )
        return SendResult(records=records, response=response.raw)

    def _persist_sent(
        self,
        recipients: List[Recipient],
        response: GatewayResponse,
        notification_type: NotificationType,
        sender: str,
        sent_by_id: Optional[str],
    ) -> List[NotificationRecord]:
        now = self.clock()
        rows = [
            {
                "batch_id": response.batch_id,
                "message_id": delivery.message_id,
                "recipient": recipient.phone,
                "content": recipient.message,
                "type": notification_type.value,
                "status": delivery.status,
                "patient_id": recipient.patient_id,
                "sender": sender,
                "sent_by_id": sent_by_id,
                "sent_at": now,
                "created_at": now,
            }
            for recipient, delivery in zip(recipients, response.deliveries)
        ]
        try:
            records = self.repo.create_records(rows)
            self.db.commit()
            return records
        except SQLAlchemyError as e:
            # Message already left the gateway; losing the tracking row must not turn it into a failure
            self.db.rollback()
            logger.warning(f"Failed to track SMS in database: {e}", extra={"action": "track_sms"})
            return []

    def _persist_failed(
        self,
        recipients: List[Recipient],
        notification_type: NotificationType,
        sender: str,
        sent_by_id: Optional[str],
        error: str,
    ) -> List[NotificationRecord]:
        now = self.clock()
        rows = [
            {
                "batch_id": None,
                "message_id": None,
                "recipient": recipient.phone,
                "content": recipient.message,
                "type": notification_type.value,
                "status": NotificationStatus.FAILED.value,
                "patient_id": recipient.patient_id,
                "sender": sender,
                "sent_by_id": sent_by_id,
                "error": error[:500],
                "sent_at": now,
                "created_at": now,
            }
            for recipient in recipients
        ]
        try:
            records = self.repo.create_records(rows)
            self.db.commit()
            return records
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to store failed SMS: {e}", extra={"action": "store_failed_sms"})
            return []

    async def dispatch_payment_receipt(
        self,
        payment: Payment,
        plan: Optional[PaymentPlan],
        contact: Optional[PatientContact],
        sent_by_id: Optional[str] = None,
    ) -> Optional[str]:
        """
        Render and send the receipt SMS for a committed payment.

        Returns None on success or when there is nobody to text (no phone on
        file is a deliberate skip), otherwise the error text to surface as a
        warning next to the successful payment.
        """
        phone = contact.contact_phone if contact else None
        if not phone:
            logger.info(
                "No contact phone, skipping payment SMS",
                extra={"action": "payment_sms", "payment_id": str(payment.id)},
            )
            record_notification(NotificationType.PAYMENT.value, "skipped")
            return None

        is_plan_payment = payment.payment_plan_id is not None
        if is_plan_payment:
            template = settings.payment_plan_sms_template
            notification_type = NotificationType.PAYMENT_PLAN
        else:
            template = settings.payment_sms_template
            notification_type = NotificationType.PAYMENT

        message = ""
        try:
            treatment_text, _ = payment_treatment(payment, plan if is_plan_payment else None)
            message = render_payment_receipt(
                template,
                patient_name=contact.name,
                amount_minor=payment.amount,
                treatment_text=treatment_text,
                balance_minor=payment.balance,
            )
            result = await self.send(
                [Recipient(phone=phone, message=message, patient_id=contact.patient_id)],
                notification_type,
                sent_by_id=sent_by_id,
            )
            return result.error

        except Exception as e:
            # Anything else going wrong here is still only a notification failure
            self.db.rollback()
            logger.exception(
                "Failed to send payment SMS",
                extra={"action": "payment_sms", "payment_id": str(payment.id)},
            )
            error = str(e) or type(e).__name__
            record_notification(notification_type.value, "failed")
            self._persist_failed(
                [Recipient(phone=phone, message=message, patient_id=contact.patient_id)],
                notification_type,
                self.sender,
                sent_by_id,
                error,
            )
            return error

    async def send_payment_reminder(self, plan: PlanWithContext, sent_by_id: Optional[str] = None) -> SendResult:
        """
        Text the patient (or guardian) a reminder of what is due on their plan.

        The caller checks that a contact phone exists. Gateway failures are
        recorded as a failed message and come back as SendResult.error.
        """
        message = render_payment_reminder(
            settings.payment_reminder_sms_template,
            patient_name=plan.patient_name,
            amount_minor=plan.amount_due,
            clinic_name=settings.clinic_name,
        )
        result = await self.send(
            [Recipient(phone=plan.contact_phone, message=message, patient_id=plan.patient_id)],
            NotificationType.PAYMENT_REMINDER,
            sent_by_id=sent_by_id,
        )
        logger.info(
            "Payment reminder processed",
            extra={"action": "payment_reminder", "plan_id": str(plan.plan_id), "ok": result.ok},
        )
        return result

    async def retry(self, record_id: uuid.UUID, sent_by_id: Optional[str] = None) -> NotificationRecord:
        """
        Resend a failed message.

        On success the original record becomes "retried" and the new attempt
        gets its own record; a failed resend leaves the original untouched.

        Raises:
            NotFoundError: Record missing or not in "failed" status
            GatewayError: Resend failed
            ConfigurationError: Gateway credentials missing
        """
        original = self.repo.get_failed_record(record_id)
        if original is None:
            raise NotFoundError("Failed message not found or already processed")

        result = await self.send(
            [Recipient(phone=original.recipient, message=original.content, patient_id=original.patient_id)],
            NotificationType(original.type),
            sent_by_id=sent_by_id,
            sender=original.sender,
        )
        if not result.ok:
            raise result.exception

        self.repo.mark_status(original, NotificationStatus.RETRIED)
        self.db.commit()
        logger.info("SMS retried", extra={"action": "retry_sms", "record_id": str(record_id)})
        return result.records[0] if result.records else original

    def list_failed(self) -> List[NotificationRecord]:
        return self.repo.list_records(NotificationStatus.FAILED)

    def list_all(self, limit: int = 100) -> List[NotificationRecord]:
        return self.repo.list_records(limit=limit)

    async def get_status(self, message_id: str) -> Any:
        return await self.gateway.get_message_status(message_id)
