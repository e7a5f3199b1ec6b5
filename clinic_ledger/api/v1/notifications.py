"""/v1/notifications - SMS history, failed-message retry and manual sends"""

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Request

from clinic_ledger.api.dependencies import get_actor, get_dispatcher, get_permission_policy, get_request_id
from clinic_ledger.api.errors import translate_errors
from clinic_ledger.api.v1.schemas import (
    BulkSmsRequest,
    BulkSmsResponse,
    NotificationListResponse,
    NotificationResponse,
)
from clinic_ledger.infrastructure.database.models import NotificationRecord
from clinic_ledger.services.access import CREATE, MESSAGING, READ, Actor, PermissionPolicy, require_permission
from clinic_ledger.services.notifications import NotificationDispatcher, Recipient

router = APIRouter()


def notification_response(record: NotificationRecord) -> NotificationResponse:
    return NotificationResponse(
        id=str(record.id),
        recipient=record.recipient,
        content=record.content,
        type=record.type,
        status=record.status,
        batch_id=record.batch_id,
        message_id=record.message_id,
        patient_id=str(record.patient_id) if record.patient_id else None,
        sender=record.sender,
        error=record.error,
        sent_at=record.sent_at.isoformat(),
    )


@router.get("/notifications", response_model=NotificationListResponse)
def list_notifications(
    request: Request,
    limit: int = 100,
    actor: Actor = Depends(get_actor),
    policy: PermissionPolicy = Depends(get_permission_policy),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    with translate_errors(dispatcher.db, "list_notifications", get_request_id(request), actor):
        require_permission(policy, actor, MESSAGING, READ)
        records = dispatcher.list_all(limit=min(max(limit, 1), 500))
        return NotificationListResponse(messages=[notification_response(r) for r in records])


@router.get("/notifications/failed", response_model=NotificationListResponse)
def list_failed_notifications(
    request: Request,
    actor: Actor = Depends(get_actor),
    policy: PermissionPolicy = Depends(get_permission_policy),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Messages that did not reach the gateway and can be retried"""
    with translate_errors(dispatcher.db, "list_failed_notifications", get_request_id(request), actor):
        require_permission(policy, actor, MESSAGING, READ)
        return NotificationListResponse(messages=[notification_response(r) for r in dispatcher.list_failed()])


@router.post("/notifications/{record_id}/retry", response_model=NotificationResponse)
async def retry_notification(
    record_id: uuid.UUID,
    request: Request,
    actor: Actor = Depends(get_actor),
    policy: PermissionPolicy = Depends(get_permission_policy),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Resend a failed message.

    The original record is marked "retried" and the returned record is the
    new attempt. A record that is not in "failed" status gives 404.
    """
    with translate_errors(dispatcher.db, "retry_sms", get_request_id(request), actor, str(record_id)):
        require_permission(policy, actor, MESSAGING, CREATE)
        record = await dispatcher.retry(record_id, sent_by_id=actor.user_id)
        return notification_response(record)


@router.get("/notifications/status/{message_id}")
async def get_notification_status(
    message_id: str,
    request: Request,
    actor: Actor = Depends(get_actor),
    policy: PermissionPolicy = Depends(get_permission_policy),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> Any:
    """Delivery status as reported by the gateway, passed through unchanged"""
    with translate_errors(dispatcher.db, "sms_status", get_request_id(request), actor, message_id):
        require_permission(policy, actor, MESSAGING, READ)
        return await dispatcher.get_status(message_id)


@router.post("/notifications/bulk", response_model=BulkSmsResponse)
async def send_bulk(
    body: BulkSmsRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
    policy: PermissionPolicy = Depends(get_permission_policy),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Send free-form personalized messages; failures are still recorded for retry"""
    with translate_errors(dispatcher.db, "send_bulk_sms", get_request_id(request), actor):
        require_permission(policy, actor, MESSAGING, CREATE)
        recipients = [Recipient(phone=r.phone, message=r.message, patient_id=r.patient_id) for r in body.recipients]
        result = await dispatcher.send(recipients, body.type, sent_by_id=actor.user_id, sender=body.sender)
        if not result.ok:
            raise result.exception
        return BulkSmsResponse(
            sent=len(recipients),
            messages=[notification_response(r) for r in result.records],
        )
