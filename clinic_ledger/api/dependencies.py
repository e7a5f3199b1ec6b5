"""Dependency injection for FastAPI endpoints"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from clinic_ledger.infrastructure.clients.sms_gateway import SmsGatewayClient
from clinic_ledger.infrastructure.database.session import get_db
from clinic_ledger.services.access import Actor, PermissionPolicy, RolePermissionPolicy
from clinic_ledger.services.notifications import NotificationDispatcher
from clinic_ledger.services.reconciliation import ReconciliationService
from clinic_ledger.services.templates import PlanTemplateService


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    """Caller identity as forwarded by the authentication layer"""
    if not x_user_id or not x_user_role:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return Actor(user_id=x_user_id, role=x_user_role)


def get_permission_policy() -> PermissionPolicy:
    return RolePermissionPolicy()


def get_sms_gateway_client() -> SmsGatewayClient:
    """Provide SMS gateway client instance"""
    return SmsGatewayClient()


def get_dispatcher(
    db: Session = Depends(get_db),
    gateway: SmsGatewayClient = Depends(get_sms_gateway_client),
) -> NotificationDispatcher:
    return NotificationDispatcher(db, gateway)


def get_reconciliation_service(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    permissions: PermissionPolicy = Depends(get_permission_policy),
) -> ReconciliationService:
    return ReconciliationService(db, dispatcher=dispatcher, permissions=permissions)


def get_template_service(
    db: Session = Depends(get_db),
    permissions: PermissionPolicy = Depends(get_permission_policy),
) -> PlanTemplateService:
    return PlanTemplateService(db, permissions=permissions)
