"""Payment plan templates - reusable terms offered when setting up a plan"""

import logging
import uuid
from dataclasses import fields
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from clinic_ledger.domain import plans as plan_rules
from clinic_ledger.domain.exceptions import NotFoundError, UnauthorizedError
from clinic_ledger.domain.models import TemplateFields
from clinic_ledger.infrastructure.database.models import PaymentPlanTemplate
from clinic_ledger.infrastructure.database.repositories import TemplateRepository
from clinic_ledger.services.access import (
    CREATE,
    DELETE,
    PATIENTS,
    READ,
    UPDATE,
    Actor,
    PermissionPolicy,
    PlanEditCapability,
    RoleCapability,
    RolePermissionPolicy,
    require_permission,
)
from clinic_ledger.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


class PlanTemplateService:
    """
    Template listing for everyone who can read patients; writes are for
    administrators only.

    At most one template is the default: marking one as default clears the
    flag on all others.
    """

    def __init__(
        self,
        db: Session,
        capability: Optional[PlanEditCapability] = None,
        permissions: Optional[PermissionPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.capability = capability or RoleCapability()
        self.permissions = permissions or RolePermissionPolicy()
        self.clock = clock
        self.templates = TemplateRepository(db)

    def _require_admin(self, actor: Actor, action: str) -> None:
        if not self.capability.can_edit_locked_plan(actor):
            raise UnauthorizedError("Only administrators can manage payment plan templates")
        require_permission(self.permissions, actor, PATIENTS, action)

    def list_templates(self, actor: Actor, active_only: bool = False) -> List[PaymentPlanTemplate]:
        require_permission(self.permissions, actor, PATIENTS, READ)
        return self.templates.list_templates(active_only)

    def get_template(self, actor: Actor, template_id: uuid.UUID) -> PaymentPlanTemplate:
        require_permission(self.permissions, actor, PATIENTS, READ)
        template = self.templates.get_template(template_id)
        if template is None:
            raise NotFoundError("Payment plan template not found")
        return template

    def get_default_template(self, actor: Actor) -> Optional[PaymentPlanTemplate]:
        require_permission(self.permissions, actor, PATIENTS, READ)
        return self.templates.get_default_template()

    def create_template(self, actor: Actor, data: TemplateFields) -> PaymentPlanTemplate:
        """
        Raises:
            UnauthorizedError: Actor is not an administrator
            InvalidAmountError / InvalidPlanTermsError: Bad template fields
        """
        self._require_admin(actor, CREATE)
        validated = plan_rules.validate_template(data)
        try:
            if validated.is_default:
                self.templates.clear_default()
            template = self.templates.create_template(validated, self.clock())
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Payment plan template created",
            extra={"user_id": actor.user_id, "action": "create_template", "template_id": str(template.id)},
        )
        return template

    def update_template(self, actor: Actor, template_id: uuid.UUID, changes: TemplateFields) -> PaymentPlanTemplate:
        """Apply the fields set on changes; the merged template must still be valid"""
        self._require_admin(actor, UPDATE)
        template = self.templates.get_template(template_id)
        if template is None:
            raise NotFoundError("Payment plan template not found")

        current = TemplateFields(**{f.name: getattr(template, f.name) for f in fields(TemplateFields)})
        requested = {
            f.name: getattr(changes, f.name) for f in fields(TemplateFields) if getattr(changes, f.name) is not None
        }
        validated = plan_rules.validate_template(TemplateFields(**{**current.__dict__, **requested}))
        updates = {name: getattr(validated, name) for name in requested}

        try:
            if validated.is_default and not template.is_default:
                self.templates.clear_default(keep_id=template.id)
            self.templates.apply_changes(template, updates, self.clock())
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Payment plan template updated",
            extra={
                "user_id": actor.user_id,
                "action": "update_template",
                "template_id": str(template_id),
                "fields": sorted(updates),
            },
        )
        return template

    def delete_template(self, actor: Actor, template_id: uuid.UUID) -> None:
        """Plans created from the template keep their terms"""
        self._require_admin(actor, DELETE)
        template = self.templates.get_template(template_id)
        if template is None:
            raise NotFoundError("Payment plan template not found")
        self.templates.delete_template(template)
        self.db.commit()
        logger.info(
            "Payment plan template deleted",
            extra={"user_id": actor.user_id, "action": "delete_template", "template_id": str(template_id)},
        )
