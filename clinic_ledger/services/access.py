"""Actor permissions and the locked-plan edit capability"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Protocol

from clinic_ledger.config import settings
from clinic_ledger.domain.exceptions import UnauthorizedError

PATIENTS = "patients"
PAYMENTS = "payments"
MESSAGING = "messaging"

READ = "read"
CREATE = "create"
UPDATE = "update"
DELETE = "delete"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as resolved by the auth layer"""

    user_id: str
    role: str


class PlanEditCapability(Protocol):
    def can_edit_locked_plan(self, actor: Actor) -> bool: ...


class PermissionPolicy(Protocol):
    def has_permission(self, actor: Actor, module: str, action: str) -> bool: ...


class RoleCapability:
    """Locked plans are editable by actors whose role is one of the configured admin roles"""

    def __init__(self, admin_roles: Optional[Iterable[str]] = None):
        self.admin_roles = frozenset(admin_roles if admin_roles is not None else settings.admin_roles)

    def can_edit_locked_plan(self, actor: Actor) -> bool:
        return actor.role in self.admin_roles


class RolePermissionPolicy:
    """
    Grants from a role -> ["module:action", ...] map.

    "*" grants everything, "module:*" grants every action on a module.
    """

    def __init__(self, role_permissions: Optional[Dict[str, List[str]]] = None):
        grants = role_permissions if role_permissions is not None else settings.role_permissions
        self.grants = {role: frozenset(perms) for role, perms in grants.items()}

    def has_permission(self, actor: Actor, module: str, action: str) -> bool:
        granted = self.grants.get(actor.role, frozenset())
        return "*" in granted or f"{module}:*" in granted or f"{module}:{action}" in granted


def require_permission(policy: PermissionPolicy, actor: Actor, module: str, action: str) -> None:
    """
    Raises:
        UnauthorizedError: When the actor may not perform action on module
    """
    if not policy.has_permission(actor, module, action):
        raise UnauthorizedError(f"User {actor.user_id} ({actor.role}) may not {action} {module}")
