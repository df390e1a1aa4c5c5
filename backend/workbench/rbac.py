"""Workspace role hierarchy and access guards.

Roles form a fixed total order ``owner > admin > editor > viewer``. A caller
with no membership row in a workspace is reported as ``NOT_A_MEMBER`` so
that handlers can answer 404 instead of leaking that the workspace exists;
a member below the required level is ``DENY`` (403).
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Mapping, Optional

from sqlalchemy.orm import Session

from . import repository
from .errors import ErrorCode, ForbiddenError, NotFoundError
from .models import WorkspaceMembership

logger = logging.getLogger(__name__)


class RoleName(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"

    @property
    def level(self) -> int:
        return ROLE_LEVELS[self]

    def satisfies(self, required: "RoleName") -> bool:
        return self.level >= required.level

    @classmethod
    def parse(cls, value) -> Optional["RoleName"]:
        if value is None:
            return None
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return None


ROLE_LEVELS: Dict[RoleName, int] = {
    RoleName.OWNER: 4,
    RoleName.ADMIN: 3,
    RoleName.EDITOR: 2,
    RoleName.VIEWER: 1,
}

# Reference data seeded into the roles table
ROLE_DEFINITIONS = (
    (RoleName.OWNER, {"read": True, "write": True, "delete": True, "admin": True}, "Full control of the workspace"),
    (RoleName.ADMIN, {"read": True, "write": True, "delete": True, "admin": True}, "Manage members and content"),
    (RoleName.EDITOR, {"read": True, "write": True, "delete": False, "admin": False}, "Create and edit content"),
    (RoleName.VIEWER, {"read": True, "write": False, "delete": False, "admin": False}, "Read-only access"),
)


class AccessDecision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    NOT_A_MEMBER = "not_a_member"


def evaluate(required: RoleName, actual: Optional[RoleName]) -> AccessDecision:
    if actual is None:
        return AccessDecision.NOT_A_MEMBER
    if actual.satisfies(required):
        return AccessDecision.ALLOW
    return AccessDecision.DENY


def has_capability(permissions: Optional[Mapping[str, bool]], capability: str) -> bool:
    if not permissions:
        return False
    return bool(permissions.get(capability, False))


def role_of(membership: Optional[WorkspaceMembership]) -> Optional[RoleName]:
    if membership is None or membership.role is None:
        return None
    return RoleName.parse(membership.role.name)


def require_role(
    db: Session,
    user_id: int,
    workspace_id: int,
    required: RoleName,
    not_found_code: ErrorCode = ErrorCode.WORKSPACE_NOT_FOUND,
) -> WorkspaceMembership:
    membership = repository.get_membership(db, user_id, workspace_id)
    decision = evaluate(required, role_of(membership))
    if decision is AccessDecision.NOT_A_MEMBER:
        raise NotFoundError(not_found_code, "Workspace not found or access denied")
    if decision is AccessDecision.DENY:
        logger.info(
            "role check denied",
            extra={"user_id": user_id, "workspace_id": workspace_id, "error_code": "INSUFFICIENT_PERMISSIONS"},
        )
        raise ForbiddenError(
            ErrorCode.INSUFFICIENT_PERMISSIONS,
            f"Insufficient permissions. Required: {required.value}, Current: {membership.role.name}",
        )
    return membership


def guard_owner_self_action(actor_id: int, target_id: int, actor_role: Optional[RoleName], code: ErrorCode) -> None:
    """Reject an owner acting on their own membership.

    The owner satisfies every hierarchy check, so this has to be tested
    separately before any demotion or removal is written.
    """
    if actor_id == target_id and actor_role is RoleName.OWNER:
        if code is ErrorCode.CANNOT_REMOVE_OWNER:
            raise ForbiddenError(code, "Workspace owner cannot remove themselves")
        raise ForbiddenError(code, "Workspace owner cannot change their own role")


def guard_self_delete(actor_id: int, target_id: int) -> None:
    if actor_id == target_id:
        raise ForbiddenError(ErrorCode.CANNOT_DELETE_SELF, "Users cannot delete their own account")
