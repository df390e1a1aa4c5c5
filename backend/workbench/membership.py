"""Workspace membership management gated by the role hierarchy."""

import logging

from sqlalchemy.orm import Session

from . import repository
from .errors import ConflictError, ErrorCode, NotFoundError, ValidationError
from .models import Role, WorkspaceMembership
from .rbac import RoleName, guard_owner_self_action, require_role, role_of

logger = logging.getLogger(__name__)


def serialize_role(role: Role) -> dict:
    return {
        "id": role.id,
        "name": role.name,
        "permissions": role.permission_map,
        "description": role.description,
    }


def serialize_member(m: WorkspaceMembership) -> dict:
    return {
        "user_workspace_role_id": m.id,
        "user_id": m.user_id,
        "username": m.user.username,
        "email": m.user.email,
        "first_name": m.user.first_name,
        "last_name": m.user.last_name,
        "role_id": m.role_id,
        "role_name": m.role.name,
        "permissions": m.role.permission_map,
        "joined_at": m.created_at.isoformat() if m.created_at else None,
    }


def list_members(db: Session, workspace_id: int, user_id: int) -> dict:
    require_role(db, user_id, workspace_id, RoleName.VIEWER)
    return {
        "members": [serialize_member(m) for m in repository.list_members(db, workspace_id)],
        "available_roles": [serialize_role(r) for r in repository.list_roles(db)],
    }


def _require_role_row(db: Session, role_id: int) -> Role:
    role = repository.get_role_by_id(db, role_id)
    if role is None:
        raise NotFoundError(ErrorCode.ROLE_NOT_FOUND, "Role not found")
    return role


def _require_target_member(db: Session, target_user_id: int, workspace_id: int) -> WorkspaceMembership:
    target = repository.get_membership(db, target_user_id, workspace_id)
    if target is None:
        raise NotFoundError(ErrorCode.USER_NOT_MEMBER, "User is not a member of this workspace")
    return target


def assign_role(db: Session, workspace_id: int, actor_id: int, user_id, role_id) -> dict:
    if not user_id or not role_id:
        raise ValidationError(ErrorCode.MISSING_REQUIRED_FIELDS, "User ID and Role ID are required")
    require_role(db, actor_id, workspace_id, RoleName.ADMIN)

    target_user = repository.get_user(db, user_id)
    if target_user is None:
        raise NotFoundError(ErrorCode.USER_NOT_FOUND, "User not found")
    role = _require_role_row(db, role_id)
    if repository.get_membership(db, user_id, workspace_id) is not None:
        raise ConflictError(ErrorCode.USER_ALREADY_MEMBER, "User is already a member of this workspace")

    membership = WorkspaceMembership(user_id=user_id, workspace_id=workspace_id, role_id=role.id)
    db.add(membership)
    db.commit()
    db.refresh(membership)
    logger.info("role assigned", extra={"workspace_id": workspace_id, "user_id": user_id})
    return {
        "user_workspace_role_id": membership.id,
        "user": {"id": target_user.id, "username": target_user.username, "email": target_user.email},
        "role": {"id": role.id, "name": role.name},
    }


def update_role(db: Session, workspace_id: int, actor_id: int, target_user_id: int, role_id) -> dict:
    if not role_id:
        raise ValidationError(ErrorCode.MISSING_REQUIRED_FIELDS, "Role ID is required")
    actor = require_role(db, actor_id, workspace_id, RoleName.ADMIN)

    target = _require_target_member(db, target_user_id, workspace_id)
    role = _require_role_row(db, role_id)
    guard_owner_self_action(actor_id, target_user_id, role_of(actor), ErrorCode.CANNOT_CHANGE_OWNER_ROLE)

    # last write wins
    target.role_id = role.id
    db.commit()
    logger.info("role updated", extra={"workspace_id": workspace_id, "user_id": target_user_id})
    return {"user_id": target_user_id, "new_role": {"id": role.id, "name": role.name}}


def remove_member(db: Session, workspace_id: int, actor_id: int, target_user_id: int) -> None:
    actor = require_role(db, actor_id, workspace_id, RoleName.ADMIN)

    target = _require_target_member(db, target_user_id, workspace_id)
    guard_owner_self_action(actor_id, target_user_id, role_of(actor), ErrorCode.CANNOT_REMOVE_OWNER)

    db.delete(target)
    db.commit()
    logger.info("member removed", extra={"workspace_id": workspace_id, "user_id": target_user_id})
