"""Append-only execution history: listing and deletion."""

import logging
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import repository
from .config import Settings
from .errors import ErrorCode, ForbiddenError, NotFoundError, ValidationError
from .models import HistoryItem, RequestItem, User, WorkspaceMembership
from .rbac import RoleName, require_role, role_of

logger = logging.getLogger(__name__)


def serialize(item: HistoryItem) -> dict:
    return {
        "id": item.id,
        "request_id": item.request_id,
        "user_id": item.user_id,
        "status_code": item.status_code,
        "response_headers": item.header_map,
        "response_body": item.response_body,
        "duration_ms": item.duration_ms,
        "error": item.error,
        "executed_at": item.executed_at.isoformat() if item.executed_at else None,
    }


def page(limit: Optional[int], offset: Optional[int], settings: Settings) -> Tuple[int, int]:
    if limit is None:
        limit = settings.HISTORY_DEFAULT_LIMIT
    if offset is None:
        offset = 0
    if offset < 0:
        raise ValidationError(ErrorCode.INVALID_PAGINATION, "offset must not be negative")
    limit = max(1, min(limit, settings.HISTORY_MAX_LIMIT))
    return limit, offset


def list_by_request(db: Session, request_id: int, user_id: int, limit: int, offset: int) -> list:
    if repository.get_request_for_user(db, request_id, user_id) is None:
        raise NotFoundError(ErrorCode.REQUEST_NOT_FOUND, "Request not found or access denied")

    stmt = (
        select(HistoryItem)
        .where(HistoryItem.request_id == request_id)
        .order_by(HistoryItem.executed_at.desc(), HistoryItem.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return [serialize(i) for i in db.execute(stmt).scalars().all()]


def list_by_workspace(db: Session, workspace_id: int, user_id: int, limit: int, offset: int) -> list:
    require_role(db, user_id, workspace_id, RoleName.VIEWER)

    stmt = (
        select(HistoryItem, RequestItem.name, User.username)
        .join(RequestItem, HistoryItem.request_id == RequestItem.id)
        .join(User, HistoryItem.user_id == User.id)
        .where(RequestItem.workspace_id == workspace_id)
        .order_by(HistoryItem.executed_at.desc(), HistoryItem.id.desc())
        .limit(limit)
        .offset(offset)
    )
    out = []
    for item, request_name, username in db.execute(stmt).all():
        entry = serialize(item)
        entry["request_name"] = request_name
        entry["executed_by"] = username
        out.append(entry)
    return out


def _entry_for_user(db: Session, history_id: int, user_id: int):
    stmt = (
        select(HistoryItem, WorkspaceMembership)
        .join(RequestItem, HistoryItem.request_id == RequestItem.id)
        .join(WorkspaceMembership, RequestItem.workspace_id == WorkspaceMembership.workspace_id)
        .where(HistoryItem.id == history_id, WorkspaceMembership.user_id == user_id)
    )
    row = db.execute(stmt).first()
    if row is None:
        raise NotFoundError(ErrorCode.HISTORY_NOT_FOUND, "History entry not found or access denied")
    return row


def get_entry(db: Session, history_id: int, user_id: int) -> dict:
    item, _ = _entry_for_user(db, history_id, user_id)
    return serialize(item)


def delete_entry(db: Session, history_id: int, user_id: int) -> None:
    item, membership = _entry_for_user(db, history_id, user_id)

    role = role_of(membership)
    if item.user_id != user_id and not (role and role.satisfies(RoleName.ADMIN)):
        raise ForbiddenError(ErrorCode.INSUFFICIENT_PERMISSIONS, "Insufficient permissions to delete history entry")

    db.delete(item)
    db.commit()
    logger.info("history entry deleted", extra={"history_id": history_id, "user_id": user_id})
