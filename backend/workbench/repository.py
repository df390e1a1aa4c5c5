"""Read helpers over the relational store.

Every lookup of a workspace-owned record joins through the caller's
membership, so a record in a workspace the caller cannot see is simply
absent.
"""

import json
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from .models import Environment, RequestItem, Role, User, Workspace, WorkspaceMembership


def get_membership(db: Session, user_id: int, workspace_id: int) -> Optional[WorkspaceMembership]:
    stmt = select(WorkspaceMembership).where(
        WorkspaceMembership.user_id == user_id,
        WorkspaceMembership.workspace_id == workspace_id,
    )
    return db.execute(stmt).scalars().first()


def list_members(db: Session, workspace_id: int) -> List[WorkspaceMembership]:
    stmt = (
        select(WorkspaceMembership)
        .where(WorkspaceMembership.workspace_id == workspace_id)
        .order_by(WorkspaceMembership.created_at.asc(), WorkspaceMembership.id.asc())
    )
    return list(db.execute(stmt).scalars().all())


def get_role_by_id(db: Session, role_id: int) -> Optional[Role]:
    return db.get(Role, role_id)


def get_role_by_name(db: Session, name: str) -> Optional[Role]:
    return db.execute(select(Role).where(Role.name == name)).scalars().first()


def list_roles(db: Session) -> List[Role]:
    return list(db.execute(select(Role).order_by(Role.id.asc())).scalars().all())


def seed_roles(db: Session, definitions) -> None:
    existing = {r.name for r in list_roles(db)}
    for name, permissions, description in definitions:
        if name.value in existing:
            continue
        db.add(Role(name=name.value, permissions=json.dumps(permissions), description=description))
    db.commit()


def get_workspace(db: Session, workspace_id: int) -> Optional[Workspace]:
    return db.get(Workspace, workspace_id)


def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.get(User, user_id)


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.execute(select(User).where(User.email == email)).scalars().first()


def find_user_conflict(db: Session, username: str, email: str) -> Optional[User]:
    stmt = select(User).where(or_(User.username == username, User.email == email))
    return db.execute(stmt).scalars().first()


def is_admin_anywhere(db: Session, user_id: int) -> bool:
    stmt = (
        select(WorkspaceMembership.id)
        .join(Role, WorkspaceMembership.role_id == Role.id)
        .where(WorkspaceMembership.user_id == user_id, Role.name.in_(("owner", "admin")))
        .limit(1)
    )
    return db.execute(stmt).first() is not None


def get_request_for_user(db: Session, request_id: int, user_id: int) -> Optional[RequestItem]:
    stmt = (
        select(RequestItem)
        .join(WorkspaceMembership, RequestItem.workspace_id == WorkspaceMembership.workspace_id)
        .where(RequestItem.id == request_id, WorkspaceMembership.user_id == user_id)
    )
    return db.execute(stmt).scalars().first()


def get_environment_for_user(db: Session, environment_id: int, user_id: int) -> Optional[Environment]:
    stmt = (
        select(Environment)
        .join(WorkspaceMembership, Environment.workspace_id == WorkspaceMembership.workspace_id)
        .where(Environment.id == environment_id, WorkspaceMembership.user_id == user_id)
    )
    return db.execute(stmt).scalars().first()
