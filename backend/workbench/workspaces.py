"""Workspace, environment and request definitions.

Only the writes needed to stand up something executable live here; the
rest of the collection/folder CRUD is handled elsewhere.
"""

import json
import logging
from typing import Any, Dict

from sqlalchemy.orm import Session

from . import repository
from .errors import ErrorCode, NotFoundError, ValidationError
from .materializer import HTTP_METHODS
from .models import Environment, RequestItem, Workspace, WorkspaceMembership
from .rbac import RoleName, require_role
from .schemas import EnvironmentUpdate, SaveEnv, SaveRequest

logger = logging.getLogger(__name__)


def serialize_workspace(ws: Workspace, role: str = None) -> dict:
    out = {
        "id": ws.id,
        "name": ws.name,
        "description": ws.description,
        "type": ws.type,
        "owner_id": ws.owner_id,
        "created_at": ws.created_at.isoformat() if ws.created_at else None,
    }
    if role is not None:
        out["role"] = role
    return out


def serialize_environment(env: Environment) -> dict:
    return {
        "id": env.id,
        "name": env.name,
        "description": env.description,
        "variables": env.variable_map,
        "workspace_id": env.workspace_id,
        "created_by": env.created_by,
    }


def serialize_request(item: RequestItem) -> dict:
    return {
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "method": item.method,
        "url": item.url,
        "headers": item.header_map,
        "body": item.body,
        "query_params": item.query_map,
        "collection_id": item.collection_id,
        "folder_id": item.folder_id,
        "workspace_id": item.workspace_id,
        "created_by": item.created_by,
    }


def create_workspace(db: Session, user_id: int, name: str, description: str = None, type_: str = "team") -> Workspace:
    if not name:
        raise ValidationError(ErrorCode.MISSING_REQUIRED_FIELDS, "Workspace name is required")
    owner = repository.get_role_by_name(db, RoleName.OWNER.value)

    ws = Workspace(name=name, description=description, type=type_, owner_id=user_id)
    db.add(ws)
    db.flush()
    db.add(WorkspaceMembership(user_id=user_id, workspace_id=ws.id, role_id=owner.id))
    db.commit()
    db.refresh(ws)
    logger.info("workspace created", extra={"workspace_id": ws.id, "user_id": user_id})
    return ws


def get_workspace(db: Session, workspace_id: int, user_id: int) -> dict:
    membership = require_role(db, user_id, workspace_id, RoleName.VIEWER)
    return serialize_workspace(repository.get_workspace(db, workspace_id), membership.role.name)


def _check_variables(variables: Any) -> Dict[str, str]:
    if not isinstance(variables, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in variables.items()
    ):
        raise ValidationError(
            ErrorCode.INVALID_VARIABLES_FORMAT,
            "Variables must be a JSON object of string values",
        )
    return variables


def create_environment(db: Session, workspace_id: int, user_id: int, payload: SaveEnv) -> dict:
    if not payload.name:
        raise ValidationError(ErrorCode.MISSING_REQUIRED_FIELDS, "Environment name is required")
    require_role(db, user_id, workspace_id, RoleName.EDITOR)
    variables = _check_variables(payload.variables if payload.variables is not None else {})

    env = Environment(
        workspace_id=workspace_id,
        name=payload.name,
        description=payload.description,
        variables=json.dumps(variables),
        created_by=user_id,
    )
    db.add(env)
    db.commit()
    db.refresh(env)
    return serialize_environment(env)


def update_environment(db: Session, environment_id: int, user_id: int, patch: EnvironmentUpdate) -> dict:
    env = repository.get_environment_for_user(db, environment_id, user_id)
    if env is None:
        raise NotFoundError(ErrorCode.ENVIRONMENT_NOT_FOUND, "Environment not found or access denied")
    require_role(db, user_id, env.workspace_id, RoleName.EDITOR, ErrorCode.ENVIRONMENT_NOT_FOUND)

    changes = patch.changes()
    if "name" in changes and not changes["name"]:
        raise ValidationError(ErrorCode.MISSING_REQUIRED_FIELDS, "Environment name cannot be empty")
    if "variables" in changes:
        changes["variables"] = json.dumps(_check_variables(changes["variables"]))

    if not changes:
        return serialize_environment(env)

    for field, value in changes.items():
        setattr(env, field, value)
    db.commit()
    db.refresh(env)
    return serialize_environment(env)


def create_request(db: Session, workspace_id: int, user_id: int, payload: SaveRequest) -> dict:
    if not payload.name or not payload.method or not payload.url:
        raise ValidationError(ErrorCode.MISSING_REQUIRED_FIELDS, "Name, method, and URL are required")
    method = payload.method.upper()
    if method not in HTTP_METHODS:
        raise ValidationError(ErrorCode.INVALID_HTTP_METHOD, "Invalid HTTP method")
    require_role(db, user_id, workspace_id, RoleName.EDITOR)

    body = payload.body
    if body is not None and not isinstance(body, str):
        body = json.dumps(body)

    item = RequestItem(
        name=payload.name,
        description=payload.description,
        method=method,
        url=payload.url,
        headers=json.dumps(payload.headers or {}),
        body=body,
        query_params=json.dumps({k: str(v) for k, v in (payload.query_params or {}).items()}),
        collection_id=payload.collection_id,
        folder_id=payload.folder_id,
        workspace_id=workspace_id,
        created_by=user_id,
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    return serialize_request(item)


def get_request(db: Session, request_id: int, user_id: int) -> dict:
    item = repository.get_request_for_user(db, request_id, user_id)
    if item is None:
        raise NotFoundError(ErrorCode.REQUEST_NOT_FOUND, "Request not found or access denied")
    return serialize_request(item)
