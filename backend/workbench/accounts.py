import logging

from sqlalchemy.orm import Session

from . import repository
from .auth import create_access_token, hash_password, verify_password
from .config import Settings
from .errors import AuthenticationError, ConflictError, ErrorCode, ForbiddenError, NotFoundError, ValidationError
from .models import User
from .rbac import guard_self_delete
from .schemas import LoginUser, RegisterUser
from .workspaces import create_workspace

logger = logging.getLogger(__name__)


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
    }


def register(db: Session, payload: RegisterUser, settings: Settings) -> dict:
    if not payload.username or not payload.email or not payload.password:
        raise ValidationError(ErrorCode.MISSING_REQUIRED_FIELDS, "Username, email, and password are required")
    if repository.find_user_conflict(db, payload.username, payload.email) is not None:
        raise ConflictError(ErrorCode.USER_EXISTS, "User already exists")

    user = User(
        username=payload.username,
        email=payload.email,
        password_hash=hash_password(payload.password),
        first_name=payload.first_name,
        last_name=payload.last_name,
    )
    db.add(user)
    db.flush()
    ws = create_workspace(db, user.id, f"{user.username}'s Workspace", "Default workspace", "personal")
    logger.info("user registered", extra={"user_id": user.id, "workspace_id": ws.id})
    return {
        "user": serialize_user(user),
        "workspace_id": ws.id,
        "token": create_access_token(user, settings),
    }


def login(db: Session, payload: LoginUser, settings: Settings) -> dict:
    if not payload.email or not payload.password:
        raise ValidationError(ErrorCode.MISSING_REQUIRED_FIELDS, "Email and password are required")
    user = repository.get_user_by_email(db, payload.email)
    if user is None or not verify_password(payload.password, user.password_hash):
        raise AuthenticationError(ErrorCode.INVALID_CREDENTIALS, "Invalid email or password")
    return {"user": serialize_user(user), "token": create_access_token(user, settings)}


def delete_user(db: Session, actor_id: int, target_user_id: int) -> None:
    guard_self_delete(actor_id, target_user_id)
    if not repository.is_admin_anywhere(db, actor_id):
        raise ForbiddenError(ErrorCode.INSUFFICIENT_PERMISSIONS, "Insufficient permissions to delete this user")

    target = repository.get_user(db, target_user_id)
    if target is None:
        raise NotFoundError(ErrorCode.USER_NOT_FOUND, "User not found")
    db.delete(target)
    db.commit()
    logger.info("user deleted", extra={"user_id": target_user_id})
