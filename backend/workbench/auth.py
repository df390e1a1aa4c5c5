from __future__ import annotations

import time
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError
from fastapi import Depends, Request
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.orm import Session

from . import repository
from .config import Settings
from .db import get_db
from .errors import AuthenticationError, ErrorCode
from .models import User

PWD = PasswordHasher()


def hash_password(password: str) -> str:
    return PWD.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return PWD.verify(password_hash, password)
    except (VerifyMismatchError, InvalidHashError):
        return False


def create_access_token(user: User, settings: Settings) -> str:
    now = int(time.time())
    claims = {
        "sub": str(user.id),
        "username": user.username,
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
        "iat": now,
        "exp": now + settings.ACCESS_TOKEN_TTL_SECONDS,
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_access_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALG],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
        )
    except ExpiredSignatureError:
        raise AuthenticationError(ErrorCode.TOKEN_EXPIRED, "Token has expired")
    except JWTError:
        raise AuthenticationError(ErrorCode.INVALID_TOKEN, "Invalid token")


def _extract_bearer_token(auth_header: Optional[str]) -> Optional[str]:
    if not auth_header:
        return None
    parts = auth_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    token = parts[1].strip()
    return token or None


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    token = _extract_bearer_token(request.headers.get("Authorization"))
    if not token:
        raise AuthenticationError(ErrorCode.UNAUTHORIZED, "No token")

    payload = decode_access_token(token, request.app.state.settings)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise AuthenticationError(ErrorCode.INVALID_TOKEN, "Invalid token")

    user = repository.get_user(db, user_id)
    if user is None:
        raise AuthenticationError(ErrorCode.INVALID_TOKEN, "Invalid token")
    return user
