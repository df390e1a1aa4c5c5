"""Error codes and API exceptions.

Every failure leaving the API is rendered as
``{"success": false, "message": ..., "code": ...}``; handlers live in
``workbench.main``.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    # Validation
    VALIDATION_FAILED = "VALIDATION_FAILED"
    MISSING_REQUIRED_FIELDS = "MISSING_REQUIRED_FIELDS"
    INVALID_HTTP_METHOD = "INVALID_HTTP_METHOD"
    INVALID_VARIABLES_FORMAT = "INVALID_VARIABLES_FORMAT"
    INVALID_PAGINATION = "INVALID_PAGINATION"
    ENVIRONMENT_NOT_ACCESSIBLE = "ENVIRONMENT_NOT_ACCESSIBLE"
    # Authentication
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_TOKEN = "INVALID_TOKEN"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    # Authorization
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    CANNOT_CHANGE_OWNER_ROLE = "CANNOT_CHANGE_OWNER_ROLE"
    CANNOT_REMOVE_OWNER = "CANNOT_REMOVE_OWNER"
    CANNOT_DELETE_SELF = "CANNOT_DELETE_SELF"
    # Not found
    ENDPOINT_NOT_FOUND = "ENDPOINT_NOT_FOUND"
    WORKSPACE_NOT_FOUND = "WORKSPACE_NOT_FOUND"
    REQUEST_NOT_FOUND = "REQUEST_NOT_FOUND"
    ENVIRONMENT_NOT_FOUND = "ENVIRONMENT_NOT_FOUND"
    HISTORY_NOT_FOUND = "HISTORY_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    ROLE_NOT_FOUND = "ROLE_NOT_FOUND"
    USER_NOT_MEMBER = "USER_NOT_MEMBER"
    # Conflict
    USER_EXISTS = "USER_EXISTS"
    USER_ALREADY_MEMBER = "USER_ALREADY_MEMBER"
    # Execution (recorded inside history, never raised)
    NETWORK_ERROR = "NETWORK_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ApiError(Exception):
    status_code = 500

    def __init__(self, code: ErrorCode, message: str, status_code: int | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"success": False, "message": self.message, "code": self.code.value}


class ValidationError(ApiError):
    status_code = 400


class AuthenticationError(ApiError):
    status_code = 401


class ForbiddenError(ApiError):
    status_code = 403


class NotFoundError(ApiError):
    status_code = 404


class ConflictError(ApiError):
    status_code = 409


__all__ = [
    "ErrorCode",
    "ApiError",
    "ValidationError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
]
