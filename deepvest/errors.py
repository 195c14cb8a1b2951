"""API error taxonomy. Each error carries the HTTP status it maps to."""
from __future__ import annotations

from typing import Any


class APIError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, status_code: int | None = None, detail: Any = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail


class ValidationError(APIError):
    status_code = 400
    code = "validation_error"


class AuthenticationError(APIError):
    status_code = 401
    code = "auth_required"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class PermissionDeniedError(APIError):
    status_code = 403
    code = "permission_denied"


class NotFoundError(APIError):
    status_code = 404
    code = "not_found"


class ConflictError(APIError):
    status_code = 409
    code = "conflict"


class PersistenceError(APIError):
    status_code = 500
    code = "persistence_error"


class RequestTimeoutError(APIError):
    status_code = 408
    code = "timeout"
