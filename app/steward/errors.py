from __future__ import annotations

from typing import Any

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError


class ApiError(Exception):
    """
    An error that maps directly to a JSON response body and status code.
    Raise it from services or routes; create_app() renders it.
    """

    status_code = 400

    def __init__(self, message: str, *, status_code: int | None = None, payload: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        body.update(self.payload)
        return body


class Unauthorized(ApiError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class TenantNotFound(ApiError):
    status_code = 400

    def __init__(self, message: str = "Church not found"):
        super().__init__(message)


class UserNotFound(ApiError):
    status_code = 404

    def __init__(self, message: str = "User not found"):
        super().__init__(message)


class Forbidden(ApiError):
    status_code = 403

    def __init__(self, message: str = "Forbidden", *, missing_permission: str | None = None):
        super().__init__(message)
        self.missing_permission = missing_permission


class NotFound(ApiError):
    status_code = 404


_CONNECTION_MARKERS = ("connection refused", "could not connect", "timeout", "connection reset", "server closed")


def sanitize_error(exc: BaseException, *, is_production: bool) -> tuple[dict[str, Any], int]:
    """
    Convert an unexpected exception into a safe JSON body + status.
    Production responses never include exception text.
    """
    if isinstance(exc, IntegrityError):
        status, message = 400, "Invalid data provided"
    elif isinstance(exc, OperationalError) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    ):
        status, message = 503, "Service temporarily unavailable"
    elif any(m in str(exc).lower() for m in _CONNECTION_MARKERS):
        status, message = 503, "Service temporarily unavailable"
    else:
        status, message = 500, "An unexpected error occurred"

    body: dict[str, Any] = {"error": message}
    if not is_production:
        body["details"] = str(exc)
    return body, status
