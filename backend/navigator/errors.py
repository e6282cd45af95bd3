"""
Domain exceptions and the API error type.

Services raise the domain exceptions; the handlers registered in main.py turn
them into the shared error envelope:

    {"ok": false, "error": {"code": "...", "message": "...", "details": ...}}
"""

from typing import Any

from fastapi import HTTPException, status


class NavigatorError(Exception):
    """Base class for domain errors raised by the service layer."""


class ActiveThreadExistsError(NavigatorError):
    """A different thread is still active in the run; it must be closed first."""

    def __init__(self, message: str = "another active thread exists; close it before creating a new one"):
        super().__init__(message)


class StorageConflictError(NavigatorError):
    """A unique-constraint conflict could not be reconciled to an existing row."""


class UpstreamError(NavigatorError):
    """A third-party call (LLM, Memberstack, Stripe) failed, timed out, or returned garbage."""

    def __init__(self, service: str, message: str, *, retryable: bool = True, details: Any = None):
        super().__init__(message)
        self.service = service
        self.retryable = retryable
        self.details = details


_CODES_BY_STATUS = {
    status.HTTP_400_BAD_REQUEST: "BAD_REQUEST",
    status.HTTP_401_UNAUTHORIZED: "UNAUTHORIZED",
    status.HTTP_403_FORBIDDEN: "FORBIDDEN",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "BAD_REQUEST",
    status.HTTP_429_TOO_MANY_REQUESTS: "RATE_LIMITED",
    status.HTTP_502_BAD_GATEWAY: "UPSTREAM_ERROR",
}


def code_for_status(status_code: int) -> str:
    return _CODES_BY_STATUS.get(status_code, "INTERNAL_ERROR")


class ApiError(HTTPException):
    """HTTPException that carries a machine-readable code and optional details."""

    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        code: str | None = None,
        details: Any = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code = code or code_for_status(status_code)
        self.details = details


def error_body(code: str, message: str, details: Any = None) -> dict:
    error: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return {"ok": False, "error": error}


def bad_request(message: str, details: Any = None) -> ApiError:
    return ApiError(status.HTTP_400_BAD_REQUEST, message, details=details)


def unauthorized(message: str = "Invalid or missing JWT") -> ApiError:
    return ApiError(
        status.HTTP_401_UNAUTHORIZED,
        message,
        headers={"WWW-Authenticate": "Bearer"},
    )


def forbidden(message: str = "Forbidden") -> ApiError:
    return ApiError(status.HTTP_403_FORBIDDEN, message)


def not_found(message: str = "Resource not found") -> ApiError:
    return ApiError(status.HTTP_404_NOT_FOUND, message)


def internal_error(message: str = "Internal server error", details: Any = None) -> ApiError:
    return ApiError(status.HTTP_500_INTERNAL_SERVER_ERROR, message, details=details)
