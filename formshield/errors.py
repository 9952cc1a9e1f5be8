from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from fastapi import HTTPException, status
from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from formshield.models.rate_limit import RateLimitDecision


class SessionErrorCode(str, Enum):
    SESSION_REQUIRED = "SESSION_REQUIRED"
    SESSION_INVALID = "SESSION_INVALID"
    SESSION_USED = "SESSION_USED"
    MAX_ATTEMPTS = "MAX_ATTEMPTS"


SESSION_ERROR_MESSAGES: dict[SessionErrorCode, str] = {
    SessionErrorCode.SESSION_REQUIRED: "Session id is required",
    SessionErrorCode.SESSION_INVALID: "Session is invalid or has expired",
    SessionErrorCode.SESSION_USED: "This form has already been submitted",
    SessionErrorCode.MAX_ATTEMPTS: "Too many attempts for this session",
}


class BackingStoreUnavailable(RuntimeError):
    """Raised when Redis cannot be reached or does not answer in time."""

    def __init__(self, operation: str, cause: BaseException | None = None):
        self.operation = operation
        self.cause = cause
        message = f"Backing store unavailable during {operation}"
        if cause is not None:
            message = f"{message}: {cause!r}"
        super().__init__(message)


class SessionInvalid(RuntimeError):
    def __init__(self, code: SessionErrorCode):
        self.code = code
        super().__init__(SESSION_ERROR_MESSAGES[code])


class RateLimited(RuntimeError):
    def __init__(self, decision: "RateLimitDecision"):
        self.decision = decision
        super().__init__(
            f"Rate limit exceeded; resets in {decision.reset_in_seconds}s"
        )


class ValidationFailed(ValueError):
    """Field-level validation failure; `errors` is a list of {field, message}."""

    def __init__(self, errors: list[dict[str, str]]):
        self.errors = errors
        super().__init__("Submitted data failed validation")


class ErrorResponse(BaseModel):
    """
    Standard error payload:
    {
        "error": "not_found",
        "message": "Session not found",
        "code": 404,
        "details": {...}
    }
    """

    error: str = Field(..., description="Machine-readable error type")
    message: str = Field(..., description="Human-readable error message")
    code: int = Field(..., description="HTTP status code for this error")
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Optional structured error details"
    )


def http_error(
    status_code: int,
    *,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> HTTPException:
    """
    Helper to create an HTTPException with a standardised error body.
    """
    payload = ErrorResponse(
        error=error,
        message=message,
        code=status_code,
        details=details,
    )
    return HTTPException(
        status_code=status_code, detail=payload.model_dump(), headers=headers
    )


def bad_request(
    message: str,
    *,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> HTTPException:
    return http_error(
        status.HTTP_400_BAD_REQUEST,
        error="bad_request",
        message=message,
        details=details,
        headers=headers,
    )


def not_found(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(
        status.HTTP_404_NOT_FOUND, error="not_found", message=message, details=details
    )


def internal_error(
    message: str, *, details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    return http_error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        error="internal_error",
        message=message,
        details=details,
    )


def service_unavailable(
    message: str, *, details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    return http_error(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        error="service_unavailable",
        message=message,
        details=details,
    )


__all__ = [
    "BackingStoreUnavailable",
    "ErrorResponse",
    "RateLimited",
    "SESSION_ERROR_MESSAGES",
    "SessionErrorCode",
    "SessionInvalid",
    "ValidationFailed",
    "bad_request",
    "http_error",
    "internal_error",
    "not_found",
    "service_unavailable",
]
