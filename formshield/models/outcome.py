from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .rate_limit import RateLimitDecision


class Classification(str, Enum):
    LEGITIMATE = "legitimate"
    SPAM = "spam"
    SESSION_INVALID = "sessionInvalid"
    RATE_LIMITED = "rateLimited"
    VALIDATION_FAILED = "validationFailed"


class SubmissionOutcome(BaseModel):
    """
    Per-request result of the submission pipeline. Never persisted as is.

    `accepted` is what the submitter is told: spam is reported as accepted.
    """

    accepted: bool
    classification: Classification
    session_id: str | None = None
    reason: str | None = None
    errors: list[dict[str, str]] = Field(default_factory=list)
    submission_id: int | None = None
    rate_limit: RateLimitDecision | None = None


class ClassifiedSubmission(BaseModel):
    """Record handed to the durable submission store."""

    form_id: str
    email: str
    message: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    honeypot_field: str = ""
    is_spam: bool = False
    status: str = "pending"
    metadata: dict[str, Any] = Field(default_factory=dict)


__all__ = ["Classification", "ClassifiedSubmission", "SubmissionOutcome"]
