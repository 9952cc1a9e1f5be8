from .base import Base, TimestampMixin
from .outcome import Classification, ClassifiedSubmission, SubmissionOutcome
from .rate_limit import RateLimitDecision
from .session import SessionRecord, SessionValidation
from .submission import FormSubmission

__all__ = [
    "Base",
    "Classification",
    "ClassifiedSubmission",
    "FormSubmission",
    "RateLimitDecision",
    "SessionRecord",
    "SessionValidation",
    "SubmissionOutcome",
    "TimestampMixin",
]
