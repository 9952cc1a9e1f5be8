from __future__ import annotations

from pydantic import BaseModel, Field


class RateLimitDecision(BaseModel):
    """
    Result of consuming one unit of a client's fixed-window budget.
    """

    allowed: bool
    current_count: int = Field(..., ge=0, description="Requests seen in this window")
    limit: int = Field(..., ge=0, description="Requests allowed per window")
    remaining: int = Field(..., ge=0, description="Requests left in this window")
    reset_in_seconds: int = Field(
        ..., ge=0, description="Seconds until the current window expires"
    )
    degraded: bool = Field(
        default=False,
        description="True when the store was unreachable and the request was let through",
    )


__all__ = ["RateLimitDecision"]
