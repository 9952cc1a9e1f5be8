from __future__ import annotations

from pydantic import BaseModel, Field


class SessionRecord(BaseModel):
    """
    One issued form token, stored as JSON under `session:<session_id>`.
    """

    session_id: str = Field(..., description="Opaque random session id")
    decoy_field_name: str = Field(
        ..., description="Honeypot field name bound to this session"
    )
    created_at: float = Field(..., description="Creation timestamp (epoch seconds)")
    last_access_at: float | None = Field(
        default=None, description="Last read timestamp (epoch seconds)"
    )
    used: bool = Field(default=False, description="Set once the form was submitted")
    used_at: float | None = Field(
        default=None, description="When the session was consumed (epoch seconds)"
    )
    attempts: int = Field(
        default=0, description="Invalid submission attempts for this session", ge=0
    )
    client_ip: str | None = Field(
        default=None, description="Client address captured when the session was used"
    )
    client_user_agent: str | None = Field(
        default=None, description="User-Agent captured when the session was used"
    )


class SessionValidation(BaseModel):
    valid: bool
    code: str | None = None
    message: str | None = None


__all__ = ["SessionRecord", "SessionValidation"]
