from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator

FORM_ID_MAX_LENGTH = 100
EMAIL_MAX_LENGTH = 255
MESSAGE_MAX_LENGTH = 5000
SESSION_ID_FIELD = "_sessionId"


class FormSubmissionPayload(BaseModel):
    """Business fields of a submission; decoy and other extra fields are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    form_id: str = Field(
        ..., alias="formId", min_length=1, max_length=FORM_ID_MAX_LENGTH
    )
    email: EmailStr
    message: str = Field(default="", max_length=MESSAGE_MAX_LENGTH)

    @field_validator("form_id", "email", mode="before")
    @classmethod
    def strip_whitespace(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("email", mode="before")
    @classmethod
    def check_email_length(cls, value: Any) -> Any:
        if isinstance(value, str) and len(value) > EMAIL_MAX_LENGTH:
            raise ValueError(f"Email must be at most {EMAIL_MAX_LENGTH} characters")
        return value

    @field_validator("email", mode="after")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()


_FIELD_NAMES = {"form_id": "formId"}


def validate_business_fields(
    fields: Mapping[str, str],
) -> tuple[FormSubmissionPayload | None, list[dict[str, str]]]:
    """
    Validate formId / email / message.

    Returns (payload, []) on success and (None, [{field, message}, ...]) on failure.
    """
    try:
        return FormSubmissionPayload.model_validate(dict(fields)), []
    except ValidationError as exc:
        errors: list[dict[str, str]] = []
        for err in exc.errors():
            loc = err.get("loc") or ("unknown",)
            name = str(loc[0])
            errors.append(
                {"field": _FIELD_NAMES.get(name, name), "message": err.get("msg", "Invalid value")}
            )
        return None, errors


__all__ = [
    "EMAIL_MAX_LENGTH",
    "FORM_ID_MAX_LENGTH",
    "FormSubmissionPayload",
    "MESSAGE_MAX_LENGTH",
    "SESSION_ID_FIELD",
    "validate_business_fields",
]
