from __future__ import annotations

from sqlalchemy import JSON, BigInteger, Boolean, Column, Integer, String, Text
from sqlalchemy.orm import Mapped

from .base import Base, TimestampMixin


class FormSubmission(TimestampMixin, Base):
    """A classified form submission (legitimate or spam)."""

    __tablename__ = "form_submissions"

    id: Mapped[int] = Column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    form_id: Mapped[str] = Column(String(100), nullable=False, index=True)
    email: Mapped[str] = Column(String(255), nullable=False, index=True)
    message: Mapped[str | None] = Column(Text, nullable=True)

    ip_address: Mapped[str | None] = Column(String(64), nullable=True)
    user_agent: Mapped[str | None] = Column(Text, nullable=True)

    honeypot_field: Mapped[str] = Column(String(64), nullable=False, default="")
    is_spam: Mapped[bool] = Column(Boolean, nullable=False, default=False)

    # pending / processed / failed / blocked
    status: Mapped[str] = Column(String(20), nullable=False, default="pending")
    # "metadata" is reserved on declarative classes.
    extra_metadata = Column("metadata", JSON, nullable=False, default=dict)


__all__ = ["FormSubmission"]
