"""
Durable sink for classified submissions.

The orchestrator only depends on the `SubmissionSink` protocol; the SQL
implementation appends one `form_submissions` row per record.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Protocol

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from formshield.logging_config import logger
from formshield.models import ClassifiedSubmission, FormSubmission


class SubmissionStoreError(RuntimeError):
    pass


class SubmissionSink(Protocol):
    def save(self, record: ClassifiedSubmission) -> int:
        """Persist a record and return its id."""
        ...


class SqlSubmissionStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def save(self, record: ClassifiedSubmission) -> int:
        row = FormSubmission(
            form_id=record.form_id,
            email=record.email,
            message=record.message or None,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
            honeypot_field=record.honeypot_field,
            is_spam=record.is_spam,
            status=record.status,
            extra_metadata=record.metadata,
        )
        try:
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to save submission for form %s", record.form_id)
            raise SubmissionStoreError("Could not save submission") from exc
        logger.info(
            "Submission saved: id=%s form=%s spam=%s", row.id, row.form_id, row.is_spam
        )
        return row.id

    def recent(self, limit: int = 10) -> list[FormSubmission]:
        stmt = (
            select(FormSubmission)
            .order_by(FormSubmission.created_at.desc(), FormSubmission.id.desc())
            .limit(limit)
        )
        try:
            return list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError:
            logger.exception("Failed to load recent submissions")
            return []

    def get_stats(self, *, now: dt.datetime | None = None) -> dict[str, Any]:
        since = (now or dt.datetime.now(dt.timezone.utc)) - dt.timedelta(hours=24)

        def _count_where(condition) -> Any:
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        stmt = select(
            func.count(FormSubmission.id),
            _count_where(FormSubmission.status == "pending"),
            _count_where(FormSubmission.status == "processed"),
            _count_where(FormSubmission.status == "blocked"),
            _count_where(FormSubmission.is_spam.is_(True)),
            _count_where(FormSubmission.created_at >= since),
        )
        try:
            total, pending, processed, blocked, spam, last_day = self.db.execute(stmt).one()
        except SQLAlchemyError:
            logger.exception("Failed to load submission stats")
            total = pending = processed = blocked = spam = last_day = 0
        return {
            "total": int(total),
            "pending": int(pending),
            "processed": int(processed),
            "blocked": int(blocked),
            "spam_count": int(spam),
            "last_24_hours": int(last_day),
        }


__all__ = ["SqlSubmissionStore", "SubmissionSink", "SubmissionStoreError"]
