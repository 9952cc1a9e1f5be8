"""
Submission pipeline: rate limit -> session -> decoy check -> field validation
-> consume session -> durable store.

Each stage short-circuits into one `SubmissionOutcome`. Spam is reported to
the submitter as accepted; only the server side (logs, stored record) knows.
"""

from __future__ import annotations

from collections.abc import Mapping

from formshield.errors import (
    SESSION_ERROR_MESSAGES,
    RateLimited,
    SessionErrorCode,
    SessionInvalid,
    ValidationFailed,
)
from formshield.logging_config import logger
from formshield.models import (
    Classification,
    ClassifiedSubmission,
    RateLimitDecision,
    SessionRecord,
    SubmissionOutcome,
)
from formshield.rate_limit.limiter import RedisRateLimiter
from formshield.schemas.submission import validate_business_fields
from formshield.security.tokens import DEFAULT_DECOY_PREFIX
from formshield.services.submission_store import SubmissionSink, SubmissionStoreError
from formshield.sessions.session_manager import SessionManager
from formshield.spam.detector import find_filled_decoys, is_spam

ACCEPTED_MESSAGE = "Form submitted successfully"
SPAM_PLACEHOLDER_EMAIL = "spam@example.com"


class SubmissionService:
    def __init__(
        self,
        session_manager: SessionManager,
        rate_limiter: RedisRateLimiter,
        sink: SubmissionSink,
        *,
        honeypot_enabled: bool = True,
        honeypot_prefix: str = DEFAULT_DECOY_PREFIX,
    ) -> None:
        self.sessions = session_manager
        self.rate_limiter = rate_limiter
        self.sink = sink
        self.honeypot_enabled = honeypot_enabled
        self.honeypot_prefix = honeypot_prefix

    async def handle_submission(
        self,
        fields: Mapping[str, str],
        session_id: str | None,
        client_identity: str,
        user_agent: str = "",
        *,
        rate_limit: RateLimitDecision | None = None,
    ) -> SubmissionOutcome:
        """
        Run one submission through the pipeline.

        Pass `rate_limit` when the caller already consumed this request's
        budget (the HTTP layer does so before reading the body); otherwise
        one unit is consumed here.
        """
        decision: RateLimitDecision | None = rate_limit
        try:
            decision = await self._check_rate_limit(client_identity, decision)
            record = await self._load_valid_session(session_id)
            if self.honeypot_enabled and is_spam(
                fields, record.decoy_field_name, prefix=self.honeypot_prefix
            ):
                return await self._handle_spam(
                    fields, record, client_identity, user_agent, decision
                )
            payload = await self._validate_fields(fields, session_id)
            if not await self.sessions.mark_used(session_id, client_identity, user_agent):
                # Another request consumed this session between validate and now.
                raise SessionInvalid(SessionErrorCode.SESSION_USED)
        except RateLimited as exc:
            return SubmissionOutcome(
                accepted=False,
                classification=Classification.RATE_LIMITED,
                session_id=session_id,
                reason=str(exc),
                rate_limit=exc.decision,
            )
        except SessionInvalid as exc:
            logger.info("Rejected submission for session %s: %s", session_id, exc.code.value)
            return SubmissionOutcome(
                accepted=False,
                classification=Classification.SESSION_INVALID,
                session_id=session_id,
                reason=exc.code.value,
                errors=[{"field": "_sessionId", "message": SESSION_ERROR_MESSAGES[exc.code]}],
                rate_limit=decision,
            )
        except ValidationFailed as exc:
            return SubmissionOutcome(
                accepted=False,
                classification=Classification.VALIDATION_FAILED,
                session_id=session_id,
                reason=str(exc),
                errors=exc.errors,
                rate_limit=decision,
            )

        submission_id = self.sink.save(
            ClassifiedSubmission(
                form_id=payload.form_id,
                email=payload.email,
                message=payload.message,
                ip_address=client_identity,
                user_agent=user_agent,
                honeypot_field=record.decoy_field_name,
                is_spam=False,
                status="pending",
                metadata={"session_id": session_id},
            )
        )
        return SubmissionOutcome(
            accepted=True,
            classification=Classification.LEGITIMATE,
            session_id=session_id,
            reason=ACCEPTED_MESSAGE,
            submission_id=submission_id,
            rate_limit=decision,
        )

    async def _check_rate_limit(
        self, client_identity: str, decision: RateLimitDecision | None
    ) -> RateLimitDecision:
        if decision is None:
            decision = await self.rate_limiter.consume(client_identity)
        if not decision.allowed:
            raise RateLimited(decision)
        return decision

    async def _load_valid_session(self, session_id: str | None) -> SessionRecord:
        record = await self.sessions.get_session(session_id)
        validation = self.sessions.validate(session_id, record)
        if not validation.valid:
            await self.sessions.record_failed_attempt(session_id)
            raise SessionInvalid(SessionErrorCode(validation.code))
        if record is None:
            raise SessionInvalid(SessionErrorCode.SESSION_INVALID)
        return record

    async def _validate_fields(self, fields: Mapping[str, str], session_id: str | None):
        payload, errors = validate_business_fields(fields)
        if payload is None:
            await self.sessions.record_failed_attempt(session_id)
            raise ValidationFailed(errors)
        return payload

    async def _handle_spam(
        self,
        fields: Mapping[str, str],
        record: SessionRecord,
        client_identity: str,
        user_agent: str,
        decision: RateLimitDecision,
    ) -> SubmissionOutcome:
        filled = find_filled_decoys(
            fields, record.decoy_field_name, prefix=self.honeypot_prefix
        )
        logger.warning(
            "Spam detected: session=%s ip=%s decoys=%s",
            record.session_id,
            client_identity,
            filled,
        )
        # The token is burnt so the bot cannot simply retry with it.
        await self.sessions.mark_used(record.session_id, client_identity, user_agent)

        submission_id: int | None = None
        try:
            submission_id = self.sink.save(
                ClassifiedSubmission(
                    form_id=(fields.get("formId") or "unknown")[:100],
                    email=(fields.get("email") or SPAM_PLACEHOLDER_EMAIL)[:255],
                    message=fields.get("message") or None,
                    ip_address=client_identity,
                    user_agent=user_agent,
                    honeypot_field=record.decoy_field_name,
                    is_spam=True,
                    status="blocked",
                    metadata={
                        "session_id": record.session_id,
                        "spam_reason": "honeypot_triggered",
                        "detected_fields": filled,
                    },
                )
            )
        except SubmissionStoreError:
            logger.error("Spam record for session %s was not stored", record.session_id)

        return SubmissionOutcome(
            accepted=True,
            classification=Classification.SPAM,
            session_id=record.session_id,
            reason=ACCEPTED_MESSAGE,
            submission_id=submission_id,
            rate_limit=decision,
        )


__all__ = ["ACCEPTED_MESSAGE", "SubmissionService"]
