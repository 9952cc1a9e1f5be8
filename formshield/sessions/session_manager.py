"""
Form session lifecycle: create, read, validate, count failures, consume, delete.

A session moves Created -> Used; expiry (Created|Used -> gone) is left to the
Redis TTL. Every read-modify-write runs as an optimistic WATCH/MULTI
transaction on the session key, so a concurrent `mark_used` can never be
overwritten by a stale copy and at most one caller wins the
`used: false -> true` transition.

Only `create_session` lets a store failure escape (a form must never be
served without a token); every other operation degrades to "absent" or a
no-op and logs the fault.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import WatchError

from formshield.errors import (
    SESSION_ERROR_MESSAGES,
    BackingStoreUnavailable,
    SessionErrorCode,
)
from formshield.logging_config import logger
from formshield.models import SessionRecord, SessionValidation
from formshield.redis_client import bounded, redis_delete
from formshield.security.tokens import (
    DEFAULT_DECOY_PREFIX,
    decoy_field_name,
    is_valid_session_id,
    new_session_id,
)
from formshield.settings import Settings, settings
from formshield.storage.redis_service import (
    DEFAULT_SESSION_PREFIX,
    count_sessions,
    dump_session,
    load_session,
    session_key,
    set_session,
)

# A mutation returns the record to write and its TTL, or None to leave the key alone.
Mutation = Callable[[SessionRecord], Optional[tuple[SessionRecord, int]]]


class SessionContention(RuntimeError):
    """Raised when an optimistic update keeps losing the WATCH race."""


@dataclass(frozen=True)
class _UpdateResult:
    record: Optional[SessionRecord]
    written: bool


class SessionManager:
    def __init__(
        self,
        redis: Redis,
        *,
        ttl_seconds: int = 600,
        used_ttl_seconds: int = 300,
        max_attempts: int = 5,
        key_prefix: str = DEFAULT_SESSION_PREFIX,
        honeypot_prefix: str = DEFAULT_DECOY_PREFIX,
        operation_timeout: float = 3.0,
        max_retries: int = 5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.used_ttl_seconds = used_ttl_seconds
        self.max_attempts = max_attempts
        self.key_prefix = key_prefix
        self.honeypot_prefix = honeypot_prefix
        self.operation_timeout = operation_timeout
        self.max_retries = max_retries
        self._clock = clock

    @classmethod
    def from_settings(cls, redis: Redis, cfg: Settings = settings) -> "SessionManager":
        return cls(
            redis,
            ttl_seconds=cfg.session_ttl_seconds,
            used_ttl_seconds=cfg.session_used_ttl_seconds,
            max_attempts=cfg.session_max_attempts,
            key_prefix=cfg.session_key_prefix,
            honeypot_prefix=cfg.honeypot_prefix,
            operation_timeout=cfg.store_operation_timeout,
        )

    # ------------------------------------------------------------------
    # Store plumbing
    # ------------------------------------------------------------------

    async def _update(self, session_id: str, mutate: Mutation) -> _UpdateResult:
        key = session_key(session_id, self.key_prefix)
        for _ in range(self.max_retries):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    record = load_session(await pipe.get(key))
                    if record is None:
                        return _UpdateResult(None, False)
                    change = mutate(record)
                    if change is None:
                        return _UpdateResult(record, False)
                    updated, ttl = change
                    pipe.multi()
                    pipe.set(key, dump_session(updated), ex=ttl)
                    await pipe.execute()
                    return _UpdateResult(updated, True)
                except WatchError:
                    logger.debug("Session %s changed during update; retrying", session_id)
                    continue
        raise SessionContention(f"Session {session_id} is under heavy contention")

    async def _bounded_update(
        self, session_id: str, mutate: Mutation, *, operation: str
    ) -> _UpdateResult:
        return await bounded(
            self._update(session_id, mutate),
            timeout=self.operation_timeout,
            operation=operation,
        )

    def _ttl_for(self, record: SessionRecord) -> int:
        return self.used_ttl_seconds if record.used else self.ttl_seconds

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_session(self) -> SessionRecord:
        """
        Issue a new session with the full TTL.

        Raises BackingStoreUnavailable when the record cannot be written.
        """
        session_id = new_session_id()
        record = SessionRecord(
            session_id=session_id,
            decoy_field_name=decoy_field_name(session_id, self.honeypot_prefix),
            created_at=self._clock(),
        )
        try:
            await bounded(
                set_session(
                    self.redis, record, ttl_seconds=self.ttl_seconds, prefix=self.key_prefix
                ),
                timeout=self.operation_timeout,
                operation="create_session",
            )
        except BackingStoreUnavailable:
            logger.exception("Failed to create form session")
            raise
        logger.info("Created form session %s", session_id)
        return record

    async def get_session(self, session_id: str | None) -> Optional[SessionRecord]:
        """
        Load a session and slide its expiry while it is unused.

        Unknown, expired, malformed and unreadable sessions all return None.
        """
        if not is_valid_session_id(session_id):
            return None

        def touch(record: SessionRecord) -> Optional[tuple[SessionRecord, int]]:
            if record.used:
                # Used records keep their short audit TTL.
                return None
            return record.model_copy(update={"last_access_at": self._clock()}), self.ttl_seconds

        try:
            result = await self._bounded_update(session_id, touch, operation="get_session")
        except BackingStoreUnavailable:
            logger.warning("Session store unavailable while reading %s", session_id, exc_info=True)
            return None
        except SessionContention:
            logger.warning("Gave up refreshing contended session %s", session_id)
            return await self._read_only(session_id)
        return result.record

    async def _read_only(self, session_id: str) -> Optional[SessionRecord]:
        try:
            raw = await bounded(
                self.redis.get(session_key(session_id, self.key_prefix)),
                timeout=self.operation_timeout,
                operation="get_session",
            )
        except BackingStoreUnavailable:
            logger.warning("Session store unavailable while reading %s", session_id, exc_info=True)
            return None
        return load_session(raw)

    def validate(
        self, session_id: str | None, record: Optional[SessionRecord]
    ) -> SessionValidation:
        """
        Check a session in fixed precedence: required, invalid/expired,
        already used, too many attempts.
        """
        if not session_id:
            code = SessionErrorCode.SESSION_REQUIRED
        elif record is None:
            code = SessionErrorCode.SESSION_INVALID
        elif record.used:
            code = SessionErrorCode.SESSION_USED
        elif record.attempts >= self.max_attempts:
            code = SessionErrorCode.MAX_ATTEMPTS
        else:
            return SessionValidation(valid=True)
        return SessionValidation(
            valid=False, code=code.value, message=SESSION_ERROR_MESSAGES[code]
        )

    async def record_failed_attempt(self, session_id: str | None) -> None:
        if not is_valid_session_id(session_id):
            return

        def bump(record: SessionRecord) -> tuple[SessionRecord, int]:
            updated = record.model_copy(update={"attempts": record.attempts + 1})
            return updated, self._ttl_for(updated)

        try:
            result = await self._bounded_update(
                session_id, bump, operation="record_failed_attempt"
            )
        except BackingStoreUnavailable:
            logger.warning(
                "Session store unavailable; attempt for %s not recorded",
                session_id,
                exc_info=True,
            )
            return
        except SessionContention:
            logger.warning("Gave up recording attempt for contended session %s", session_id)
            return
        if result.record is not None:
            logger.info("Session %s: attempt %d", session_id, result.record.attempts)

    async def mark_used(
        self, session_id: str | None, ip: str | None, user_agent: str | None
    ) -> bool:
        """
        Consume the session and shorten its TTL to the audit window.

        Returns True only for the caller that flipped `used` to True; False
        when the session is gone, already used, or the store failed.
        """
        if not is_valid_session_id(session_id):
            return False

        def consume(record: SessionRecord) -> Optional[tuple[SessionRecord, int]]:
            if record.used:
                return None
            updated = record.model_copy(
                update={
                    "used": True,
                    "used_at": self._clock(),
                    "client_ip": ip,
                    "client_user_agent": user_agent,
                }
            )
            return updated, self.used_ttl_seconds

        try:
            result = await self._bounded_update(session_id, consume, operation="mark_used")
        except BackingStoreUnavailable:
            logger.warning(
                "Session store unavailable; %s not marked used", session_id, exc_info=True
            )
            return False
        except SessionContention:
            logger.warning("Gave up consuming contended session %s", session_id)
            return False
        if result.written:
            logger.info("Session %s marked as used", session_id)
        return result.written

    async def delete_session(self, session_id: str | None) -> None:
        if not session_id:
            return
        try:
            await bounded(
                redis_delete(self.redis, session_key(session_id, self.key_prefix)),
                timeout=self.operation_timeout,
                operation="delete_session",
            )
        except BackingStoreUnavailable:
            logger.warning(
                "Session store unavailable; %s not deleted", session_id, exc_info=True
            )
            return
        logger.info("Session %s deleted", session_id)

    def expires_in(self, record: SessionRecord) -> int:
        """Seconds left for a record just returned by get_session."""
        if not record.used:
            return self.ttl_seconds
        used_at = record.used_at or self._clock()
        return max(0, int(self.used_ttl_seconds - (self._clock() - used_at)))

    async def get_stats(self) -> dict[str, int]:
        try:
            active = await bounded(
                count_sessions(self.redis, prefix=self.key_prefix),
                timeout=self.operation_timeout,
                operation="count_sessions",
            )
        except BackingStoreUnavailable:
            logger.warning("Session store unavailable while counting sessions", exc_info=True)
            active = 0
        return {"active_sessions": active}


__all__ = ["SessionContention", "SessionManager"]
