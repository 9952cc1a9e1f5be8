"""
Redis key layout for sessions and rate-limit counters.

The rest of the codebase goes through these helpers instead of building
raw Redis keys.
"""

from __future__ import annotations

import json
from typing import Optional

from pydantic import ValidationError
from redis.asyncio import Redis

from formshield.models import SessionRecord
from formshield.redis_client import redis_set_json

DEFAULT_SESSION_PREFIX = "session:"
DEFAULT_RATE_LIMIT_PREFIX = "rate_limit:"


def session_key(session_id: str, prefix: str = DEFAULT_SESSION_PREFIX) -> str:
    return f"{prefix}{session_id}"


def rate_limit_key(identity: str, prefix: str = DEFAULT_RATE_LIMIT_PREFIX) -> str:
    return f"{prefix}{identity}"


def dump_session(record: SessionRecord) -> str:
    return json.dumps(record.model_dump(), ensure_ascii=False)


def load_session(raw: str | bytes | None) -> Optional[SessionRecord]:
    """
    Parse a stored session payload; malformed payloads read as missing.
    """
    if raw is None:
        return None
    try:
        return SessionRecord.model_validate_json(raw)
    except ValidationError:
        return None


async def set_session(
    redis: Redis,
    record: SessionRecord,
    *,
    ttl_seconds: int,
    prefix: str = DEFAULT_SESSION_PREFIX,
) -> None:
    await redis_set_json(
        redis,
        session_key(record.session_id, prefix),
        record.model_dump(),
        ttl_seconds=ttl_seconds,
    )


async def count_sessions(redis: Redis, *, prefix: str = DEFAULT_SESSION_PREFIX) -> int:
    """
    Count live session keys with SCAN (KEYS would block the server).
    """
    count = 0
    async for _ in redis.scan_iter(match=f"{prefix}*", count=500):
        count += 1
    return count


__all__ = [
    "DEFAULT_RATE_LIMIT_PREFIX",
    "DEFAULT_SESSION_PREFIX",
    "count_sessions",
    "dump_session",
    "load_session",
    "rate_limit_key",
    "session_key",
    "set_session",
]
