"""
Redis helper utilities.

This module is the single place where the Redis client is constructed and
provides small helpers for JSON-style key access and for bounding every
store call with a timeout, so that the session and rate-limit layers do
not duplicate this logic.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable
from typing import Any, Optional, TypeVar

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .errors import BackingStoreUnavailable
from .settings import settings

T = TypeVar("T")

# Errors treated as "backing store unavailable": driver errors, socket
# errors and our own operation timeout.
STORE_ERRORS: tuple[type[BaseException], ...] = (
    RedisError,
    OSError,
    asyncio.TimeoutError,
)

_redis_client: Optional[Redis] = None


def create_redis_client(url: str | None = None) -> Redis:
    return Redis.from_url(
        url or settings.redis_url,
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_connect_timeout,
    )


def get_redis_client() -> Redis:
    """
    Return a lazily-created Redis client shared by the process.

    The client only owns a connection pool; no session or counter state is
    ever cached in-process.
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = create_redis_client()
    return _redis_client


async def close_redis_client() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


async def bounded(
    awaitable: Awaitable[T], *, timeout: float, operation: str
) -> T:
    """
    Await a store call with an upper time bound.

    Timeouts and driver/socket errors are re-raised as BackingStoreUnavailable
    so callers only have one failure type to apply their policy to.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except STORE_ERRORS as exc:
        raise BackingStoreUnavailable(operation, exc) from exc


async def redis_set_json(
    redis: Redis, key: str, value: Any, *, ttl_seconds: int | None = None
) -> None:
    """
    Store a JSON-serialisable value under the given key with optional TTL.
    """
    data = json.dumps(value, ensure_ascii=False)
    if ttl_seconds is not None:
        await redis.set(key, data, ex=ttl_seconds)
    else:
        await redis.set(key, data)


async def redis_delete(redis: Redis, key: str) -> None:
    """
    Delete a key if it exists.
    """
    await redis.delete(key)


__all__ = [
    "STORE_ERRORS",
    "bounded",
    "close_redis_client",
    "create_redis_client",
    "get_redis_client",
    "redis_delete",
    "redis_set_json",
]
