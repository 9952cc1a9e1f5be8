"""
Per-client fixed-window submission limiter backed by Redis.

Each client identity owns one integer counter `rate_limit:<identity>`.
One MULTI/EXEC transaction increments it, arms the window TTL only if none
is set yet (`EXPIRE ... NX`) and reads the TTL back, so concurrent first
requests can neither skip the limit nor leave the counter without expiry.

Being a fixed window, a burst straddling the boundary can admit up to twice
the nominal limit.

When Redis is unreachable the limiter fails open: the request is allowed and
the decision is flagged `degraded`.
"""

from __future__ import annotations

import time

from redis.asyncio import Redis

from formshield.errors import BackingStoreUnavailable
from formshield.logging_config import logger
from formshield.models import RateLimitDecision
from formshield.redis_client import bounded
from formshield.settings import Settings, settings
from formshield.storage.redis_service import DEFAULT_RATE_LIMIT_PREFIX, rate_limit_key


class RedisRateLimiter:
    """
    Redis fixed-window limiter (safe across multiple server instances).
    """

    def __init__(
        self,
        redis: Redis,
        *,
        max_requests: int = 100,
        window_seconds: int = 3600,
        key_prefix: str = DEFAULT_RATE_LIMIT_PREFIX,
        operation_timeout: float = 3.0,
        enabled: bool = True,
    ) -> None:
        self.redis = redis
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix
        self.operation_timeout = operation_timeout
        self.enabled = enabled

    @classmethod
    def from_settings(cls, redis: Redis, cfg: Settings = settings) -> "RedisRateLimiter":
        return cls(
            redis,
            max_requests=cfg.rate_limit_max_requests,
            window_seconds=cfg.rate_limit_window_seconds,
            key_prefix=cfg.rate_limit_key_prefix,
            operation_timeout=cfg.store_operation_timeout,
            enabled=cfg.rate_limit_enabled,
        )

    def _open_decision(self, *, degraded: bool) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=True,
            current_count=0,
            limit=self.max_requests,
            remaining=self.max_requests,
            reset_in_seconds=0,
            degraded=degraded,
        )

    async def _increment(self, key: str) -> tuple[int, int]:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, self.window_seconds, nx=True)
            pipe.ttl(key)
            count, _armed, ttl = await pipe.execute()
        return int(count), int(ttl)

    async def consume(self, identity: str) -> RateLimitDecision:
        """
        Count one submission attempt for `identity` and decide whether it may proceed.
        """
        if not self.enabled:
            return self._open_decision(degraded=False)

        key = rate_limit_key(identity, self.key_prefix)
        try:
            count, ttl = await bounded(
                self._increment(key),
                timeout=self.operation_timeout,
                operation="rate_limit",
            )
        except BackingStoreUnavailable:
            logger.warning(
                "Rate limit store unavailable; allowing %s in degraded mode",
                identity,
                exc_info=True,
            )
            return self._open_decision(degraded=True)

        # -1/-2 cannot follow EXPIRE NX in the same transaction; guard anyway.
        if ttl < 0:
            ttl = self.window_seconds

        allowed = count <= self.max_requests
        if not allowed:
            logger.warning(
                "Rate limit exceeded for %s (%d/%d), resets in %ds",
                identity,
                count,
                self.max_requests,
                ttl,
            )
        else:
            logger.debug(
                "Rate limit: %s = %d/%d", identity, count, self.max_requests
            )
        return RateLimitDecision(
            allowed=allowed,
            current_count=count,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_in_seconds=ttl,
        )

    async def get_limit_info(self, identity: str) -> RateLimitDecision:
        """
        Read-only view of a client's current window; does not count a request.
        """
        key = rate_limit_key(identity, self.key_prefix)

        async def _peek() -> tuple[str | None, int]:
            async with self.redis.pipeline(transaction=False) as pipe:
                pipe.get(key)
                pipe.ttl(key)
                raw, ttl = await pipe.execute()
            return raw, int(ttl)

        try:
            raw, ttl = await bounded(
                _peek(), timeout=self.operation_timeout, operation="rate_limit_info"
            )
        except BackingStoreUnavailable:
            logger.warning("Rate limit store unavailable while reading %s", identity, exc_info=True)
            return self._open_decision(degraded=True)

        count = int(raw) if raw is not None else 0
        return RateLimitDecision(
            allowed=count < self.max_requests,
            current_count=count,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_in_seconds=max(0, ttl),
        )

    async def reset(self, identity: str) -> bool:
        try:
            await bounded(
                self.redis.delete(rate_limit_key(identity, self.key_prefix)),
                timeout=self.operation_timeout,
                operation="rate_limit_reset",
            )
        except BackingStoreUnavailable:
            logger.error("Failed to reset rate limit for %s", identity, exc_info=True)
            return False
        logger.info("Rate limit reset for %s", identity)
        return True


def rate_limit_headers(
    decision: RateLimitDecision, *, now: float | None = None
) -> dict[str, str]:
    """
    X-RateLimit-* response headers for a decision; Retry-After when denied.
    """
    current = int(now if now is not None else time.time())
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(current + decision.reset_in_seconds),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(decision.reset_in_seconds)
    return headers


__all__ = ["RedisRateLimiter", "rate_limit_headers"]
