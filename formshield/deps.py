from collections.abc import Generator

from fastapi import Depends, Request
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from .db import get_db_session
from .rate_limit.limiter import RedisRateLimiter
from .redis_client import get_redis_client
from .services.submission_service import SubmissionService
from .services.submission_store import SqlSubmissionStore
from .sessions.session_manager import SessionManager
from .settings import settings


async def get_redis() -> Redis:
    """
    FastAPI dependency that provides the shared Redis client.

    Tests override this dependency with an in-memory fake.
    """
    return get_redis_client()


def get_db() -> Generator[Session, None, None]:
    yield from get_db_session()


def get_session_manager(redis: Redis = Depends(get_redis)) -> SessionManager:
    return SessionManager.from_settings(redis, settings)


def get_rate_limiter(redis: Redis = Depends(get_redis)) -> RedisRateLimiter:
    return RedisRateLimiter.from_settings(redis, settings)


def get_submission_store(db: Session = Depends(get_db)) -> SqlSubmissionStore:
    return SqlSubmissionStore(db)


def get_submission_service(
    session_manager: SessionManager = Depends(get_session_manager),
    rate_limiter: RedisRateLimiter = Depends(get_rate_limiter),
    store: SqlSubmissionStore = Depends(get_submission_store),
) -> SubmissionService:
    return SubmissionService(
        session_manager,
        rate_limiter,
        store,
        honeypot_enabled=settings.honeypot_enabled,
        honeypot_prefix=settings.honeypot_prefix,
    )


def get_client_ip(request: Request) -> str:
    """
    Client address used as the rate-limit identity.

    Proxy headers are only honoured when TRUST_PROXY is enabled:
    1. X-Forwarded-For (first hop)
    2. X-Real-IP
    3. request.client.host
    """
    if settings.trust_proxy:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"
