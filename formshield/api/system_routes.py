"""
Liveness and aggregate statistics:
- /health
- /api/stats
"""

from __future__ import annotations

import datetime as dt

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from formshield.deps import get_rate_limiter, get_session_manager, get_submission_store
from formshield.rate_limit.limiter import RedisRateLimiter
from formshield.services.submission_store import SqlSubmissionStore
from formshield.sessions.session_manager import SessionManager

router = APIRouter(tags=["system"])


class HealthResponse(BaseModel):
    status: str = "ok"


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse()


@router.get("/api/stats")
async def get_stats(
    manager: SessionManager = Depends(get_session_manager),
    limiter: RedisRateLimiter = Depends(get_rate_limiter),
    store: SqlSubmissionStore = Depends(get_submission_store),
    recent: int = Query(10, ge=0, le=100, description="Number of latest submissions to list"),
) -> dict:
    """
    Submission counters from the durable store, the latest submissions
    (without contact or client details), the number of live sessions and
    the active rate-limit configuration.
    """
    submissions = store.get_stats()
    latest = store.recent(recent) if recent else []
    sessions = await manager.get_stats()
    return {
        "success": True,
        "data": {
            "submissions": {
                "total": submissions["total"],
                "pending": submissions["pending"],
                "processed": submissions["processed"],
                "blocked": submissions["blocked"],
                "spamCount": submissions["spam_count"],
                "last24Hours": submissions["last_24_hours"],
            },
            "recentSubmissions": [
                {
                    "id": row.id,
                    "formId": row.form_id,
                    "status": row.status,
                    "isSpam": row.is_spam,
                    "createdAt": row.created_at.isoformat() if row.created_at else None,
                }
                for row in latest
            ],
            "sessions": {
                "active": sessions["active_sessions"],
                "ttlSeconds": manager.ttl_seconds,
                "maxAttempts": manager.max_attempts,
            },
            "rateLimit": {
                "enabled": limiter.enabled,
                "maxRequests": limiter.max_requests,
                "windowSeconds": limiter.window_seconds,
            },
        },
        "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
    }


__all__ = ["router"]
