from __future__ import annotations

import datetime as dt

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from formshield.deps import get_session_manager
from formshield.errors import BackingStoreUnavailable, not_found, service_unavailable
from formshield.logging_config import logger
from formshield.sessions.session_manager import SessionManager

router = APIRouter(prefix="/api/session", tags=["sessions"])


def _timestamp() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


def _iso(epoch: float | None) -> str | None:
    if epoch is None:
        return None
    return dt.datetime.fromtimestamp(epoch, tz=dt.timezone.utc).isoformat()


@router.get("")
async def create_session_endpoint(
    manager: SessionManager = Depends(get_session_manager),
) -> dict:
    """
    Issue a form token and the decoy field name the page must embed.
    """
    try:
        record = await manager.create_session()
    except BackingStoreUnavailable:
        raise service_unavailable("Could not create a session, please try again later")
    return {
        "success": True,
        "data": {
            "sessionId": record.session_id,
            "honeypotField": record.decoy_field_name,
            "expiresIn": manager.ttl_seconds,
            "createdAt": _iso(record.created_at),
        },
        "message": "Session created",
        "timestamp": _timestamp(),
    }


@router.get("/{session_id}")
async def get_session_endpoint(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> dict:
    """
    Return session information without client address or User-Agent.
    """
    record = await manager.get_session(session_id)
    if record is None:
        raise not_found("Session not found or expired")
    return {
        "success": True,
        "data": {
            "sessionId": record.session_id,
            "honeypotField": record.decoy_field_name,
            "createdAt": _iso(record.created_at),
            "lastAccess": _iso(record.last_access_at),
            "used": record.used,
            "attempts": record.attempts,
            "expiresIn": manager.expires_in(record),
        },
        "timestamp": _timestamp(),
    }


@router.get("/{session_id}/validate")
async def validate_session_endpoint(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    record = await manager.get_session(session_id)
    validation = manager.validate(session_id, record)
    data: dict = {
        "sessionId": session_id,
        "isValid": validation.valid,
        "isUsed": bool(record and record.used),
        "attempts": record.attempts if record else 0,
        "honeypotField": record.decoy_field_name if record else "",
    }
    if not validation.valid:
        data["errorCode"] = validation.code
        logger.debug("Session %s failed validation: %s", session_id, validation.code)
    return JSONResponse(
        status_code=200 if validation.valid else 400,
        content={
            "success": validation.valid,
            "data": data,
            "message": "Session is valid" if validation.valid else validation.message,
            "timestamp": _timestamp(),
        },
    )


@router.delete("/{session_id}")
async def delete_session_endpoint(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> dict:
    await manager.delete_session(session_id)
    return {"success": True, "message": "Session deleted", "timestamp": _timestamp()}


__all__ = ["router"]
