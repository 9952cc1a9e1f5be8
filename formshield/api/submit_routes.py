from __future__ import annotations

import datetime as dt
import json
import time
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from formshield.deps import get_client_ip, get_submission_service
from formshield.errors import bad_request, internal_error
from formshield.fields import FieldLimitExceeded, SubmittedFields
from formshield.logging_config import logger
from formshield.models import Classification, SubmissionOutcome
from formshield.rate_limit.limiter import rate_limit_headers
from formshield.schemas.submission import SESSION_ID_FIELD
from formshield.services.submission_service import SubmissionService
from formshield.services.submission_store import SubmissionStoreError
from formshield.settings import settings

router = APIRouter(prefix="/api", tags=["submissions"])

RATE_LIMIT_MESSAGE = "Too many requests from your address. Please try again later."
VALIDATION_MESSAGE = "Submitted data failed validation"


async def _read_payload(request: Request, headers: dict[str, str]) -> dict[str, Any]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise bad_request("Request body is not valid JSON", headers=headers)
        if not isinstance(body, dict):
            raise bad_request("Request body must be a JSON object", headers=headers)
        return body
    if content_type.startswith(
        ("application/x-www-form-urlencoded", "multipart/form-data")
    ):
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}
    raise bad_request(
        "Unsupported content type; send JSON or form data", headers=headers
    )


def _response_for(outcome: SubmissionOutcome, elapsed_ms: float) -> JSONResponse:
    timestamp = dt.datetime.now(dt.timezone.utc).isoformat()
    headers = rate_limit_headers(outcome.rate_limit) if outcome.rate_limit else {}

    if outcome.accepted:
        # Spam and legitimate submissions get the same answer.
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            headers=headers,
            content={
                "success": True,
                "message": outcome.reason,
                "submissionId": outcome.submission_id,
                "processingTime": f"{elapsed_ms:.0f}ms",
                "timestamp": timestamp,
            },
        )

    if outcome.classification is Classification.RATE_LIMITED:
        decision = outcome.rate_limit
        reset_in = decision.reset_in_seconds if decision else 0
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            headers=headers,
            content={
                "success": False,
                "message": RATE_LIMIT_MESSAGE,
                "limit": decision.limit if decision else settings.rate_limit_max_requests,
                "remaining": 0,
                "resetIn": reset_in,
                "timestamp": timestamp,
            },
        )

    message = (
        outcome.errors[0]["message"]
        if outcome.classification is Classification.SESSION_INVALID and outcome.errors
        else VALIDATION_MESSAGE
    )
    content: dict[str, Any] = {
        "success": False,
        "message": message,
        "errors": outcome.errors,
        "processingTime": f"{elapsed_ms:.0f}ms",
        "timestamp": timestamp,
    }
    if outcome.classification is Classification.SESSION_INVALID:
        content["errorCode"] = outcome.reason
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST, headers=headers, content=content
    )


@router.post("/submit")
async def submit_form(
    request: Request,
    service: SubmissionService = Depends(get_submission_service),
) -> JSONResponse:
    """
    Accept a form post (JSON or form-encoded) carrying `_sessionId` and the
    page's decoy field.
    """
    started = time.perf_counter()
    client_ip = get_client_ip(request)
    user_agent = request.headers.get("user-agent", "")

    # Count the attempt before touching the body so malformed posts spend budget too.
    decision = await service.rate_limiter.consume(client_ip)
    if not decision.allowed:
        outcome = SubmissionOutcome(
            accepted=False,
            classification=Classification.RATE_LIMITED,
            reason="rate_limited",
            rate_limit=decision,
        )
        return _response_for(outcome, (time.perf_counter() - started) * 1000)
    headers = rate_limit_headers(decision)

    payload = await _read_payload(request, headers)
    try:
        fields = SubmittedFields.from_payload(
            payload,
            max_fields=settings.max_fields,
            max_name_length=settings.max_field_name_length,
            max_value_length=settings.max_field_value_length,
        )
    except FieldLimitExceeded as exc:
        logger.info("Rejected oversized submission from %s: %s", client_ip, exc)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            headers=headers,
            content={
                "success": False,
                "message": VALIDATION_MESSAGE,
                "errors": [{"field": exc.field, "message": str(exc)}],
                "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
            },
        )

    try:
        outcome = await service.handle_submission(
            fields,
            fields.get(SESSION_ID_FIELD) or None,
            client_ip,
            user_agent,
            rate_limit=decision,
        )
    except SubmissionStoreError:
        raise internal_error("Could not save your submission, please try again later")
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        "Submission from %s -> %s (%.0fms)",
        client_ip,
        outcome.classification.value,
        elapsed_ms,
    )
    return _response_for(outcome, elapsed_ms)


__all__ = ["router"]
