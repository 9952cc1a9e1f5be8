import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from formshield.fields import SubmittedFields
from formshield.models import Classification, ClassifiedSubmission, SessionValidation
from formshield.rate_limit.limiter import RedisRateLimiter
from formshield.services.submission_service import ACCEPTED_MESSAGE, SubmissionService
from formshield.services.submission_store import SubmissionStoreError
from formshield.sessions.session_manager import SessionManager
from tests.utils import InMemoryRedis

CLIENT = "203.0.113.7"


class RecordingSink:
    def __init__(self, *, fail: bool = False) -> None:
        self.records: list[ClassifiedSubmission] = []
        self.fail = fail

    def save(self, record: ClassifiedSubmission) -> int:
        if self.fail:
            raise SubmissionStoreError("database is down")
        self.records.append(record)
        return len(self.records)


def _build(redis: InMemoryRedis, *, sink=None, max_requests: int = 100, **kwargs):
    sessions = SessionManager(redis, clock=redis.time)
    limiter = RedisRateLimiter(redis, max_requests=max_requests, window_seconds=3600)
    sink = sink if sink is not None else RecordingSink()
    return SubmissionService(sessions, limiter, sink, **kwargs), sessions, sink


def _fields(record, *, decoy: str = "", **extra) -> SubmittedFields:
    payload = {
        "_sessionId": record.session_id,
        "formId": "contact",
        "email": "visitor@example.com",
        "message": "Hello",
        record.decoy_field_name: decoy,
    }
    payload.update(extra)
    return SubmittedFields.from_payload(payload)


@pytest.mark.asyncio
async def test_legitimate_submission_is_stored_and_consumes_session():
    redis = InMemoryRedis()
    service, sessions, sink = _build(redis)
    record = await sessions.create_session()

    outcome = await service.handle_submission(
        _fields(record), record.session_id, CLIENT, "Mozilla/5.0"
    )

    assert outcome.accepted is True
    assert outcome.classification is Classification.LEGITIMATE
    assert outcome.reason == ACCEPTED_MESSAGE
    assert outcome.submission_id == 1
    assert outcome.rate_limit.remaining == 99
    stored = sink.records[0]
    assert stored.is_spam is False
    assert stored.status == "pending"
    assert stored.email == "visitor@example.com"
    assert stored.honeypot_field == record.decoy_field_name

    loaded = await sessions.get_session(record.session_id)
    assert loaded.used is True
    assert loaded.client_ip == CLIENT
    assert loaded.client_user_agent == "Mozilla/5.0"


@pytest.mark.asyncio
async def test_spam_is_reported_as_accepted_but_stored_as_spam():
    redis = InMemoryRedis()
    service, sessions, sink = _build(redis)
    record = await sessions.create_session()

    outcome = await service.handle_submission(
        _fields(record, decoy="http://spam.example"), record.session_id, CLIENT
    )

    assert outcome.accepted is True
    assert outcome.classification is Classification.SPAM
    assert outcome.reason == ACCEPTED_MESSAGE
    stored = sink.records[0]
    assert stored.is_spam is True
    assert stored.status == "blocked"
    assert stored.metadata["detected_fields"] == [record.decoy_field_name]
    assert (await sessions.get_session(record.session_id)).used is True


@pytest.mark.asyncio
async def test_stale_decoy_fill_is_spam_even_with_invalid_business_fields():
    redis = InMemoryRedis()
    service, sessions, sink = _build(redis)
    record = await sessions.create_session()
    fields = _fields(record, email="", **{"_hp_0badc0de": "x"})

    outcome = await service.handle_submission(fields, record.session_id, CLIENT)

    assert outcome.classification is Classification.SPAM
    assert sink.records[0].email == "spam@example.com"


@pytest.mark.asyncio
async def test_spam_sink_failure_is_hidden_from_submitter():
    redis = InMemoryRedis()
    service, sessions, _ = _build(redis, sink=RecordingSink(fail=True))
    record = await sessions.create_session()

    outcome = await service.handle_submission(
        _fields(record, decoy="x"), record.session_id, CLIENT
    )

    assert outcome.accepted is True
    assert outcome.submission_id is None


@pytest.mark.asyncio
async def test_honeypot_can_be_disabled():
    redis = InMemoryRedis()
    service, sessions, sink = _build(redis, honeypot_enabled=False)
    record = await sessions.create_session()

    outcome = await service.handle_submission(
        _fields(record, decoy="x"), record.session_id, CLIENT
    )

    assert outcome.classification is Classification.LEGITIMATE
    assert sink.records[0].is_spam is False


@pytest.mark.asyncio
async def test_replayed_session_is_rejected_as_used():
    redis = InMemoryRedis()
    service, sessions, sink = _build(redis)
    record = await sessions.create_session()

    first = await service.handle_submission(_fields(record), record.session_id, CLIENT)
    second = await service.handle_submission(_fields(record), record.session_id, CLIENT)

    assert first.classification is Classification.LEGITIMATE
    assert second.accepted is False
    assert second.classification is Classification.SESSION_INVALID
    assert second.reason == "SESSION_USED"
    assert second.errors[0]["field"] == "_sessionId"
    assert len(sink.records) == 1


@pytest.mark.asyncio
async def test_missing_and_unknown_sessions():
    redis = InMemoryRedis()
    service, sessions, _ = _build(redis)
    record = await sessions.create_session()
    fields = _fields(record)

    missing = await service.handle_submission(fields, None, CLIENT)
    unknown = await service.handle_submission(fields, "f" * 32, CLIENT)

    assert missing.reason == "SESSION_REQUIRED"
    assert unknown.reason == "SESSION_INVALID"


@pytest.mark.asyncio
async def test_validation_failure_counts_an_attempt_until_max_attempts():
    redis = InMemoryRedis()
    service, sessions, sink = _build(redis)
    record = await sessions.create_session()
    bad = _fields(record, email="not-an-email")

    for _ in range(5):
        outcome = await service.handle_submission(bad, record.session_id, CLIENT)
        assert outcome.classification is Classification.VALIDATION_FAILED
        assert {e["field"] for e in outcome.errors} == {"email"}

    blocked = await service.handle_submission(_fields(record), record.session_id, CLIENT)
    assert blocked.classification is Classification.SESSION_INVALID
    assert blocked.reason == "MAX_ATTEMPTS"
    assert sink.records == []
    assert (await sessions.get_session(record.session_id)).used is False


@pytest.mark.asyncio
async def test_rate_limited_submission_does_not_touch_session():
    redis = InMemoryRedis()
    service, sessions, sink = _build(redis, max_requests=100)
    record = await sessions.create_session()
    bad = _fields(record, email="nope")

    outcomes = [
        await service.handle_submission(bad, "0" * 32, CLIENT) for _ in range(100)
    ]
    assert all(o.classification is Classification.SESSION_INVALID for o in outcomes)

    limited = await service.handle_submission(_fields(record), record.session_id, CLIENT)

    assert limited.accepted is False
    assert limited.classification is Classification.RATE_LIMITED
    assert limited.rate_limit.allowed is False
    assert limited.rate_limit.reset_in_seconds > 0
    loaded = await sessions.get_session(record.session_id)
    assert loaded.attempts == 0
    assert loaded.used is False
    assert sink.records == []


@pytest.mark.asyncio
async def test_legitimate_sink_failure_propagates_after_consuming_session():
    redis = InMemoryRedis()
    service, sessions, _ = _build(redis, sink=RecordingSink(fail=True))
    record = await sessions.create_session()

    with pytest.raises(SubmissionStoreError):
        await service.handle_submission(_fields(record), record.session_id, CLIENT)

    assert (await sessions.get_session(record.session_id)).used is True


@pytest.mark.asyncio
async def test_store_outage_lets_rate_limit_through_but_rejects_session():
    redis = InMemoryRedis()
    service, sessions, sink = _build(redis)
    record = await sessions.create_session()
    redis.fail_with = RedisConnectionError("connection refused")

    outcome = await service.handle_submission(_fields(record), record.session_id, CLIENT)

    assert outcome.classification is Classification.SESSION_INVALID
    assert outcome.reason == "SESSION_INVALID"
    assert outcome.rate_limit.degraded is True
    assert sink.records == []


@pytest.mark.asyncio
async def test_precomputed_rate_limit_decision_is_not_consumed_again():
    redis = InMemoryRedis()
    service, sessions, _ = _build(redis, max_requests=5)
    record = await sessions.create_session()
    decision = await service.rate_limiter.consume(CLIENT)

    outcome = await service.handle_submission(
        _fields(record), record.session_id, CLIENT, rate_limit=decision
    )

    assert outcome.classification is Classification.LEGITIMATE
    assert outcome.rate_limit == decision
    assert await redis.get(f"rate_limit:{CLIENT}") == "1"


@pytest.mark.asyncio
async def test_denied_precomputed_decision_short_circuits():
    redis = InMemoryRedis()
    service, sessions, sink = _build(redis, max_requests=1)
    record = await sessions.create_session()
    await service.rate_limiter.consume(CLIENT)
    denied = await service.rate_limiter.consume(CLIENT)

    outcome = await service.handle_submission(
        _fields(record), record.session_id, CLIENT, rate_limit=denied
    )

    assert outcome.classification is Classification.RATE_LIMITED
    assert sink.records == []
    assert (await sessions.get_session(record.session_id)).attempts == 0


@pytest.mark.asyncio
async def test_session_vanishing_between_read_and_check_is_invalid(monkeypatch):
    redis = InMemoryRedis()
    service, sessions, sink = _build(redis)
    record = await sessions.create_session()

    async def _gone(session_id):
        return None

    monkeypatch.setattr(sessions, "get_session", _gone)
    monkeypatch.setattr(
        sessions, "validate", lambda session_id, record: SessionValidation(valid=True)
    )

    outcome = await service.handle_submission(_fields(record), record.session_id, CLIENT)

    assert outcome.classification is Classification.SESSION_INVALID
    assert outcome.reason == "SESSION_INVALID"
    assert sink.records == []
