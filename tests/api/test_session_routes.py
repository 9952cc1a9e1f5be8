from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from formshield.routes import create_app
from tests.utils import install_inmemory_stores


def _client():
    app = create_app()
    _, redis = install_inmemory_stores(app)
    return TestClient(app), redis


def test_create_session_returns_token_and_decoy_name():
    client, _ = _client()

    resp = client.get("/api/session")

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    data = body["data"]
    assert len(data["sessionId"]) == 32
    assert data["honeypotField"] == f"_hp_{data['sessionId']}"
    assert data["expiresIn"] == 600
    assert data["createdAt"]


def test_create_session_fails_closed_when_store_is_down():
    client, redis = _client()
    redis.fail_with = RedisConnectionError("connection refused")

    resp = client.get("/api/session")

    assert resp.status_code == 503
    assert resp.json()["detail"]["error"] == "service_unavailable"


def test_session_info_hides_client_details():
    client, _ = _client()
    session_id = client.get("/api/session").json()["data"]["sessionId"]

    resp = client.get(f"/api/session/{session_id}")

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["sessionId"] == session_id
    assert data["used"] is False
    assert data["attempts"] == 0
    assert "clientIp" not in data
    assert "client_ip" not in data
    assert "clientUserAgent" not in data


def test_unknown_session_is_404():
    client, _ = _client()

    assert client.get("/api/session/" + "0" * 32).status_code == 404
    assert client.get("/api/session/not-a-session").status_code == 404


def test_validate_session():
    client, _ = _client()
    session_id = client.get("/api/session").json()["data"]["sessionId"]

    ok = client.get(f"/api/session/{session_id}/validate")
    assert ok.status_code == 200
    assert ok.json()["data"]["isValid"] is True
    assert ok.json()["data"]["isUsed"] is False

    bad = client.get("/api/session/" + "0" * 32 + "/validate")
    assert bad.status_code == 400
    assert bad.json()["data"]["isValid"] is False
    assert bad.json()["data"]["errorCode"] == "SESSION_INVALID"


def test_delete_session_is_idempotent():
    client, _ = _client()
    session_id = client.get("/api/session").json()["data"]["sessionId"]

    assert client.delete(f"/api/session/{session_id}").status_code == 200
    assert client.delete(f"/api/session/{session_id}").status_code == 200
    assert client.get(f"/api/session/{session_id}").status_code == 404
