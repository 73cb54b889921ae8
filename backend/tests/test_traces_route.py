"""
POST /traces: request validation, auth, limits and database failures.

The database is replaced by a dependency override and a patched
submit_batch; no engine is created.
"""

import base64

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from db import get_engine
from main import app
from routes import traces

from conftest import TS_NS, peer_id_bytes


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _join(topic="t", peer=1, ts=TS_NS):
    return {"type": 9, "peerID": _b64(peer_id_bytes(peer)), "timestamp": ts, "join": {"topic": topic}}


@pytest.fixture
def submitted(monkeypatch):
    calls = []

    def fake_submit(engine, batch):
        calls.append(batch)
        return [sql.count("),(") + 1 for sql in (s.sql for s in batch.statements)]

    monkeypatch.setattr(traces, "submit_batch", fake_submit)
    app.dependency_overrides[get_engine] = lambda: object()
    yield calls
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_ingest_reports_per_type(client, submitted):
    body = [
        _join("a"),
        _join("b", peer=2),
        _join("c", ts=None),
        {"type": 6, "timestamp": TS_NS},
    ]

    r = client.post("/traces", json=body)

    assert r.status_code == 200
    data = r.json()
    assert data["received"] == 4
    assert data["unsupported"] == 1
    assert data["statements"] == 1
    assert data["rows_written"] == 2
    assert data["reports"] == [
        {
            "event_type": "join",
            "attempted": 3,
            "inserted": 2,
            "dropped": 1,
            "reasons": {"missing_timestamp": 1},
        }
    ]
    [batch] = submitted
    assert data["run_id"] == batch.run_id


def test_empty_request_is_accepted(client, submitted):
    r = client.post("/traces", json=[])
    assert r.status_code == 200
    assert r.json()["statements"] == 0


def test_malformed_body_is_422(client, submitted):
    r = client.post("/traces", json=[{"type": 9, "peerID": "not base64!", "join": {}}])
    assert r.status_code == 422
    assert submitted == []


def test_too_many_events_is_413(client, submitted, tmp_path, monkeypatch):
    cfg = tmp_path / "tracestore.yaml"
    cfg.write_text("ingest:\n  max_events_per_request: 2\n", encoding="utf-8")
    monkeypatch.setenv("TRACESTORE_CONFIG", str(cfg))

    r = client.post("/traces", json=[_join(), _join(), _join()])

    assert r.status_code == 413
    assert submitted == []


def test_database_error_is_503(client, monkeypatch):
    def failing_submit(engine, batch):
        raise OperationalError("INSERT", {}, Exception("server closed the connection"))

    monkeypatch.setattr(traces, "submit_batch", failing_submit)
    app.dependency_overrides[get_engine] = lambda: object()
    try:
        r = client.post("/traces", json=[_join()])
    finally:
        app.dependency_overrides.clear()

    assert r.status_code == 503
    assert r.json()["detail"] == "database error: OperationalError"


def test_api_key_required_when_enabled(client, submitted, monkeypatch):
    monkeypatch.setenv("TRACESTORE_AUTH_MODE", "api_key")
    monkeypatch.setenv("TRACESTORE_API_KEYS", "k1, k2")

    assert client.post("/traces", json=[_join()]).status_code == 401
    assert client.post("/traces", json=[_join()], headers={"X-API-Key": "nope"}).status_code == 401
    assert client.post("/traces", json=[_join()], headers={"X-API-Key": "k2"}).status_code == 200
    # health stays open
    assert client.get("/health").status_code == 200


def test_oversized_body_is_rejected_before_parsing(client, submitted, tmp_path, monkeypatch):
    cfg = tmp_path / "tracestore.yaml"
    cfg.write_text("ingest:\n  max_body_bytes: 64\n", encoding="utf-8")
    monkeypatch.setenv("TRACESTORE_CONFIG", str(cfg))

    # Given: a body over the byte limit that is not even valid JSON
    r = client.post(
        "/traces",
        content=b"[" + b" " * 100 + b"not json",
        headers={"Content-Type": "application/json"},
    )

    # Then: 413, not 422, so it never reached the parser
    assert r.status_code == 413
    assert submitted == []

    # small bodies still go through
    assert client.post("/traces", json=[]).status_code == 200


def test_body_without_content_length_is_refused(client, submitted):
    r = client.post(
        "/traces",
        content=iter([b"[", b"]"]),
        headers={"Content-Type": "application/json"},
    )
    assert r.status_code == 411
    assert submitted == []
