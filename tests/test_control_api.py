"""
Tests for the call control API.

Verifies:
- GET /health
- GET /calls/{case_id} (current call document)
- POST /calls/{case_id}/hangup (control events, stable error surface)
- GET /calls/{case_id}/events (query stored events)
"""
import asyncio

import pytest
from fastapi.testclient import TestClient

from call_signaling import control_api
from call_signaling.config import SignalingConfig
from call_signaling.coordinator import CallCoordinator
from call_signaling.events import call_emitter
from call_signaling.server import app
from call_signaling.session import call_document_path
from call_signaling.store import SERVER_TIMESTAMP, InMemoryDocumentStore

from conftest import FakeCapture, FakeNetwork


@pytest.fixture
def coordinator(monkeypatch):
    store = InMemoryDocumentStore()
    coordinator = CallCoordinator(store, FakeCapture(), FakeNetwork().factory, config=SignalingConfig())
    monkeypatch.setattr(control_api, "_coordinator", coordinator)
    return coordinator


@pytest.fixture
def client(coordinator):
    return TestClient(app)


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"


def test_get_call(client, coordinator):
    asyncio.run(coordinator.store.set_document(call_document_path("case-1"), {
        "status": "calling",
        "callType": "audio",
        "callerName": "Doctor",
        "offer": {"type": "offer", "sdp": "v=0"},
        "createdAt": SERVER_TIMESTAMP,
    }))

    res = client.get("/calls/case-1")
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "calling"
    assert body["call_type"] == "audio"
    assert body["caller_name"] == "Doctor"
    assert body["has_offer"] is True
    assert body["has_answer"] is False
    assert body["created_at"] is not None
    assert body["local_phase"] is None


def test_get_call_not_found(client):
    res = client.get("/calls/unknown")
    assert res.status_code == 404


def test_hangup_resets_document_and_emits_control_events(client, coordinator, capsys):
    asyncio.run(coordinator.store.set_document(call_document_path("case-1"), {"status": "calling"}))

    res = client.post("/calls/case-1/hangup")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}
    assert asyncio.run(coordinator.store.get_document(call_document_path("case-1"))) == {"status": "ended"}

    out = capsys.readouterr().out
    assert "control.command_received" in out
    assert "control.command_applied" in out


def test_hangup_returns_stable_error_on_failure(client, monkeypatch):
    async def _fake_force_end(_case_id: str) -> None:
        raise RuntimeError("boom")

    monkeypatch.setattr(control_api, "_force_end", _fake_force_end)

    res = client.post("/calls/case-1/hangup")
    assert res.status_code == 502
    assert res.json()["detail"] == "hangup_failed"


def test_hangup_unavailable_without_coordinator(monkeypatch):
    monkeypatch.setattr(control_api, "_coordinator", None)
    res = TestClient(app).post("/calls/case-1/hangup")
    assert res.status_code == 503


def test_call_events(client):
    call_emitter.call_started("case-1", role="caller", call_type="video")
    call_emitter.call_ended("case-1", reason="hangup", role="caller")
    call_emitter.call_started("case-2", role="caller", call_type="audio")

    res = client.get("/calls/case-1/events")
    assert res.status_code == 200
    body = res.json()
    assert body["count"] == 2
    assert [e["event_type"] for e in body["events"]] == ["call.started", "call.ended"]

    res = client.get("/calls/case-1/events", params={"event_type": "call.ended"})
    assert res.json()["events"][0]["reason"] == "hangup"

    res = client.get("/calls/case-1/events", params={"limit": 1})
    assert res.json()["count"] == 1


def test_call_events_time_filters(client):
    call_emitter.call_started("case-1", role="caller", call_type="video")

    res = client.get("/calls/case-1/events", params={"since": "2000-01-01T00:00:00Z"})
    assert res.json()["count"] == 1

    res = client.get("/calls/case-1/events", params={"until": "2000-01-01T00:00:00"})
    assert res.json()["count"] == 0


def test_call_events_invalid_timestamp(client):
    res = client.get("/calls/case-1/events", params={"since": "yesterday"})
    assert res.status_code == 400


def test_call_events_date_only_timestamps(client):
    call_emitter.call_started("case-1", role="caller", call_type="video")

    res = client.get("/calls/case-1/events", params={"since": "2000-01-01"})
    assert res.status_code == 200
    assert res.json()["count"] == 1

    res = client.get("/calls/case-1/events", params={"until": "2000-01-01"})
    assert res.status_code == 200
    assert res.json()["count"] == 0
