import pytest
from fastapi.testclient import TestClient

from korean_tutor.dispatcher import Dispatcher
from korean_tutor.main import create_app
from korean_tutor.settings import settings


@pytest.fixture
def client(store, controllers, pipeline):
    app = create_app(Dispatcher(store, controllers, pipeline))
    return TestClient(app)


def test_info(client):
    response = client.get("/info")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["ready"] is True


def test_reading_flow_over_http(client):
    assert client.post("/events/level", json={"user_id": 7, "level": 3}).json()["result"] == {"level": 3}

    started = client.post("/events/mode", json={"user_id": 7, "mode": "reading"}).json()
    assert started["status"] == "ok"
    assert started["result"]["level"] == 3
    assert len(started["result"]["exercise"]["questions"]) == 5

    evaluated = client.post("/events/text", json={"user_id": 7, "text": "1. 커피"}).json()
    assert evaluated["status"] == "ok"
    assert evaluated["result"]["total_score"] == 7

    progress = client.get("/progress/7").json()
    assert progress["result"]["total"] == 7
    assert progress["result"]["bar"] == "⬜" * 10


def test_voice_and_reminder_over_http(client, pipeline):
    client.post("/events/mode", json={"user_id": "u1", "mode": "speaking"})

    reminder = client.post("/events/text", json={"user_id": "u1", "text": "typed"}).json()
    assert reminder["status"] == "reminder"

    voice = client.post("/events/voice", json={"user_id": "u1", "audio_url": "https://files.example.test/v.oga"}).json()
    assert voice["status"] == "ok"
    assert voice["result"]["transcript"] == pipeline.transcript

    session = client.get("/progress/u1/session").json()
    assert session["speaking"]["state"] == "idle"
    assert session["total_score"] == 6


def test_menu_commands_over_http(client):
    assert client.post("/events/change-mode", json={"user_id": "u1"}).json()["status"] == "needs_level"
    assert client.post("/events/change-level", json={"user_id": "u1"}).json()["status"] == "needs_level"
    reset = client.post("/events/reset", json={"user_id": "u1"}).json()
    assert reset["result"]["level"] is None


def test_next_over_http(client):
    client.post("/events/mode", json={"user_id": "u1", "mode": "listening"})
    client.post("/events/text", json={"user_id": "u1", "text": "answers"})
    nxt = client.post("/events/next", json={"user_id": "u1", "mode": "listening"}).json()
    assert nxt["status"] == "ok"
    assert nxt["result"]["audio"]


def test_invalid_requests(client):
    assert client.post("/events/level", json={"user_id": "u1", "level": 9}).status_code == 400
    assert client.post("/events/mode", json={"user_id": "u1", "mode": "writing"}).status_code == 422
    assert client.post("/events/next", json={"user_id": "u1", "mode": "free"}).status_code == 422
    assert client.post("/events/text", json={"user_id": "u1", "text": ""}).status_code == 422


def test_transport_token_is_enforced(client, monkeypatch):
    monkeypatch.setattr(settings, "transport_token", "s3cret")

    denied = client.post("/events/reset", json={"user_id": "u1"})
    wrong = client.get("/progress/u1", headers={"X-Transport-Token": "nope"})
    allowed = client.post("/events/reset", json={"user_id": "u1"}, headers={"X-Transport-Token": "s3cret"})

    assert denied.status_code == 401
    assert wrong.status_code == 401
    assert allowed.status_code == 200


def test_events_before_startup_are_unavailable():
    client = TestClient(create_app())
    assert client.post("/events/reset", json={"user_id": "u1"}).status_code == 503
