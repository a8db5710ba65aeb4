"""
Tests for the learner session HTTP endpoints.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api.app import create_app
from src.api.middleware.rate_limit import RateLimitMiddleware
from src.repository.memory import InMemoryRepository, InMemoryQuestionBank
from src.shared.exceptions import RepositoryError


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def client(repository, sample_questions):
    app = create_app(repository, InMemoryQuestionBank(sample_questions))
    with TestClient(app) as tc:
        yield tc


def open_session(client, learner_id="learner-1"):
    response = client.post("/sessions", json={"learner_id": learner_id, "module_id": "module-1"})
    assert response.status_code == 200
    return response.json()["key"]


def test_create_session_is_idempotent(client):
    key = open_session(client)
    again = client.post("/sessions", json={"learner_id": "learner-1", "module_id": "module-1"})

    assert key == "session:module-1:learner-1:none"
    assert again.json()["session"]["quiz_session_id"] == client.get(f"/sessions/{key}").json()["session"]["quiz_session_id"]


def test_question_and_answer_flow(client):
    key = open_session(client)

    question = client.get(f"/sessions/{key}/questions/next").json()
    assert question["completed"] is False
    assert question["question"]["id"] == "b1"
    assert "correct_answer" not in question["question"]

    answer = client.post(f"/sessions/{key}/answers", json={"answer": "a"}).json()
    assert answer["correct"] is True
    assert answer["transition"] == "hold"
    assert answer["current_difficulty"] == "basic"
    assert answer["performance_score"] == 1.0
    assert answer["explanation"] == "Explanation for b1"

    completed = client.post(f"/sessions/{key}/complete").json()
    assert completed["session"]["status"] == "completed"
    assert completed["feedback"][-1]["title"] == "Quiz Complete!"


def test_answer_without_question_is_a_conflict(client):
    key = open_session(client)
    response = client.post(f"/sessions/{key}/answers", json={"answer": "a"})
    assert response.status_code == 409


def test_help_requests_and_suggestion_lifecycle(client, repository):
    key = open_session(client)

    for _ in range(2):
        assert client.post(f"/sessions/{key}/signals/help", json={"topic": "mfa"}).json()["suggestions"] == []
    triggered = client.post(f"/sessions/{key}/signals/help", json={"topic": "mfa"}).json()["suggestions"]

    assert [s["type"] for s in triggered] == ["peer_support"]
    listed = client.get(f"/sessions/{key}/suggestions").json()["suggestions"]
    assert [s["id"] for s in listed] == [triggered[0]["id"]]

    accepted = client.post(f"/sessions/{key}/suggestions/{triggered[0]['id']}/accept")
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "accepted"

    missing = client.post(f"/sessions/{key}/suggestions/{triggered[0]['id']}/dismiss")
    assert missing.status_code == 404
    assert client.get(f"/sessions/{key}/suggestions").json()["suggestions"] == []


def test_telemetry_endpoints(client, repository):
    key = open_session(client)

    event = client.post(f"/sessions/{key}/events", json={"event_type": "play", "current_time": 0.0})
    assert event.status_code == 200
    assert event.json()["event_type"] == "play"

    explicit = client.post(f"/sessions/{key}/video-events",
                           json={"event_type": "pause", "current_time": 50.0, "duration": 100.0})
    assert [e["event_type"] for e in explicit.json()["events"]] == ["pause"]

    client.post(f"/sessions/{key}/video-events", json={"current_time": 10.0, "duration": 300.0})
    inferred = client.post(f"/sessions/{key}/video-events", json={"current_time": 100.0, "duration": 300.0})
    body = inferred.json()
    assert [e["event_type"] for e in body["events"]] == ["seek"]
    assert [s["type"] for s in body["suggestions"]] == ["reminder"]

    dropout = client.post(f"/sessions/{key}/dropout", json={"current_time": 30.0, "duration": 120.0})
    assert dropout.json()["metadata"]["completion_percentage"] == 25.0

    invalid = client.post(f"/sessions/{key}/events", json={"event_type": "teleport"})
    assert invalid.status_code == 422


def test_teardown_flushes_and_removes_session(client, repository):
    key = open_session(client)
    client.post(f"/sessions/{key}/events", json={"event_type": "play"})

    response = client.delete(f"/sessions/{key}")

    assert response.json() == {"key": key, "closed": True}
    assert len(repository._rows["behavior_events"]) == 1
    assert client.get(f"/sessions/{key}").status_code == 404
    assert client.delete(f"/sessions/{key}").status_code == 404


def test_unknown_session_is_not_found(client):
    assert client.get("/sessions/session:nope:nobody:none/questions/next").status_code == 404


def test_rate_limit_returns_429():
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, requests_per_minute=2)

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    with TestClient(app) as tc:
        headers = {"X-Learner-Id": "learner-1"}
        assert tc.get("/ping", headers=headers).status_code == 200
        assert tc.get("/ping", headers=headers).status_code == 200
        limited = tc.get("/ping", headers=headers)
        assert limited.status_code == 429
        assert "Retry-After" in limited.headers
        assert tc.get("/ping", headers={"X-Learner-Id": "learner-2"}).status_code == 200


def test_repository_failure_is_unavailable(client, repository):
    repository.find_active_session = AsyncMock(side_effect=RepositoryError("db down"))

    response = client.post("/sessions", json={"learner_id": "learner-9", "module_id": "module-1"})
    assert response.status_code == 503


def test_progress_is_saved_and_resumed(client):
    key = open_session(client)
    assert client.get(f"/sessions/{key}/progress").json() == {"progress": None}

    saved = client.post(f"/sessions/{key}/progress", json={"current_time": 45.0, "duration": 90.0}).json()
    assert saved["progress"]["completion_percentage"] == 50.0
    assert saved["progress"]["is_completed"] is False

    client.delete(f"/sessions/{key}")
    key = open_session(client)
    resumed = client.get(f"/sessions/{key}/progress").json()["progress"]
    assert resumed["current_time_seconds"] == 45.0
    assert client.get(f"/sessions/{key}").json()["session"]["video_progress"]["current_time_seconds"] == 45.0


def test_eviction_task_runs_for_app_lifetime(sample_questions):
    app = create_app(InMemoryRepository(), InMemoryQuestionBank(sample_questions))

    with TestClient(app):
        task = app.state.eviction_task
        assert not task.done()

    assert task.done()
    assert app.state.registry.running is False
