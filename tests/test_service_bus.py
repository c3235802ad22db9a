"""
Service Bus Tests
-----------------
Tests for the internal FastAPI session API.

Sessions run on an inline executor so each request finishes its run
before the response is returned.
"""

from concurrent.futures import Executor, Future
import pytest
from pathlib import Path
import sys

from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent))

from execution.actions import Action
from execution.stubs import ScriptedMethod
from infra.service_bus import ServiceBus
from oracle.interfaces import Decision
from oracle.scripted import ScriptedOracle


class InlineExecutor(Executor):
    """Runs submitted work immediately in the calling thread."""

    def __init__(self):
        self.shutdown_called = False

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future

    def shutdown(self, wait=True, **kwargs):
        self.shutdown_called = True


@pytest.fixture
def build_client(make_router, make_orchestrator):
    def _build(decisions, orchestrator=True, **kwargs):
        router = make_router([ScriptedMethod("shell", 900, {"tap"})])
        bus = ServiceBus(
            make_orchestrator(router, ScriptedOracle(decisions)) if orchestrator else None,
            executor=InlineExecutor(),
            **kwargs
        )
        return TestClient(bus.create_app()), bus
    return _build


class TestSystemEndpoints:

    def test_health(self, build_client):
        client, _ = build_client([])

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["sessions"] == 0

    def test_methods(self, build_client):
        client, _ = build_client([])

        response = client.get("/methods")

        assert response.json() == [
            {"id": "shell", "priority": 900, "supported_actions": ["tap"], "available": True},
        ]

    def test_methods_without_orchestrator(self, build_client):
        client, _ = build_client([], orchestrator=False)

        assert client.get("/methods").status_code == 503


class TestSessionEndpoints:

    def test_start_runs_to_completion(self, build_client):
        client, _ = build_client([
            Decision("Tapping", [Action.create("tap", x=1, y=2)]),
            Decision("All done."),
        ])

        response = client.post("/sessions", json={"goal": "tap it", "session_id": "s1"})
        assert response.status_code == 202

        snapshot = client.get("/sessions/s1").json()
        assert snapshot["state"] == {"state": "completed", "result": "All done."}
        assert snapshot["goal"] == "tap it"

    def test_empty_goal_rejected(self, build_client):
        client, _ = build_client([])

        assert client.post("/sessions", json={"goal": ""}).status_code == 422

    def test_duplicate_session_id(self, build_client):
        client, _ = build_client([Decision("Done.")])
        client.post("/sessions", json={"goal": "a", "session_id": "s1"})

        response = client.post("/sessions", json={"goal": "b", "session_id": "s1"})

        assert response.status_code == 409

    def test_unknown_session(self, build_client):
        client, _ = build_client([])

        assert client.get("/sessions/nope").status_code == 404
        assert client.post("/sessions/nope/cancel").status_code == 404

    def test_clarify_and_resume(self, build_client):
        client, _ = build_client([Decision("Which one should I open?"), Decision("Opened it.")])
        client.post("/sessions", json={"goal": "open it", "session_id": "s1"})

        waiting = client.get("/sessions/s1").json()
        assert waiting["state"]["state"] == "needs_clarification"
        assert waiting["state"]["question"] == "Which one should I open?"

        response = client.post("/sessions/s1/resume", json={"input": "The first"})
        assert response.status_code == 202
        assert client.get("/sessions/s1").json()["state"]["state"] == "completed"

    def test_resume_when_not_waiting(self, build_client):
        client, _ = build_client([Decision("Done.")])
        client.post("/sessions", json={"goal": "a", "session_id": "s1"})

        response = client.post("/sessions/s1/resume", json={"input": "hello"})

        assert response.status_code == 409

    def test_cancel(self, build_client):
        client, _ = build_client([Decision("Which one?")])
        client.post("/sessions", json={"goal": "a", "session_id": "s1"})

        response = client.post("/sessions/s1/cancel")

        assert response.status_code == 200
        assert response.json()["state"] == {"state": "idle"}
        assert response.json()["history_length"] == 0

    def test_events_are_drained(self, build_client):
        client, _ = build_client([Decision("Done.")])
        client.post("/sessions", json={"goal": "a", "session_id": "s1"})

        events = client.get("/sessions/s1/events").json()

        assert events[-1]["kind"] == "completed"
        assert client.get("/sessions/s1/events").json() == []

    def test_events_max_items(self, build_client):
        client, _ = build_client([Decision("Done.")])
        client.post("/sessions", json={"goal": "a", "session_id": "s1"})

        assert len(client.get("/sessions/s1/events", params={"max_items": 1}).json()) == 1


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestSessionCleanup:

    def test_delete_session(self, build_client):
        client, _ = build_client([Decision("Done.")])
        client.post("/sessions", json={"goal": "a", "session_id": "s1"})

        assert client.delete("/sessions/s1").status_code == 204
        assert client.get("/sessions/s1").status_code == 404
        assert client.delete("/sessions/s1").status_code == 404

    def test_delete_cancels_waiting_session(self, build_client):
        client, bus = build_client([Decision("Which one?")])
        client.post("/sessions", json={"goal": "a", "session_id": "s1"})
        session = bus.get_session("s1")

        client.delete("/sessions/s1")

        assert session.state.kind.name == "IDLE"
        assert client.get("/health").json()["sessions"] == 0

    def test_finished_sessions_expire(self, build_client):
        clock = FakeClock()
        client, _ = build_client([Decision("Done.")], session_ttl_seconds=60, clock=clock)
        client.post("/sessions", json={"goal": "a", "session_id": "s1"})

        clock.now = 30
        assert client.get("/health").json()["sessions"] == 1

        clock.now = 61
        assert client.get("/health").json()["sessions"] == 0
        assert client.get("/sessions/s1").status_code == 404

    def test_waiting_sessions_are_kept(self, build_client):
        clock = FakeClock()
        client, bus = build_client([Decision("Which one?")], session_ttl_seconds=60, clock=clock)
        client.post("/sessions", json={"goal": "a", "session_id": "s1"})

        clock.now = 1000

        assert bus.evict_expired() == []
        assert client.get("/sessions/s1").status_code == 200

    def test_new_session_evicts_expired(self, build_client):
        clock = FakeClock()
        client, bus = build_client([Decision("Done.")], session_ttl_seconds=60, clock=clock)
        client.post("/sessions", json={"goal": "a", "session_id": "old"})

        clock.now = 100
        client.post("/sessions", json={"goal": "b", "session_id": "new"})

        assert bus.get_session("old") is None
        assert bus.get_session("new") is not None


class TestLifecycle:

    def test_shutdown_stops_executor(self, build_client):
        client, bus = build_client([Decision("Which one?")])

        with client:
            client.post("/sessions", json={"goal": "a", "session_id": "s1"})

        assert bus._executor.shutdown_called
        assert bus.get_session("s1").state.kind.name == "IDLE"
