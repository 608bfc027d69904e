from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from jugadwake.lease.manager import LeaseManager
from jugadwake.main import Runtime, create_app
from jugadwake.orchestrator.event_bus import EventBus
from jugadwake.orchestrator.policies import LeasePolicy, RestartPolicy
from jugadwake.orchestrator.supervisor import SessionSupervisor
from jugadwake.storage.preferences import PreferenceStore

from conftest import FakeEngine, FakeLeaseProvider, RecordingAnnouncer


class Wiring:
    def __init__(self, tmp_path) -> None:
        self.engine = FakeEngine()
        self.provider = FakeLeaseProvider()
        self.preferences = PreferenceStore(tmp_path / "prefs.db")
        self.runtime: Runtime | None = None

    async def bootstrap(self) -> Runtime:
        supervisor = SessionSupervisor(
            self.engine,
            LeaseManager(self.provider, policy=LeasePolicy(duration_seconds=60.0, lead_seconds=10.0)),
            EventBus(),
            restart_policy=RestartPolicy(delay_seconds=0.01),
            announcer=RecordingAnnouncer(),
            preferences=self.preferences,
        )
        self.runtime = Runtime(supervisor, self.preferences)
        await self.runtime.start()
        return self.runtime


@pytest.fixture
def wiring(tmp_path) -> Wiring:
    return Wiring(tmp_path)


def _eventually(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        assert time.monotonic() < deadline, "condition not reached before timeout"
        time.sleep(0.01)


def test_start_status_stop(wiring) -> None:
    with TestClient(create_app(wiring.bootstrap)) as client:
        assert client.get("/listen/status").json()["state"] == "idle"

        response = client.post("/listen/start")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "state": "starting"}

        status = client.get("/listen/status").json()
        assert status["running"] is True
        assert status["session_id"] == 1
        assert 0 < status["lease_expires_in"] <= 60

        assert client.post("/listen/stop").json()["state"] == "stopped"
        assert client.post("/listen/stop").json()["state"] == "stopped"
        status = client.get("/listen/status").json()
        assert status["running"] is False
        assert status["lease_expires_in"] is None

    assert wiring.provider.releases == 1
    assert wiring.preferences.was_running() is False


def test_remembered_run_resumes_on_startup(wiring) -> None:
    wiring.preferences.set_was_running(True)

    with TestClient(create_app(wiring.bootstrap)) as client:
        assert client.get("/listen/status").json()["running"] is True
        assert len(wiring.engine.opened) == 1

    # Shutting the process down is not the same as switching listening off.
    assert wiring.preferences.was_running() is True
    assert not wiring.provider.held


def test_control_requires_runtime(wiring) -> None:
    client = TestClient(create_app(wiring.bootstrap))

    assert client.post("/listen/start").status_code == 503
    assert client.get("/listen/status").json()["state"] == "unavailable"


def test_events_stream_over_websocket(wiring) -> None:
    with TestClient(create_app(wiring.bootstrap)) as client:
        client.post("/listen/start")
        with client.websocket_connect("/ws/events") as ws:
            _eventually(lambda: wiring.runtime.bus.subscriber_count == 1)

            wiring.engine.listener().on_partial_result("hey boy are you there")

            transcript = ws.receive_json()
            wake = ws.receive_json()

        assert transcript["type"] == "transcript"
        assert transcript["is_partial"] is True
        assert wake == {
            "type": "wake_phrase",
            "phrase": "hey boy",
            "text": "hey boy are you there",
            "session_id": 1,
            "ts": wake["ts"],
        }
        client.post("/listen/stop")
