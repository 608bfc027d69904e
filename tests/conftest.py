from __future__ import annotations

import asyncio
import itertools
import time
from collections.abc import Callable
from typing import Any

import pytest

from jugadwake.config import RecognitionSettings
from jugadwake.errors import LeaseError
from jugadwake.lease.base import LeaseProvider
from jugadwake.lease.manager import LeaseManager
from jugadwake.orchestrator.event_bus import EventBus
from jugadwake.orchestrator.events import Event
from jugadwake.orchestrator.policies import LeasePolicy, RestartPolicy
from jugadwake.orchestrator.supervisor import SessionSupervisor
from jugadwake.recognition.base import RecognitionEngine, RecognitionListener
from jugadwake.storage.preferences import PreferenceStore


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeEngine(RecognitionEngine):
    """Records every open/close; tests drive the listener callbacks by hand."""

    def __init__(self, auto_end_on_close: bool = True) -> None:
        self.auto_end_on_close = auto_end_on_close
        self.fail_next_open = 0
        self.opened: list[tuple[int, RecognitionListener]] = []
        self.closed: list[int] = []
        self.live: set[int] = set()
        self.max_live = 0
        self._handles = itertools.count(1)

    def open(self, config: RecognitionSettings, listener: RecognitionListener) -> int:
        if self.fail_next_open:
            self.fail_next_open -= 1
            raise RuntimeError("recognizer unavailable")
        handle = next(self._handles)
        self.opened.append((handle, listener))
        self.live.add(handle)
        self.max_live = max(self.max_live, len(self.live))
        return handle

    def close(self, handle: Any) -> None:
        self.closed.append(handle)
        if self.auto_end_on_close:
            self.end(handle)

    @property
    def last_handle(self) -> int:
        return self.opened[-1][0]

    def listener(self, handle: int | None = None) -> RecognitionListener:
        handle = self.last_handle if handle is None else handle
        return dict(self.opened)[handle]

    def ready(self, handle: int | None = None) -> None:
        self.listener(handle).on_ready()

    def end(self, handle: int | None = None) -> None:
        handle = self.last_handle if handle is None else handle
        self.live.discard(handle)
        self.listener(handle).on_end()

    def error(self, code: int, handle: int | None = None) -> None:
        handle = self.last_handle if handle is None else handle
        self.live.discard(handle)
        self.listener(handle).on_error(code)


class FakeLeaseProvider(LeaseProvider):
    def __init__(self) -> None:
        self.history: list[dict[str, Any]] = []
        self.held: set[int] = set()
        self.releases = 0
        self.fail_next = 0
        self.fail_always = False

    def acquire(self, duration: float) -> int:
        if self.fail_always or self.fail_next:
            self.fail_next = max(self.fail_next - 1, 0)
            raise LeaseError("host refused the lease")
        now = time.monotonic()
        token = len(self.history) + 1
        self.history.append({"token": token, "acquired_at": now, "expires_at": now + duration, "released_at": None})
        self.held.add(token)
        return token

    def release(self, token: int) -> None:
        self.releases += 1
        self.held.discard(token)
        self.history[token - 1]["released_at"] = time.monotonic()


class RecordingLeaseManager(LeaseManager):
    """Keeps a handle on the lapse handler the supervisor installs."""

    lapse_handler = None

    def set_lapse_handler(self, handler) -> None:
        self.lapse_handler = handler
        super().set_lapse_handler(handler)


class RecordingAnnouncer:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def announce_started(self) -> None:
        self.calls.append("started")

    def announce_stopped(self) -> None:
        self.calls.append("stopped")


async def wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


class Harness:
    def __init__(
        self,
        tmp_path,
        restart_delay: float = 0.02,
        stop_grace: float = 5.0,
        lease_policy: LeasePolicy | None = None,
        auto_end_on_close: bool = True,
        wake_phrase: str = "hey boy",
    ) -> None:
        self.engine = FakeEngine(auto_end_on_close=auto_end_on_close)
        self.provider = FakeLeaseProvider()
        self.lease = RecordingLeaseManager(
            self.provider,
            policy=lease_policy or LeasePolicy(duration_seconds=60.0, lead_seconds=10.0),
        )
        self.announcer = RecordingAnnouncer()
        self.preferences = PreferenceStore(tmp_path / "prefs.db")
        self.bus = EventBus()
        self.supervisor = SessionSupervisor(
            self.engine,
            self.lease,
            self.bus,
            wake_phrase=wake_phrase,
            restart_policy=RestartPolicy(delay_seconds=restart_delay, stop_grace_seconds=stop_grace),
            announcer=self.announcer,
            preferences=self.preferences,
        )
        self.received: list[Event] = []

    async def __aenter__(self) -> "Harness":
        self.bus.subscribe(self.received.append, name="harness")
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.supervisor.close()

    async def wait_for(self, predicate: Callable[[], bool], timeout: float = 1.0) -> None:
        await wait_for(predicate, timeout)

    async def settle(self) -> None:
        for _ in range(10):
            await asyncio.sleep(0)


@pytest.fixture
def harness(tmp_path) -> Callable[..., Harness]:
    def build(**kwargs: Any) -> Harness:
        return Harness(tmp_path, **kwargs)

    return build


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def lease_provider() -> FakeLeaseProvider:
    return FakeLeaseProvider()
