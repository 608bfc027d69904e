from __future__ import annotations

import asyncio
import concurrent.futures
from dataclasses import dataclass
from typing import Any

from jugadwake.config import RecognitionSettings
from jugadwake.errors import EngineError, LeaseError, SessionAlreadyActive
from jugadwake.host.foreground import ForegroundAnnouncer
from jugadwake.lease.manager import LeaseManager
from jugadwake.orchestrator.clock import CLOCK, Clock
from jugadwake.orchestrator.event_bus import EventBus, Subscriber, Subscription
from jugadwake.orchestrator.events import Fatal, SessionSignal, SessionState
from jugadwake.orchestrator.policies import RestartPolicy
from jugadwake.recognition.base import RecognitionEngine
from jugadwake.recognition.controller import OutcomeKind, RecognitionSessionController, SessionOutcome
from jugadwake.storage.preferences import PreferenceStore
from jugadwake.telemetry.logging import bind_run, get_logger
from jugadwake.telemetry.tracing import get_tracer


@dataclass(frozen=True, slots=True)
class _Command:
    name: str
    done: asyncio.Future[SessionState] | None = None


@dataclass(frozen=True, slots=True)
class _RestartDue:
    generation: int


@dataclass(frozen=True, slots=True)
class _LeaseLapsed:
    reason: str
    run_id: int


_SHUTDOWN = object()


class SessionSupervisor:
    """Keeps a recognition session running for as long as listening is switched on.

    Commands, engine callbacks, restart timers and lease escalations all arrive as
    messages on one inbox and are applied by a single worker task, one transition
    at a time. Nothing else writes ``state`` or asks the controller to change the
    session.

    States: idle -> starting -> listening -> (restarting -> starting) | stopped.
    ``stopped`` ends a run; the next ``start()`` begins a fresh one.
    """

    def __init__(
        self,
        engine: RecognitionEngine,
        lease_manager: LeaseManager,
        bus: EventBus | None = None,
        *,
        recognition: RecognitionSettings | None = None,
        wake_phrase: str = "hey boy",
        restart_policy: RestartPolicy | None = None,
        announcer: ForegroundAnnouncer | None = None,
        preferences: PreferenceStore | None = None,
        clock: Clock = CLOCK,
    ) -> None:
        self._lease = lease_manager
        self._bus = bus or EventBus()
        self._policy = restart_policy or RestartPolicy()
        self._announcer = announcer
        self._preferences = preferences
        self._clock = clock
        self._controller = RecognitionSessionController(
            engine,
            recognition or RecognitionSettings(),
            post=self.post,
            wake_phrase=wake_phrase,
            policy=self._policy,
            clock=clock,
        )
        self._lease.set_lapse_handler(self._lease_lapsed)
        self._state = SessionState.IDLE
        self._run_id = 0
        self._restart_generation = 0
        self._restart_handle: asyncio.TimerHandle | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._inbox: asyncio.Queue[Any] | None = None
        self._worker: asyncio.Task[None] | None = None
        self._closed = False
        self._run_span: Any = None
        self._logger = get_logger(__name__)
        self._tracer = get_tracer(__name__)

    # -- queries -------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def events(self) -> EventBus:
        return self._bus

    @property
    def controller(self) -> RecognitionSessionController:
        return self._controller

    @property
    def run_id(self) -> int:
        return self._run_id

    def is_running(self) -> bool:
        return self._state.is_running

    def snapshot(self) -> dict[str, Any]:
        session = self._controller.session
        return {
            "running": self.is_running(),
            "state": self._state.value,
            "run_id": self._run_id,
            "session_id": session.id if session is not None and self._controller.live else None,
            "lease_expires_in": self._lease.remaining(),
        }

    def subscribe(self, callback: Subscriber, name: str | None = None) -> Subscription:
        return self._bus.subscribe(callback, name=name)

    def unsubscribe(self, subscription: Subscription) -> bool:
        return self._bus.unsubscribe(subscription)

    # -- control surface -----------------------------------------------------

    async def start(self) -> SessionState:
        return await self._submit("start")

    async def stop(self) -> SessionState:
        return await self._submit("stop")

    def start_threadsafe(self, loop: asyncio.AbstractEventLoop | None = None) -> concurrent.futures.Future[SessionState]:
        return self._submit_threadsafe("start", loop)

    def stop_threadsafe(self, loop: asyncio.AbstractEventLoop | None = None) -> concurrent.futures.Future[SessionState]:
        return self._submit_threadsafe("stop", loop)

    async def close(self) -> None:
        """Tear the run down without touching the persisted flag, then stop the worker."""
        if self._closed:
            return
        if self._worker is not None and not self._worker.done():
            await self._submit("shutdown")
            assert self._inbox is not None
            self._inbox.put_nowait(_SHUTDOWN)
            await self._worker
        self._closed = True
        await self._bus.close()
        self._logger.info("supervisor.closed", run_id=self._run_id)

    def post(self, message: Any) -> None:
        """Queue a message for the worker. Safe to call from any thread."""
        loop, inbox = self._loop, self._inbox
        if loop is None or inbox is None or self._closed:
            self._logger.debug("supervisor.message.dropped", message=type(message).__name__)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            inbox.put_nowait(message)
            return
        try:
            loop.call_soon_threadsafe(inbox.put_nowait, message)
        except RuntimeError:
            self._logger.debug("supervisor.message.loop_closed", message=type(message).__name__)

    async def _submit(self, name: str) -> SessionState:
        self._ensure_worker()
        assert self._loop is not None and self._inbox is not None
        done: asyncio.Future[SessionState] = self._loop.create_future()
        self._inbox.put_nowait(_Command(name, done))
        return await done

    def _submit_threadsafe(
        self, name: str, loop: asyncio.AbstractEventLoop | None
    ) -> concurrent.futures.Future[SessionState]:
        target = loop or self._loop
        if target is None:
            raise RuntimeError("supervisor is not bound to an event loop yet")
        return asyncio.run_coroutine_threadsafe(self._submit(name), target)

    def _ensure_worker(self) -> None:
        if self._closed:
            raise RuntimeError("supervisor is closed")
        if self._worker is not None and not self._worker.done():
            return
        self._loop = asyncio.get_running_loop()
        if self._inbox is None:
            self._inbox = asyncio.Queue()
        self._worker = self._loop.create_task(self._run(), name="session-supervisor")

    # -- worker --------------------------------------------------------------

    async def _run(self) -> None:
        assert self._inbox is not None
        while True:
            message = await self._inbox.get()
            if message is _SHUTDOWN:
                return
            try:
                self._dispatch(message)
            except Exception:
                self._logger.exception(
                    "supervisor.dispatch.failed",
                    message=type(message).__name__,
                    state=self._state.value,
                )
                self._recover()
            finally:
                if isinstance(message, _Command) and message.done is not None and not message.done.done():
                    message.done.set_result(self._state)
            self._check_invariant()

    def _dispatch(self, message: Any) -> None:
        if isinstance(message, SessionSignal):
            self._on_signal(message)
        elif isinstance(message, _RestartDue):
            self._on_restart_due(message)
        elif isinstance(message, _LeaseLapsed):
            self._on_lease_lapsed(message)
        elif isinstance(message, _Command):
            if message.name == "start":
                self._on_start()
            elif message.name == "stop":
                self._on_stop()
            elif message.name == "shutdown":
                if self._state.is_running:
                    self._teardown(reason="shutdown")
            else:
                raise ValueError(f"unknown command {message.name!r}")
        else:
            self._logger.warning("supervisor.message.unknown", message=repr(message))

    def _on_start(self) -> None:
        if self._state.is_running:
            self._logger.info("supervisor.start.ignored", state=self._state.value)
            return
        self._run_id += 1
        bind_run(self._run_id)
        self._transition(SessionState.IDLE, reason="start")
        try:
            self._lease.acquire()
            self._lease.schedule_renewal()
        except (LeaseError, ValueError) as exc:
            self._lease.release()
            self._transition(SessionState.STOPPED, reason="lease_unavailable")
            self._raise_fatal(Fatal(reason=f"lease acquisition failed: {exc}"))
            return
        self._run_span = self._tracer.start_span("supervisor.run", attributes={"run_id": self._run_id})
        self._announce(started=True)
        self._remember(True)
        self._begin_session()

    def _on_stop(self) -> None:
        self._remember(False)
        if not self._state.is_running:
            self._logger.info("supervisor.stop.ignored", state=self._state.value)
            self._transition(SessionState.STOPPED, reason="stop")
            return
        self._teardown(reason="stop")

    def _on_signal(self, signal: SessionSignal) -> None:
        outcome = self._controller.resolve(signal)
        if outcome is None:
            return
        if outcome.stopped:
            self._logger.debug("supervisor.session.closed", session_id=outcome.session_id)
            return
        for event in outcome.events:
            self._bus.publish(event)
        if outcome.kind is OutcomeKind.READY:
            if self._state is SessionState.STARTING:
                self._transition(SessionState.LISTENING, session_id=outcome.session_id)
        elif outcome.fatal:
            self._teardown(reason="unrecoverable_error", fatal=self._fatal_for(outcome))
        elif outcome.terminal:
            reason = outcome.code.name.lower() if outcome.code is not None else "end_of_speech"
            self._schedule_restart(reason)

    def _on_restart_due(self, message: _RestartDue) -> None:
        if message.generation != self._restart_generation or self._state is not SessionState.RESTARTING:
            self._logger.debug("supervisor.restart.stale", generation=message.generation, state=self._state.value)
            return
        self._restart_handle = None
        self._begin_session()

    def _on_lease_lapsed(self, message: _LeaseLapsed) -> None:
        if message.run_id != self._run_id or not self._state.is_running:
            self._logger.debug("supervisor.lease_lapse.stale", run_id=message.run_id, current=self._run_id)
            return
        self._teardown(reason="lease_lapsed", fatal=Fatal(reason=message.reason))

    # -- transitions ---------------------------------------------------------

    def _begin_session(self) -> None:
        try:
            session_id = self._controller.start_session()
        except SessionAlreadyActive as exc:
            self._logger.error(
                "supervisor.invariant.session_already_active",
                session_id=exc.session_id,
                state=self._state.value,
            )
            self._schedule_restart("session_already_active")
            return
        except EngineError as exc:
            self._logger.warning("supervisor.session.open_failed", error=str(exc))
            self._schedule_restart("engine_open_failed")
            return
        self._transition(SessionState.STARTING, session_id=session_id)

    def _schedule_restart(self, reason: str) -> None:
        self._cancel_restart()
        self._transition(SessionState.RESTARTING, reason=reason)
        self._restart_handle = self._clock.call_later(
            self._policy.delay_seconds, self.post, _RestartDue(self._restart_generation)
        )

    def _cancel_restart(self) -> None:
        self._restart_generation += 1
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None

    def _teardown(self, reason: str, fatal: Fatal | None = None) -> None:
        self._cancel_restart()
        self._controller.stop_session()
        self._lease.release()
        self._announce(started=False)
        self._transition(SessionState.STOPPED, reason=reason)
        if self._run_span is not None:
            self._run_span.set_attribute("stop_reason", reason)
            self._run_span.end()
            self._run_span = None
        if fatal is not None:
            self._raise_fatal(fatal)

    def _recover(self) -> None:
        if not self._state.is_running:
            return
        try:
            self._controller.stop_session()
            self._schedule_restart("internal_error")
        except Exception:
            self._logger.exception("supervisor.recover.failed", state=self._state.value)

    def _transition(self, state: SessionState, **context: Any) -> None:
        previous = self._state
        if previous is state:
            return
        self._state = state
        self._logger.info("supervisor.transition", previous=previous.value, state=state.value, **context)

    def _check_invariant(self) -> None:
        if self._state.has_session != self._controller.live:
            self._logger.error(
                "supervisor.invariant.session_state_mismatch",
                state=self._state.value,
                live_session=self._controller.live,
            )

    # -- collaborators -------------------------------------------------------

    def _lease_lapsed(self, reason: str) -> None:
        self.post(_LeaseLapsed(reason, self._run_id))

    @staticmethod
    def _fatal_for(outcome: SessionOutcome) -> Fatal:
        if outcome.code is None:
            return Fatal(reason="recognition session failed")
        return Fatal(reason=outcome.code.description, code=int(outcome.code))

    def _raise_fatal(self, fatal: Fatal) -> None:
        self._logger.error("supervisor.fatal", reason=fatal.reason, code=fatal.code)
        self._bus.publish(fatal)

    def _announce(self, started: bool) -> None:
        if self._announcer is None:
            return
        try:
            if started:
                self._announcer.announce_started()
            else:
                self._announcer.announce_stopped()
        except Exception as exc:
            self._logger.warning("supervisor.announce.failed", started=started, error=str(exc))

    def _remember(self, running: bool) -> None:
        if self._preferences is None:
            return
        try:
            self._preferences.set_was_running(running)
        except Exception as exc:
            self._logger.warning("supervisor.preferences.failed", running=running, error=str(exc))


__all__ = ["SessionSupervisor"]
