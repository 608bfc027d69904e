from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from jugadwake.config import RecognitionSettings
from jugadwake.errors import EngineError, SessionAlreadyActive
from jugadwake.orchestrator.clock import CLOCK, Clock
from jugadwake.orchestrator.events import (
    Event,
    SessionSignal,
    SignalKind,
    TranscriptUpdate,
    WakePhraseDetected,
)
from jugadwake.orchestrator.policies import RestartPolicy, SessionErrorCode, is_recoverable
from jugadwake.recognition.base import RecognitionEngine
from jugadwake.telemetry.logging import get_logger

SignalSink = Callable[[SessionSignal], None]


@dataclass(slots=True)
class RecognitionSession:
    id: int
    started_at: datetime
    handle: Any = None
    ready: bool = False
    outcome: str = "pending"
    stop_requested_at: float | None = None

    @property
    def stopping(self) -> bool:
        return self.stop_requested_at is not None


class OutcomeKind(str, Enum):
    READY = "ready"
    TRANSCRIPT = "transcript"
    ENDED = "ended"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class SessionOutcome:
    session_id: int
    kind: OutcomeKind
    events: tuple[Event, ...] = ()
    retry: bool | None = None
    code: SessionErrorCode | None = None
    stopped: bool = False

    @property
    def terminal(self) -> bool:
        return self.kind in (OutcomeKind.ENDED, OutcomeKind.FAILED)

    @property
    def fatal(self) -> bool:
        return self.kind is OutcomeKind.FAILED and self.retry is False and not self.stopped


class _SessionListener:
    """Engine-facing listener; stamps every callback with the session it belongs to."""

    __slots__ = ("_session_id", "_post")

    def __init__(self, session_id: int, post: SignalSink) -> None:
        self._session_id = session_id
        self._post = post

    def on_ready(self) -> None:
        self._post(SessionSignal(self._session_id, SignalKind.READY))

    def on_partial_result(self, text: str) -> None:
        self._post(SessionSignal(self._session_id, SignalKind.PARTIAL, text=text))

    def on_final_result(self, text: str) -> None:
        self._post(SessionSignal(self._session_id, SignalKind.FINAL, text=text))

    def on_end(self) -> None:
        self._post(SessionSignal(self._session_id, SignalKind.END))

    def on_error(self, code: int) -> None:
        self._post(SessionSignal(self._session_id, SignalKind.ERROR, code=code))


class RecognitionSessionController:
    """Owns the single in-flight recognition session.

    Engine callbacks never touch controller state directly: they are posted as
    ``SessionSignal`` messages and applied later through ``resolve()``, which the
    supervisor calls from its single writer. Signals for any session other than the
    tracked one are dropped there.
    """

    def __init__(
        self,
        engine: RecognitionEngine,
        config: RecognitionSettings,
        post: SignalSink,
        wake_phrase: str = "hey boy",
        policy: RestartPolicy | None = None,
        clock: Clock = CLOCK,
    ) -> None:
        if not wake_phrase.strip():
            raise ValueError("wake phrase must not be blank")
        self._engine = engine
        self._config = config
        self._post = post
        self._wake_phrase = wake_phrase.strip()
        self._needle = self._wake_phrase.casefold()
        self._policy = policy or RestartPolicy()
        self._clock = clock
        self._session: RecognitionSession | None = None
        self._counter = 0
        self._logger = get_logger(__name__)

    @property
    def wake_phrase(self) -> str:
        return self._wake_phrase

    @property
    def session(self) -> RecognitionSession | None:
        return self._session

    @property
    def live(self) -> bool:
        return self._session is not None and not self._session.stopping

    def matches_wake_phrase(self, text: str) -> bool:
        return self._needle in text.casefold()

    def start_session(self) -> int:
        current = self._session
        if current is not None:
            if not current.stopping:
                raise SessionAlreadyActive(current.id)
            waited = self._clock.monotonic() - (current.stop_requested_at or 0.0)
            if waited < self._policy.stop_grace_seconds:
                raise SessionAlreadyActive(current.id)
            self._logger.warning("session.superseded", session_id=current.id, waited=round(waited, 3))
            current.outcome = "superseded"
            self._session = None

        self._counter += 1
        session = RecognitionSession(id=self._counter, started_at=self._clock.now())
        self._session = session
        try:
            session.handle = self._engine.open(self._config, _SessionListener(session.id, self._post))
        except Exception as exc:
            self._session = None
            session.outcome = "open_failed"
            raise EngineError(f"engine failed to open session {session.id}: {exc}") from exc
        self._logger.info("session.started", session_id=session.id)
        return session.id

    def stop_session(self) -> bool:
        session = self._session
        if session is None or session.stopping:
            return False
        session.stop_requested_at = self._clock.monotonic()
        try:
            self._engine.close(session.handle)
        except Exception as exc:
            # No terminal callback will follow a failed close.
            self._logger.error("session.close.failed", session_id=session.id, error=str(exc))
            session.outcome = "close_failed"
            self._session = None
            return True
        self._logger.info("session.stop_requested", session_id=session.id)
        return True

    def resolve(self, signal: SessionSignal) -> SessionOutcome | None:
        session = self._session
        if session is None or signal.session_id != session.id:
            self._logger.debug(
                "session.stale_signal",
                signal_session=signal.session_id,
                current=session.id if session else None,
                kind=signal.kind.value,
            )
            return None

        if signal.kind in (SignalKind.END, SignalKind.ERROR):
            return self._finish(session, signal)

        if session.stopping:
            self._logger.debug("session.signal_after_stop", session_id=session.id, kind=signal.kind.value)
            return None

        if signal.kind is SignalKind.READY:
            session.ready = True
            self._logger.debug("session.ready", session_id=session.id)
            return SessionOutcome(session.id, OutcomeKind.READY)

        return SessionOutcome(
            session.id,
            OutcomeKind.TRANSCRIPT,
            events=self._transcript_events(session.id, signal.text or "", partial=signal.kind is SignalKind.PARTIAL),
        )

    def _transcript_events(self, session_id: int, raw: str, partial: bool) -> tuple[Event, ...]:
        text = raw.strip()
        if not text:
            return ()
        self._logger.debug("session.transcript", session_id=session_id, partial=partial, text=text)
        events: list[Event] = [TranscriptUpdate(text=text, is_partial=partial, session_id=session_id)]
        if self.matches_wake_phrase(text):
            self._logger.info("session.wake_phrase", session_id=session_id, partial=partial)
            events.append(WakePhraseDetected(phrase=self._wake_phrase, text=text, session_id=session_id))
        return tuple(events)

    def _finish(self, session: RecognitionSession, signal: SessionSignal) -> SessionOutcome:
        self._session = None
        stopped = session.stopping
        if signal.kind is SignalKind.END:
            session.outcome = "stopped" if stopped else "ended"
            self._logger.info("session.ended", session_id=session.id, stopped=stopped)
            return SessionOutcome(session.id, OutcomeKind.ENDED, retry=not stopped, stopped=stopped)

        code = SessionErrorCode.coerce(signal.code if signal.code is not None else 0)
        recoverable = is_recoverable(code)
        session.outcome = f"error:{code.name.lower()}"
        log = self._logger.warning if recoverable or stopped else self._logger.error
        log(
            "session.error",
            session_id=session.id,
            code=int(code),
            description=code.description,
            recoverable=recoverable,
            stopped=stopped,
        )
        return SessionOutcome(
            session.id,
            OutcomeKind.FAILED,
            retry=recoverable and not stopped,
            code=code,
            stopped=stopped,
        )


__all__ = [
    "RecognitionSession",
    "RecognitionSessionController",
    "OutcomeKind",
    "SessionOutcome",
]
