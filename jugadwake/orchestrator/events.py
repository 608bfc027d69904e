from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union


class SessionState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    LISTENING = "listening"
    RESTARTING = "restarting"
    STOPPED = "stopped"

    @property
    def has_session(self) -> bool:
        return self in (SessionState.STARTING, SessionState.LISTENING)

    @property
    def is_running(self) -> bool:
        return self not in (SessionState.IDLE, SessionState.STOPPED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class TranscriptUpdate:
    text: str
    is_partial: bool
    session_id: int | None = None
    ts: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "transcript",
            "text": self.text,
            "is_partial": self.is_partial,
            "session_id": self.session_id,
            "ts": self.ts.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class WakePhraseDetected:
    phrase: str
    text: str
    session_id: int | None = None
    ts: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "wake_phrase",
            "phrase": self.phrase,
            "text": self.text,
            "session_id": self.session_id,
            "ts": self.ts.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class Fatal:
    reason: str
    code: int | None = None
    ts: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "fatal", "reason": self.reason, "code": self.code, "ts": self.ts.isoformat()}


Event = Union[TranscriptUpdate, WakePhraseDetected, Fatal]


class SignalKind(str, Enum):
    READY = "ready"
    PARTIAL = "partial"
    FINAL = "final"
    END = "end"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class SessionSignal:
    """A raw engine callback, tagged with the session it was issued for."""

    session_id: int
    kind: SignalKind
    text: str | None = None
    code: int | None = None


__all__ = [
    "SessionState",
    "TranscriptUpdate",
    "WakePhraseDetected",
    "Fatal",
    "Event",
    "SignalKind",
    "SessionSignal",
]
