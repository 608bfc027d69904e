from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class SessionErrorCode(IntEnum):
    UNKNOWN = 0
    NETWORK_TIMEOUT = 1
    NETWORK = 2
    AUDIO = 3
    SERVER = 4
    CLIENT = 5
    SPEECH_TIMEOUT = 6
    NO_MATCH = 7
    RECOGNIZER_BUSY = 8
    INSUFFICIENT_PERMISSIONS = 9

    @classmethod
    def coerce(cls, code: int) -> "SessionErrorCode":
        try:
            return cls(code)
        except ValueError:
            return cls.UNKNOWN

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    SessionErrorCode.UNKNOWN: "Unknown error",
    SessionErrorCode.NETWORK_TIMEOUT: "Network timeout",
    SessionErrorCode.NETWORK: "Network error",
    SessionErrorCode.AUDIO: "Audio recording error",
    SessionErrorCode.SERVER: "Server error",
    SessionErrorCode.CLIENT: "Client side error",
    SessionErrorCode.SPEECH_TIMEOUT: "No speech input",
    SessionErrorCode.NO_MATCH: "No match found",
    SessionErrorCode.RECOGNIZER_BUSY: "Recognition service busy",
    SessionErrorCode.INSUFFICIENT_PERMISSIONS: "Insufficient permissions",
}

UNRECOVERABLE_ERRORS: frozenset[SessionErrorCode] = frozenset({SessionErrorCode.INSUFFICIENT_PERMISSIONS})


def is_recoverable(code: int) -> bool:
    return SessionErrorCode.coerce(code) not in UNRECOVERABLE_ERRORS


@dataclass(frozen=True, slots=True)
class RestartPolicy:
    """Fixed-delay restart between recognition sessions."""

    delay_seconds: float = 0.3
    stop_grace_seconds: float = 5.0

    def __post_init__(self) -> None:
        if self.delay_seconds < 0:
            raise ValueError("restart delay must not be negative")
        if self.stop_grace_seconds < 0:
            raise ValueError("stop grace must not be negative")


@dataclass(frozen=True, slots=True)
class LeasePolicy:
    duration_seconds: float = 600.0
    lead_seconds: float = 60.0
    max_consecutive_failures: int = 2

    def __post_init__(self) -> None:
        if self.duration_seconds <= 0:
            raise ValueError("lease duration must be positive")
        if not 0 < self.lead_seconds < self.duration_seconds:
            raise ValueError("renewal lead time must be positive and shorter than the lease duration")
        if self.max_consecutive_failures < 1:
            raise ValueError("failure threshold must be at least 1")

    @property
    def renew_after_seconds(self) -> float:
        return self.duration_seconds - self.lead_seconds


__all__ = [
    "SessionErrorCode",
    "UNRECOVERABLE_ERRORS",
    "is_recoverable",
    "RestartPolicy",
    "LeasePolicy",
]
