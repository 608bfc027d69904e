from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class ExclusivityLease:
    token: Any
    acquired_at: float
    duration: float
    renewal_margin: float

    @property
    def expires_at(self) -> float:
        return self.acquired_at + self.duration

    def remaining(self, now: float) -> float:
        return self.expires_at - now


class LeaseProvider(ABC):
    """Host facility that keeps the process schedulable for a bounded time."""

    @abstractmethod
    def acquire(self, duration: float) -> Any:
        """Grant a lease for ``duration`` seconds and return its token. Must not block."""

    @abstractmethod
    def release(self, token: Any) -> None:
        """Give back a previously granted lease."""
