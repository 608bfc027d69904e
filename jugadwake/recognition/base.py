from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Protocol

from jugadwake.config import RecognitionSettings


class RecognitionListener(Protocol):
    """Callbacks raised by an engine for one session, possibly from its own thread.

    ``on_end`` and ``on_error`` are terminal: exactly one of them fires per session,
    after any transcript callbacks, including for sessions closed through
    ``RecognitionEngine.close``.
    """

    def on_ready(self) -> None: ...

    def on_partial_result(self, text: str) -> None: ...

    def on_final_result(self, text: str) -> None: ...

    def on_end(self) -> None: ...

    def on_error(self, code: int) -> None: ...


class RecognitionEngine(ABC):
    @abstractmethod
    def open(self, config: RecognitionSettings, listener: RecognitionListener) -> Any:
        """Begin a recognition attempt and return its handle without blocking."""

    @abstractmethod
    def close(self, handle: Any) -> None:
        """Ask the attempt behind ``handle`` to stop; completion is reported via the listener."""


__all__ = ["RecognitionEngine", "RecognitionListener"]
