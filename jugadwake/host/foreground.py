from __future__ import annotations

from typing import Protocol

from jugadwake.telemetry.logging import get_logger


class ForegroundAnnouncer(Protocol):
    def announce_started(self) -> None: ...

    def announce_stopped(self) -> None: ...


class LogAnnouncer:
    """Announcer for hosts without a foreground-service notion: records the run in the log."""

    def __init__(self, title: str = "Listening for wake phrase") -> None:
        self._title = title
        self._logger = get_logger(__name__)
        self.active = False

    def announce_started(self) -> None:
        self.active = True
        self._logger.info("foreground.started", title=self._title)

    def announce_stopped(self) -> None:
        self.active = False
        self._logger.info("foreground.stopped", title=self._title)


__all__ = ["ForegroundAnnouncer", "LogAnnouncer"]
