from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from jugadwake.telemetry.logging import get_logger

LOGGER = get_logger(__name__)


class Clock:
    """Time source and timer factory for the supervisor, lease manager and controller.

    Deadlines are computed on the monotonic clock so wall-clock adjustments on the
    device cannot shorten or stretch a lease. Wall-clock time is only used for the
    timestamps carried by sessions and events.
    """

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        """Arm a one-shot timer on the running loop."""
        if delay < 0:
            delay = 0.0
        LOGGER.debug("clock.timer.armed", delay=round(delay, 3), callback=getattr(callback, "__name__", repr(callback)))
        return asyncio.get_running_loop().call_later(delay, callback, *args)


CLOCK = Clock()


__all__ = ["Clock", "CLOCK"]
