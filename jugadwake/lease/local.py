from __future__ import annotations

import threading
import time
from uuid import uuid4

from jugadwake.errors import LeaseError
from jugadwake.lease.base import LeaseProvider
from jugadwake.telemetry.logging import get_logger

LOGGER = get_logger(__name__)


class LocalLeaseProvider(LeaseProvider):
    """In-process lease book for hosts without a power-management API.

    Grants are plain tokens with a monotonic expiry. The provider never revokes a
    grant by itself; ``active()`` only reports the grants that have not expired yet.
    """

    def __init__(self) -> None:
        self._grants: dict[str, float] = {}
        self._lock = threading.Lock()

    def acquire(self, duration: float) -> str:
        if duration <= 0:
            raise LeaseError(f"invalid lease duration {duration!r}")
        token = str(uuid4())
        with self._lock:
            self._grants[token] = time.monotonic() + duration
        LOGGER.debug("lease.local.granted", token=token, duration=duration)
        return token

    def release(self, token: str) -> None:
        with self._lock:
            expiry = self._grants.pop(token, None)
        if expiry is None:
            raise LeaseError(f"unknown lease token {token!r}")
        LOGGER.debug("lease.local.released", token=token, expired=time.monotonic() > expiry)

    def active(self) -> list[str]:
        now = time.monotonic()
        with self._lock:
            return [token for token, expiry in self._grants.items() if expiry > now]


__all__ = ["LocalLeaseProvider"]
