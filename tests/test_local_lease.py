from __future__ import annotations

import time

import pytest

from jugadwake.errors import LeaseError
from jugadwake.host.foreground import LogAnnouncer
from jugadwake.lease.local import LocalLeaseProvider


def test_grants_expire_and_release() -> None:
    provider = LocalLeaseProvider()
    short = provider.acquire(0.01)
    long = provider.acquire(60)
    time.sleep(0.02)

    assert provider.active() == [long]
    provider.release(short)
    provider.release(long)
    assert provider.active() == []


def test_invalid_requests_raise() -> None:
    provider = LocalLeaseProvider()
    with pytest.raises(LeaseError):
        provider.acquire(0)
    with pytest.raises(LeaseError):
        provider.release("missing")


def test_log_announcer_tracks_foreground_state() -> None:
    announcer = LogAnnouncer()
    announcer.announce_started()
    assert announcer.active
    announcer.announce_stopped()
    assert not announcer.active
