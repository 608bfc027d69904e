from __future__ import annotations

import asyncio
from collections.abc import Callable

from jugadwake.errors import LeaseError
from jugadwake.lease.base import ExclusivityLease, LeaseProvider
from jugadwake.orchestrator.clock import CLOCK, Clock
from jugadwake.orchestrator.policies import LeasePolicy
from jugadwake.telemetry.logging import get_logger
from jugadwake.telemetry.tracing import get_tracer

LapseHandler = Callable[[str], None]


class LeaseManager:
    """Holds at most one exclusivity lease and renews it before it expires.

    Renewal is a self-rescheduling one-shot timer on the running event loop. Every
    arm bumps an epoch counter; a timer that fires with an old epoch is ignored, so
    ``release()`` cannot be outrun by a callback that was already queued. All
    operations must run on the loop thread.
    """

    def __init__(
        self,
        provider: LeaseProvider,
        policy: LeasePolicy | None = None,
        clock: Clock = CLOCK,
        on_lapse: LapseHandler | None = None,
    ) -> None:
        self._provider = provider
        self._policy = policy or LeasePolicy()
        self._clock = clock
        self._on_lapse = on_lapse
        self._lease: ExclusivityLease | None = None
        self._duration_hint = self._policy.duration_seconds
        self._lead_time = self._policy.lead_seconds
        self._timer: asyncio.TimerHandle | None = None
        self._epoch = 0
        self._failures = 0
        self._logger = get_logger(__name__)
        self._tracer = get_tracer(__name__)

    @property
    def lease(self) -> ExclusivityLease | None:
        return self._lease

    @property
    def held(self) -> bool:
        return self._lease is not None

    @property
    def renewal_scheduled(self) -> bool:
        return self._timer is not None

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def set_lapse_handler(self, handler: LapseHandler | None) -> None:
        self._on_lapse = handler

    def remaining(self) -> float | None:
        if self._lease is None:
            return None
        return self._lease.remaining(self._clock.monotonic())

    def acquire(self, duration_hint: float | None = None) -> ExclusivityLease:
        if self._lease is not None:
            return self._lease
        duration = duration_hint or self._policy.duration_seconds
        self._lease = self._grant(duration)
        self._duration_hint = duration
        self._failures = 0
        self._logger.info("lease.acquired", duration=duration)
        return self._lease

    def schedule_renewal(self, lead_time: float | None = None) -> None:
        lease = self._lease
        if lease is None:
            raise LeaseError("cannot schedule renewal without a held lease")
        lead = lead_time if lead_time is not None else self._policy.lead_seconds
        if not 0 < lead < lease.duration:
            raise ValueError(f"lead time {lead!r} must be positive and shorter than the lease ({lease.duration!r})")
        self._lead_time = lead
        self._arm(lease.expires_at - lead)

    def release(self) -> bool:
        self._cancel_timer()
        lease, self._lease = self._lease, None
        self._failures = 0
        if lease is None:
            return False
        self._return(lease)
        self._logger.info("lease.released")
        return True

    def _grant(self, duration: float) -> ExclusivityLease:
        try:
            token = self._provider.acquire(duration)
        except LeaseError:
            raise
        except Exception as exc:
            raise LeaseError(f"lease provider failed: {exc}") from exc
        return ExclusivityLease(
            token=token,
            acquired_at=self._clock.monotonic(),
            duration=duration,
            renewal_margin=self._lead_time,
        )

    def _return(self, lease: ExclusivityLease) -> None:
        try:
            self._provider.release(lease.token)
        except Exception as exc:
            self._logger.warning("lease.release.failed", error=str(exc))

    def _cancel_timer(self) -> None:
        self._epoch += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _arm(self, deadline: float) -> None:
        self._cancel_timer()
        epoch = self._epoch
        delay = deadline - self._clock.monotonic()
        self._timer = self._clock.call_later(delay, self._on_renewal_due, epoch)
        self._logger.debug("lease.renewal.armed", delay=round(delay, 3), epoch=epoch)

    def _on_renewal_due(self, epoch: int) -> None:
        if epoch != self._epoch or self._lease is None:
            self._logger.debug("lease.renewal.stale", epoch=epoch, current=self._epoch)
            return
        self._timer = None
        previous = self._lease
        with self._tracer.start_as_current_span("lease.renew"):
            try:
                fresh = self._grant(self._duration_hint)
            except LeaseError as exc:
                self._renewal_failed(previous, exc)
                return
        # Make before break: the old grant stays in force until the new one exists.
        self._lease = fresh
        self._failures = 0
        self._return(previous)
        self._arm(fresh.expires_at - self._lead_time)
        self._logger.info("lease.renewed", duration=fresh.duration)

    def _renewal_failed(self, previous: ExclusivityLease, exc: LeaseError) -> None:
        self._failures += 1
        remaining = previous.remaining(self._clock.monotonic())
        self._logger.warning(
            "lease.renewal.failed",
            error=str(exc),
            consecutive=self._failures,
            remaining=round(remaining, 3),
        )
        retry_in = remaining / 2 if remaining > 0 else self._lead_time
        self._arm(self._clock.monotonic() + retry_in)
        if self._failures == self._policy.max_consecutive_failures:
            reason = f"lease renewal failed {self._failures} times in a row: {exc}"
            self._logger.error("lease.renewal.exhausted", consecutive=self._failures)
            if self._on_lapse is not None:
                self._on_lapse(reason)


__all__ = ["LeaseManager", "LapseHandler"]
