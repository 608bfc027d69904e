from __future__ import annotations

import asyncio
import inspect
import itertools
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from jugadwake.orchestrator.events import Event
from jugadwake.telemetry.logging import get_logger

Subscriber = Callable[[Event], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class Subscription:
    id: int
    name: str | None = None


@dataclass(slots=True)
class _Mailbox:
    subscription: Subscription
    callback: Subscriber
    queue: asyncio.Queue[Event] = field(default_factory=asyncio.Queue)
    task: asyncio.Task[Any] | None = None
    active: bool = True


class EventBus:
    """In-process fan-out of listening events.

    Each subscriber gets its own queue and delivery task, so a slow or failing
    callback only delays itself and every subscriber sees events in publish order.
    Nothing is buffered for subscribers that join later. Use from the event loop
    thread only.
    """

    def __init__(self) -> None:
        self._mailboxes: dict[int, _Mailbox] = {}
        self._ids = itertools.count(1)
        self._logger = get_logger(__name__)

    @property
    def subscriber_count(self) -> int:
        return len(self._mailboxes)

    def subscribe(self, callback: Subscriber, name: str | None = None) -> Subscription:
        subscription = Subscription(id=next(self._ids), name=name)
        mailbox = _Mailbox(subscription=subscription, callback=callback)
        mailbox.task = asyncio.get_running_loop().create_task(
            self._deliver(mailbox), name=f"event-bus:{name or subscription.id}"
        )
        self._mailboxes[subscription.id] = mailbox
        self._logger.debug("bus.subscribed", subscription=subscription.id, name=name)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        mailbox = self._mailboxes.pop(subscription.id, None)
        if mailbox is None:
            return False
        mailbox.active = False
        if mailbox.task is not None:
            mailbox.task.cancel()
        self._logger.debug("bus.unsubscribed", subscription=subscription.id, dropped=mailbox.queue.qsize())
        return True

    def publish(self, event: Event) -> int:
        for mailbox in self._mailboxes.values():
            mailbox.queue.put_nowait(event)
        return len(self._mailboxes)

    async def stream(self) -> AsyncIterator[Event]:
        queue: asyncio.Queue[Event] = asyncio.Queue()
        subscription = self.subscribe(queue.put_nowait, name="stream")
        try:
            while True:
                yield await queue.get()
        finally:
            self.unsubscribe(subscription)

    async def close(self) -> None:
        mailboxes = list(self._mailboxes.values())
        for mailbox in mailboxes:
            self.unsubscribe(mailbox.subscription)
        tasks = [mailbox.task for mailbox in mailboxes if mailbox.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _deliver(self, mailbox: _Mailbox) -> None:
        while True:
            event = await mailbox.queue.get()
            if not mailbox.active:
                return
            try:
                result = mailbox.callback(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._logger.warning(
                    "bus.subscriber.failed",
                    subscription=mailbox.subscription.id,
                    name=mailbox.subscription.name,
                    event_type=type(event).__name__,
                    error=str(exc),
                )


__all__ = ["EventBus", "Subscription", "Subscriber"]
