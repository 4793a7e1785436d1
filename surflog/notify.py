from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import defaultdict
from collections.abc import Callable, Sequence

from .schemas import Entry

LOGGER = logging.getLogger(__name__)


class Subscription:
    """Cancellable channel of full collection snapshots for one identity.

    Only the newest undelivered snapshot is kept: a consumer that falls behind
    skips straight to the latest state. Once cancelled, nothing more is
    delivered, including a snapshot that was published but not yet read.
    """

    def __init__(
        self,
        identity: str,
        on_cancel: Callable[[Subscription], None] | None = None,
    ) -> None:
        self.identity = identity
        self._latest: list[Entry] | None = None
        self._error: BaseException | None = None
        self._cancelled = False
        self._finished = False
        self._ready = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._on_cancel = on_cancel

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active(self) -> bool:
        return not (self._cancelled or self._finished)

    def attach(self, task: asyncio.Task[None]) -> None:
        """Tie a producer task to this channel; cancelling the channel stops it."""
        self._task = task

    def publish(self, entries: Sequence[Entry]) -> None:
        if not self.active:
            return
        self._latest = list(entries)
        self._ready.set()

    def fail(self, exc: BaseException) -> None:
        if not self.active:
            return
        self._error = exc
        self._finished = True
        self._ready.set()

    def close(self) -> None:
        """Producer side: no more snapshots will follow."""
        self._finished = True
        self._ready.set()

    async def cancel(self) -> None:
        """Consumer side: stop delivery and wait for the producer to wind down."""
        if self._cancelled:
            return
        self._cancelled = True
        self._latest = None
        self._ready.set()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._on_cancel is not None:
            self._on_cancel(self)
        LOGGER.debug("Subscription for %s cancelled", self.identity)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> list[Entry]:
        while True:
            if self._cancelled:
                raise StopAsyncIteration
            if self._latest is not None:
                snapshot, self._latest = self._latest, None
                return snapshot
            if self._error is not None:
                error, self._error = self._error, None
                raise error
            if self._finished:
                raise StopAsyncIteration
            self._ready.clear()
            await self._ready.wait()


class SnapshotBroker:
    """Fans snapshots out to every live subscription of an identity."""

    def __init__(self) -> None:
        self._subscribers: dict[str, set[Subscription]] = defaultdict(set)

    def subscribe(self, identity: str) -> Subscription:
        subscription = Subscription(identity, on_cancel=self._discard)
        self._subscribers[identity].add(subscription)
        return subscription

    def _discard(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.identity)
        if not subscribers:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.identity]

    def subscriber_count(self, identity: str) -> int:
        return len(self._subscribers.get(identity, ()))

    def publish(self, identity: str, entries: Sequence[Entry]) -> None:
        for subscription in list(self._subscribers.get(identity, ())):
            subscription.publish(entries)
