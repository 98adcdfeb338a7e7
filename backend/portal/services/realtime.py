"""Realtime synchronization layer.

Each watched table gets one TableSubscription with a small state machine:

    DISCONNECTED -> SUBSCRIBING -> SUBSCRIBED -> (change) REFETCHING -> SUBSCRIBED

A change notification is never applied to local state here. It is turned into
a typed Invalidation message and queued on every consumer that accepts it;
the table stays REFETCHING until all of those consumers have acknowledged.
Connection loss ends the stream and drops the table to DISCONNECTED;
reconnecting is the transport's job, ``reconnect()`` only re-attaches.
"""

import asyncio
import dataclasses
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable

from portal.datastore.base import ChangeKind, ChangeNotification

logger = logging.getLogger(__name__)


class SubscriptionState(str, Enum):
    DISCONNECTED = "disconnected"
    SUBSCRIBING = "subscribing"
    SUBSCRIBED = "subscribed"
    REFETCHING = "refetching"


@dataclass(frozen=True)
class Invalidation:
    """A table changed. Consumers decide whether to patch or refetch."""

    table: str
    kind: ChangeKind
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None
    on_done: Callable[[], None] | None = field(default=None, compare=False, repr=False)

    @classmethod
    def from_notification(cls, notification: ChangeNotification) -> "Invalidation":
        return cls(notification.table, notification.kind, notification.new, notification.old)

    @property
    def record(self) -> dict[str, Any]:
        return self.new if self.new is not None else (self.old or {})

    def ack(self) -> None:
        if self.on_done is not None:
            self.on_done()


class TableSubscription:
    def __init__(
        self,
        store,
        table: str,
        route: Callable[[Invalidation], list],
        on_change: Callable[[str], None] | None = None,
    ):
        self.store = store
        self.table = table
        self._route = route
        self._on_change = on_change
        self.state = SubscriptionState.DISCONNECTED
        self.history: deque[SubscriptionState] = deque([self.state], maxlen=50)
        self._stream = None
        self._pending = 0

    def _set_state(self, state: SubscriptionState) -> None:
        if state != self.state:
            logger.debug("[%s] %s -> %s", self.table, self.state.value, state.value)
            self.state = state
            self.history.append(state)

    def open(self) -> None:
        self._set_state(SubscriptionState.SUBSCRIBING)
        try:
            self._stream = self.store.subscribe(self.table)
        except Exception:
            logger.exception("Could not subscribe to %s", self.table)
            self._set_state(SubscriptionState.DISCONNECTED)
            raise
        self._set_state(SubscriptionState.SUBSCRIBED)

    @property
    def backlog(self) -> int:
        queue = getattr(self._stream, "_queue", None)
        return queue.qsize() if queue is not None else 0

    @property
    def pending(self) -> int:
        """Delivered invalidations not yet acknowledged."""
        return self._pending

    async def run(self) -> None:
        try:
            async for notification in self._stream:
                self.dispatch(notification)
        finally:
            self._stream = None
            self._pending = 0
            self._set_state(SubscriptionState.DISCONNECTED)
            logger.info("Realtime subscription to %s disconnected", self.table)

    def dispatch(self, notification: ChangeNotification) -> int:
        probe = Invalidation.from_notification(notification)
        targets = self._route(probe)
        for consumer in targets:
            self._pending += 1
            consumer.inbox.put_nowait(dataclasses.replace(probe, on_done=self._done))
        if self._pending:
            self._set_state(SubscriptionState.REFETCHING)
        if self._on_change is not None:
            self._on_change(self.table)
        return len(targets)

    def _done(self) -> None:
        self._pending = max(0, self._pending - 1)
        if self._pending == 0 and self.state == SubscriptionState.REFETCHING:
            self._set_state(SubscriptionState.SUBSCRIBED)

    def close(self) -> None:
        if self._stream is not None:
            self._stream.close()


class RealtimeSync:
    """Routes change notifications from the store to registered consumers."""

    def __init__(self, store, live_indicator=None, extra_tables: Iterable[str] = ()):
        self.store = store
        self.live_indicator = live_indicator
        self.extra_tables = set(extra_tables)
        self.consumers: list = []
        self.subscriptions: dict[str, TableSubscription] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self.running = False

    def _route(self, message: Invalidation) -> list:
        return [c for c in self.consumers if c.accepts(message)]

    def _on_change(self, table: str) -> None:
        if self.live_indicator is not None:
            self.live_indicator.notify(table)

    def watched_tables(self) -> set[str]:
        tables = set(self.extra_tables)
        for consumer in self.consumers:
            tables |= set(consumer.tables)
        return tables

    def state(self, table: str) -> SubscriptionState:
        sub = self.subscriptions.get(table)
        return sub.state if sub else SubscriptionState.DISCONNECTED

    def _ensure(self, table: str) -> None:
        sub = self.subscriptions.get(table)
        if sub is not None and sub.state != SubscriptionState.DISCONNECTED:
            return
        if sub is None:
            sub = TableSubscription(self.store, table, self._route, self._on_change)
            self.subscriptions[table] = sub
        sub.open()
        self._tasks[table] = asyncio.create_task(sub.run())

    def register(self, consumer) -> None:
        if consumer in self.consumers:
            return
        self.consumers.append(consumer)
        consumer.start()
        if self.running:
            for table in consumer.tables:
                self._ensure(table)

    async def unregister(self, consumer) -> None:
        if consumer in self.consumers:
            self.consumers.remove(consumer)
        await consumer.stop()

    async def start(self) -> None:
        self.running = True
        for table in sorted(self.watched_tables()):
            self._ensure(table)
        logger.info("Realtime sync watching %s", ", ".join(sorted(self.subscriptions)))

    async def reconnect(self) -> None:
        """Re-attach dropped tables and refetch whatever may have been missed."""
        dropped = [t for t, s in self.subscriptions.items() if s.state == SubscriptionState.DISCONNECTED]
        for table in dropped:
            self._ensure(table)
        if dropped:
            logger.info("Resubscribed to %s", ", ".join(dropped))
            for consumer in self.consumers:
                if set(consumer.tables) & set(dropped) and hasattr(consumer, "refetch"):
                    await consumer.refetch()

    async def settle(self) -> None:
        """Wait until every delivered notification has been handled."""
        while True:
            await asyncio.sleep(0)
            if not any(sub.backlog or sub.pending for sub in self.subscriptions.values()):
                return
            await asyncio.gather(*(c.inbox.join() for c in self.consumers))

    async def stop(self) -> None:
        self.running = False
        for sub in self.subscriptions.values():
            sub.close()
        for task in self._tasks.values():
            task.cancel()
        for task in self._tasks.values():
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        for consumer in list(self.consumers):
            await consumer.stop()
