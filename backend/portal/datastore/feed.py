"""Change feeds: fan-out of row-level change notifications to subscribers.

ChangeFeed delivers in-process. RedisChangeFeed additionally publishes every
notification on a Redis pub/sub channel and feeds notifications published by
other processes to local subscribers, so several API workers share one feed.
"""

import asyncio
import json
import logging
import uuid
from datetime import date, datetime
from typing import Any, Sequence

from portal.datastore.base import ChangeKind, ChangeNotification, Condition

logger = logging.getLogger(__name__)

_CLOSED = object()


class Subscription:
    """Cancelable async stream of notifications for one table."""

    def __init__(
        self,
        feed: "ChangeFeed",
        table: str,
        kinds: Sequence[ChangeKind] | None = None,
        condition: Condition | None = None,
    ):
        self.feed = feed
        self.table = table
        self.kinds = frozenset(kinds) if kinds else None
        self.condition = condition
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def wants(self, notification: ChangeNotification) -> bool:
        if notification.table != self.table:
            return False
        if self.kinds is not None and notification.kind not in self.kinds:
            return False
        if self.condition is not None and not self.condition.matches(notification.record):
            return False
        return True

    def _deliver(self, item) -> None:
        if not self.closed:
            self._queue.put_nowait(item)

    def close(self) -> None:
        """Cancel the subscription; a pending iteration ends cleanly."""
        if self.closed:
            return
        self._queue.put_nowait(_CLOSED)
        self.closed = True
        self.feed._remove(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeNotification:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class ChangeFeed:
    """In-process broker. One instance is shared by the store and all readers."""

    def __init__(self):
        self._subscriptions: list[Subscription] = []
        self.connected = True

    def subscribe(
        self,
        table: str,
        kinds: Sequence[ChangeKind] | None = None,
        condition: Condition | None = None,
    ) -> Subscription:
        sub = Subscription(self, table, kinds, condition)
        self._subscriptions.append(sub)
        logger.debug("Subscribed to %s (%d active subscriptions)", table, len(self._subscriptions))
        return sub

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    def dispatch(self, notification: ChangeNotification) -> int:
        """Deliver to local subscribers only. Returns number of deliveries."""
        delivered = 0
        for sub in list(self._subscriptions):
            if sub.wants(notification):
                sub._deliver(notification)
                delivered += 1
        return delivered

    async def publish(self, notification: ChangeNotification) -> None:
        self.dispatch(notification)

    async def start(self) -> None:
        self.connected = True

    async def close(self) -> None:
        """Simulates transport loss / shutdown: every open stream ends."""
        self.connected = False
        for sub in list(self._subscriptions):
            sub.close()


def _json_default(value: Any):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def encode_notification(notification: ChangeNotification, origin: str) -> str:
    return json.dumps(
        {
            "origin": origin,
            "table": notification.table,
            "kind": notification.kind.value,
            "new": notification.new,
            "old": notification.old,
            "committed_at": notification.committed_at,
        },
        default=_json_default,
    )


def decode_notification(raw: str | bytes) -> tuple[str, ChangeNotification]:
    data = json.loads(raw)
    notification = ChangeNotification(
        table=data["table"],
        kind=ChangeKind(data["kind"]),
        new=data.get("new"),
        old=data.get("old"),
        committed_at=datetime.fromisoformat(data["committed_at"]),
    )
    return data.get("origin", ""), notification


class RedisChangeFeed(ChangeFeed):
    """Redis pub/sub fan-out between processes.

    Local notifications are dispatched immediately and published with this
    feed's origin id; messages carrying our own origin are skipped on receipt.
    """

    def __init__(self, redis_client, channel: str = "portal:changes"):
        super().__init__()
        self.redis = redis_client
        self.channel = channel
        self.origin = uuid.uuid4().hex
        self._pubsub = None
        self._listener: asyncio.Task | None = None
        self.connected = False

    async def start(self) -> None:
        self._pubsub = self.redis.pubsub()
        await self._pubsub.subscribe(self.channel)
        self._listener = asyncio.create_task(self._listen())
        self.connected = True
        logger.info("Realtime feed listening on redis channel %s", self.channel)

    async def publish(self, notification: ChangeNotification) -> None:
        self.dispatch(notification)
        await self.redis.publish(self.channel, encode_notification(notification, self.origin))

    async def _listen(self) -> None:
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    origin, notification = decode_notification(message["data"])
                except (ValueError, KeyError):
                    logger.warning("Dropping malformed change message on %s", self.channel)
                    continue
                if origin == self.origin:
                    continue
                self.dispatch(notification)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Redis change feed listener stopped")
        finally:
            # Connection loss: streams end, subscribers drop to DISCONNECTED
            await super().close()

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
            self._pubsub = None
        await super().close()
