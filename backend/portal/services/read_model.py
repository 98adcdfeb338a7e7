"""Read-model base: ``{data, is_loading, refetch()}`` plus an invalidation inbox."""

import asyncio
import logging
from abc import abstractmethod
from typing import Any

from portal.services.realtime import Invalidation

logger = logging.getLogger(__name__)


class InvalidationConsumer:
    """Something that reacts to Invalidation messages from RealtimeSync.

    Messages are queued on ``inbox`` and handled one at a time by a consumer
    task, so each consumer decides its own patch-vs-refetch strategy
    independently of how notifications are delivered.
    """

    #: tables whose changes this consumer cares about
    tables: frozenset[str] = frozenset()

    def __init__(self):
        self.inbox: asyncio.Queue[Invalidation] = asyncio.Queue()
        self._consumer: asyncio.Task | None = None

    def accepts(self, message: Invalidation) -> bool:
        return message.table in self.tables

    @abstractmethod
    async def handle(self, message: Invalidation) -> None:
        ...

    async def _handle_one(self, message: Invalidation) -> None:
        try:
            await self.handle(message)
        except Exception:
            logger.exception("%s failed to handle %s on %s", type(self).__name__, message.kind.value, message.table)
        finally:
            message.ack()
            self.inbox.task_done()

    async def _consume(self) -> None:
        while True:
            message = await self.inbox.get()
            await self._handle_one(message)

    def start(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume())

    async def stop(self) -> None:
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None


class ReadModel(InvalidationConsumer):
    """A derived view over the store.

    Fetch failures never propagate: they are logged, ``last_error`` is set and
    ``data`` keeps its last-known value (or the empty value if never loaded).
    """

    def __init__(self, store):
        super().__init__()
        self.store = store
        self.data = self.empty()
        self.is_loading = True
        self.last_error: str | None = None

    def empty(self) -> Any:
        return None

    @abstractmethod
    async def fetch(self) -> Any:
        ...

    async def refetch(self) -> Any:
        try:
            self.data = await self.fetch()
            self.last_error = None
        except Exception as e:
            logger.exception("Error fetching %s", type(self).__name__)
            self.last_error = str(e) or type(e).__name__
        finally:
            self.is_loading = False
        return self.data

    async def handle(self, message: Invalidation) -> None:
        # Payloads are not trusted to be complete or ordered: full refetch
        await self.refetch()
