"""Transient "Updated just now" pulse driven by realtime changes."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LiveIndicator:
    """Trailing-edge debounce over change notifications.

    A burst of ``notify()`` calls produces one pulse ``debounce_seconds``
    after the last call. The pulse stamps ``last_updated`` and marks the
    tables touched during the burst; the marks clear ``hide_seconds`` later.
    """

    def __init__(
        self,
        debounce_seconds: float = 0.3,
        hide_seconds: float = 3.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.debounce_seconds = debounce_seconds
        self.hide_seconds = hide_seconds
        self._clock = clock
        self.last_updated: datetime | None = None
        self.affected_tables: set[str] = set()
        self.pulse_count = 0
        self._pending: set[str] = set()
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._hide_handle: asyncio.TimerHandle | None = None

    def notify(self, table: str) -> None:
        self._pending.add(table)
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(self.debounce_seconds, self._pulse)

    def _pulse(self) -> None:
        self._debounce_handle = None
        self.last_updated = self._clock()
        self.affected_tables |= self._pending
        self._pending = set()
        self.pulse_count += 1
        logger.debug("Live pulse #%d for %s", self.pulse_count, ", ".join(sorted(self.affected_tables)))
        if self._hide_handle is not None:
            self._hide_handle.cancel()
        self._hide_handle = asyncio.get_running_loop().call_later(self.hide_seconds, self._hide)

    def _hide(self) -> None:
        self._hide_handle = None
        self.affected_tables = set()

    @property
    def is_visible(self) -> bool:
        return bool(self.affected_tables)

    def is_table_affected(self, table: str) -> bool:
        return table in self.affected_tables

    def close(self) -> None:
        for handle in (self._debounce_handle, self._hide_handle):
            if handle is not None:
                handle.cancel()
        self._debounce_handle = self._hide_handle = None
