"""Application and view aggregates.

The four readers deliberately keep different freshness strategies:

* GlobalApplicationTotals: server-side grouped counts, patched +1 on each
  apply insert, refetched on delete.
* TodayTotals: counts for the current reporting day, recomputed on any
  activity change and at local midnight.
* MonthlyRollingTotals: client-side tally over a full paged scan, patched
  +1 on apply insert, refetched on delete.
* PersistedMonthlyCount: the stored monthly aggregate row (missing row
  reads as 0), refreshed on apply insert and at the month boundary.
"""

import asyncio
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Callable

from portal.datastore.base import ChangeKind, Order, eq, gte, in_, lt
from portal.models.base import utcnow
from portal.schemas.activity import ActivityEntry
from portal.schemas.analytics import TodayAnalytics
from portal.schemas.listing import ListingBrief
from portal.services.read_model import ReadModel
from portal.services.realtime import Invalidation
from portal.services.reporting_time import day_bounds, next_day_start, next_month_start, reporting_tz, year_month

logger = logging.getLogger(__name__)

ACTIVITY_TABLE = "activity_logs"


def _is_apply_insert(message: Invalidation) -> bool:
    return message.kind == ChangeKind.INSERT and message.record.get("event") == "apply"


class _ApplyTally(ReadModel):
    """Per-listing apply counts keyed by str(listing id)."""

    tables = frozenset({ACTIVITY_TABLE})

    def empty(self) -> dict[str, int]:
        return {}

    def count_for(self, listing_id) -> int:
        return self.data.get(str(listing_id), 0)

    async def handle(self, message: Invalidation) -> None:
        if message.kind == ChangeKind.DELETE:
            await self.refetch()
        elif _is_apply_insert(message):
            # The insert payload is trusted: patch locally instead of refetching
            key = str(message.record.get("internship_id"))
            self.data = {**self.data, key: self.data.get(key, 0) + 1}


class GlobalApplicationTotals(_ApplyTally):
    async def fetch(self) -> dict[str, int]:
        rows = await self.store.rpc("get_global_application_counts")
        return {str(row["internship_id"]): int(row["application_count"]) for row in rows}


class MonthlyRollingTotals(_ApplyTally):
    """Tallies every apply event in pages. Cost grows with the log."""

    def __init__(self, store, page_size: int = 1000):
        super().__init__(store)
        self.page_size = page_size

    async def fetch(self) -> dict[str, int]:
        tally: Counter = Counter()
        offset = 0
        while True:
            page = await self.store.query(
                ACTIVITY_TABLE,
                [eq("event", "apply")],
                order=[Order("created_at", descending=False), Order("id", descending=False)],
                offset=offset,
                limit=self.page_size,
                columns=["internship_id"],
            )
            tally.update(str(row["internship_id"]) for row in page)
            if len(page) < self.page_size:
                return dict(tally)
            offset += self.page_size


class _CalendarReader(ReadModel):
    """ReadModel that also refreshes when a reporting-calendar period rolls over."""

    def __init__(self, store, clock: Callable[[], datetime] = utcnow, tz: timezone | None = None):
        super().__init__(store)
        self._clock = clock
        self.tz = tz or reporting_tz()
        self._boundary_task: asyncio.Task | None = None

    def next_boundary(self, now: datetime) -> datetime:
        raise NotImplementedError

    def seconds_until_boundary(self) -> float:
        now = self._clock()
        return max((self.next_boundary(now) - now).total_seconds(), 0.0)

    async def _watch_boundary(self) -> None:
        while True:
            await asyncio.sleep(self.seconds_until_boundary())
            logger.info("%s: reporting period rolled over, refreshing", type(self).__name__)
            await self.refetch()

    def start(self) -> None:
        super().start()
        if self._boundary_task is None or self._boundary_task.done():
            self._boundary_task = asyncio.create_task(self._watch_boundary())

    async def stop(self) -> None:
        if self._boundary_task is not None:
            self._boundary_task.cancel()
            try:
                await self._boundary_task
            except asyncio.CancelledError:
                pass
            self._boundary_task = None
        await super().stop()


class TodayTotals(_CalendarReader):
    """Views, applies and the latest events for the current reporting day."""

    tables = frozenset({ACTIVITY_TABLE})

    def __init__(self, store, recent_limit: int = 20, clock: Callable[[], datetime] = utcnow, tz: timezone | None = None):
        super().__init__(store, clock, tz)
        self.recent_limit = recent_limit

    def empty(self) -> TodayAnalytics:
        return TodayAnalytics()

    def next_boundary(self, now: datetime) -> datetime:
        return next_day_start(now, self.tz)

    async def fetch(self) -> TodayAnalytics:
        start, end = day_bounds(self._clock(), self.tz)
        window = [gte("created_at", start), lt("created_at", end)]
        views = await self.store.count(ACTIVITY_TABLE, [eq("event", "view"), *window])
        applies = await self.store.count(ACTIVITY_TABLE, [eq("event", "apply"), *window])
        rows = await self.store.query(ACTIVITY_TABLE, window, order=[Order("created_at")], limit=self.recent_limit)
        return TodayAnalytics(views=views, applies=applies, recent_activity=await _with_listings(self.store, rows))

    async def handle(self, message: Invalidation) -> None:
        await self.refetch()


class PersistedMonthlyCount(_CalendarReader):
    """Reads the stored (year, month) aggregate for the current reporting month."""

    tables = frozenset({ACTIVITY_TABLE, "monthly_application_stats"})

    def empty(self) -> int:
        return 0

    def next_boundary(self, now: datetime) -> datetime:
        return next_month_start(now, self.tz)

    async def fetch(self) -> int:
        year, month = year_month(self._clock(), self.tz)
        rows = await self.store.query(
            "monthly_application_stats", [eq("year", year), eq("month", month)], columns=["count"], limit=1
        )
        return int(rows[0]["count"]) if rows else 0

    async def handle(self, message: Invalidation) -> None:
        if message.table == ACTIVITY_TABLE and not _is_apply_insert(message):
            return
        await self.refetch()


async def _with_listings(store, rows: list[dict]) -> list[ActivityEntry]:
    """Attach listing title/company to activity rows. Orphans get ``internship=None``."""
    ids = {row["internship_id"] for row in rows if row.get("internship_id") is not None}
    listings = {}
    if ids:
        found = await store.query("internships", [in_("id", ids)], columns=["id", "title", "company"])
        listings = {str(l["id"]): ListingBrief(title=l["title"], company=l["company"]) for l in found}
    return [
        ActivityEntry(
            id=row["id"],
            created_at=row["created_at"],
            event=row["event"],
            method=row.get("method"),
            user_id=row.get("user_id"),
            internship=listings.get(str(row["internship_id"])),
        )
        for row in rows
    ]
