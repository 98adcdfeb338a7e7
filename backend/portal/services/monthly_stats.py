"""Keeps monthly_application_stats in step with apply events.

Only one process should run the writer: it counts every apply insert it
sees, including ones relayed from other workers over the shared feed.
"""

import logging
from datetime import datetime, timezone

from portal.datastore.base import ChangeKind, eq, gte, lt
from portal.services.read_model import InvalidationConsumer
from portal.services.realtime import Invalidation
from portal.services.reporting_time import month_bounds, reporting_tz, year_month

logger = logging.getLogger(__name__)

STATS_TABLE = "monthly_application_stats"


def _as_datetime(value) -> datetime | None:
    # Relayed payloads carry ISO strings
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return value


class MonthlyStatsWriter(InvalidationConsumer):
    """Adds one to the (year, month) row for every new apply event."""

    tables = frozenset({"activity_logs"})

    def __init__(self, store, tz: timezone | None = None):
        super().__init__()
        self.store = store
        self.tz = tz or reporting_tz()

    def accepts(self, message: Invalidation) -> bool:
        return (
            super().accepts(message)
            and message.kind == ChangeKind.INSERT
            and message.record.get("event") == "apply"
        )

    async def handle(self, message: Invalidation) -> None:
        year, month = year_month(_as_datetime(message.record.get("created_at")), self.tz)
        await self.store.upsert(
            STATS_TABLE,
            {"year": year, "month": month, "count": 1},
            ("year", "month"),
            increment_fields={"count": 1},
        )
        logger.debug("Monthly applications %04d-%02d +1", year, month)

    async def reconcile(self, year: int, month: int) -> int:
        """Recount a month from the event log and overwrite the stored row."""
        start, end = month_bounds(year, month, self.tz)
        total = await self.store.count(
            "activity_logs", [eq("event", "apply"), gte("created_at", start), lt("created_at", end)]
        )
        await self.store.upsert(
            STATS_TABLE,
            {"year": year, "month": month, "count": total},
            ("year", "month"),
            update_fields={"count": total},
        )
        logger.info("Reconciled monthly applications %04d-%02d = %d", year, month, total)
        return total
