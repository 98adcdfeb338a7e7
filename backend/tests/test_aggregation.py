"""Tests for the four aggregation readers and their freshness strategies."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from portal.datastore import ChangeKind
from portal.exceptions import TransientStorageError
from portal.services.aggregation import (
    GlobalApplicationTotals,
    MonthlyRollingTotals,
    PersistedMonthlyCount,
    TodayTotals,
)
from portal.services.event_log import EventLogStore
from portal.services.realtime import Invalidation
from portal.services.reporting_time import reporting_tz

TZ = reporting_tz(7)


def apply_insert(listing_id, **extra):
    return Invalidation("activity_logs", ChangeKind.INSERT, new={"event": "apply", "internship_id": str(listing_id), **extra})


async def _three_applies(store, listing):
    event_log = EventLogStore(store)
    for method in ("external_link", "external_link", "copied_email"):
        await event_log.append({"event": "apply", "internship_id": listing.id, "method": method})


async def test_three_applies_show_up_in_every_reader(store, listing):
    await _three_applies(store, listing)
    now = lambda: datetime.now(timezone.utc)  # noqa: E731
    global_totals = GlobalApplicationTotals(store)
    today = TodayTotals(store, clock=now, tz=TZ)
    rolling = MonthlyRollingTotals(store, page_size=2)

    await global_totals.refetch()
    await today.refetch()
    await rolling.refetch()

    assert global_totals.count_for(listing.id) == 3
    assert today.data.applies >= 3
    assert rolling.count_for(listing.id) >= 3


async def test_global_totals_patch_on_insert_and_refetch_on_delete(store, listing):
    await _three_applies(store, listing)
    totals = GlobalApplicationTotals(store)
    await totals.refetch()

    store.rpc = AsyncMock(wraps=store.rpc)
    await totals.handle(apply_insert(listing.id))
    assert totals.count_for(listing.id) == 4
    store.rpc.assert_not_called()

    await totals.handle(Invalidation("activity_logs", ChangeKind.DELETE, old={"id": "x"}))
    store.rpc.assert_awaited_once()
    assert totals.count_for(listing.id) == 3


async def test_global_totals_ignore_views_and_updates(store, listing):
    totals = GlobalApplicationTotals(store)
    await totals.refetch()
    await totals.handle(Invalidation("activity_logs", ChangeKind.INSERT, new={"event": "view", "internship_id": str(listing.id)}))
    await totals.handle(Invalidation("activity_logs", ChangeKind.UPDATE, new={"event": "apply", "internship_id": str(listing.id)}))
    assert totals.data == {}


async def test_reader_keeps_last_value_on_failure(store, listing):
    await _three_applies(store, listing)
    totals = GlobalApplicationTotals(store)
    await totals.refetch()

    store.rpc = AsyncMock(side_effect=TransientStorageError("Storage is temporarily unavailable"))
    await totals.refetch()
    assert totals.count_for(listing.id) == 3
    assert totals.last_error == "Storage is temporarily unavailable"
    assert totals.is_loading is False


async def test_reader_starts_empty_and_loading(store):
    totals = GlobalApplicationTotals(store)
    assert totals.data == {}
    assert totals.is_loading is True


async def test_today_respects_reporting_midnight(store, listing, clock):
    # 2026-03-14 17:00 UTC is local midnight in UTC+7
    before = datetime(2026, 3, 14, 16, 59, 59, tzinfo=timezone.utc)
    after = datetime(2026, 3, 14, 17, 0, 1, tzinfo=timezone.utc)
    await store.insert("activity_logs", {"event": "apply", "internship_id": listing.id, "created_at": before})
    await store.insert("activity_logs", {"event": "apply", "internship_id": listing.id, "created_at": after})
    await store.insert("activity_logs", {"event": "view", "internship_id": listing.id, "created_at": after})

    clock.now = datetime(2026, 3, 14, 18, 0, tzinfo=timezone.utc)
    today = TodayTotals(store, clock=clock, tz=TZ)
    data = await today.refetch()
    assert (data.views, data.applies) == (1, 1)
    assert sorted(e.event for e in data.recent_activity) == ["apply", "view"]
    assert all(e.internship.title == listing.title for e in data.recent_activity)

    clock.now = datetime(2026, 3, 14, 16, 0, tzinfo=timezone.utc)
    data = await today.refetch()
    assert (data.views, data.applies) == (0, 1)


async def test_today_recent_activity_is_limited(store, listing, clock):
    for minute in range(5):
        await store.insert(
            "activity_logs",
            {"event": "view", "internship_id": listing.id, "created_at": clock() + timedelta(minutes=minute)},
        )
    today = TodayTotals(store, recent_limit=3, clock=clock, tz=TZ)
    data = await today.refetch()
    assert data.views == 5
    assert len(data.recent_activity) == 3
    assert data.recent_activity[0].created_at == clock() + timedelta(minutes=4)


async def test_today_refetches_on_any_change(store, listing, clock):
    today = TodayTotals(store, clock=clock, tz=TZ)
    await today.refetch()
    await store.insert("activity_logs", {"event": "view", "internship_id": listing.id, "created_at": clock()})
    await today.handle(Invalidation("activity_logs", ChangeKind.UPDATE, new={}))
    assert today.data.views == 1


async def test_today_seconds_until_midnight(store, clock):
    clock.now = datetime(2026, 3, 14, 16, 0, tzinfo=timezone.utc)  # 23:00 local
    today = TodayTotals(store, clock=clock, tz=TZ)
    assert today.seconds_until_boundary() == 3600


async def test_rolling_totals_page_through_everything(store, listing, listing_data, repository):
    other = await repository.create(listing_data)
    for target, n in ((listing, 5), (other, 2)):
        for _ in range(n):
            await store.insert("activity_logs", {"event": "apply", "internship_id": target.id})
    await store.insert("activity_logs", {"event": "view", "internship_id": listing.id})

    rolling = MonthlyRollingTotals(store, page_size=2)
    data = await rolling.refetch()
    assert data == {str(listing.id): 5, str(other.id): 2}

    await rolling.handle(apply_insert(other.id))
    assert rolling.count_for(other.id) == 3


async def test_persisted_count_missing_row_reads_zero(store, clock):
    monthly = PersistedMonthlyCount(store, clock=clock, tz=TZ)
    assert await monthly.refetch() == 0
    assert monthly.last_error is None


async def test_persisted_count_reads_current_reporting_month(store, clock):
    await store.insert("monthly_application_stats", {"year": 2026, "month": 3, "count": 42})
    await store.insert("monthly_application_stats", {"year": 2026, "month": 4, "count": 7})
    monthly = PersistedMonthlyCount(store, clock=clock, tz=TZ)
    assert await monthly.refetch() == 42

    # 2026-03-31 17:00 UTC is April 1st locally
    clock.now = datetime(2026, 3, 31, 17, 0, 1, tzinfo=timezone.utc)
    assert await monthly.refetch() == 7


async def test_persisted_count_refreshes_on_apply_insert_only(store, clock):
    monthly = PersistedMonthlyCount(store, clock=clock, tz=TZ)
    await monthly.refetch()
    await store.insert("monthly_application_stats", {"year": 2026, "month": 3, "count": 1})

    await monthly.handle(Invalidation("activity_logs", ChangeKind.INSERT, new={"event": "view"}))
    assert monthly.data == 0
    await monthly.handle(apply_insert("x"))
    assert monthly.data == 1


async def test_boundary_task_runs_with_consumer(store, clock):
    monthly = PersistedMonthlyCount(store, clock=clock, tz=TZ)
    monthly.start()
    assert monthly._boundary_task is not None
    await monthly.stop()
    assert monthly._boundary_task is None


async def test_hard_delete_resets_every_reader(store, listing, repository):
    from portal.services.realtime import RealtimeSync

    await _three_applies(store, listing)
    now = lambda: datetime.now(timezone.utc)  # noqa: E731
    global_totals = GlobalApplicationTotals(store)
    today = TodayTotals(store, clock=now, tz=TZ)
    rolling = MonthlyRollingTotals(store)
    sync = RealtimeSync(store)
    for reader in (global_totals, today, rolling):
        sync.register(reader)
    await sync.start()
    for reader in (global_totals, today, rolling):
        await reader.refetch()
    assert global_totals.count_for(listing.id) == 3

    await repository.hard_delete(listing.id)
    await sync.settle()

    assert global_totals.count_for(listing.id) == 0
    assert rolling.count_for(listing.id) == 0
    assert today.data.applies == 0
    assert today.data.recent_activity == []
    await sync.stop()
