"""Tests for the monthly aggregate writer and the Celery maintenance tasks."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from portal.datastore import ChangeKind, eq
from portal.models.base import Base, _enable_sqlite_foreign_keys
from portal.models.listing import Listing
from portal.models.monthly_stat import MonthlyApplicationStat
from portal.services.aggregation import PersistedMonthlyCount
from portal.services.monthly_stats import MonthlyStatsWriter
from portal.services.realtime import Invalidation, RealtimeSync
from portal.services.event_log import EventLogStore
from portal.services.reporting_time import reporting_tz
from portal.tasks import maintenance_tasks

TZ = reporting_tz(7)


async def _stat(store, year, month):
    rows = await store.query("monthly_application_stats", [eq("year", year), eq("month", month)])
    return rows[0]["count"] if rows else None


async def test_writer_counts_apply_inserts_by_reporting_month(store):
    writer = MonthlyStatsWriter(store, TZ)
    # 17:30 UTC on March 31st is already April locally
    await writer.handle(Invalidation("activity_logs", ChangeKind.INSERT, new={"event": "apply", "created_at": "2026-03-31T17:30:00+00:00"}))
    await writer.handle(Invalidation("activity_logs", ChangeKind.INSERT, new={"event": "apply", "created_at": datetime(2026, 4, 2, tzinfo=timezone.utc)}))
    await writer.handle(Invalidation("activity_logs", ChangeKind.INSERT, new={"event": "apply", "created_at": datetime(2026, 3, 2, tzinfo=timezone.utc)}))
    assert await _stat(store, 2026, 4) == 2
    assert await _stat(store, 2026, 3) == 1


def test_writer_ignores_views_and_deletes():
    writer = MonthlyStatsWriter(None, TZ)
    assert writer.accepts(Invalidation("activity_logs", ChangeKind.INSERT, new={"event": "apply"}))
    assert not writer.accepts(Invalidation("activity_logs", ChangeKind.INSERT, new={"event": "view"}))
    assert not writer.accepts(Invalidation("activity_logs", ChangeKind.DELETE, old={"event": "apply"}))
    assert not writer.accepts(Invalidation("internships", ChangeKind.INSERT, new={"event": "apply"}))


async def test_writer_and_persisted_reader_end_to_end(store, listing):
    now = datetime.now(timezone.utc)
    sync = RealtimeSync(store)
    monthly = PersistedMonthlyCount(store, clock=lambda: now, tz=TZ)
    sync.register(MonthlyStatsWriter(store, TZ))
    sync.register(monthly)
    await sync.start()
    await monthly.refetch()
    assert monthly.data == 0

    event_log = EventLogStore(store)
    for method in ("external_link", "copied_email"):
        await event_log.append({"event": "apply", "internship_id": listing.id, "method": method})
    await event_log.append({"event": "view", "internship_id": listing.id})
    await sync.settle()
    assert monthly.data == 2
    await sync.stop()


async def test_reconcile_overwrites_drift(store, listing):
    march = datetime(2026, 3, 10, tzinfo=timezone.utc)
    for day in range(3):
        await store.insert("activity_logs", {"event": "apply", "internship_id": listing.id, "created_at": march + timedelta(days=day)})
    await store.insert("monthly_application_stats", {"year": 2026, "month": 3, "count": 99})
    assert await MonthlyStatsWriter(store, TZ).reconcile(2026, 3) == 3
    assert await _stat(store, 2026, 3) == 3


@pytest.fixture
def sync_session(tmp_path, monkeypatch):
    engine = create_engine(f"sqlite:///{tmp_path / 'worker.db'}")
    _enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)
    monkeypatch.setattr(maintenance_tasks, "SyncSessionLocal", factory)
    yield factory
    engine.dispose()


def _listing(**overrides):
    fields = dict(
        title="Intern",
        company="Acme",
        location="Bangkok",
        duration="3 months",
        description="A description long enough.",
        major=["CS"],
        industry=["Tech"],
        application_method="email",
        application_value="jobs@acme.example",
    )
    fields.update(overrides)
    return Listing(**fields)


def test_reconcile_task_creates_missing_row(sync_session):
    from portal.models.activity_event import ActivityEvent

    db = sync_session()
    listing = _listing()
    db.add(listing)
    db.flush()
    moment = datetime(2026, 5, 20, tzinfo=timezone.utc)
    db.add_all([ActivityEvent(event="apply", internship_id=listing.id, created_at=moment) for _ in range(4)])
    db.add(ActivityEvent(event="view", internship_id=listing.id, created_at=moment))
    db.commit()
    db.close()

    result = maintenance_tasks.reconcile_monthly_stats(2026, 5)
    assert result == {"year": 2026, "month": 5, "count": 4, "changed": True}
    assert maintenance_tasks.reconcile_monthly_stats(2026, 5)["changed"] is False

    db = sync_session()
    stat = db.query(MonthlyApplicationStat).filter_by(year=2026, month=5).one()
    assert stat.count == 4
    db.close()


def test_archive_expired_listings(sync_session):
    now = datetime.now(timezone.utc)
    db = sync_session()
    db.add_all(
        [
            _listing(title="Expired", expires_at=now - timedelta(days=1)),
            _listing(title="Current", expires_at=now + timedelta(days=30)),
            _listing(title="Open ended"),
        ]
    )
    db.commit()
    db.close()

    assert maintenance_tasks.archive_expired_listings() == {"archived": 1}

    db = sync_session()
    archived = {l.title for l in db.query(Listing).filter(Listing.deleted_at.isnot(None))}
    assert archived == {"Expired"}
    db.close()
