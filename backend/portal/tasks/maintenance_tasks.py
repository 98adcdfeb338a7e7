"""Maintenance tasks: monthly aggregate reconciliation and listing expiry."""

import logging
from datetime import datetime, timezone

import redis
from sqlalchemy import func

from portal.config import get_settings
from portal.datastore.base import ChangeKind, ChangeNotification
from portal.datastore.feed import encode_notification
from portal.models.activity_event import ActivityEvent
from portal.models.base import SyncSessionLocal
from portal.models.listing import Listing
from portal.models.monthly_stat import MonthlyApplicationStat
from portal.services.reporting_time import month_bounds, reporting_tz, year_month
from portal.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

TASK_ORIGIN = "celery"


def _notify(notifications: list[ChangeNotification]) -> None:
    """Relay worker-side writes to API processes sharing the redis feed."""
    settings = get_settings()
    if settings.realtime_backend != "redis" or not notifications:
        return
    try:
        r = redis.from_url(settings.redis_url, socket_timeout=5)
        for notification in notifications:
            r.publish(settings.realtime_channel_prefix, encode_notification(notification, TASK_ORIGIN))
    except redis.RedisError as e:
        logger.warning("Could not publish %d change notification(s): %s", len(notifications), e)


def _row(obj) -> dict:
    return {attr.columns[0].name: getattr(obj, attr.key) for attr in obj.__mapper__.column_attrs}


@celery_app.task(name="portal.tasks.maintenance_tasks.reconcile_monthly_stats")
def reconcile_monthly_stats(year: int | None = None, month: int | None = None):
    """Recount a reporting month's applies from the event log (default: current month)."""
    settings = get_settings()
    tz = reporting_tz(settings.reporting_utc_offset_hours)
    if year is None or month is None:
        year, month = year_month(datetime.now(timezone.utc), tz)
    start, end = month_bounds(year, month, tz)

    db = SyncSessionLocal()
    try:
        total = db.query(func.count(ActivityEvent.id)).filter(
            ActivityEvent.event == "apply",
            ActivityEvent.created_at >= start,
            ActivityEvent.created_at < end,
        ).scalar() or 0

        stat = db.query(MonthlyApplicationStat).filter(
            MonthlyApplicationStat.year == year,
            MonthlyApplicationStat.month == month,
        ).one_or_none()
        if stat is None:
            stat = MonthlyApplicationStat(year=year, month=month, count=total)
            db.add(stat)
            kind = ChangeKind.INSERT
            changed = True
        else:
            kind = ChangeKind.UPDATE
            changed = stat.count != total
            stat.count = total
        db.commit()
        if changed:
            db.refresh(stat)
            _notify([ChangeNotification("monthly_application_stats", kind, new=_row(stat))])
        logger.info("Reconciled %04d-%02d: %d applications", year, month, total)
        return {"year": year, "month": month, "count": total, "changed": changed}
    finally:
        db.close()


@celery_app.task(name="portal.tasks.maintenance_tasks.archive_expired_listings")
def archive_expired_listings():
    """Soft-delete active listings whose expiration has passed."""
    db = SyncSessionLocal()
    try:
        now = datetime.now(timezone.utc)
        expired = db.query(Listing).filter(
            Listing.deleted_at.is_(None),
            Listing.expires_at.isnot(None),
            Listing.expires_at < now,
        ).all()
        for listing in expired:
            listing.deleted_at = now
        db.commit()
        _notify([ChangeNotification("internships", ChangeKind.UPDATE, new=_row(listing)) for listing in expired])
        logger.info("Archived %d expired listings", len(expired))
        return {"archived": len(expired)}
    finally:
        db.close()
