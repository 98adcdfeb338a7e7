"""Tests for the activity log store and apply tracker."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from portal.exceptions import AuthError, NotFoundError, PermissionDenied, ValidationError
from portal.services.event_log import ActivityTracker, EventLogStore
from portal.services.gates import ActionGate


@pytest.fixture
def event_log(store):
    return EventLogStore(store, page_size=100)


async def test_append_apply_event(event_log, listing, student):
    row = await event_log.append(
        {"event": "apply", "internship_id": listing.id, "user_id": student.id, "method": "external_link"}
    )
    assert row["event"] == "apply"
    assert row["method"] == "external_link"
    assert row["created_at"].tzinfo is not None


async def test_append_rejects_unknown_kind(event_log, listing):
    with pytest.raises(ValidationError):
        await event_log.append({"event": "click", "internship_id": listing.id})


async def test_append_rejects_unknown_method(event_log, listing):
    with pytest.raises(ValidationError):
        await event_log.append({"event": "apply", "internship_id": listing.id, "method": "fax"})


async def test_append_rejects_missing_listing(event_log):
    with pytest.raises(ValidationError):
        await event_log.append({"event": "view", "internship_id": uuid4()})


async def test_anonymous_view_is_allowed(event_log, listing):
    row = await event_log.append({"event": "view", "internship_id": listing.id})
    assert row["user_id"] is None


async def test_query_is_newest_first_and_filtered(event_log, store, listing):
    base = datetime(2026, 3, 14, tzinfo=timezone.utc)
    for minutes in (1, 3, 2):
        await store.insert(
            "activity_logs",
            {"event": "apply", "internship_id": listing.id, "created_at": base + timedelta(minutes=minutes)},
        )
    await store.insert("activity_logs", {"event": "view", "internship_id": listing.id, "created_at": base})

    rows = [row async for row in event_log.query("apply")]
    assert [r["created_at"].minute for r in rows] == [3, 2, 1]

    windowed = [
        row async for row in event_log.query("apply", start=base + timedelta(minutes=2), end=base + timedelta(minutes=3))
    ]
    assert len(windowed) == 1


async def test_query_validates_kind_before_iteration(event_log):
    with pytest.raises(ValidationError):
        event_log.query("click")


async def test_query_returns_at_most_one_page(store, listing):
    event_log = EventLogStore(store, page_size=2)
    for _ in range(3):
        await store.insert("activity_logs", {"event": "view", "internship_id": listing.id})
    assert len([row async for row in event_log.query("view")]) == 2


async def test_count(event_log, listing):
    await event_log.append({"event": "view", "internship_id": listing.id})
    await event_log.append({"event": "apply", "internship_id": listing.id, "method": "copied_email"})
    assert await event_log.count("view") == 1
    assert await event_log.count("apply") == 1


async def test_delete_requires_admin(event_log, listing, student, admin):
    row = await event_log.append({"event": "view", "internship_id": listing.id})
    with pytest.raises(AuthError):
        await event_log.delete(row["id"], None)
    with pytest.raises(PermissionDenied):
        await event_log.delete(row["id"], student)
    await event_log.delete(row["id"], admin)
    with pytest.raises(NotFoundError):
        await event_log.delete(row["id"], admin)


async def test_tracker_throttles_apply_per_listing(event_log, listing, student, monotonic):
    tracker = ActivityTracker(event_log, student, ActionGate(3.0, clock=monotonic))
    assert await tracker.track_apply(listing.id, "external_link") is True
    monotonic.advance(2.9)
    assert await tracker.track_apply(listing.id, "external_link") is False
    monotonic.advance(0.2)
    assert await tracker.track_apply(listing.id, "copied_email") is True
    assert await event_log.count("apply") == 2
