"""Tests for listing CRUD, archive semantics and debounced counters."""

import asyncio
from uuid import uuid4

import pytest

from portal.exceptions import NotFoundError, ValidationError
from portal.services.gates import ActionGate
from portal.services.listing_repository import ListingRepository
from portal.services.reporting_time import add_months


async def test_create_defaults_to_six_month_expiry(repository, listing_data, clock):
    listing = await repository.create(listing_data)
    assert listing.listing_duration == 6
    assert listing.created_at == clock()
    assert listing.expires_at == add_months(clock(), 6)


async def test_create_with_one_month_duration(repository, listing_data, clock):
    listing = await repository.create({**listing_data, "listing_duration": 1})
    assert listing.expires_at == add_months(clock(), 1)


@pytest.mark.parametrize("months", [0, 30])
async def test_create_rejects_duration_out_of_range(repository, listing_data, months):
    with pytest.raises(ValidationError):
        await repository.create({**listing_data, "listing_duration": months})


@pytest.mark.parametrize(
    "field,value",
    [
        ("title", "   "),
        ("description", "too short"),
        ("major", []),
        ("industry", []),
        ("application_value", ""),
        ("application_method", "fax"),
    ],
)
async def test_create_validates_required_fields(repository, listing_data, field, value):
    with pytest.raises(ValidationError):
        await repository.create({**listing_data, field: value})
    assert await repository.fetch() == []


async def test_create_strips_whitespace(repository, listing_data):
    listing = await repository.create({**listing_data, "title": "  Backend Intern  "})
    assert listing.title == "Backend Intern"


async def test_update_applies_only_present_fields(repository, listing):
    updated = await repository.update(listing.id, {"location": "Chiang Mai"})
    assert updated.location == "Chiang Mai"
    assert updated.title == listing.title


async def test_update_recomputes_expiry_from_creation(repository, listing, clock):
    clock.advance(days=40)
    updated = await repository.update(listing.id, {"listing_duration": 2})
    assert updated.expires_at == add_months(listing.created_at, 2)


async def test_update_rejects_clearing_required_field(repository, listing):
    with pytest.raises(ValidationError):
        await repository.update(listing.id, {"title": None})


async def test_update_never_resurrects_archived_listing(repository, listing):
    await repository.soft_delete(listing.id)
    with pytest.raises(NotFoundError):
        await repository.update(listing.id, {"title": "Edited"})
    archived = await repository.get(listing.id)
    assert archived.deleted_at is not None
    assert archived.title == listing.title


async def test_update_missing_listing(repository):
    with pytest.raises(NotFoundError):
        await repository.update(uuid4(), {"title": "Nope"})


async def test_soft_delete_and_restore(repository, listing):
    archived = await repository.soft_delete(listing.id)
    assert archived.deleted_at is not None
    assert await repository.fetch() == []
    assert await repository.get(listing.id, include_deleted=False) is None

    # Archiving twice keeps the original timestamp
    again = await repository.soft_delete(listing.id)
    assert again.deleted_at == archived.deleted_at

    restored = await repository.restore(listing.id)
    assert restored.deleted_at is None
    assert [l.id for l in await repository.fetch()] == [listing.id]


async def test_hard_delete_cascades(repository, store, listing, student):
    await store.insert("activity_logs", {"event": "view", "internship_id": listing.id})
    await store.upsert(
        "user_internship_interactions",
        {"user_id": student.id, "internship_id": listing.id, "is_starred": True, "is_viewed": False},
        ("user_id", "internship_id"),
    )
    await repository.hard_delete(listing.id)
    assert await repository.get(listing.id) is None
    assert await store.count("activity_logs") == 0
    assert await store.count("user_internship_interactions") == 0
    with pytest.raises(NotFoundError):
        await repository.hard_delete(listing.id)


async def test_hard_delete_announces_cascaded_rows(repository, store, listing, student):
    view = await store.insert("activity_logs", {"event": "view", "internship_id": listing.id})
    await store.upsert(
        "user_internship_interactions",
        {"user_id": student.id, "internship_id": listing.id, "is_starred": True, "is_viewed": False},
        ("user_id", "internship_id"),
    )
    published = []

    async def record(notification):
        published.append(notification)

    store.feed.publish = record
    await repository.hard_delete(listing.id)

    deleted = {(n.table, str(n.old["id"])) for n in published if n.kind.value == "DELETE"}
    assert ("activity_logs", str(view["id"])) in deleted
    assert ("internships", str(listing.id)) in deleted
    assert {n.table for n in published} == {"activity_logs", "user_internship_interactions", "internships"}
    assert published[-1].table == "internships"


async def test_increment_views_is_debounced_per_listing(repository, listing, listing_data, monotonic):
    other = await repository.create(listing_data)
    assert await repository.increment_views(listing.id) is True
    assert await repository.increment_views(listing.id) is False
    assert await repository.increment_views(other.id) is True
    monotonic.advance(2.0)
    assert await repository.increment_views(listing.id) is True
    assert (await repository.get(listing.id)).views == 2
    assert (await repository.get(other.id)).views == 1


async def test_view_and_click_gates_are_separate(repository, listing):
    assert await repository.increment_views(listing.id)
    assert await repository.increment_apply_clicks(listing.id)
    current = await repository.get(listing.id)
    assert (current.views, current.apply_clicks) == (1, 1)


async def test_concurrent_clients_do_not_lose_increments(store, listing, clock):
    def client():
        return ListingRepository(store, ActionGate(2.0), ActionGate(2.0), clock=clock)

    results = await asyncio.gather(client().increment_views(listing.id), client().increment_views(listing.id))
    assert results == [True, True]
    assert (await client().get(listing.id)).views == 2


async def test_increment_missing_listing(repository):
    with pytest.raises(NotFoundError):
        await repository.increment_views(uuid4())


async def test_refetch_lists_active_newest_first(repository, listing_data, clock):
    first = await repository.create(listing_data)
    clock.advance(minutes=5)
    second = await repository.create({**listing_data, "title": "Second"})
    data = await repository.refetch()
    assert [l.id for l in data] == [second.id, first.id]
    assert repository.is_loading is False
