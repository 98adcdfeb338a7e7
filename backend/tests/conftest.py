"""Shared fixtures: a file-backed SQLite store per test and controllable clocks."""

import os

# Must be set before portal.models.base builds its module-level engines
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("REALTIME_BACKEND", "memory")

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from portal.datastore import ChangeFeed, SqlDataStore
from portal.identity import CurrentUser
from portal.models.base import build_async_engine
from portal.services.gates import ActionGate
from portal.services.listing_repository import ListingRepository


class FakeClock:
    """Wall clock returning an aware UTC datetime that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


LISTING = {
    "title": "Data Engineering Intern",
    "company": "Acme Analytics",
    "location": "Bangkok",
    "duration": "3 months",
    "description": "Build and maintain data pipelines with the platform team.",
    "major": ["Computer Science"],
    "industry": ["Technology"],
    "application_method": "external",
    "application_value": "https://acme.example.com/jobs/42",
}


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 14, 5, 0, tzinfo=timezone.utc))


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
async def store(tmp_path):
    engine = build_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'portal.db'}")
    store = SqlDataStore(engine, ChangeFeed())
    await store.create_all()
    yield store
    await engine.dispose()


@pytest.fixture
def listing_data():
    return dict(LISTING)


@pytest.fixture
def repository(store, clock, monotonic):
    return ListingRepository(store, ActionGate(2.0, clock=monotonic), ActionGate(2.0, clock=monotonic), clock=clock)


@pytest.fixture
async def listing(repository, listing_data):
    return await repository.create(listing_data)


async def _profile(store, name: str, role: str) -> CurrentUser:
    row = await store.insert("profiles", {"email": f"{name.lower()}-{uuid4().hex[:6]}@uni.example", "name": name, "role": role})
    return CurrentUser(id=row["id"], email=row["email"], name=row["name"], role=row["role"])


@pytest.fixture
async def student(store):
    return await _profile(store, "Somchai", "student")


@pytest.fixture
async def admin(store):
    return await _profile(store, "Admin", "admin")
