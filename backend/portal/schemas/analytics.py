"""Response envelopes for read models, mutations, live status and presence."""

from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

from portal.schemas.activity import ActivityEntry

T = TypeVar("T")


class ReaderResponse(BaseModel, Generic[T]):
    """``{data, is_loading}`` accessor shape shared by every read model."""

    data: T
    is_loading: bool
    last_error: str | None = None


class TodayAnalytics(BaseModel):
    views: int = 0
    applies: int = 0
    recent_activity: list[ActivityEntry] = Field(default_factory=list)


class MutationResponse(BaseModel):
    ok: bool
    message: str = ""


class CounterResponse(BaseModel):
    counted: bool
    tracked: bool | None = None


class LiveStatus(BaseModel):
    last_updated: datetime | None = None
    affected_tables: list[str] = Field(default_factory=list)
    is_visible: bool = False


class PresenceStatus(BaseModel):
    key: str | None = None
    active_users: int = 0


def reader_payload(reader, data=None) -> dict:
    """Serialize a read model's accessor state; ``data`` overrides reader.data."""
    return {
        "data": reader.data if data is None else data,
        "is_loading": reader.is_loading,
        "last_error": reader.last_error,
    }
