"""Pydantic schemas package."""

from portal.schemas.listing import (
    ApplyRequest,
    InteractionRead,
    ListingBase,
    ListingBrief,
    ListingCard,
    ListingCreate,
    ListingFilters,
    ListingRead,
    ListingUpdate,
)
from portal.schemas.activity import (
    ActivityEntry,
    ActivityEventCreate,
    ActivityEventRead,
    ApplicationLogEntry,
    ApplicationLogFilters,
    ApplicationLogs,
)
from portal.schemas.analytics import (
    CounterResponse,
    LiveStatus,
    MutationResponse,
    PresenceStatus,
    ReaderResponse,
    TodayAnalytics,
)

__all__ = [
    # Listing
    "ApplyRequest",
    "InteractionRead",
    "ListingBase",
    "ListingBrief",
    "ListingCard",
    "ListingCreate",
    "ListingFilters",
    "ListingRead",
    "ListingUpdate",
    # Activity
    "ActivityEntry",
    "ActivityEventCreate",
    "ActivityEventRead",
    "ApplicationLogEntry",
    "ApplicationLogFilters",
    "ApplicationLogs",
    # Analytics
    "CounterResponse",
    "LiveStatus",
    "MutationResponse",
    "PresenceStatus",
    "ReaderResponse",
    "TodayAnalytics",
]
