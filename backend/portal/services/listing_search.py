"""Student dashboard search and filtering over active listings."""

from datetime import datetime, timezone
from typing import Mapping

from portal.schemas.listing import ListingFilters, ListingRead

POSTED_WINDOW_DAYS = {"24h": 1, "7d": 7, "30d": 30}


def _matches_search(listing: ListingRead, query: str) -> bool:
    query = query.lower()
    return (
        query in listing.title.lower()
        or query in listing.company.lower()
        or query in listing.location.lower()
        or query in listing.description.lower()
        or any(query in m.lower() for m in listing.major)
        or any(query in i.lower() for i in listing.industry)
    )


def filter_listings(
    listings: list[ListingRead],
    filters: ListingFilters,
    interactions: Mapping[str, object] | None = None,
    now: datetime | None = None,
) -> list[ListingRead]:
    """Apply search, major/industry, posted-window, location and tab filters.

    ``interactions`` maps listing id -> object with ``is_starred``/``is_viewed``.
    """
    interactions = interactions or {}
    now = now or datetime.now(timezone.utc)
    result = listings

    if filters.search and filters.search.strip():
        result = [l for l in result if _matches_search(l, filters.search.strip())]

    if filters.majors:
        result = [l for l in result if any(m in filters.majors for m in l.major)]

    if filters.industries:
        result = [l for l in result if any(i in filters.industries for i in l.industry)]

    if filters.time_posted != "all":
        max_days = POSTED_WINDOW_DAYS[filters.time_posted]
        result = [l for l in result if (now - l.created_at).days <= max_days]

    if filters.location and filters.location != "all":
        location = filters.location.lower()
        result = [l for l in result if location in l.location.lower()]

    if filters.tab == "starred":
        result = [l for l in result if getattr(interactions.get(str(l.id)), "is_starred", False)]
    elif filters.tab == "viewed":
        result = [l for l in result if getattr(interactions.get(str(l.id)), "is_viewed", False)]

    return result
