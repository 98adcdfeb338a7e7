"""Admin dashboard readers: application logs, student count, locations."""

import logging
from typing import Any
from uuid import UUID

from portal.datastore.base import Order, eq, gte, in_, is_null, lt
from portal.exceptions import PortalError
from portal.identity import CurrentUser
from portal.schemas.activity import ApplicationLogEntry, ApplicationLogFilters, ApplicationLogs
from portal.schemas.listing import ListingBrief
from portal.services.event_log import EventLogStore
from portal.services.read_model import ReadModel
from portal.services.realtime import Invalidation
from portal.services.reporting_time import parse_reporting_date

logger = logging.getLogger(__name__)

UNKNOWN_USER = "Unknown User"


class ApplicationLogReader(ReadModel):
    """Most recent apply events with listing and applicant names.

    Date filters are whole reporting-timezone days; title and name filters
    are case-insensitive substring matches applied after the lookup.
    """

    tables = frozenset({"activity_logs"})

    def __init__(self, store, event_log: EventLogStore, filters: ApplicationLogFilters | None = None):
        super().__init__(store)
        self.event_log = event_log
        self.filters = filters or ApplicationLogFilters()

    def empty(self) -> ApplicationLogs:
        return ApplicationLogs()

    def accepts(self, message: Invalidation) -> bool:
        return super().accepts(message) and message.record.get("event") == "apply"

    async def set_filters(self, filters: ApplicationLogFilters) -> ApplicationLogs:
        self.filters = filters
        return await self.refetch()

    async def fetch(self) -> ApplicationLogs:
        f = self.filters
        conditions = [eq("event", "apply")]
        if f.start_date:
            conditions.append(gte("created_at", parse_reporting_date(f.start_date)))
        if f.end_date:
            conditions.append(lt("created_at", parse_reporting_date(f.end_date, end_of_day=True)))

        rows = await self.store.query(
            "activity_logs", conditions, order=[Order("created_at")], limit=self.event_log.page_size
        )
        listings = await self._lookup("internships", {r["internship_id"] for r in rows}, ["id", "title", "company"])
        profiles = await self._lookup("profiles", {r["user_id"] for r in rows if r.get("user_id")}, ["id", "name"])

        entries = []
        for row in rows:
            listing = listings.get(str(row["internship_id"]))
            profile = profiles.get(str(row.get("user_id")))
            entries.append(
                ApplicationLogEntry(
                    id=row["id"],
                    created_at=row["created_at"],
                    event=row["event"],
                    method=row.get("method"),
                    user_id=row.get("user_id"),
                    internship=ListingBrief(title=listing["title"], company=listing["company"]) if listing else None,
                    user_name=None if row.get("user_id") is None else (profile or {}).get("name") or UNKNOWN_USER,
                )
            )

        if f.job_title:
            needle = f.job_title.lower()
            entries = [e for e in entries if e.internship and needle in e.internship.title.lower()]
        if f.username:
            needle = f.username.lower()
            entries = [e for e in entries if needle in (e.user_name or "").lower()]

        total = await self.store.count("activity_logs", [eq("event", "apply")])
        return ApplicationLogs(applications=entries, total_applies=total)

    async def _lookup(self, table: str, ids: set, columns: list[str]) -> dict[str, dict[str, Any]]:
        if not ids:
            return {}
        rows = await self.store.query(table, [in_("id", ids)], columns=columns)
        return {str(row["id"]): row for row in rows}

    async def delete_log(self, event_id: UUID | str, user: CurrentUser | None) -> bool:
        try:
            await self.event_log.delete(event_id, user)
        except PortalError as e:
            logger.warning("Error deleting log %s: %s", event_id, e.message)
            return False
        await self.refetch()
        return True


class StudentCount(ReadModel):
    tables = frozenset({"profiles"})

    def empty(self) -> int:
        return 0

    async def fetch(self) -> int:
        return await self.store.count("profiles", [eq("role", "student")])


class ActiveLocations(ReadModel):
    """Distinct locations of active listings, for the location filter."""

    tables = frozenset({"internships"})

    def empty(self) -> list[str]:
        return []

    async def fetch(self) -> list[str]:
        rows = await self.store.query("internships", [is_null("deleted_at")], columns=["location"])
        return sorted({row["location"] for row in rows if row["location"]})
