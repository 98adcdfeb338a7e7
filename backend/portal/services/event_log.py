"""Append-only activity log and the throttled apply tracker in front of it."""

import logging
from datetime import datetime
from typing import Any, AsyncIterator, Callable
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from portal.datastore.base import Order, eq, gte, lt
from portal.exceptions import ValidationError, validation_error_from
from portal.identity import CurrentUser, require_admin
from portal.models.base import utcnow
from portal.schemas.activity import ActivityEventCreate
from portal.services.gates import ActionGate

logger = logging.getLogger(__name__)

EVENT_KINDS = ("view", "apply")


class EventLogStore:
    """Inserts and reads immutable activity rows. There is no update path."""

    table = "activity_logs"

    def __init__(self, store, page_size: int = 100, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.page_size = page_size
        self._clock = clock

    async def append(self, event: ActivityEventCreate | dict[str, Any]) -> dict[str, Any]:
        try:
            payload = ActivityEventCreate.model_validate(event)
        except PydanticValidationError as e:
            raise validation_error_from(e)

        listing = await self.store.query("internships", [eq("id", payload.internship_id)], columns=["id"], limit=1)
        if not listing:
            raise ValidationError(f"Internship {payload.internship_id} does not exist")

        row = await self.store.insert(
            self.table,
            {
                "created_at": self._clock(),
                "event": payload.event,
                "internship_id": payload.internship_id,
                "user_id": payload.user_id,
                "method": payload.method,
                "metadata": payload.metadata,
            },
        )
        logger.info("Tracked %s for internship %s", payload.event, payload.internship_id)
        return row

    def query(
        self,
        kind: str,
        listing_id: UUID | str | None = None,
        user_id: UUID | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Newest-first events matching the filters, at most one page.

        The returned iterator is lazy (nothing is fetched until iteration
        starts) and single-use.
        """
        if kind not in EVENT_KINDS:
            raise ValidationError(f"Unknown event kind '{kind}'")
        conditions = [eq("event", kind)]
        if listing_id is not None:
            conditions.append(eq("internship_id", listing_id))
        if user_id is not None:
            conditions.append(eq("user_id", user_id))
        if start is not None:
            conditions.append(gte("created_at", start))
        if end is not None:
            conditions.append(lt("created_at", end))

        async def _rows():
            rows = await self.store.query(
                self.table,
                conditions,
                order=[Order("created_at"), Order("id")],
                limit=self.page_size,
            )
            for row in rows:
                yield row

        return _rows()

    async def count(self, kind: str, start: datetime | None = None, end: datetime | None = None) -> int:
        conditions = [eq("event", kind)]
        if start is not None:
            conditions.append(gte("created_at", start))
        if end is not None:
            conditions.append(lt("created_at", end))
        return await self.store.count(self.table, conditions)

    async def delete(self, event_id: UUID | str, user: CurrentUser | None) -> None:
        """Permanently remove one event. Admin only; there is no soft-delete tier."""
        admin = require_admin(user)
        await self.store.delete(self.table, event_id)
        logger.info("Admin %s deleted activity log %s", admin.email, event_id)


class ActivityTracker:
    """Records qualifying UI actions for one client.

    Apply tracking is throttled per listing: at most one apply event per
    listing per window, later triggers inside the window are dropped.
    """

    def __init__(self, event_log: EventLogStore, user: CurrentUser | None, apply_gate: ActionGate):
        self.event_log = event_log
        self.user = user
        self.apply_gate = apply_gate

    async def track_apply(self, listing_id: UUID | str, method: str) -> bool:
        if not self.apply_gate.allow(str(listing_id)):
            logger.debug("Apply on %s throttled", listing_id)
            return False
        await self.event_log.append(
            {
                "event": "apply",
                "internship_id": listing_id,
                "user_id": self.user.id if self.user else None,
                "method": method,
            }
        )
        return True

    async def track_view(self, listing_id: UUID | str) -> dict[str, Any]:
        return await self.event_log.append(
            {
                "event": "view",
                "internship_id": listing_id,
                "user_id": self.user.id if self.user else None,
            }
        )
