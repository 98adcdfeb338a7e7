"""Listing repository: CRUD, archive/restore and debounced counter increments."""

import logging
from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from portal.datastore.base import Condition, Order, eq, is_null
from portal.exceptions import NotFoundError, ValidationError, validation_error_from
from portal.models.base import utcnow
from portal.schemas.listing import ListingCreate, ListingRead, ListingUpdate
from portal.services.gates import ActionGate
from portal.services.read_model import ReadModel
from portal.services.reporting_time import add_months

logger = logging.getLogger(__name__)

# Columns that may be set back to NULL through a partial update
NULLABLE_UPDATE_FIELDS = {"image_url"}


class ListingRepository(ReadModel):
    """Active listings as a read model, plus the mutations admins and viewers perform.

    Counter increments go through per-listing gates owned by this instance:
    a second increment for the same listing inside the gate window is
    dropped without error. The storage write itself is an atomic +1.
    """

    tables = frozenset({"internships"})
    table = "internships"

    def __init__(
        self,
        store,
        views_gate: ActionGate,
        clicks_gate: ActionGate,
        default_duration_months: int = 6,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(store)
        self.views_gate = views_gate
        self.clicks_gate = clicks_gate
        self.default_duration_months = default_duration_months
        self._clock = clock

    def empty(self) -> list[ListingRead]:
        return []

    async def fetch(self) -> list[ListingRead]:
        rows = await self.store.query(self.table, [is_null("deleted_at")], order=[Order("created_at")])
        return [ListingRead.model_validate(row) for row in rows]

    async def get(self, listing_id: UUID | str, include_deleted: bool = True) -> ListingRead | None:
        conditions = [eq("id", listing_id)]
        if not include_deleted:
            conditions.append(is_null("deleted_at"))
        rows = await self.store.query(self.table, conditions, limit=1)
        return ListingRead.model_validate(rows[0]) if rows else None

    async def create(self, data: ListingCreate | dict[str, Any], created_by: UUID | None = None) -> ListingRead:
        try:
            payload = ListingCreate.model_validate(data)
        except PydanticValidationError as e:
            raise validation_error_from(e)

        now = self._clock()
        months = payload.listing_duration or self.default_duration_months
        row = payload.model_dump()
        row.update(
            listing_duration=months,
            expires_at=add_months(now, months),
            created_at=now,
            updated_at=now,
            created_by=created_by,
        )
        created = await self.store.insert(self.table, row)
        logger.info("Created internship %s (%s at %s)", created["id"], payload.title, payload.company)
        return ListingRead.model_validate(created)

    async def update(self, listing_id: UUID | str, data: ListingUpdate | dict[str, Any]) -> ListingRead:
        try:
            payload = ListingUpdate.model_validate(data)
        except PydanticValidationError as e:
            raise validation_error_from(e)
        fields = payload.model_dump(exclude_unset=True)
        cleared = [k for k, v in fields.items() if v is None and k not in NULLABLE_UPDATE_FIELDS]
        if cleared:
            raise ValidationError(f"{cleared[0]}: field is required", errors=[f"{k}: field is required" for k in cleared])

        current = await self.get(listing_id, include_deleted=False)
        if current is None:
            raise NotFoundError(f"Internship {listing_id} not found")
        if not fields:
            return current
        if "listing_duration" in fields:
            fields["expires_at"] = add_months(current.created_at, fields["listing_duration"])

        # Guarded on deleted_at so a concurrent archive is never undone by an edit
        updated = await self.store.update(self.table, listing_id, fields, guard=[is_null("deleted_at")])
        logger.info("Updated internship %s (%s)", listing_id, ", ".join(sorted(fields)))
        return ListingRead.model_validate(updated)

    async def soft_delete(self, listing_id: UUID | str) -> ListingRead:
        try:
            row = await self.store.update(
                self.table, listing_id, {"deleted_at": self._clock()}, guard=[is_null("deleted_at")]
            )
        except NotFoundError:
            existing = await self.get(listing_id)
            if existing is None:
                raise
            return existing  # already archived
        logger.info("Archived internship %s", listing_id)
        return ListingRead.model_validate(row)

    async def restore(self, listing_id: UUID | str) -> ListingRead:
        try:
            row = await self.store.update(
                self.table, listing_id, {"deleted_at": None}, guard=[Condition("deleted_at", "not_null")]
            )
        except NotFoundError:
            existing = await self.get(listing_id)
            if existing is None:
                raise
            return existing
        logger.info("Restored internship %s", listing_id)
        return ListingRead.model_validate(row)

    async def hard_delete(self, listing_id: UUID | str) -> None:
        """Irreversible. Activity rows and interactions go with it (ON DELETE CASCADE)."""
        await self.store.delete(self.table, listing_id)
        logger.info("Permanently deleted internship %s", listing_id)

    async def increment_views(self, listing_id: UUID | str) -> bool:
        if not self.views_gate.allow(str(listing_id)):
            return False
        await self.store.increment(self.table, listing_id, "views")
        return True

    async def increment_apply_clicks(self, listing_id: UUID | str) -> bool:
        if not self.clicks_gate.allow(str(listing_id)):
            return False
        await self.store.increment(self.table, listing_id, "apply_clicks")
        return True
