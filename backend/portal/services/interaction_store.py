"""Per-user starred/viewed flags, upserted one row per (user, listing)."""

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from portal.datastore.base import eq
from portal.identity import CurrentUser, require_user
from portal.services.read_model import ReadModel
from portal.services.realtime import Invalidation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InteractionState:
    internship_id: str
    is_starred: bool = False
    is_viewed: bool = False

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "InteractionState":
        return cls(str(row["internship_id"]), bool(row["is_starred"]), bool(row["is_viewed"]))


class InteractionStore(ReadModel):
    """The signed-in user's interaction map. Anonymous users get an empty map
    and every mutation raises AuthError."""

    tables = frozenset({"user_internship_interactions"})
    table = "user_internship_interactions"
    conflict_columns = ("user_id", "internship_id")

    def __init__(self, store, user: CurrentUser | None):
        super().__init__(store)
        self.user = user

    def empty(self) -> dict[str, InteractionState]:
        return {}

    def accepts(self, message: Invalidation) -> bool:
        if not super().accepts(message) or self.user is None:
            return False
        return str(message.record.get("user_id")) == str(self.user.id)

    async def fetch(self) -> dict[str, InteractionState]:
        if self.user is None:
            return {}
        rows = await self.store.query(self.table, [eq("user_id", self.user.id)])
        return {str(row["internship_id"]): InteractionState.from_row(row) for row in rows}

    def _remember(self, row: dict[str, Any]) -> InteractionState:
        state = InteractionState.from_row(row)
        self.data = {**self.data, state.internship_id: state}
        return state

    async def set_starred(self, listing_id: UUID | str, value: bool) -> InteractionState:
        user = require_user(self.user)
        row = await self.store.upsert(
            self.table,
            {"user_id": user.id, "internship_id": listing_id, "is_starred": value, "is_viewed": False},
            self.conflict_columns,
            update_fields={"is_starred": value},
        )
        return self._remember(row)

    async def toggle_star(self, listing_id: UUID | str) -> InteractionState:
        user = require_user(self.user)
        rows = await self.store.query(
            self.table, [eq("user_id", user.id), eq("internship_id", listing_id)], limit=1
        )
        current = bool(rows and rows[0]["is_starred"])
        return await self.set_starred(listing_id, not current)

    async def mark_viewed(self, listing_id: UUID | str) -> InteractionState:
        """One-way latch: once viewed, never reset through this path."""
        user = require_user(self.user)
        cached = self.data.get(str(listing_id))
        if cached is not None and cached.is_viewed:
            return cached
        row = await self.store.upsert(
            self.table,
            {"user_id": user.id, "internship_id": listing_id, "is_starred": False, "is_viewed": True},
            self.conflict_columns,
            update_fields={"is_viewed": True},
        )
        return self._remember(row)

    def is_starred(self, listing_id: UUID | str) -> bool:
        state = self.data.get(str(listing_id))
        return bool(state and state.is_starred)

    def is_viewed(self, listing_id: UUID | str) -> bool:
        state = self.data.get(str(listing_id))
        return bool(state and state.is_viewed)
