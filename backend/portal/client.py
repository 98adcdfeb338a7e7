"""Per-session facade over the portal services.

One PortalClient exists per browser session. It owns that session's
counter debounce gates, apply throttle, interaction map and presence
tracker. Mutations never raise: they return a MutationResult carrying the
failure message (and the original error for callers that map it).
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from uuid import UUID

from portal.exceptions import PortalError
from portal.identity import CurrentUser, require_admin
from portal.services.event_log import ActivityTracker
from portal.services.gates import ActionGate
from portal.services.interaction_store import InteractionStore
from portal.services.listing_repository import ListingRepository
from portal.services.presence import PresenceTracker

logger = logging.getLogger(__name__)


@dataclass
class MutationResult:
    ok: bool
    message: str = ""
    data: Any = None
    error: PortalError | None = None


class PortalClient:
    def __init__(self, runtime, user: CurrentUser | None, session_id: str):
        settings = runtime.settings
        self.runtime = runtime
        self.user = user
        self.session_id = session_id
        self.listings = ListingRepository(
            runtime.store,
            ActionGate(settings.counter_debounce_seconds, settings.gate_capacity, runtime.monotonic),
            ActionGate(settings.counter_debounce_seconds, settings.gate_capacity, runtime.monotonic),
            default_duration_months=settings.default_listing_duration_months,
            clock=runtime.clock,
        )
        self.interactions = InteractionStore(runtime.store, user)
        self.tracker = ActivityTracker(
            runtime.event_log,
            user,
            ActionGate(settings.apply_throttle_seconds, settings.gate_capacity, runtime.monotonic),
        )
        self.presence = PresenceTracker(runtime.presence, session_id, user, auto_heartbeat=False)

    async def start(self) -> None:
        if self.user is not None:
            self.runtime.realtime.register(self.interactions)
            await self.interactions.refetch()

    async def close(self) -> None:
        await self.runtime.realtime.unregister(self.interactions)
        await self.presence.leave()

    async def _attempt(
        self, action: str, operation: Callable[[], Awaitable], message: str, admin: bool = False
    ) -> MutationResult:
        try:
            if admin:
                require_admin(self.user)
            data = await operation()
        except PortalError as e:
            logger.warning("%s failed: %s", action, e.message)
            return MutationResult(ok=False, message=e.message or f"{action} failed", error=e)
        return MutationResult(ok=True, message=message, data=data)

    # --- Admin listing management ---

    async def add_listing(self, data: dict[str, Any]) -> MutationResult:
        created_by = self.user.id if self.user else None
        return await self._attempt(
            "Add internship",
            lambda: self.listings.create(data, created_by=created_by),
            "Internship added successfully",
            admin=True,
        )

    async def update_listing(self, listing_id: UUID | str, data: dict[str, Any]) -> MutationResult:
        return await self._attempt(
            "Update internship",
            lambda: self.listings.update(listing_id, data),
            "Internship updated successfully",
            admin=True,
        )

    async def delete_listing(self, listing_id: UUID | str, permanent: bool = False) -> MutationResult:
        if permanent:
            operation = lambda: self.listings.hard_delete(listing_id)
            message = "Internship permanently deleted"
        else:
            operation = lambda: self.listings.soft_delete(listing_id)
            message = "Internship archived"
        return await self._attempt("Delete internship", operation, message, admin=True)

    async def restore_listing(self, listing_id: UUID | str) -> MutationResult:
        return await self._attempt(
            "Restore internship", lambda: self.listings.restore(listing_id), "Internship restored", admin=True
        )

    # --- Counters and tracking ---

    async def increment_views(self, listing_id: UUID | str) -> bool:
        try:
            return await self.listings.increment_views(listing_id)
        except PortalError as e:
            logger.warning("Error incrementing views for %s: %s", listing_id, e.message)
            return False

    async def increment_apply_clicks(self, listing_id: UUID | str) -> bool:
        try:
            return await self.listings.increment_apply_clicks(listing_id)
        except PortalError as e:
            logger.warning("Error incrementing apply clicks for %s: %s", listing_id, e.message)
            return False

    async def track_apply(self, listing_id: UUID | str, method: str) -> bool:
        try:
            return await self.tracker.track_apply(listing_id, method)
        except PortalError as e:
            logger.warning("Error tracking apply for %s: %s", listing_id, e.message)
            return False

    async def open_listing(self, listing_id: UUID | str) -> bool:
        """Student opened a listing's details: latch viewed, count and log the view."""
        if self.user is not None:
            await self.mark_viewed(listing_id)
        counted = await self.increment_views(listing_id)
        if counted:
            try:
                await self.tracker.track_view(listing_id)
            except PortalError as e:
                logger.warning("Error tracking view for %s: %s", listing_id, e.message)
        return counted

    async def apply(self, listing_id: UUID | str, method: str) -> tuple[bool, bool]:
        """Apply button pressed. Returns (click counted, apply tracked)."""
        counted = await self.increment_apply_clicks(listing_id)
        tracked = await self.track_apply(listing_id, method)
        return counted, tracked

    # --- Interactions ---

    async def toggle_star(self, listing_id: UUID | str) -> MutationResult:
        result = await self._attempt("Toggle star", lambda: self.interactions.toggle_star(listing_id), "")
        if result.ok:
            result.message = "Starred" if result.data.is_starred else "Unstarred"
        return result

    async def mark_viewed(self, listing_id: UUID | str) -> MutationResult:
        return await self._attempt("Mark viewed", lambda: self.interactions.mark_viewed(listing_id), "Marked as viewed")
