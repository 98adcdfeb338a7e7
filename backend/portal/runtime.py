"""Process-wide wiring: store, change feed, realtime sync, shared readers, clients."""

import logging
import time
from collections import OrderedDict
from datetime import datetime
from typing import Callable

import redis.asyncio as aioredis

from portal.client import PortalClient
from portal.config import Settings, get_settings
from portal.datastore import ChangeFeed, RedisChangeFeed, SqlDataStore
from portal.identity import CurrentUser
from portal.models.base import build_async_engine, utcnow
from portal.services.admin_readers import ActiveLocations, ApplicationLogReader, StudentCount
from portal.services.aggregation import (
    GlobalApplicationTotals,
    MonthlyRollingTotals,
    PersistedMonthlyCount,
    TodayTotals,
)
from portal.services.event_log import EventLogStore
from portal.services.gates import ActionGate
from portal.services.listing_repository import ListingRepository
from portal.services.live_indicator import LiveIndicator
from portal.services.monthly_stats import MonthlyStatsWriter
from portal.services.presence import PresenceHub
from portal.services.realtime import RealtimeSync
from portal.services.reporting_time import reporting_tz

logger = logging.getLogger(__name__)


def build_feed(settings: Settings) -> ChangeFeed:
    if settings.realtime_backend == "redis":
        client = aioredis.from_url(settings.redis_url)
        return RedisChangeFeed(client, channel=settings.realtime_channel_prefix)
    return ChangeFeed()


class PortalRuntime:
    """Everything the API needs, started and stopped with the application."""

    def __init__(
        self,
        settings: Settings | None = None,
        store: SqlDataStore | None = None,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings = settings or get_settings()
        self.clock = clock
        self.monotonic = monotonic
        self._owns_store = store is None
        if store is None:
            store = SqlDataStore(build_async_engine(settings.database_url, echo=settings.debug), build_feed(settings))
        self.store = store
        tz = reporting_tz(settings.reporting_utc_offset_hours)

        self.live = LiveIndicator(settings.live_debounce_seconds, settings.live_hide_seconds, clock)
        self.realtime = RealtimeSync(store, self.live)
        self.event_log = EventLogStore(store, settings.event_page_size, clock)
        self.presence = PresenceHub(
            settings.presence_heartbeat_seconds,
            settings.presence_missed_heartbeats,
            settings.presence_max_members,
            monotonic,
        )

        # Shared readers; their counter gates are never used for writes
        self.listings = ListingRepository(
            store,
            ActionGate(settings.counter_debounce_seconds),
            ActionGate(settings.counter_debounce_seconds),
            default_duration_months=settings.default_listing_duration_months,
            clock=clock,
        )
        self.global_totals = GlobalApplicationTotals(store)
        self.today = TodayTotals(store, settings.recent_activity_limit, clock, tz)
        self.monthly_rolling = MonthlyRollingTotals(store, settings.rolling_scan_page_size)
        self.monthly_count = PersistedMonthlyCount(store, clock, tz)
        self.application_logs = ApplicationLogReader(store, self.event_log)
        self.student_count = StudentCount(store)
        self.locations = ActiveLocations(store)
        self.readers = [
            self.listings,
            self.global_totals,
            self.today,
            self.monthly_rolling,
            self.monthly_count,
            self.application_logs,
            self.student_count,
            self.locations,
        ]
        self.monthly_writer = MonthlyStatsWriter(store, tz) if settings.monthly_writer_enabled else None

        self._clients: OrderedDict[str, PortalClient] = OrderedDict()
        self.started = False

    async def start(self) -> None:
        await self.store.feed.start()
        for reader in self.readers:
            self.realtime.register(reader)
        if self.monthly_writer is not None:
            self.realtime.register(self.monthly_writer)
        await self.realtime.start()
        for reader in self.readers:
            await reader.refetch()
        self.presence.start()
        self.started = True
        logger.info("Portal runtime started (%d readers)", len(self.readers))

    async def reconnect(self) -> None:
        await self.store.feed.start()
        await self.realtime.reconnect()

    async def client_for(self, session_key: str, user: CurrentUser | None) -> PortalClient:
        """Return the session's client, creating it on first use.

        The registry is LRU-bounded; a user change on the same session
        replaces the client.
        """
        client = self._clients.get(session_key)
        if client is not None and client.user != user:
            await self.drop_client(session_key)
            client = None
        if client is None:
            client = PortalClient(self, user, session_key)
            await client.start()
            self._clients[session_key] = client
            while len(self._clients) > self.settings.client_cache_size:
                oldest, _ = next(iter(self._clients.items()))
                await self.drop_client(oldest)
        self._clients.move_to_end(session_key)
        return client

    async def drop_client(self, session_key: str) -> None:
        client = self._clients.pop(session_key, None)
        if client is not None:
            await client.close()

    async def stop(self) -> None:
        for key in list(self._clients):
            await self.drop_client(key)
        await self.presence.stop()
        await self.realtime.stop()
        self.live.close()
        await self.store.feed.close()
        if self._owns_store:
            await self.store.engine.dispose()
        self.started = False
        logger.info("Portal runtime stopped")
