"""Tests for the realtime sync state machine and invalidation routing."""

import asyncio

from portal.datastore import ChangeKind, ChangeNotification
from portal.services.aggregation import GlobalApplicationTotals
from portal.services.event_log import EventLogStore
from portal.services.interaction_store import InteractionStore
from portal.services.read_model import InvalidationConsumer
from portal.services.realtime import RealtimeSync, SubscriptionState


class BlockingConsumer(InvalidationConsumer):
    tables = frozenset({"activity_logs"})

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()
        self.seen = []

    async def handle(self, message):
        self.seen.append(message)
        await self.release.wait()


async def _yield(times: int = 5) -> None:
    for _ in range(times):
        await asyncio.sleep(0)


async def _apply(store, listing):
    await EventLogStore(store).append({"event": "apply", "internship_id": listing.id, "method": "external_link"})


async def test_subscribe_lifecycle(store, listing):
    sync = RealtimeSync(store)
    totals = GlobalApplicationTotals(store)
    sync.register(totals)
    assert sync.state("activity_logs") == SubscriptionState.DISCONNECTED

    await sync.start()
    sub = sync.subscriptions["activity_logs"]
    assert sub.state == SubscriptionState.SUBSCRIBED
    assert list(sub.history) == [
        SubscriptionState.DISCONNECTED,
        SubscriptionState.SUBSCRIBING,
        SubscriptionState.SUBSCRIBED,
    ]

    await _apply(store, listing)
    await sync.settle()
    assert totals.count_for(listing.id) == 1
    assert list(sub.history)[-2:] == [SubscriptionState.REFETCHING, SubscriptionState.SUBSCRIBED]
    await sync.stop()


async def test_table_stays_refetching_until_consumers_ack(store, listing):
    sync = RealtimeSync(store)
    consumer = BlockingConsumer()
    sync.register(consumer)
    await sync.start()

    await _apply(store, listing)
    await _yield()
    assert sync.state("activity_logs") == SubscriptionState.REFETCHING
    assert consumer.seen[0].kind == ChangeKind.INSERT

    consumer.release.set()
    await sync.settle()
    assert sync.state("activity_logs") == SubscriptionState.SUBSCRIBED
    await sync.stop()


async def test_notifications_are_routed_only_to_accepting_consumers(store, listing, student, admin):
    sync = RealtimeSync(store)
    mine = InteractionStore(store, student)
    theirs = InteractionStore(store, admin)
    sync.register(mine)
    sync.register(theirs)
    await sync.start()

    sub = sync.subscriptions["user_internship_interactions"]
    delivered = sub.dispatch(
        ChangeNotification(
            "user_internship_interactions",
            ChangeKind.INSERT,
            new={"user_id": str(student.id), "internship_id": str(listing.id), "is_starred": True, "is_viewed": False},
        )
    )
    assert delivered == 1
    await sync.settle()
    await sync.stop()


async def test_failed_consumer_still_acks(store, listing):
    class Exploding(InvalidationConsumer):
        tables = frozenset({"activity_logs"})

        async def handle(self, message):
            raise RuntimeError("boom")

    sync = RealtimeSync(store)
    sync.register(Exploding())
    await sync.start()
    await _apply(store, listing)
    await sync.settle()
    assert sync.state("activity_logs") == SubscriptionState.SUBSCRIBED
    await sync.stop()


async def test_disconnect_and_reconnect_refetches(store, listing):
    sync = RealtimeSync(store)
    totals = GlobalApplicationTotals(store)
    sync.register(totals)
    await sync.start()
    await totals.refetch()

    await store.feed.close()
    await _yield()
    assert sync.state("activity_logs") == SubscriptionState.DISCONNECTED

    # Missed while disconnected
    await _apply(store, listing)
    await _yield()
    assert totals.count_for(listing.id) == 0

    await store.feed.start()
    await sync.reconnect()
    assert sync.state("activity_logs") == SubscriptionState.SUBSCRIBED
    assert totals.count_for(listing.id) == 1

    await _apply(store, listing)
    await sync.settle()
    assert totals.count_for(listing.id) == 2
    await sync.stop()


async def test_register_after_start_subscribes_new_tables(store):
    sync = RealtimeSync(store)
    await sync.start()
    assert sync.subscriptions == {}
    sync.register(GlobalApplicationTotals(store))
    assert sync.state("activity_logs") == SubscriptionState.SUBSCRIBED
    await sync.stop()


async def test_live_indicator_is_notified(store, listing):
    class Recorder:
        def __init__(self):
            self.tables = []

        def notify(self, table):
            self.tables.append(table)

    recorder = Recorder()
    sync = RealtimeSync(store, live_indicator=recorder)
    sync.register(GlobalApplicationTotals(store))
    await sync.start()
    await _apply(store, listing)
    await sync.settle()
    assert recorder.tables == ["activity_logs"]
    await sync.stop()
