"""Presence: who is online right now.

Every connected client tracks itself on a shared topic under its own
presence key and re-tracks on a heartbeat. Members that miss
``missed_heartbeats`` consecutive heartbeats are pruned. Subscribers get
``join``/``leave``/``sync`` callbacks; the active-user count is the number
of distinct keys in the state delivered by ``sync``.
"""

import asyncio
import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from portal.identity import CurrentUser

logger = logging.getLogger(__name__)

ONLINE_USERS_TOPIC = "online-users"
PRESENCE_EVENTS = ("sync", "join", "leave")

_ALPHABET = string.ascii_lowercase + string.digits


def new_session_id(now: datetime | None = None) -> str:
    """Presence key for one browser session: ``session_<epoch ms>_<random>``."""
    now = now or datetime.now(timezone.utc)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(9))
    return f"session_{int(now.timestamp() * 1000)}_{suffix}"


@dataclass
class PresenceMember:
    key: str
    ref: str
    payload: dict[str, Any]
    last_seen: float


@dataclass
class _Topic:
    # presence key -> channel ref -> member; one key may be tracked from several sessions
    members: dict[str, dict[str, PresenceMember]] = field(default_factory=dict)
    channels: list["PresenceChannel"] = field(default_factory=list)

    def metas(self):
        for refs in self.members.values():
            yield from refs.values()


class PresenceChannel:
    """One subscriber's handle on a presence topic."""

    def __init__(self, hub: "PresenceHub", topic: str, key: str, ref: str | None = None):
        self.hub = hub
        self.topic = topic
        self.key = key
        self.ref = ref or key
        self._listeners: dict[str, list[Callable]] = {event: [] for event in PRESENCE_EVENTS}
        self.closed = False

    def on(self, event: str, callback: Callable) -> "PresenceChannel":
        if event not in self._listeners:
            raise ValueError(f"Unknown presence event '{event}'")
        self._listeners[event].append(callback)
        return self

    def _emit(self, event: str, *args) -> None:
        for callback in self._listeners[event]:
            try:
                callback(*args)
            except Exception:
                logger.exception("Presence %s listener failed on %s", event, self.topic)

    async def track(self, payload: dict[str, Any]) -> None:
        self.hub.track(self.topic, self.key, payload, ref=self.ref)

    async def untrack(self) -> None:
        self.hub.untrack(self.topic, self.key, ref=self.ref)

    def presence_state(self) -> dict[str, list[dict[str, Any]]]:
        return self.hub.state(self.topic)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.hub._detach(self)


class PresenceHub:
    """Process-wide presence state, keyed by topic then presence key.

    The membership map is bounded by ``max_members`` tracked sessions and swept
    every half heartbeat, so a silent session is gone at most half an interval
    after its second missed heartbeat.
    """

    def __init__(
        self,
        heartbeat_seconds: float = 30.0,
        missed_heartbeats: int = 2,
        max_members: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.heartbeat_seconds = heartbeat_seconds
        self.missed_heartbeats = missed_heartbeats
        self.max_members = max_members
        self._clock = clock
        self._topics: dict[str, _Topic] = {}
        self._sweeper: asyncio.Task | None = None

    @property
    def timeout(self) -> float:
        return self.heartbeat_seconds * self.missed_heartbeats

    @property
    def sweep_seconds(self) -> float:
        return self.heartbeat_seconds / 2

    def _topic(self, topic: str) -> _Topic:
        return self._topics.setdefault(topic, _Topic())

    def channel(self, topic: str, key: str, ref: str | None = None) -> PresenceChannel:
        ch = PresenceChannel(self, topic, key, ref)
        self._topic(topic).channels.append(ch)
        return ch

    def _detach(self, ch: PresenceChannel) -> None:
        t = self._topics.get(ch.topic)
        if t is not None and ch in t.channels:
            t.channels.remove(ch)

    def _broadcast(self, topic: str, event: str, *args) -> None:
        for ch in list(self._topic(topic).channels):
            ch._emit(event, *args)

    def _sync(self, topic: str) -> None:
        state = self.state(topic)
        self._broadcast(topic, "sync", state)

    def track(self, topic: str, key: str, payload: dict[str, Any], ref: str | None = None) -> None:
        ref = ref or key
        t = self._topic(topic)
        now = self._clock()
        member = t.members.get(key, {}).get(ref)
        if member is not None:
            member.payload = payload
            member.last_seen = now
            return
        if sum(len(refs) for refs in t.members.values()) >= self.max_members:
            stalest = min(t.metas(), key=lambda m: m.last_seen)
            logger.warning("Presence topic %s full, evicting %s", topic, stalest.key)
            self._remove(topic, stalest.key, stalest.ref)
        first = key not in t.members
        t.members.setdefault(key, {})[ref] = PresenceMember(key, ref, payload, now)
        if first:
            self._broadcast(topic, "join", key, payload)
        self._sync(topic)

    def _remove(self, topic: str, key: str, ref: str) -> PresenceMember | None:
        t = self._topic(topic)
        refs = t.members.get(key)
        member = refs.pop(ref, None) if refs is not None else None
        if member is not None and not refs:
            del t.members[key]
            self._broadcast(topic, "leave", key, member.payload)
        return member

    def untrack(self, topic: str, key: str, ref: str | None = None) -> None:
        if self._remove(topic, key, ref or key) is not None:
            self._sync(topic)

    def prune(self) -> int:
        """Drop sessions that have missed ``missed_heartbeats`` heartbeats."""
        now = self._clock()
        removed = 0
        for name, t in self._topics.items():
            stale = [(m.key, m.ref) for m in t.metas() if now - m.last_seen >= self.timeout]
            for key, ref in stale:
                self._remove(name, key, ref)
            if stale:
                logger.info("Pruned %d stale presence session(s) from %s", len(stale), name)
                self._sync(name)
            removed += len(stale)
        return removed

    def state(self, topic: str) -> dict[str, list[dict[str, Any]]]:
        return {key: [m.payload for m in refs.values()] for key, refs in self._topic(topic).members.items()}

    def count(self, topic: str = ONLINE_USERS_TOPIC) -> int:
        return len(self._topic(topic).members)

    async def _sweep(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_seconds)
            self.prune()

    def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep())

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None


class PresenceTracker:
    """Tracks one client session on the online-users topic.

    The presence key is the signed-in user's id, or the session id for
    anonymous visitors, so one user open in several sessions counts once.

    With ``auto_heartbeat`` the tracker re-tracks itself every heartbeat
    interval; HTTP clients instead call ``heartbeat()`` on their own schedule.
    """

    def __init__(
        self,
        hub: PresenceHub,
        session_id: str,
        user: CurrentUser | None = None,
        topic: str = ONLINE_USERS_TOPIC,
        auto_heartbeat: bool = True,
    ):
        self.hub = hub
        self.session_id = session_id
        self.user = user
        self.key = str(user.id) if user else session_id
        self.topic = topic
        self.auto_heartbeat = auto_heartbeat
        self.active_users = 0
        self._channel: PresenceChannel | None = None
        self._heartbeat_task: asyncio.Task | None = None

    def _payload(self) -> dict[str, Any]:
        return {
            "user_id": str(self.user.id) if self.user else None,
            "session_id": self.session_id,
            "online_at": datetime.now(timezone.utc).isoformat(),
        }

    def _on_sync(self, state: dict[str, list]) -> None:
        self.active_users = len(state)

    @property
    def joined(self) -> bool:
        return self._channel is not None

    async def join(self) -> None:
        if self._channel is not None:
            return
        self._channel = self.hub.channel(self.topic, self.key, ref=self.session_id).on("sync", self._on_sync)
        await self._channel.track(self._payload())
        self.active_users = len(self._channel.presence_state())
        if self.auto_heartbeat:
            self._heartbeat_task = asyncio.create_task(self._beat())
        logger.debug("Presence %s (%s) joined %s", self.key, self.session_id, self.topic)

    async def heartbeat(self) -> None:
        if self._channel is None:
            await self.join()
            return
        await self._channel.track(self._payload())
        self.active_users = len(self._channel.presence_state())

    async def _beat(self) -> None:
        while True:
            await asyncio.sleep(self.hub.heartbeat_seconds)
            await self.heartbeat()

    async def leave(self) -> None:
        """Best-effort: failures are logged, the channel is released regardless."""
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None
        channel, self._channel = self._channel, None
        if channel is None:
            return
        try:
            await channel.untrack()
        except Exception:
            logger.exception("Presence untrack failed for %s", self.session_id)
        finally:
            await channel.close()
