"""Per-key rate gates used for counter debounce and apply-tracking throttle."""

import logging
import time
from collections import OrderedDict
from typing import Callable, Hashable

logger = logging.getLogger(__name__)


class ActionGate:
    """Leading-edge gate keyed by an identifier.

    The first call for a key opens a window; further calls for the same key
    inside the window are refused. State is a capacity-bounded LRU map of
    key -> last accepted time, owned by whoever created the gate.
    """

    def __init__(
        self,
        window_seconds: float,
        capacity: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window = window_seconds
        self.capacity = capacity
        self._clock = clock
        self._last: OrderedDict[Hashable, float] = OrderedDict()

    def allow(self, key: Hashable) -> bool:
        now = self._clock()
        last = self._last.get(key)
        if last is not None and now - last < self.window:
            return False
        self._last[key] = now
        self._last.move_to_end(key)
        self._evict(now)
        return True

    def _evict(self, now: float) -> None:
        if len(self._last) <= self.capacity:
            return
        # Expired entries first, then least recently accepted
        for key in [k for k, t in self._last.items() if now - t >= self.window]:
            del self._last[key]
        while len(self._last) > self.capacity:
            key, _ = self._last.popitem(last=False)
            logger.debug("Gate at capacity, evicted %s", key)

    def reset(self, key: Hashable | None = None) -> None:
        if key is None:
            self._last.clear()
        else:
            self._last.pop(key, None)

    def __len__(self) -> int:
        return len(self._last)
