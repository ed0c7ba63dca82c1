"""
Short-TTL in-memory cache used in front of per-token aggregator lookups.
"""

from collections import OrderedDict
from typing import Any, Callable, Optional
import time


class TTLCache:
    """Key/value cache with per-entry expiry and LRU bound"""

    def __init__(self, ttl_seconds: float, max_entries: int = 256,
                 clock: Optional[Callable[[], float]] = None):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock or time.monotonic
        self._entries: "OrderedDict[str, tuple]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            self.misses += 1
            return None

        self._entries.move_to_end(key)
        self.hits += 1
        return value

    def set(self, key: str, value: Any):
        if self.ttl_seconds <= 0:
            return
        self._entries[key] = (self._clock() + self.ttl_seconds, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
