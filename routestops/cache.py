import json
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Tuple

DEFAULT_TTL_SECONDS = 3600.0
DEFAULT_MAX_ENTRIES = 1024

MISSING = object()


def fingerprint(*parts: Any) -> str:
    """Deterministic cache key for a set of request parameters"""
    return json.dumps(parts, sort_keys=True, separators=(',', ':'), default=str)


class TTLCache:
    """
    Small in-memory cache with a fixed time-to-live per entry and LRU eviction.
    The clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError('ttl_seconds must be positive')
        if max_entries < 1:
            raise ValueError('max_entries must be at least 1')
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: 'OrderedDict[str, Tuple[float, Any]]' = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = MISSING) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return default
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                return default
            self._entries.move_to_end(key)
            self.hits += 1
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
