"""Expiring cache for identity-graph profile lookups.

Entries are only ever invalidated by age; there is no explicit
invalidation. A miss (``None`` profile) is cached too, so an unknown
caller does not trigger a profile API request on every message.
"""

import time
from typing import Callable, Generic, Optional, TypeVar

V = TypeVar("V")

_MISSING = object()


class TTLCache(Generic[V]):
    """Plain key → (value, inserted_at) map evicted lazily on read."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, tuple[Optional[V], float]] = {}

    def get(self, key: str, default=_MISSING):
        """Return the cached value, or ``default`` when absent or expired.

        Raises:
            KeyError: If absent and no default was given.
        """
        entry = self._entries.get(key)
        if entry is not None:
            value, inserted_at = entry
            if self._clock() - inserted_at <= self.ttl_seconds:
                return value
            del self._entries[key]
        if default is _MISSING:
            raise KeyError(key)
        return default

    def __contains__(self, key: str) -> bool:
        absent = object()
        return self.get(key, absent) is not absent

    def set(self, key: str, value: Optional[V]) -> None:
        self._entries.pop(key, None)
        if len(self._entries) >= self.max_entries:
            self._evict()
        self._entries[key] = (value, self._clock())

    def _evict(self) -> None:
        now = self._clock()
        for key in [k for k, (_, ts) in self._entries.items() if now - ts > self.ttl_seconds]:
            del self._entries[key]
        if len(self._entries) >= self.max_entries:
            # Dicts keep insertion order, so the first key is the oldest write.
            del self._entries[next(iter(self._entries))]

    def __len__(self) -> int:
        return len(self._entries)
