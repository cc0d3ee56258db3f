from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Hashable, TypeVar


K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    value: V
    inserted_at: float


class TTLCache(Generic[K, V]):
    """In-process read accelerator; entries expire purely by age."""

    def __init__(
        self,
        ttl_seconds: float,
        *,
        max_keys: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = max(0.0, float(ttl_seconds))
        self.max_keys = max_keys
        self._clock = clock
        self._entries: dict[K, CacheEntry[V]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _is_fresh(self, entry: CacheEntry[V]) -> bool:
        return (self._clock() - entry.inserted_at) < self.ttl_seconds

    def get(self, key: K) -> V | None:
        entry = self._entries.get(key)
        if entry is None or not self._is_fresh(entry):
            return None
        return entry.value

    def put(self, key: K, value: V) -> None:
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(value=value, inserted_at=self._clock())
        if self.max_keys is not None:
            while len(self._entries) > self.max_keys:
                oldest = next(iter(self._entries))
                del self._entries[oldest]

    def age(self, key: K) -> float | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        return self._clock() - entry.inserted_at

    async def get_or_refresh(self, key: K, refresh: Callable[[K], Awaitable[V]]) -> V:
        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry):
            return entry.value
        value = await refresh(key)
        self.put(key, value)
        return value

    def invalidate(self, key: K | None = None) -> None:
        if key is None:
            self._entries.clear()
            return
        self._entries.pop(key, None)

    def prune(self) -> int:
        stale = [key for key, entry in self._entries.items() if not self._is_fresh(entry)]
        for key in stale:
            del self._entries[key]
        return len(stale)
