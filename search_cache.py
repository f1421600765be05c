import logging, time
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class CacheEntry:
    key: tuple
    results: tuple
    created_at: float


class SearchCache:
    """Process-lifetime map from (query, page) to a timestamped result set.

    No per-key locking: concurrent misses for the same key both write and the
    last write wins.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._entries: dict[tuple, CacheEntry] = {}

    @staticmethod
    def make_key(query: str, page: int) -> tuple:
        return (query, page)

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at < self.ttl

    def get(self, query: str, page: int):
        entry = self._entries.get(self.make_key(query, page))
        if entry is None:
            return None
        if not self._is_fresh(entry, self.clock()):
            logging.debug(f"CACHE STALE - '{query}' (page {page})")
            return None
        return entry.results

    def put(self, query: str, page: int, results) -> CacheEntry:
        key = self.make_key(query, page)
        entry = CacheEntry(key=key, results=tuple(results), created_at=self.clock())
        self._entries[key] = entry
        return entry

    def expire(self) -> int:
        now = self.clock()
        stale = [k for k, e in self._entries.items() if not self._is_fresh(e, now)]
        for key in stale:
            del self._entries[key]
        if stale:
            logging.debug(f"CACHE EXPIRE - Dropped {len(stale)} stale entries")
        return len(stale)

    def __len__(self):
        return len(self._entries)
