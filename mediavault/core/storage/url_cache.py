"""
Time-bounded cache of signed/public URLs.

Each adapter owns one cache keyed by storage_file_id. A lookup only returns
a URL whose expiry is still in the future; expired entries are treated as
absent and dropped when that key is looked up again. The cache never holds
negative entries.

The map is shared between concurrent requests, so every access goes
through a lock. Overlapping refreshes of the same key are allowed: the last
writer wins and the duplicate provider call is tolerated.

An optional size bound evicts least-recently-used entries; without it the
cache grows with the number of distinct objects ever served.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class SignedUrlCacheEntry:
    """A cached URL and the epoch second after which it must not be served."""
    url: str
    expires_at: float


class SignedUrlCache:
    """
    LRU-bounded signed URL cache.

    Args:
        max_entries: size bound; None or 0 disables eviction
        clock: returns the current time in epoch seconds (tests inject a fake)
    """

    def __init__(
        self,
        max_entries: Optional[int] = 10_000,
        clock: Clock = time.time,
    ) -> None:
        self._max_entries = max_entries or None
        self._clock = clock
        self._entries: "OrderedDict[str, SignedUrlCacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, storage_file_id: str) -> Optional[str]:
        """Return a live URL for the key, or None on miss/expiry."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(storage_file_id)
            if entry is None:
                return None
            if entry.expires_at <= now:
                del self._entries[storage_file_id]
                return None
            self._entries.move_to_end(storage_file_id)
            return entry.url

    def put(self, storage_file_id: str, url: str, expires_in: float) -> SignedUrlCacheEntry:
        """Store a URL that stays valid for ``expires_in`` seconds from now."""
        entry = SignedUrlCacheEntry(url=url, expires_at=self._clock() + expires_in)
        with self._lock:
            self._entries[storage_file_id] = entry
            self._entries.move_to_end(storage_file_id)
            if self._max_entries is not None:
                while len(self._entries) > self._max_entries:
                    evicted, _ = self._entries.popitem(last=False)
                    logger.debug("Evicted signed URL", extra={"storage_file_id": evicted})
        return entry

    def evict(self, storage_file_id: str) -> bool:
        """Drop the entry for a key. Returns True if one was present."""
        with self._lock:
            return self._entries.pop(storage_file_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, storage_file_id: object) -> bool:
        # raw membership, expired entries included
        with self._lock:
            return storage_file_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
