"""
cache.py – Memoising result cache for task responses.

Entries are keyed by ``(operation, parameter fingerprint, transaction-set
identity)`` so the same question over the same ledger is answered once.
LRU eviction past CACHE_MAX_ENTRIES, expiry after CACHE_TTL_SECONDS.
All access goes through one lock; the worker thread writes while the event
loop reads.

Values are deep-copied on the way in and on the way out, so a caller that
edits a response never changes what later requests are served.
"""
from __future__ import annotations

import copy
import json
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Hashable, Optional, Tuple

from .config import CACHE_MAX_ENTRIES, CACHE_TTL_SECONDS

log = logging.getLogger(__name__)

CacheKey = Tuple[str, str, Hashable]


def make_key(operation: str, params: Dict[str, Any], identity: Hashable) -> CacheKey:
    """Build a cache key; ``params`` is fingerprinted as sorted JSON."""
    fingerprint = json.dumps(params, sort_keys=True, default=str, separators=(",", ":"))
    return (operation, fingerprint, identity)


class ResultCache:
    def __init__(self, max_entries: int = CACHE_MAX_ENTRIES, ttl_seconds: float = CACHE_TTL_SECONDS) -> None:
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._entries: "OrderedDict[CacheKey, Tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, key: CacheKey, record_miss: bool = True) -> Optional[Any]:
        """
        Return a copy of the live entry for ``key``, or None.

        ``record_miss=False`` is for a second look at a key whose miss was
        already counted.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and time.monotonic() - entry[0] > self.ttl_seconds:
                del self._entries[key]
                entry = None
            if entry is None:
                if record_miss:
                    self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            value = entry[1]
        return copy.deepcopy(value)

    def set(self, key: CacheKey, value: Any) -> None:
        value = copy.deepcopy(value)
        with self._lock:
            self._entries[key] = (time.monotonic(), value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self.evictions += 1

    def discard(self, key: CacheKey) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate(self, operation: Optional[str] = None) -> int:
        """Drop every entry, or only those of one operation. Returns the count removed."""
        with self._lock:
            if operation is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                stale = [k for k in self._entries if k[0] == operation]
                for k in stale:
                    del self._entries[k]
                removed = len(stale)
        log.info("Cache invalidated (%s): %d entries removed", operation or "all", removed)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = self.misses = self.evictions = 0

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
