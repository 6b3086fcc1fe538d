"""Sub-query answer cache: skip re-running identical recursive queries.

Keyed on ``(model, prompt, context)`` and scoped to a single top-level run;
every nested executor of that run shares the instance.  Nothing is persisted.
"""

from __future__ import annotations

import hashlib
from collections import OrderedDict
from dataclasses import dataclass


@dataclass
class CacheStats:
    """Snapshot of cache performance counters."""

    hits: int = 0
    misses: int = 0
    size: int = 0


class SubQueryCache:
    """LRU cache of sub-query answers keyed on a content hash.

    Parameters
    ----------
    max_size:
        Maximum number of entries.  When exceeded, the least-recently-used
        entry is evicted.
    """

    def __init__(self, max_size: int = 1_000) -> None:
        self._max_size = max_size
        self._store: OrderedDict[str, str] = OrderedDict()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def key(model: str, prompt: str, context: str | list[str]) -> str:
        """Deterministic cache key for a sub-query."""
        digest = hashlib.sha256()
        digest.update(model.encode())
        digest.update(b"\0")
        digest.update(prompt.encode())
        digest.update(b"\0")
        if isinstance(context, str):
            digest.update(context.encode())
        else:
            for part in context:
                digest.update(part.encode())
                digest.update(b"\x1e")
        return digest.hexdigest()

    def get(self, cache_key: str) -> str | None:
        """Look up a cached answer.  Returns ``None`` on miss."""
        if cache_key in self._store:
            self._hits += 1
            self._store.move_to_end(cache_key)
            return self._store[cache_key]
        self._misses += 1
        return None

    def put(self, cache_key: str, value: str) -> None:
        """Store an answer, evicting the LRU entry when at capacity."""
        if cache_key in self._store:
            self._store.move_to_end(cache_key)
        elif len(self._store) >= self._max_size:
            self._store.popitem(last=False)
        self._store[cache_key] = value

    @property
    def stats(self) -> CacheStats:
        return CacheStats(hits=self._hits, misses=self._misses, size=len(self._store))
