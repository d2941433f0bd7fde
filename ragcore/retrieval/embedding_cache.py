"""
Bounded in-memory cache for embeddings, keyed by (text, model).

Eviction is approximate LRU: every entry carries an access counter and the
least-accessed entry is dropped when a new key would exceed capacity.
"""

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .embedding_service import Embedding

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    embedding: "Embedding"
    access_count: int = 1


class EmbeddingCache:
    """
    Thread-safe embedding cache.

    Cached Embeddings are frozen and shared between callers; the cache never
    modifies them.

    Usage:
        cache = EmbeddingCache(max_size=10000)
        cache.set("hello", "text-embedding-3-small", embedding)
        hit = cache.get("hello", "text-embedding-3-small")
    """

    def __init__(self, max_size: int = 10000):
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self.max_size = max_size
        self._entries: dict[tuple[str, str], _Entry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, text: str, model: str) -> Optional["Embedding"]:
        with self._lock:
            entry = self._entries.get((text, model))
            if entry is None:
                self._misses += 1
                return None
            entry.access_count += 1
            self._hits += 1
            return entry.embedding

    def set(self, text: str, model: str, embedding: "Embedding"):
        key = (text, model)
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._evict_least_used()
            self._entries[key] = _Entry(embedding)

    def _evict_least_used(self):
        # Caller holds the lock
        victim = min(self._entries, key=lambda k: self._entries[k].access_count)
        del self._entries[victim]
        self._evictions += 1

    def clear(self):
        with self._lock:
            self._entries.clear()
        logger.info("Embedding cache cleared")

    def get_statistics(self) -> dict:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": self._hits / lookups if lookups else 0.0,
            }
