"""
In-process memory store with cosine similarity and bounded capacity.
"""

import itertools
import logging
import threading
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any

from ..exceptions import CapacityExceededError
from ..models import MemoryRecord, ScoredMemory
from .base import EVICTION_POLICIES, MemoryBackend, cosine_similarity, rank

logger = logging.getLogger(__name__)


class InMemoryMemoryStore(MemoryBackend):
    """
    Memory store kept in process memory.

    Thread-safe for concurrent access. Records are lost on restart.
    """

    def __init__(self, capacity: int | None = None, eviction: str = "lru") -> None:
        """
        Initialize the store.

        Args:
            capacity: Maximum records held (None = unbounded).
            eviction: Eviction policy: lru, oldest or least_important.

        Raises:
            ValueError: If capacity or eviction policy is invalid.
        """
        if capacity is not None and capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        if eviction not in EVICTION_POLICIES:
            raise ValueError(
                f"eviction must be one of {EVICTION_POLICIES}, got '{eviction}'"
            )
        self._capacity = capacity
        self._eviction = eviction
        self._records: dict[str, MemoryRecord] = {}
        self._last_access: dict[str, int] = {}
        self._access_clock = itertools.count()
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "in-memory"

    @property
    def capacity(self) -> int | None:
        return self._capacity

    async def remember(self, record: MemoryRecord, *, allow_eviction: bool = False) -> None:
        with self._lock:
            full = (
                self._capacity is not None
                and record.record_id not in self._records
                and len(self._records) >= self._capacity
            )
            if full:
                if not allow_eviction:
                    raise CapacityExceededError(self._capacity)
                evicted = self._evict_one()
                logger.debug(f"🧠 Evicted memory {evicted} ({self._eviction})")
            self._records[record.record_id] = record
            self._last_access[record.record_id] = next(self._access_clock)

    def _evict_one(self) -> str:
        if self._eviction == "lru":
            victim = min(self._records, key=lambda rid: self._last_access[rid])
        elif self._eviction == "oldest":
            victim = min(self._records, key=lambda rid: self._records[rid].sequence)
        else:
            victim = min(
                self._records,
                key=lambda rid: (self._records[rid].importance, self._records[rid].sequence),
            )
        del self._records[victim]
        del self._last_access[victim]
        return victim

    async def recall(
        self, query_embedding: Sequence[float], k: int
    ) -> AsyncIterator[ScoredMemory]:
        if k <= 0:
            return
        query = [float(v) for v in query_embedding]
        with self._lock:
            candidates = [
                ScoredMemory(record=record, score=cosine_similarity(query, record.embedding))
                for record in self._records.values()
            ]
            top = rank(candidates, k)
            for item in top:
                if item.record.record_id in self._last_access:
                    self._last_access[item.record.record_id] = next(self._access_clock)

        for item in top:
            yield item

    async def count(self) -> int:
        with self._lock:
            return len(self._records)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "InMemoryMemoryStore":
        capacity = config.get("capacity")
        return cls(
            capacity=int(capacity) if capacity is not None else None,
            eviction=config.get("eviction", "lru"),
        )
