"""
Memory backend and embedder interfaces.
"""

import math
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence

from ..models import MemoryRecord, ScoredMemory

EVICTION_POLICIES = ("lru", "oldest", "least_important")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Args:
        a: First vector.
        b: Second vector.

    Returns:
        Similarity in [-1, 1]; 0.0 if either vector is all zeros.

    Raises:
        ValueError: If the vectors differ in dimension.
    """
    if len(a) != len(b):
        raise ValueError(f"Dimension mismatch: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def rank(scored: list[ScoredMemory], k: int) -> list[ScoredMemory]:
    """
    Order recall candidates and keep the top k.

    Higher similarity first; equal scores put the more recent record first.
    Recency is the creation time, with the in-process sequence breaking
    ties between records created within the same clock tick.
    """
    ordered = sorted(
        scored, key=lambda s: (-s.score, -s.record.created_at, -s.record.sequence)
    )
    return ordered[: max(k, 0)]


class Embedder(ABC):
    """Turns text into embedding vectors."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Vector dimension produced by this embedder."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """
        Embed a batch of texts.

        Args:
            texts: Texts to embed.

        Returns:
            One vector per text, in order.

        Raises:
            BackendUnavailableError: If a remote embedder cannot be reached.
        """

    async def embed_one(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]

    async def close(self) -> None:
        """Release resources. Override if needed."""


class MemoryBackend(ABC):
    """
    Long-term memory store.

    The backend owns eviction; callers only grant permission to evict.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name for logs."""

    @abstractmethod
    async def remember(self, record: MemoryRecord, *, allow_eviction: bool = False) -> None:
        """
        Store a record.

        Args:
            record: Record to store.
            allow_eviction: Whether an existing record may be evicted to
                make room at capacity.

        Raises:
            CapacityExceededError: If the store is full and eviction was not
                allowed.
            BackendUnavailableError: If the backend cannot be reached.
        """

    @abstractmethod
    def recall(self, query_embedding: Sequence[float], k: int) -> AsyncIterator[ScoredMemory]:
        """
        Yield at most k records by descending similarity.

        Ties are broken by the more recent record first.

        Raises:
            BackendUnavailableError: If the backend cannot be reached.
        """

    @abstractmethod
    async def count(self) -> int:
        """Number of stored records."""

    async def close(self) -> None:
        """Release resources. Override if needed."""
