"""
Unit tests for similarity helpers and the in-process memory store.
"""

import pytest

from warden.exceptions import CapacityExceededError
from warden.memory.base import cosine_similarity, rank
from warden.memory.in_memory import InMemoryMemoryStore
from warden.models import MemoryRecord, ScoredMemory


def record(text: str, embedding, importance: float = 0.5) -> MemoryRecord:
    """Build a record."""
    return MemoryRecord(text=text, embedding=embedding, importance=importance)


async def recall_texts(store: InMemoryMemoryStore, query, k: int) -> list[str]:
    """Collect recalled texts."""
    return [item.record.text async for item in store.recall(query, k)]


class TestSimilarity:
    """Tests for cosine_similarity and rank."""

    def test_cosine(self) -> None:
        """Test identical, orthogonal and opposite vectors."""
        assert cosine_similarity([1.0, 0.0], [2.0, 0.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 3.0]) == pytest.approx(0.0)
        assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)

    def test_zero_vector(self) -> None:
        """Test that a zero vector scores 0."""
        assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0

    def test_dimension_mismatch(self) -> None:
        """Test that differing dimensions are rejected."""
        with pytest.raises(ValueError, match="Dimension mismatch"):
            cosine_similarity([1.0], [1.0, 2.0])

    def test_rank_ties_prefer_recent(self) -> None:
        """Test that equal scores put the newer record first."""
        older = record("older", (1.0,))
        newer = record("newer", (1.0,))
        best = record("best", (1.0,))

        ranked = rank(
            [ScoredMemory(older, 0.5), ScoredMemory(best, 0.9), ScoredMemory(newer, 0.5)], 3
        )

        assert [s.record.text for s in ranked] == ["best", "newer", "older"]
        assert rank(ranked, 0) == []

    def test_rank_ties_use_creation_time_first(self) -> None:
        """Test that creation time outranks the in-process counter on ties."""
        restored = MemoryRecord(text="restored", embedding=(1.0,), created_at=100.0, sequence=900)
        fresh = MemoryRecord(text="fresh", embedding=(1.0,), created_at=200.0, sequence=1)

        ranked = rank([ScoredMemory(restored, 0.5), ScoredMemory(fresh, 0.5)], 2)

        assert [s.record.text for s in ranked] == ["fresh", "restored"]


class TestInMemoryMemoryStore:
    """Tests for InMemoryMemoryStore."""

    def test_invalid_arguments(self) -> None:
        """Test constructor validation."""
        with pytest.raises(ValueError):
            InMemoryMemoryStore(capacity=0)
        with pytest.raises(ValueError, match="eviction"):
            InMemoryMemoryStore(eviction="random")

    @pytest.mark.asyncio
    async def test_recall_order(self) -> None:
        """Test that records come back by descending similarity."""
        store = InMemoryMemoryStore()
        await store.remember(record("east", (1.0, 0.0)))
        await store.remember(record("north", (0.0, 1.0)))
        await store.remember(record("northeast", (1.0, 1.0)))

        assert await recall_texts(store, (1.0, 0.1), 2) == ["east", "northeast"]
        assert await recall_texts(store, (1.0, 0.1), 0) == []

    @pytest.mark.asyncio
    async def test_recall_ties(self) -> None:
        """Test that identical similarity returns the most recent first."""
        store = InMemoryMemoryStore()
        await store.remember(record("first", (1.0, 0.0)))
        await store.remember(record("second", (2.0, 0.0)))

        assert await recall_texts(store, (1.0, 0.0), 2) == ["second", "first"]

    @pytest.mark.asyncio
    async def test_capacity_without_eviction(self) -> None:
        """Test that a full store refuses new records."""
        store = InMemoryMemoryStore(capacity=1)
        await store.remember(record("a", (1.0,)))

        with pytest.raises(CapacityExceededError):
            await store.remember(record("b", (1.0,)))
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_upsert_at_capacity(self) -> None:
        """Test that rewriting an existing record id never counts as growth."""
        store = InMemoryMemoryStore(capacity=1)
        original = record("a", (1.0,))
        await store.remember(original)

        await store.remember(
            MemoryRecord(text="a2", embedding=(1.0,), record_id=original.record_id)
        )

        assert await recall_texts(store, (1.0,), 1) == ["a2"]

    @pytest.mark.asyncio
    async def test_lru_eviction(self) -> None:
        """Test that the least recently recalled record is evicted."""
        store = InMemoryMemoryStore(capacity=2, eviction="lru")
        await store.remember(record("x", (1.0, 0.0)))
        await store.remember(record("y", (0.0, 1.0)))
        await recall_texts(store, (1.0, 0.0), 1)

        await store.remember(record("z", (1.0, 1.0)), allow_eviction=True)

        assert sorted(await recall_texts(store, (1.0, 1.0), 5)) == ["x", "z"]

    @pytest.mark.asyncio
    async def test_oldest_eviction(self) -> None:
        """Test that the oldest record is evicted regardless of access."""
        store = InMemoryMemoryStore(capacity=2, eviction="oldest")
        await store.remember(record("x", (1.0, 0.0)))
        await store.remember(record("y", (0.0, 1.0)))
        await recall_texts(store, (1.0, 0.0), 1)

        await store.remember(record("z", (1.0, 1.0)), allow_eviction=True)

        assert sorted(await recall_texts(store, (1.0, 1.0), 5)) == ["y", "z"]

    @pytest.mark.asyncio
    async def test_least_important_eviction(self) -> None:
        """Test that the lowest-importance record is evicted."""
        store = InMemoryMemoryStore(capacity=2, eviction="least_important")
        await store.remember(record("keep", (1.0,), importance=0.9))
        await store.remember(record("drop", (1.0,), importance=0.1))

        await store.remember(record("new", (1.0,)), allow_eviction=True)

        assert sorted(await recall_texts(store, (1.0,), 5)) == ["keep", "new"]

    def test_from_config(self) -> None:
        """Test construction from registry config."""
        store = InMemoryMemoryStore.from_config({"capacity": "10", "eviction": "oldest"})
        assert store.capacity == 10
        assert store.name == "in-memory"
