"""
Unit tests for the memory tools.
"""

from unittest.mock import AsyncMock

import pytest

from warden.exceptions import BackendUnavailableError, ExecutionFaultError
from warden.memory.embedding import HashingEmbedder
from warden.memory.in_memory import InMemoryMemoryStore
from warden.tools.memory import (
    MemoryRecallParameters,
    MemoryRecallTool,
    MemoryStoreParameters,
    MemoryStoreTool,
    memory_tool_factories,
)


@pytest.fixture
def store() -> InMemoryMemoryStore:
    return InMemoryMemoryStore(capacity=2, eviction="oldest")


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder(dimension=256)


class TestMemoryTools:
    """Tests for memory_store and memory_recall."""

    @pytest.mark.asyncio
    async def test_store_then_recall(self, store, embedder, make_context) -> None:
        """Test that a stored fact is recalled for a related query."""
        context = make_context()
        await MemoryStoreTool(store, embedder).execute(
            MemoryStoreParameters(text="the deploy key lives in vault"), context
        )
        await MemoryStoreTool(store, embedder).execute(
            MemoryStoreParameters(text="lunch is at noon"), context
        )

        result = await MemoryRecallTool(store, embedder).execute(
            MemoryRecallParameters(query="where is the deploy key", limit=1), context
        )

        assert "deploy key lives in vault" in result.text
        assert result.data == {"count": 1}

    @pytest.mark.asyncio
    async def test_store_tags_subject(self, store, embedder, make_context) -> None:
        """Test that stored records carry the subject key."""
        await MemoryStoreTool(store, embedder).execute(
            MemoryStoreParameters(text="fact", importance=0.9), make_context()
        )

        items = [item async for item in store.recall(await embedder.embed_one("fact"), 1)]
        assert items[0].record.metadata["subject"] == "queue:alice"
        assert items[0].record.importance == 0.9

    @pytest.mark.asyncio
    async def test_store_evicts_at_capacity(self, store, embedder, make_context) -> None:
        """Test that the tool grants eviction so a full store keeps accepting facts."""
        tool = MemoryStoreTool(store, embedder)
        for text in ("one", "two", "three"):
            await tool.execute(MemoryStoreParameters(text=text), make_context())

        assert await store.count() == 2

    @pytest.mark.asyncio
    async def test_recall_empty(self, store, embedder, make_context) -> None:
        """Test the placeholder when nothing is stored."""
        result = await MemoryRecallTool(store, embedder).execute(
            MemoryRecallParameters(query="anything"), make_context()
        )
        assert result.text == "No memories found."

    @pytest.mark.asyncio
    async def test_backend_failure(self, store, make_context) -> None:
        """Test that backend errors become execution faults."""
        embedder = AsyncMock()
        embedder.embed_one.side_effect = BackendUnavailableError("embedder", "down")

        with pytest.raises(ExecutionFaultError, match="Memory unavailable"):
            await MemoryRecallTool(store, embedder).execute(
                MemoryRecallParameters(query="x"), make_context()
            )

    def test_factories(self, store, embedder) -> None:
        """Test that factories share the given backend."""
        factories = memory_tool_factories(store, embedder)

        assert sorted(factories) == ["memory_recall", "memory_store"]
        assert isinstance(factories["memory_store"]({}), MemoryStoreTool)
