"""
Memory tools: let the model store and recall long-term facts.

Both tools capture the configured memory backend and embedder when their
factories are built.
"""

from collections.abc import Callable, Mapping
from typing import Annotated, Any

from pydantic import Field

from ..exceptions import CapacityExceededError, ExecutionFaultError, MemoryStoreError
from ..memory.base import Embedder, MemoryBackend
from ..models import MemoryRecord
from ..sandbox.context import ToolContext
from .base import Tool, ToolOutput, ToolParameters


class MemoryStoreParameters(ToolParameters):
    text: Annotated[str, Field(description="Fact to remember", min_length=1)]
    importance: Annotated[
        float, Field(description="Importance between 0 and 1", ge=0.0, le=1.0)
    ] = 0.5


class MemoryStoreTool(Tool):
    """Stores a fact in long-term memory."""

    name = "memory_store"
    description = "Store a fact in long-term memory for later recall."
    action = "memory.write"
    Parameters = MemoryStoreParameters

    def __init__(self, store: MemoryBackend, embedder: Embedder) -> None:
        self._store = store
        self._embedder = embedder

    async def execute(self, params: MemoryStoreParameters, context: ToolContext) -> ToolOutput:
        try:
            embedding = await self._embedder.embed_one(params.text)
            record = MemoryRecord(
                text=params.text,
                embedding=embedding,
                metadata={"subject": context.subject.key, "source": "tool"},
                importance=params.importance,
            )
            await self._store.remember(record, allow_eviction=True)
        except CapacityExceededError as e:
            raise ExecutionFaultError(self.name, e.message) from e
        except MemoryStoreError as e:
            raise ExecutionFaultError(self.name, f"Memory unavailable: {e.message}") from e

        return ToolOutput(text="Remembered.", data={"record_id": record.record_id})


class MemoryRecallParameters(ToolParameters):
    query: Annotated[str, Field(description="What to recall", min_length=1)]
    limit: Annotated[int, Field(description="Maximum results", gt=0, le=50)] = 5


class MemoryRecallTool(Tool):
    """Recalls facts similar to a query."""

    name = "memory_recall"
    description = "Recall stored facts most similar to a query."
    action = "memory.read"
    Parameters = MemoryRecallParameters

    def __init__(self, store: MemoryBackend, embedder: Embedder) -> None:
        self._store = store
        self._embedder = embedder

    async def execute(self, params: MemoryRecallParameters, context: ToolContext) -> ToolOutput:
        lines: list[str] = []
        try:
            embedding = await self._embedder.embed_one(params.query)
            async for item in self._store.recall(embedding, params.limit):
                lines.append(f"- ({item.score:.2f}) {item.record.text}")
        except MemoryStoreError as e:
            raise ExecutionFaultError(self.name, f"Memory unavailable: {e.message}") from e

        if not lines:
            return ToolOutput(text="No memories found.", data={"count": 0})
        return ToolOutput(text="\n".join(lines), data={"count": len(lines)})


def memory_tool_factories(
    store: MemoryBackend, embedder: Embedder
) -> dict[str, Callable[[Mapping[str, Any]], Tool]]:
    """
    Build registry factories for the memory tools.

    Args:
        store: Memory backend shared with the orchestrator.
        embedder: Embedder shared with the orchestrator.

    Returns:
        Mapping of tool name to factory.
    """
    return {
        MemoryStoreTool.name: lambda config: MemoryStoreTool(store, embedder),
        MemoryRecallTool.name: lambda config: MemoryRecallTool(store, embedder),
    }
