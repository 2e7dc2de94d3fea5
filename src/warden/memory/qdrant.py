"""
Qdrant-backed memory store.

Provides async vector storage and similarity search for long-term
memory. The collection is created on first write.
"""

import logging
import uuid
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import Distance, PointStruct, VectorParams

from ..exceptions import BackendUnavailableError
from ..models import MemoryRecord, ScoredMemory
from .base import MemoryBackend, rank

logger = logging.getLogger(__name__)


def point_id(record_id: str) -> str:
    """Map a record id onto a Qdrant-compatible UUID string."""
    try:
        return str(uuid.UUID(record_id))
    except ValueError:
        return str(uuid.uuid5(uuid.NAMESPACE_URL, record_id))


class QdrantMemoryStore(MemoryBackend):
    """
    Memory store persisted in a Qdrant collection.

    Usage:
        store = QdrantMemoryStore(client, collection="warden_memory")
        await store.remember(record)
        async for item in store.recall(vector, k=4):
            ...
    """

    def __init__(
        self,
        client: AsyncQdrantClient,
        collection: str = "warden_memory",
        distance: Distance = Distance.COSINE,
    ) -> None:
        """
        Initialize Qdrant memory store.

        Args:
            client: Async Qdrant client.
            collection: Collection name.
            distance: Distance metric (COSINE, EUCLID, DOT).
        """
        self._client = client
        self._collection = collection
        self._distance = distance
        self._collection_ready = False

    @property
    def name(self) -> str:
        return "qdrant"

    async def _ensure_collection(self, vector_size: int) -> None:
        """Create the collection if it doesn't exist."""
        if self._collection_ready:
            return
        if not await self._client.collection_exists(self._collection):
            await self._client.create_collection(
                collection_name=self._collection,
                vectors_config=VectorParams(size=vector_size, distance=self._distance),
            )
            logger.info(f"🧠 Created Qdrant collection '{self._collection}' ({vector_size} dims)")
        self._collection_ready = True

    async def remember(self, record: MemoryRecord, *, allow_eviction: bool = False) -> None:
        payload = {
            "record_id": record.record_id,
            "text": record.text,
            "metadata": dict(record.metadata),
            "importance": record.importance,
            "created_at": record.created_at,
            "sequence": record.sequence,
        }
        try:
            await self._ensure_collection(len(record.embedding))
            await self._client.upsert(
                collection_name=self._collection,
                points=[
                    PointStruct(
                        id=point_id(record.record_id),
                        vector=list(record.embedding),
                        payload=payload,
                    )
                ],
            )
        except Exception as e:
            logger.error(f"❌ Qdrant upsert failed: {e}")
            raise BackendUnavailableError(self.name, str(e)) from e

    async def recall(
        self, query_embedding: Sequence[float], k: int
    ) -> AsyncIterator[ScoredMemory]:
        if k <= 0:
            return
        try:
            if not self._collection_ready and not await self._client.collection_exists(
                self._collection
            ):
                return
            points = await self._query_through_ties(list(map(float, query_embedding)), k)
        except Exception as e:
            logger.error(f"❌ Qdrant query failed: {e}")
            raise BackendUnavailableError(self.name, str(e)) from e

        scored = [
            ScoredMemory(record=self._to_record(p.payload or {}, p.vector), score=float(p.score))
            for p in points
        ]
        for item in rank(scored, k):
            yield item

    async def _query_through_ties(self, query: list[float], k: int) -> list[Any]:
        """
        Fetch at least the top k points plus every point tied with the k-th.

        Qdrant orders equal scores arbitrarily, so the page keeps growing
        while its last point still ties with the k-th one. Recency ordering
        among the ties is applied afterwards by ``rank``.
        """
        limit = k * 2
        while True:
            response = await self._client.query_points(
                collection_name=self._collection,
                query=query,
                limit=limit,
                with_payload=True,
                with_vectors=True,
            )
            points = response.points
            if len(points) < limit or points[-1].score < points[k - 1].score:
                return points
            limit *= 2

    @staticmethod
    def _to_record(payload: Mapping[str, Any], vector: Any) -> MemoryRecord:
        return MemoryRecord(
            text=payload.get("text", ""),
            embedding=tuple(vector or ()) if isinstance(vector, (list, tuple)) else (),
            metadata=payload.get("metadata") or {},
            importance=float(payload.get("importance", 0.5)),
            record_id=str(payload.get("record_id", "")),
            created_at=float(payload.get("created_at", 0.0)),
            sequence=int(payload.get("sequence", 0)),
        )

    async def count(self) -> int:
        try:
            if not await self._client.collection_exists(self._collection):
                return 0
            result = await self._client.count(self._collection, exact=True)
        except Exception as e:
            raise BackendUnavailableError(self.name, str(e)) from e
        return result.count

    async def close(self) -> None:
        """Close the client connection."""
        await self._client.close()

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "QdrantMemoryStore":
        if config.get("location") == ":memory:":
            client = AsyncQdrantClient(location=":memory:")
        else:
            client = AsyncQdrantClient(
                url=config.get("url"),
                host=None if config.get("url") else config.get("host", "localhost"),
                port=int(config.get("port", 6333)),
                api_key=config.get("api_key") or config.get("apiKey"),
            )
        return cls(client, collection=config.get("collection", "warden_memory"))
