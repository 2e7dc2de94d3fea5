"""Long-term memory: backends, embedders and similarity ranking."""

from .base import EVICTION_POLICIES, Embedder, MemoryBackend, cosine_similarity, rank
from .embedding import HashingEmbedder, HttpEmbedder
from .in_memory import InMemoryMemoryStore
from .qdrant import QdrantMemoryStore, point_id

__all__ = [
    "EVICTION_POLICIES",
    "Embedder",
    "HashingEmbedder",
    "HttpEmbedder",
    "InMemoryMemoryStore",
    "MemoryBackend",
    "QdrantMemoryStore",
    "cosine_similarity",
    "point_id",
    "rank",
]
