"""
Text embedders.

HashingEmbedder needs no model and is deterministic, which makes it the
default for offline runs and tests. HttpEmbedder calls any
OpenAI-compatible ``/v1/embeddings`` endpoint.
"""

import hashlib
import logging
import math
import re
from collections.abc import Mapping
from typing import Any

import httpx

from ..exceptions import BackendUnavailableError
from .base import Embedder

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)


class HashingEmbedder(Embedder):
    """Feature-hashing embedder over lower-cased word tokens."""

    def __init__(self, dimension: int = 256) -> None:
        if dimension < 1:
            raise ValueError(f"dimension must be >= 1, got {dimension}")
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed_text(self, text: str) -> list[float]:
        vector = [0.0] * self._dimension
        for token in TOKEN_PATTERN.findall(text.lower()):
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            value = int.from_bytes(digest, "big")
            index = value % self._dimension
            sign = 1.0 if (value >> 63) & 1 else -1.0
            vector[index] += sign
        norm = math.sqrt(sum(v * v for v in vector))
        if norm:
            vector = [v / norm for v in vector]
        return vector

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_text(t) for t in texts]

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "HashingEmbedder":
        return cls(dimension=int(config.get("dimension", 256)))


class HttpEmbedder(Embedder):
    """
    Embedder backed by an OpenAI-compatible embeddings endpoint.

    Attributes:
        endpoint: Base URL of the embeddings API.
        model: Embedding model name.
    """

    def __init__(
        self,
        endpoint: str,
        model: str,
        dimension: int,
        api_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not endpoint:
            raise ValueError("HttpEmbedder requires an endpoint")
        self.endpoint = endpoint.rstrip("/")
        self.model = model
        self._dimension = dimension
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def dimension(self) -> int:
        return self._dimension

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout), transport=self._transport
            )
        return self._client

    async def embed(self, texts: list[str]) -> list[list[float]]:
        client = await self._ensure_client()
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        url = (
            self.endpoint
            if self.endpoint.endswith("/embeddings")
            else f"{self.endpoint}/v1/embeddings"
        )

        try:
            response = await client.post(
                url, json={"model": self.model, "input": texts}, headers=headers
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Embedding request failed: {e}")
            raise BackendUnavailableError("embedder", str(e)) from e

        items = sorted(data.get("data") or [], key=lambda item: item.get("index", 0))
        if len(items) != len(texts):
            raise BackendUnavailableError(
                "embedder", f"expected {len(texts)} embeddings, got {len(items)}"
            )
        logger.debug(f"✅ Embedded {len(texts)} texts")
        return [[float(v) for v in item["embedding"]] for item in items]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "HttpEmbedder":
        return cls(
            endpoint=config.get("endpoint", ""),
            model=config.get("model", "text-embedding-3-small"),
            dimension=int(config.get("dimension", 1536)),
            api_key=config.get("api_key") or config.get("apiKey"),
            timeout=float(config.get("timeout", 30.0)),
            transport=config.get("transport"),
        )
