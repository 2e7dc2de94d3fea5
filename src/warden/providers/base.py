"""
Model provider interface and shared HTTP plumbing.

Providers turn a ProviderRequest into a ProviderResponse or raise a
classified ProviderError: TransientProviderError for timeouts, rate
limits, server errors and connection failures; PermanentProviderError
for authentication and malformed-request failures.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..exceptions import PermanentProviderError, ProviderError, TransientProviderError
from ..models import ProviderRequest, ProviderResponse

logger = logging.getLogger(__name__)

# Statuses worth retrying; everything else 4xx is the caller's fault.
TRANSIENT_STATUS_CODES = frozenset({408, 409, 425, 429})

# Provider normalization map (aliases -> canonical registry keys)
PROVIDER_ALIASES: dict[str, str] = {
    "openai-compatible": "openai-compatible",
    "openai_compatible": "openai-compatible",
    "openai": "openai-compatible",
    "vllm": "openai-compatible",
    "tgi": "openai-compatible",
    "ollama": "openai-compatible",
    "anthropic": "anthropic",
    "claude": "anthropic",
    "scripted": "scripted",
    "mock": "scripted",
}


def normalize_provider(provider: str) -> str:
    """
    Normalize provider name to its canonical registry key.

    Args:
        provider: Raw provider string from configuration.

    Returns:
        Canonical provider key.

    Raises:
        ValueError: If provider is not recognized.
    """
    normalized = provider.lower().strip()
    canonical = PROVIDER_ALIASES.get(normalized)
    if canonical:
        return canonical
    raise ValueError(f"Unknown LLM provider: {provider}")


def classify_status(provider: str, status_code: int, body: str) -> ProviderError:
    """
    Map an HTTP error status to a provider error class.

    Args:
        provider: Provider name.
        status_code: HTTP status code.
        body: Response body (truncated in the message).

    Returns:
        TransientProviderError or PermanentProviderError.
    """
    message = f"HTTP {status_code}: {body[:300]}"
    if status_code >= 500 or status_code in TRANSIENT_STATUS_CODES:
        return TransientProviderError(provider, message, status_code=status_code)
    return PermanentProviderError(provider, message, status_code=status_code)


class Provider(ABC):
    """
    Base class for model providers.

    A provider is a registry capability; the router holds one instance
    per configured provider name.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Get the provider instance name.

        Returns:
            Name used in routing order and logs.
        """

    @abstractmethod
    async def send(self, request: ProviderRequest) -> ProviderResponse:
        """
        Send one request to the model.

        Args:
            request: Normalized request.

        Returns:
            Normalized response.

        Raises:
            TransientProviderError: On retryable failures.
            PermanentProviderError: On non-retryable failures.
        """

    async def close(self) -> None:
        """
        Close any resources held by the provider.

        Override if provider needs cleanup.
        """


class HttpProvider(Provider):
    """
    Shared httpx client handling for HTTP providers.

    Attributes:
        endpoint: Base URL of the provider API.
        model: Model identifier sent with each request.
        timeout: HTTP request timeout in seconds.
    """

    def __init__(
        self,
        name: str,
        endpoint: str,
        model: str,
        api_key: str | None = None,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize HTTP provider.

        Args:
            name: Provider instance name.
            endpoint: Base URL.
            model: Model identifier.
            api_key: API key, if the endpoint needs one.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (tests use MockTransport).

        Raises:
            ValueError: If endpoint or model is missing.
        """
        if not endpoint:
            raise ValueError(f"Provider '{name}' requires an endpoint")
        if not model:
            raise ValueError(f"Provider '{name}' requires a model")
        self._name = name
        self.endpoint = endpoint.rstrip("/")
        self.model = model
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return self._name

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def _post_json(
        self, url: str, payload: dict[str, Any], headers: dict[str, str]
    ) -> dict[str, Any]:
        """
        POST a JSON payload and decode the JSON response.

        Raises:
            TransientProviderError: On timeouts, transport errors, 5xx/429
                or an undecodable body.
            PermanentProviderError: On other 4xx responses.
        """
        client = await self._ensure_client()
        try:
            response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise TransientProviderError(self._name, f"timeout: {e}") from e
        except httpx.HTTPError as e:
            raise TransientProviderError(self._name, f"HTTP error: {e}") from e

        if response.status_code >= 400:
            logger.error(
                "❌ %s API error %d: %s",
                self._name,
                response.status_code,
                response.text[:500],
            )
            raise classify_status(self._name, response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise TransientProviderError(
                self._name, f"invalid JSON response: {e}"
            ) from e
        if not isinstance(data, dict):
            raise TransientProviderError(
                self._name, f"unexpected response type {type(data).__name__}"
            )
        return data

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
