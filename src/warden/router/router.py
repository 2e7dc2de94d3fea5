"""
Resilient provider router.

Walks providers in preference order, retrying transient failures with
exponential backoff and failing over on permanent failures or open
circuits. The orchestrator only ever sees a response or
RouterExhaustedError.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping

from ..config.schema import RouterConfig
from ..exceptions import ProviderError, RouterExhaustedError, TransientProviderError
from ..models import CircuitState, ProviderRequest, ProviderResponse
from ..providers.base import Provider
from .circuit import CircuitBreaker

logger = logging.getLogger(__name__)

REASON_CIRCUIT_OPEN = "circuit_open"


class ProviderRouter:
    """
    Routes provider requests with retry, failover and circuit breaking.

    Usage:
        router = ProviderRouter({"a": provider_a, "b": provider_b}, RouterConfig(order=["a", "b"]))
        response = await router.send(request)
    """

    def __init__(
        self,
        providers: Mapping[str, Provider],
        config: RouterConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the router.

        Args:
            providers: Provider instances keyed by configured name.
            config: Retry, backoff and circuit settings.
            sleep: Backoff sleep, injectable for tests.
            clock: Monotonic clock for circuit cool-downs.
        """
        self._providers = dict(providers)
        self._config = config
        self._sleep = sleep
        self._order = list(config.order) or list(self._providers)
        self._breakers = {
            name: CircuitBreaker(
                name,
                failure_threshold=config.failure_threshold,
                cooldown_seconds=config.cooldown_seconds,
                clock=clock,
            )
            for name in self._providers
        }

        logger.info(f"🤖 ProviderRouter initialized with order {self._order}")

    @property
    def order(self) -> list[str]:
        return list(self._order)

    @property
    def providers(self) -> dict[str, Provider]:
        return dict(self._providers)

    def backoff_delay(self, attempt: int) -> float:
        """
        Delay before retry number ``attempt`` (1-based).

        Args:
            attempt: Attempt that just failed.

        Returns:
            Seconds to wait.
        """
        delay = self._config.backoff_base_seconds * (2 ** (attempt - 1))
        return min(delay, self._config.backoff_max_seconds)

    async def send(
        self,
        request: ProviderRequest,
        provider_preference_order: list[str] | None = None,
    ) -> ProviderResponse:
        """
        Send a request to the first provider that answers.

        Args:
            request: Normalized request.
            provider_preference_order: Provider names to try, overriding the
                configured order for this call.

        Returns:
            The first successful provider response.

        Raises:
            RouterExhaustedError: If every eligible provider failed or had
                an open circuit.
        """
        order = provider_preference_order or self._order
        failures: list[tuple[str, str]] = []

        for name in order:
            provider = self._providers.get(name)
            if provider is None:
                logger.warning(f"⚠️ Skipping unconfigured provider '{name}'")
                continue

            response = await self._try_provider(name, provider, request, failures)
            if response is not None:
                return response

        logger.error(f"❌ All providers exhausted for request {request.request_id}")
        raise RouterExhaustedError(failures)

    async def _try_provider(
        self,
        name: str,
        provider: Provider,
        request: ProviderRequest,
        failures: list[tuple[str, str]],
    ) -> ProviderResponse | None:
        breaker = self._breakers[name]
        max_attempts = self._config.max_attempts

        for attempt in range(1, max_attempts + 1):
            if not breaker.try_acquire():
                logger.info(f"⚡ Skipping {name}: circuit open")
                failures.append((name, REASON_CIRCUIT_OPEN))
                return None

            try:
                response = await asyncio.wait_for(
                    provider.send(request),
                    timeout=self._config.request_timeout_seconds,
                )
            except asyncio.CancelledError:
                breaker.release_trial()
                raise
            except asyncio.TimeoutError:
                error: ProviderError = TransientProviderError(
                    name,
                    f"timed out after {self._config.request_timeout_seconds:g}s",
                )
            except ProviderError as e:
                error = e
            except Exception as e:
                error = TransientProviderError(name, f"unexpected error: {e}")
            else:
                breaker.record_success()
                if attempt > 1 or failures:
                    logger.info(f"✅ {name} answered on attempt {attempt}")
                return response

            is_open = breaker.record_failure()
            failures.append((name, error.message))
            logger.warning(
                f"⚠️ {name} attempt {attempt}/{max_attempts} failed "
                f"({'transient' if error.retryable else 'permanent'}): {error.message}"
            )

            if not error.retryable or is_open:
                return None
            if attempt < max_attempts:
                await self._sleep(self.backoff_delay(attempt))

        return None

    def circuit_states(self) -> dict[str, CircuitState]:
        """
        Get circuit snapshots for diagnostics.

        Returns:
            Mapping of provider name to circuit state.
        """
        return {name: breaker.snapshot() for name, breaker in self._breakers.items()}

    async def close(self) -> None:
        """Close every provider."""
        for name, provider in self._providers.items():
            try:
                await provider.close()
            except Exception as e:
                logger.warning(f"⚠️ Failed to close provider {name}: {e}")
