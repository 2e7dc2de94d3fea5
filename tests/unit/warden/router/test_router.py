"""
Unit tests for the provider router.

Backoff sleeps are recorded instead of awaited; circuit cool-downs use
a manually advanced clock.
"""

import asyncio

import pytest

from warden.config.schema import RouterConfig
from warden.exceptions import (
    PermanentProviderError,
    RouterExhaustedError,
    TransientProviderError,
)
from warden.models import ChatMessage, CircuitStatus, ProviderRequest, ProviderResponse
from warden.providers.scripted import ScriptedProvider
from warden.router.router import REASON_CIRCUIT_OPEN, ProviderRouter


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def request() -> ProviderRequest:
    """Build a trivial request."""
    return ProviderRequest(messages=(ChatMessage("user", "hi"),))


def transient(name: str = "a") -> TransientProviderError:
    """Build a transient error."""
    return TransientProviderError(name, "timeout")


def make_router(
    providers: dict[str, ScriptedProvider], **config
) -> tuple[ProviderRouter, RecordingSleep, FakeClock]:
    """Build a router with recording sleep and a fake clock."""
    sleep = RecordingSleep()
    clock = FakeClock()
    router = ProviderRouter(
        providers, RouterConfig(order=list(providers), **config), sleep=sleep, clock=clock
    )
    return router, sleep, clock


class TestBackoff:
    """Tests for backoff delays."""

    def test_exponential_with_cap(self) -> None:
        """Test that delays double per attempt up to the maximum."""
        router, _, _ = make_router(
            {"a": ScriptedProvider("a")}, backoff_base_seconds=0.5, backoff_max_seconds=3.0
        )
        assert [router.backoff_delay(n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 2.0, 3.0]


class TestProviderRouter:
    """Tests for retry, failover and circuit handling."""

    @pytest.mark.asyncio
    async def test_first_provider_answers(self) -> None:
        """Test the happy path."""
        a = ScriptedProvider("a", steps=[ProviderResponse.final("from a")])
        b = ScriptedProvider("b")
        router, sleep, _ = make_router({"a": a, "b": b})

        response = await router.send(request())

        assert response.content == "from a"
        assert b.call_history == []
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds_without_failover(self) -> None:
        """Test that A timing out twice then answering keeps A closed and skips B."""
        a = ScriptedProvider(
            "a", steps=[transient(), transient(), ProviderResponse.final("third time")]
        )
        b = ScriptedProvider("b")
        router, sleep, _ = make_router(
            {"a": a, "b": b}, max_attempts=3, failure_threshold=5, backoff_base_seconds=0.5
        )

        response = await router.send(request())

        assert response.content == "third time"
        assert b.call_history == []
        assert sleep.delays == [0.5, 1.0]
        state = router.circuit_states()["a"]
        assert state.status is CircuitStatus.CLOSED
        assert state.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_real_timeout_is_transient(self) -> None:
        """Test that a provider exceeding the request timeout is retried."""

        async def slow(req):
            await asyncio.sleep(5)
            return ProviderResponse.final("too late")

        a = ScriptedProvider("a", steps=[slow, ProviderResponse.final("fast")])
        router, _, _ = make_router({"a": a}, request_timeout_seconds=0.05)

        response = await router.send(request())

        assert response.content == "fast"

    @pytest.mark.asyncio
    async def test_threshold_opens_circuit_and_fails_over(self) -> None:
        """Test that 5 failures open A's circuit and later requests go straight to B."""
        a = ScriptedProvider("a", steps=[transient() for _ in range(5)])
        b = ScriptedProvider("b", default_response="from b")
        router, _, _ = make_router(
            {"a": a, "b": b}, max_attempts=5, failure_threshold=5
        )

        first = await router.send(request())
        assert first.content == "from b"
        assert router.circuit_states()["a"].status is CircuitStatus.OPEN
        assert len(a.call_history) == 5

        second = await router.send(request())
        assert second.content == "from b"
        assert len(a.call_history) == 5

    @pytest.mark.asyncio
    async def test_circuit_half_open_after_cooldown(self) -> None:
        """Test that A gets one trial after the cool-down and closes on success."""
        a = ScriptedProvider("a", steps=[transient(), ProviderResponse.final("recovered")])
        b = ScriptedProvider("b", default_response="from b")
        router, _, clock = make_router(
            {"a": a, "b": b}, max_attempts=1, failure_threshold=1, cooldown_seconds=30
        )

        assert (await router.send(request())).content == "from b"
        assert (await router.send(request())).content == "from b"
        assert len(a.call_history) == 1

        clock.now += 31
        assert (await router.send(request())).content == "recovered"
        assert router.circuit_states()["a"].status is CircuitStatus.CLOSED

    @pytest.mark.asyncio
    async def test_permanent_error_fails_over_immediately(self) -> None:
        """Test that a permanent failure is not retried."""
        a = ScriptedProvider("a", steps=[PermanentProviderError("a", "bad key")])
        b = ScriptedProvider("b", default_response="from b")
        router, sleep, _ = make_router({"a": a, "b": b}, max_attempts=3)

        response = await router.send(request())

        assert response.content == "from b"
        assert len(a.call_history) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_transient(self) -> None:
        """Test that unknown exceptions are retried like transient failures."""
        a = ScriptedProvider("a", steps=[RuntimeError("boom"), ProviderResponse.final("ok")])
        router, _, _ = make_router({"a": a})

        assert (await router.send(request())).content == "ok"

    @pytest.mark.asyncio
    async def test_exhausted(self) -> None:
        """Test that RouterExhaustedError lists every failure in order."""
        a = ScriptedProvider("a", steps=[PermanentProviderError("a", "denied")])
        b = ScriptedProvider("b", steps=[transient("b"), transient("b")])
        router, _, _ = make_router({"a": a, "b": b}, max_attempts=2)

        with pytest.raises(RouterExhaustedError) as exc_info:
            await router.send(request())

        names = [name for name, _ in exc_info.value.failures]
        assert names == ["a", "b", "b"]

    @pytest.mark.asyncio
    async def test_open_circuit_reported(self) -> None:
        """Test that skipped open circuits appear in the exhaustion report."""
        a = ScriptedProvider("a", steps=[transient(), transient()])
        router, _, _ = make_router({"a": a}, max_attempts=1, failure_threshold=1)

        with pytest.raises(RouterExhaustedError):
            await router.send(request())
        with pytest.raises(RouterExhaustedError) as exc_info:
            await router.send(request())

        assert exc_info.value.failures == [("a", REASON_CIRCUIT_OPEN)]

    @pytest.mark.asyncio
    async def test_preference_order_override(self) -> None:
        """Test a per-call preference order, skipping unknown names."""
        a = ScriptedProvider("a", default_response="from a")
        b = ScriptedProvider("b", default_response="from b")
        router, _, _ = make_router({"a": a, "b": b})

        response = await router.send(request(), provider_preference_order=["ghost", "b"])

        assert response.content == "from b"
        assert a.call_history == []

    @pytest.mark.asyncio
    async def test_cancellation_releases_trial(self) -> None:
        """Test that cancelling a half-open trial frees the circuit for others."""
        started = asyncio.Event()

        async def hang(req):
            started.set()
            await asyncio.sleep(60)

        a = ScriptedProvider("a", steps=[transient(), hang, ProviderResponse.final("back")])
        router, _, clock = make_router(
            {"a": a}, max_attempts=1, failure_threshold=1, cooldown_seconds=10
        )
        with pytest.raises(RouterExhaustedError):
            await router.send(request())

        clock.now += 11
        task = asyncio.create_task(router.send(request()))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert router.circuit_states()["a"].status is CircuitStatus.HALF_OPEN
        assert (await router.send(request())).content == "back"
