"""
Per-provider circuit breaker.

CLOSED counts consecutive failures; reaching the threshold opens the
circuit for a cool-down. After the cool-down exactly one HALF_OPEN trial
is admitted: success closes the circuit, failure reopens it.
"""

import logging
import threading
import time
from collections.abc import Callable

from ..models import CircuitState, CircuitStatus

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """
    Failure-tracking state machine for one provider.

    Thread-safe for concurrent access.
    """

    def __init__(
        self,
        provider: str,
        failure_threshold: int,
        cooldown_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize circuit breaker.

        Args:
            provider: Provider name (for logs and snapshots).
            failure_threshold: Consecutive failures that open the circuit.
            cooldown_seconds: Seconds the circuit stays open.
            clock: Monotonic clock, injectable for tests.
        """
        self._provider = provider
        self._failure_threshold = failure_threshold
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._status = CircuitStatus.CLOSED
        self._failures = 0
        self._cooldown_until: float | None = None
        self._trial_in_flight = False
        self._lock = threading.Lock()

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def status(self) -> CircuitStatus:
        with self._lock:
            return self._status

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._status is CircuitStatus.OPEN

    def try_acquire(self) -> bool:
        """
        Ask whether an attempt may be made now.

        An OPEN circuit past its cool-down moves to HALF_OPEN and admits the
        caller as the single trial.

        Returns:
            True if the attempt may proceed.
        """
        with self._lock:
            if self._status is CircuitStatus.CLOSED:
                return True

            if self._status is CircuitStatus.OPEN:
                if self._cooldown_until is not None and self._clock() < self._cooldown_until:
                    return False
                self._status = CircuitStatus.HALF_OPEN
                self._trial_in_flight = True
                logger.info(f"⚡ Circuit for {self._provider} half-open, admitting trial")
                return True

            # HALF_OPEN
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        """Record a successful attempt; closes the circuit."""
        with self._lock:
            previous = self._status
            self._status = CircuitStatus.CLOSED
            self._failures = 0
            self._cooldown_until = None
            self._trial_in_flight = False

        if previous is not CircuitStatus.CLOSED:
            logger.info(f"⚡ Circuit for {self._provider} closed")

    def record_failure(self) -> bool:
        """
        Record a failed attempt.

        Returns:
            True if the circuit is open after this failure.
        """
        with self._lock:
            self._failures += 1
            opened = False
            if self._status is CircuitStatus.HALF_OPEN:
                opened = True
            elif (
                self._status is CircuitStatus.CLOSED
                and self._failures >= self._failure_threshold
            ):
                opened = True

            if opened:
                self._status = CircuitStatus.OPEN
                self._cooldown_until = self._clock() + self._cooldown_seconds
                self._trial_in_flight = False
            failures = self._failures
            is_open = self._status is CircuitStatus.OPEN

        if opened:
            logger.warning(
                f"⚡ Circuit for {self._provider} opened after {failures} "
                f"consecutive failures (cooldown {self._cooldown_seconds:g}s)"
            )
        return is_open

    def release_trial(self) -> None:
        """Give back a HALF_OPEN trial without recording an outcome."""
        with self._lock:
            if self._status is CircuitStatus.HALF_OPEN and self._trial_in_flight:
                self._trial_in_flight = False
                logger.debug(f"⚡ Circuit trial for {self._provider} released")

    def snapshot(self) -> CircuitState:
        """Get a read-only view of the breaker state."""
        with self._lock:
            return CircuitState(
                provider=self._provider,
                status=self._status,
                consecutive_failures=self._failures,
                cooldown_until=self._cooldown_until,
            )
