"""Resilient provider routing with retry, failover and circuit breaking."""

from .circuit import CircuitBreaker
from .router import REASON_CIRCUIT_OPEN, ProviderRouter

__all__ = ["CircuitBreaker", "ProviderRouter", "REASON_CIRCUIT_OPEN"]
