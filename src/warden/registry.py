"""
Capability Registry

Central registry of named factories for every swappable subsystem.
Factories are registered by (kind, key) and resolved into live instances
from configuration. The orchestrator, router and sandbox only see the
capability interfaces; concrete implementations come from here.
"""

import logging
import threading
from collections.abc import Callable, Mapping
from enum import Enum
from types import MappingProxyType
from typing import Any

from .exceptions import ConstructionError, DuplicateKeyError, UnknownKeyError

logger = logging.getLogger(__name__)

CapabilityFactory = Callable[[Mapping[str, Any]], Any]


class CapabilityKind(str, Enum):
    """Kinds of swappable subsystems."""

    PROVIDER = "provider"
    CHANNEL = "channel"
    TOOL = "tool"
    MEMORY = "memory"
    EMBEDDER = "embedder"
    RUNTIME = "runtime"
    POLICY = "policy"
    POLICY_SOURCE = "policy_source"


def normalize_key(key: str) -> str:
    """
    Normalize a capability key.

    Args:
        key: Raw key from code or configuration.

    Returns:
        Lower-cased, stripped key.

    Raises:
        ValueError: If the key is empty.
    """
    normalized = key.strip().lower()
    if not normalized:
        raise ValueError("Capability key cannot be empty")
    return normalized


class CapabilityRegistry:
    """
    Registry of capability factories keyed by (kind, key).

    Writers replace an immutable snapshot under a lock; readers use the
    current snapshot without locking, so resolution never waits on other
    resolutions.

    Usage:
        registry = CapabilityRegistry()
        registry.register(CapabilityKind.PROVIDER, "scripted", ScriptedProvider.from_config)
        provider = registry.resolve(CapabilityKind.PROVIDER, "scripted", {"name": "p1"})
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._factories: Mapping[tuple[CapabilityKind, str], CapabilityFactory] = (
            MappingProxyType({})
        )
        self._write_lock = threading.Lock()

    def register(
        self,
        kind: CapabilityKind,
        key: str,
        factory: CapabilityFactory,
        *,
        override: bool = False,
    ) -> None:
        """
        Register a factory for a kind/key pair.

        Args:
            kind: Capability kind.
            key: Capability key (case-insensitive).
            factory: Callable taking a config mapping and returning an instance.
            override: Replace an existing registration instead of failing.

        Raises:
            DuplicateKeyError: If the pair exists and override is False.
        """
        slot = (CapabilityKind(kind), normalize_key(key))
        with self._write_lock:
            if slot in self._factories and not override:
                raise DuplicateKeyError(slot[0].value, slot[1])
            updated = dict(self._factories)
            updated[slot] = factory
            self._factories = MappingProxyType(updated)
        logger.debug(f"🔧 Registered {slot[0].value}/{slot[1]}")

    def unregister(self, kind: CapabilityKind, key: str) -> None:
        """
        Remove a registration.

        Raises:
            UnknownKeyError: If nothing is registered for the pair.
        """
        slot = (CapabilityKind(kind), normalize_key(key))
        with self._write_lock:
            if slot not in self._factories:
                raise UnknownKeyError(slot[0].value, slot[1])
            updated = dict(self._factories)
            del updated[slot]
            self._factories = MappingProxyType(updated)

    def resolve(
        self,
        kind: CapabilityKind,
        key: str,
        config: Mapping[str, Any] | None = None,
    ) -> Any:
        """
        Build a live capability instance.

        Args:
            kind: Capability kind.
            key: Capability key.
            config: Construction parameters passed to the factory.

        Returns:
            The instance returned by the factory.

        Raises:
            UnknownKeyError: If no factory is registered.
            ConstructionError: If the factory raised.
        """
        kind = CapabilityKind(kind)
        normalized = normalize_key(key)
        factory = self._factories.get((kind, normalized))
        if factory is None:
            raise UnknownKeyError(kind.value, normalized)

        try:
            instance = factory(MappingProxyType(dict(config or {})))
        except Exception as e:
            logger.error(f"❌ Failed to construct {kind.value}/{normalized}: {e}")
            raise ConstructionError(kind.value, normalized, e) from e

        logger.debug(f"✅ Resolved {kind.value}/{normalized}")
        return instance

    def contains(self, kind: CapabilityKind, key: str) -> bool:
        """Check whether a factory is registered for the pair."""
        try:
            return (CapabilityKind(kind), normalize_key(key)) in self._factories
        except ValueError:
            return False

    def keys(self, kind: CapabilityKind) -> list[str]:
        """
        List registered keys of a kind.

        Returns:
            Sorted list of keys.
        """
        kind = CapabilityKind(kind)
        return sorted(k for (knd, k) in self._factories if knd is kind)

    def count(self) -> int:
        """Number of registrations across all kinds."""
        return len(self._factories)
