"""
Runtime assembly.

Builds the capability registry with the built-in implementations, then
resolves every configured capability into a live object graph. The
policy engine, its rule source and at least one provider are mandatory;
any other capability that fails to construct is disabled and reported in
``Runtime.failures``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from .channels.base import Channel
from .channels.queue import QueueChannel
from .channels.stdio import StdioChannel
from .config.schema import CapabilityConfig, WardenConfig
from .exceptions import RegistryError, StartupError, ToolError
from .memory.base import Embedder, MemoryBackend
from .memory.embedding import HashingEmbedder, HttpEmbedder
from .memory.in_memory import InMemoryMemoryStore
from .memory.qdrant import QdrantMemoryStore
from .models import SessionBudget
from .orchestrator.loop import Orchestrator
from .orchestrator.session import SessionManager
from .policy.engine import PolicyEngine
from .policy.sources import FileRuleSource, RuleSource, StaticRuleSource
from .providers.anthropic import AnthropicProvider
from .providers.base import Provider, normalize_provider
from .providers.openai_compatible import OpenAICompatibleProvider
from .providers.scripted import ScriptedProvider
from .registry import CapabilityKind, CapabilityRegistry
from .router.router import ProviderRouter
from .sandbox.runtimes import ContainerRuntime, NativeProcessRuntime, RuntimeAdapter
from .sandbox.sandbox import ToolSandbox
from .tools import memory_tool_factories, register_core_tools, register_plugins

logger = logging.getLogger(__name__)


def build_registry() -> CapabilityRegistry:
    """
    Create a registry holding every built-in capability.

    Returns:
        Registry ready for additional registrations.
    """
    registry = CapabilityRegistry()

    # Providers
    registry.register(CapabilityKind.PROVIDER, "openai-compatible", OpenAICompatibleProvider.from_config)
    registry.register(CapabilityKind.PROVIDER, "anthropic", AnthropicProvider.from_config)
    registry.register(CapabilityKind.PROVIDER, "scripted", ScriptedProvider.from_config)

    # Channels
    registry.register(CapabilityKind.CHANNEL, "queue", QueueChannel.from_config)
    registry.register(CapabilityKind.CHANNEL, "stdio", StdioChannel.from_config)

    # Memory
    registry.register(CapabilityKind.MEMORY, "in-memory", InMemoryMemoryStore.from_config)
    registry.register(CapabilityKind.MEMORY, "qdrant", QdrantMemoryStore.from_config)
    registry.register(CapabilityKind.EMBEDDER, "hashing", HashingEmbedder.from_config)
    registry.register(CapabilityKind.EMBEDDER, "http", HttpEmbedder.from_config)

    # Sandbox runtimes
    registry.register(CapabilityKind.RUNTIME, "native", NativeProcessRuntime.from_config)
    registry.register(CapabilityKind.RUNTIME, "container", ContainerRuntime.from_config)

    # Policy
    registry.register(CapabilityKind.POLICY, "rules", PolicyEngine.from_config)
    registry.register(CapabilityKind.POLICY_SOURCE, "static", StaticRuleSource.from_config)
    registry.register(CapabilityKind.POLICY_SOURCE, "file", FileRuleSource.from_config)

    register_core_tools(registry)
    return registry


@dataclass
class Runtime:
    """
    Live object graph of a running agent.

    Channels are owned by the gateway, which closes them on stop.

    Attributes:
        registry: Registry the graph was resolved from.
        policy: Policy engine.
        router: Provider router.
        sandbox: Tool sandbox.
        orchestrator: Turn loop.
        sessions: Session manager.
        channels: Live channels.
        memory: Memory backend, if enabled and constructed.
        embedder: Embedder paired with the memory backend.
        failures: Disabled capabilities mapped to the construction error.
    """

    registry: CapabilityRegistry
    policy: PolicyEngine
    router: ProviderRouter
    sandbox: ToolSandbox
    orchestrator: Orchestrator
    sessions: SessionManager
    channels: list[Channel] = field(default_factory=list)
    memory: MemoryBackend | None = None
    embedder: Embedder | None = None
    failures: dict[str, str] = field(default_factory=dict)

    async def close(self) -> None:
        """Close providers, sandbox and memory."""
        await self.router.close()
        await self.sandbox.close()
        if self.memory is not None:
            await self.memory.close()
        if self.embedder is not None:
            await self.embedder.close()
        logger.info("👋 Runtime closed")


def _with_name(capability: CapabilityConfig) -> dict[str, Any]:
    return {**capability.config, "name": capability.name}


def _build_policy(registry: CapabilityRegistry, config: WardenConfig) -> PolicyEngine:
    policy_config = config.policy
    source_config: dict[str, Any] = dict(policy_config.source_config)
    if policy_config.source == "static":
        source_config.setdefault("rules", policy_config.rules)

    try:
        source: RuleSource = registry.resolve(
            CapabilityKind.POLICY_SOURCE, policy_config.source, source_config
        )
    except RegistryError as e:
        raise StartupError("policy source", str(e)) from e

    try:
        engine: PolicyEngine = registry.resolve(
            CapabilityKind.POLICY,
            policy_config.engine,
            {"source": source, "cache_size": policy_config.cache_size},
        )
    except RegistryError as e:
        raise StartupError("policy engine", str(e)) from e

    logger.info(
        f"🔒 Policy engine '{policy_config.engine}' loaded "
        f"{len(engine.rules)} rules from '{source.name}' (v{engine.version})"
    )
    return engine


def _provider_key(key: str) -> str:
    try:
        return normalize_provider(key)
    except ValueError:
        return key


def _build_providers(
    registry: CapabilityRegistry, config: WardenConfig, failures: dict[str, str]
) -> dict[str, Provider]:
    providers: dict[str, Provider] = {}
    for capability in config.providers:
        try:
            providers[capability.name] = registry.resolve(
                CapabilityKind.PROVIDER, _provider_key(capability.key), _with_name(capability)
            )
            logger.info(f"🤖 Provider '{capability.name}' ({capability.key}) ready")
        except RegistryError as e:
            failures[f"provider/{capability.name}"] = str(e)
            logger.error(f"❌ Provider '{capability.name}' disabled: {e}")

    if not providers:
        raise StartupError("providers", "no provider could be constructed")
    return providers


def _build_runtimes(
    registry: CapabilityRegistry, config: WardenConfig, failures: dict[str, str]
) -> dict[str, RuntimeAdapter]:
    runtimes: dict[str, RuntimeAdapter] = {}
    for capability in config.sandbox.runtimes:
        try:
            runtimes[capability.name] = registry.resolve(
                CapabilityKind.RUNTIME, capability.key, _with_name(capability)
            )
        except RegistryError as e:
            failures[f"runtime/{capability.name}"] = str(e)
            logger.error(f"❌ Runtime '{capability.name}' disabled: {e}")
    return runtimes


def _build_memory(
    registry: CapabilityRegistry, config: WardenConfig, failures: dict[str, str]
) -> tuple[MemoryBackend | None, Embedder | None]:
    if not config.memory.enabled:
        logger.info("🧠 Memory disabled")
        return None, None

    backend_config = config.memory.backend
    embedder_config = config.memory.embedder
    try:
        embedder: Embedder = registry.resolve(
            CapabilityKind.EMBEDDER, embedder_config.key, _with_name(embedder_config)
        )
    except RegistryError as e:
        failures[f"embedder/{embedder_config.name}"] = str(e)
        logger.error(f"❌ Embedder disabled, memory off: {e}")
        return None, None

    try:
        backend: MemoryBackend = registry.resolve(
            CapabilityKind.MEMORY, backend_config.key, _with_name(backend_config)
        )
    except RegistryError as e:
        failures[f"memory/{backend_config.name}"] = str(e)
        logger.error(f"❌ Memory backend disabled: {e}")
        return None, embedder

    logger.info(f"🧠 Memory '{backend.name}' ready (dimension {embedder.dimension})")
    return backend, embedder


def _check_tools(sandbox: ToolSandbox, failures: dict[str, str]) -> None:
    """Construct every enabled tool up front so broken factories are reported."""
    for name in sandbox.tool_names():
        try:
            sandbox.get_tool(name)
        except ToolError as e:
            failures[f"tool/{name}"] = e.message
            logger.error(f"❌ Tool '{name}' disabled: {e.message}")


def _build_channels(
    registry: CapabilityRegistry, config: WardenConfig, failures: dict[str, str]
) -> list[Channel]:
    channels: list[Channel] = []
    for capability in config.channels:
        try:
            channels.append(
                registry.resolve(CapabilityKind.CHANNEL, capability.key, _with_name(capability))
            )
        except RegistryError as e:
            failures[f"channel/{capability.name}"] = str(e)
            logger.error(f"❌ Channel '{capability.name}' disabled: {e}")
    return channels


async def bootstrap(
    config: WardenConfig,
    registry: CapabilityRegistry | None = None,
) -> Runtime:
    """
    Resolve a configuration into a live runtime.

    Args:
        config: Validated runtime configuration.
        registry: Registry to resolve from (defaults to ``build_registry()``).

    Returns:
        Assembled runtime.

    Raises:
        StartupError: If the policy engine, its rule source, or every
            provider fails to construct.
    """
    registry = registry or build_registry()
    failures: dict[str, str] = {}

    logger.info("🚀 Bootstrapping Warden runtime...")

    policy = _build_policy(registry, config)
    providers = _build_providers(registry, config, failures)
    router = ProviderRouter(providers, config.router)

    memory, embedder = _build_memory(registry, config, failures)
    if memory is not None and embedder is not None:
        for name, factory in memory_tool_factories(memory, embedder).items():
            registry.register(CapabilityKind.TOOL, name, factory, override=True)
    elif embedder is not None:
        await embedder.close()
        embedder = None

    if config.tools.plugin_dir:
        plugins = register_plugins(registry, config.tools.plugin_dir)
        logger.info(f"🔌 Registered {len(plugins)} plugin tools")

    runtimes = _build_runtimes(registry, config, failures)
    sandbox = ToolSandbox(registry, policy, runtimes, config.sandbox, config.tools)
    _check_tools(sandbox, failures)

    sessions = SessionManager(
        SessionBudget(
            max_tool_calls=config.agent.max_tool_calls,
            max_turn_seconds=config.agent.max_turn_seconds,
        ),
        idle_timeout_seconds=config.agent.idle_timeout_seconds,
    )
    orchestrator = Orchestrator(
        router,
        sandbox,
        sessions,
        config.agent,
        memory=memory,
        embedder=embedder,
    )
    channels = _build_channels(registry, config, failures)

    if failures:
        logger.warning(f"⚠️ Started with {len(failures)} disabled capabilities")
    logger.info(
        f"✅ Runtime ready: {len(providers)} providers, "
        f"{len(sandbox.tool_names())} tools, {len(channels)} channels"
    )

    return Runtime(
        registry=registry,
        policy=policy,
        router=router,
        sandbox=sandbox,
        orchestrator=orchestrator,
        sessions=sessions,
        channels=channels,
        memory=memory,
        embedder=embedder,
        failures=failures,
    )
