"""
Configuration Schema for the Warden runtime

Dataclasses for the YAML runtime configuration. Every class validates
itself in ``__post_init__`` and raises ConfigError naming the offending
entry. Security-relevant fields (rule effects and patterns) have no
defaults.
"""

import os
from dataclasses import dataclass, field
from typing import Any

from ..exceptions import ConfigError
from ..models import Constraints, PolicyVerdict

VALID_EFFECTS = {v.value for v in PolicyVerdict}


@dataclass
class CapabilityConfig:
    """
    One capability instance to resolve from the registry.

    Attributes:
        key: Registry key of the implementation (e.g. "openai-compatible").
        name: Instance name used in routing order and logs (defaults to key).
        config: Construction parameters passed to the factory.
    """

    key: str
    name: str = ""
    config: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """
        Validate capability entry.

        Raises:
            ConfigError: If key is empty.
        """
        if not self.key or not self.key.strip():
            raise ConfigError("Capability entry is missing 'key'")
        if not self.name:
            self.name = self.key


@dataclass
class AgentSettings:
    """
    Orchestrator behaviour.

    Attributes:
        instructions: System prompt for the model.
        history_turns: Number of past turns included in the context.
        memory_recall_k: Number of memories recalled per turn (0 disables).
        max_tool_calls: Tool invocations allowed per turn.
        max_turn_seconds: Wall-clock budget per turn.
        max_parallel_tools: Concurrency cap within one tool round.
        idle_timeout_seconds: Idle time after which a session is closed.
        memory_timeout_seconds: Timeout for memory recall/remember calls.
        max_tokens: Generation cap per provider request.
        temperature: Sampling temperature.
        remember_turns: Whether completed turns are written to memory.
    """

    instructions: str | None = None
    history_turns: int = 10
    memory_recall_k: int = 4
    max_tool_calls: int = 8
    max_turn_seconds: float = 120.0
    max_parallel_tools: int = 4
    idle_timeout_seconds: float = 1800.0
    memory_timeout_seconds: float = 5.0
    max_tokens: int = 1024
    temperature: float = 0.2
    remember_turns: bool = True

    def __post_init__(self) -> None:
        """
        Validate numeric limits.

        Raises:
            ConfigError: If a limit is out of range.
        """
        if self.history_turns < 0:
            raise ConfigError("agent.historyTurns must be >= 0")
        if self.memory_recall_k < 0:
            raise ConfigError("agent.memoryRecallK must be >= 0")
        if self.max_tool_calls < 0:
            raise ConfigError("agent.maxToolCalls must be >= 0")
        if self.max_parallel_tools < 1:
            raise ConfigError("agent.maxParallelTools must be >= 1")
        for name in ("max_turn_seconds", "idle_timeout_seconds", "memory_timeout_seconds"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"agent.{name} must be > 0")


@dataclass
class RouterConfig:
    """
    Provider router behaviour.

    Attributes:
        order: Provider instance names in preference order (empty = declaration order).
        max_attempts: Attempts per provider for transient failures.
        backoff_base_seconds: First retry delay; doubles per attempt.
        backoff_max_seconds: Upper bound of a retry delay.
        failure_threshold: Consecutive failures that open a circuit.
        cooldown_seconds: Time an open circuit skips its provider.
        request_timeout_seconds: Timeout of one provider attempt.
    """

    order: list[str] = field(default_factory=list)
    max_attempts: int = 3
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 8.0
    failure_threshold: int = 5
    cooldown_seconds: float = 30.0
    request_timeout_seconds: float = 60.0

    def __post_init__(self) -> None:
        """
        Validate router limits.

        Raises:
            ConfigError: If a limit is out of range.
        """
        if self.max_attempts < 1:
            raise ConfigError("router.maxAttempts must be >= 1")
        if self.failure_threshold < 1:
            raise ConfigError("router.failureThreshold must be >= 1")
        if self.backoff_base_seconds < 0 or self.backoff_max_seconds < 0:
            raise ConfigError("router backoff values must be >= 0")
        if self.cooldown_seconds <= 0 or self.request_timeout_seconds <= 0:
            raise ConfigError("router cooldown and timeout must be > 0")


def parse_constraints(raw: dict[str, Any] | None, rule_id: str) -> Constraints | None:
    """
    Build Constraints from a raw mapping.

    Args:
        raw: Raw constraints (camelCase keys).
        rule_id: Owning rule id, for error messages.

    Returns:
        Constraints, or None when raw is empty.

    Raises:
        ConfigError: If a field is malformed.
    """
    if not raw:
        return None
    if not isinstance(raw, dict):
        raise ConfigError(f"Rule '{rule_id}': constraints must be a mapping")

    known = {"pathPrefixes", "denyNetwork", "timeoutSeconds", "maxOutputBytes"}
    unknown = set(raw) - known
    if unknown:
        raise ConfigError(f"Rule '{rule_id}': unknown constraint keys {sorted(unknown)}")

    prefixes = raw.get("pathPrefixes", [])
    if not isinstance(prefixes, list) or not all(isinstance(p, str) for p in prefixes):
        raise ConfigError(f"Rule '{rule_id}': pathPrefixes must be a list of strings")
    for prefix in prefixes:
        if not os.path.isabs(os.path.expanduser(prefix)):
            raise ConfigError(
                f"Rule '{rule_id}': path prefix '{prefix}' must be absolute"
            )

    deny_network = raw.get("denyNetwork", False)
    if not isinstance(deny_network, bool):
        raise ConfigError(f"Rule '{rule_id}': denyNetwork must be a boolean")

    timeout = raw.get("timeoutSeconds")
    if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
        raise ConfigError(f"Rule '{rule_id}': timeoutSeconds must be a positive number")

    max_output = raw.get("maxOutputBytes")
    if max_output is not None and (not isinstance(max_output, int) or max_output <= 0):
        raise ConfigError(f"Rule '{rule_id}': maxOutputBytes must be a positive integer")

    return Constraints(
        path_prefixes=tuple(
            os.path.normpath(os.path.expanduser(p)) for p in prefixes
        ),
        deny_network=deny_network,
        timeout_seconds=float(timeout) if timeout is not None else None,
        max_output_bytes=max_output,
    )


@dataclass
class PolicyRuleConfig:
    """
    One policy rule as declared in configuration.

    Exactly one of ``action`` and ``profile`` is set. A profile expands
    into one rule per action pattern of the preset.

    Attributes:
        id: Rule identifier recorded with every decision it produces.
        subject: Subject pattern ("<channel>:<user>", wildcards allowed).
        effect: allow, deny or allow_with_constraints.
        action: Action pattern (e.g. "shell.exec", "fs.*").
        profile: Named preset (minimal/coding/messaging/full).
        constraints: Constraints for allow_with_constraints.
    """

    id: str
    subject: str
    effect: str
    action: str | None = None
    profile: str | None = None
    constraints: Constraints | None = None

    def __post_init__(self) -> None:
        """
        Validate rule.

        Raises:
            ConfigError: If a mandatory field is missing or inconsistent.
        """
        if not self.id:
            raise ConfigError("Policy rule is missing 'id'")
        if not self.subject:
            raise ConfigError(f"Rule '{self.id}': missing 'subject'")
        if self.effect not in VALID_EFFECTS:
            raise ConfigError(
                f"Rule '{self.id}': invalid effect '{self.effect}'. "
                f"Must be one of {sorted(VALID_EFFECTS)}"
            )
        if bool(self.action) == bool(self.profile):
            raise ConfigError(
                f"Rule '{self.id}': exactly one of 'action' or 'profile' is required"
            )
        if self.effect == PolicyVerdict.ALLOW_WITH_CONSTRAINTS.value:
            if self.constraints is None:
                raise ConfigError(
                    f"Rule '{self.id}': allow_with_constraints requires constraints"
                )
        elif self.constraints is not None:
            raise ConfigError(
                f"Rule '{self.id}': constraints are only valid with allow_with_constraints"
            )


@dataclass
class PolicyConfig:
    """
    Policy engine configuration.

    Attributes:
        engine: Registry key of the policy engine.
        source: Registry key of the rule source ("static" or "file").
        source_config: Construction parameters of the rule source.
        rules: Inline rules (used by the "static" source).
        cache_size: Decision cache capacity.
    """

    engine: str = "rules"
    source: str = "static"
    source_config: dict[str, Any] = field(default_factory=dict)
    rules: list[PolicyRuleConfig] = field(default_factory=list)
    cache_size: int = 1024

    def __post_init__(self) -> None:
        """
        Validate rule ids are unique.

        Raises:
            ConfigError: If ids repeat.
        """
        ids = [r.id for r in self.rules]
        if len(ids) != len(set(ids)):
            raise ConfigError("Policy rule ids must be unique")
        if self.cache_size < 0:
            raise ConfigError("policy.cacheSize must be >= 0")


@dataclass
class SandboxConfig:
    """
    Tool sandbox configuration.

    Attributes:
        default_runtime: Runtime instance name used when a tool has no override.
        runtimes: Runtime adapters to resolve.
        timeout_seconds: Default wall-clock limit per execution.
        max_output_bytes: Default output cap per execution.
        max_memory_bytes: Address-space cap for spawned processes.
        audit_size: Number of audit entries kept in memory.
    """

    default_runtime: str = "native"
    runtimes: list[CapabilityConfig] = field(
        default_factory=lambda: [CapabilityConfig(key="native")]
    )
    timeout_seconds: float = 30.0
    max_output_bytes: int = 64 * 1024
    max_memory_bytes: int | None = 512 * 1024 * 1024
    audit_size: int = 1000

    def __post_init__(self) -> None:
        """
        Validate sandbox limits and runtime references.

        Raises:
            ConfigError: If limits are invalid or the default runtime is unknown.
        """
        if self.timeout_seconds <= 0:
            raise ConfigError("sandbox.timeoutSeconds must be > 0")
        if self.max_output_bytes <= 0:
            raise ConfigError("sandbox.maxOutputBytes must be > 0")
        if self.max_memory_bytes is not None and self.max_memory_bytes <= 0:
            raise ConfigError("sandbox.maxMemoryBytes must be > 0")
        names = [r.name for r in self.runtimes]
        if len(names) != len(set(names)):
            raise ConfigError("Sandbox runtime names must be unique")
        if self.default_runtime not in names:
            raise ConfigError(
                f"sandbox.defaultRuntime '{self.default_runtime}' is not a "
                f"configured runtime. Valid: {names}"
            )


@dataclass
class ToolOverride:
    """
    Per-tool execution settings.

    Attributes:
        runtime: Runtime instance name for this tool.
        timeout_seconds: Wall-clock limit for this tool.
        max_output_bytes: Output cap for this tool.
        config: Construction parameters passed to the tool factory.
    """

    runtime: str | None = None
    timeout_seconds: float | None = None
    max_output_bytes: int | None = None
    config: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolsConfig:
    """
    Tool catalog configuration.

    Attributes:
        allow: Tool name patterns to enable (empty = all registered tools).
        deny: Tool name patterns to disable (takes precedence).
        overrides: Per-tool settings keyed by tool name.
        plugin_dir: Directory scanned for ``<name>/tool.toml`` plugins.
    """

    allow: list[str] = field(default_factory=list)
    deny: list[str] = field(default_factory=list)
    overrides: dict[str, ToolOverride] = field(default_factory=dict)
    plugin_dir: str | None = None


@dataclass
class MemoryConfig:
    """
    Memory store configuration.

    Attributes:
        enabled: Whether memory recall/remember is used.
        backend: Memory backend capability.
        embedder: Embedder capability.
    """

    enabled: bool = True
    backend: CapabilityConfig = field(
        default_factory=lambda: CapabilityConfig(key="in-memory")
    )
    embedder: CapabilityConfig = field(
        default_factory=lambda: CapabilityConfig(key="hashing")
    )


@dataclass
class WardenConfig:
    """
    Root configuration for the runtime.

    Attributes:
        agent: Orchestrator behaviour.
        providers: Model providers (at least one).
        router: Router behaviour.
        policy: Policy engine and rules.
        sandbox: Sandbox limits and runtimes.
        tools: Tool catalog.
        memory: Memory store.
        channels: Channels served by the gateway.
    """

    providers: list[CapabilityConfig]
    policy: PolicyConfig
    agent: AgentSettings = field(default_factory=AgentSettings)
    router: RouterConfig = field(default_factory=RouterConfig)
    sandbox: SandboxConfig = field(default_factory=SandboxConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    channels: list[CapabilityConfig] = field(default_factory=list)

    def __post_init__(self) -> None:
        """
        Validate cross references.

        Raises:
            ConfigError: If providers are missing or duplicated, or the
                router order / tool overrides reference unknown names.
        """
        if not self.providers:
            raise ConfigError("At least one provider must be defined")

        provider_names = [p.name for p in self.providers]
        if len(provider_names) != len(set(provider_names)):
            raise ConfigError("Provider names must be unique")

        if not self.router.order:
            self.router.order = list(provider_names)
        invalid_refs = set(self.router.order) - set(provider_names)
        if invalid_refs:
            raise ConfigError(
                f"Router order references invalid providers: {invalid_refs}. "
                f"Valid names: {set(provider_names)}"
            )

        runtime_names = {r.name for r in self.sandbox.runtimes}
        for tool_name, override in self.tools.overrides.items():
            if override.runtime and override.runtime not in runtime_names:
                raise ConfigError(
                    f"Tool '{tool_name}' references unknown runtime "
                    f"'{override.runtime}'. Valid: {runtime_names}"
                )

        channel_names = [c.name for c in self.channels]
        if len(channel_names) != len(set(channel_names)):
            raise ConfigError("Channel names must be unique")

    def get_provider(self, name: str) -> CapabilityConfig | None:
        """
        Get provider configuration by instance name.

        Args:
            name: Provider instance name.

        Returns:
            Provider configuration or None if not found.
        """
        for provider in self.providers:
            if provider.name == name:
                return provider
        return None
