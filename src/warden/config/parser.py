"""
Configuration Parser for the Warden runtime

Loads YAML configuration files and converts them to typed Python objects.
Supports environment variable expansion using ${VAR} or ${VAR:-default} syntax.
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml

from ..exceptions import ConfigError
from .schema import (
    AgentSettings,
    CapabilityConfig,
    MemoryConfig,
    PolicyConfig,
    PolicyRuleConfig,
    RouterConfig,
    SandboxConfig,
    ToolOverride,
    ToolsConfig,
    WardenConfig,
    parse_constraints,
)

ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-(.*?))?\}")


def expand_env_vars(value: Any) -> Any:
    """
    Recursively expand ${ENV_VAR} and ${ENV_VAR:-default} placeholders.

    Args:
        value: Configuration value (can be dict, list, str, etc.)

    Returns:
        Value with environment variables expanded
    """
    if isinstance(value, str):

        def replacer(match: re.Match[str]) -> str:
            env_var = match.group(1)
            default = match.group(2) or ""
            return os.getenv(env_var, default)

        return ENV_PATTERN.sub(replacer, value)
    if isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(v) for v in value]
    return value


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"Section '{key}' must be a mapping")
    return value


def _list(raw: dict[str, Any], key: str) -> list[Any]:
    value = raw.get(key) or []
    if not isinstance(value, list):
        raise ConfigError(f"'{key}' must be a list")
    return value


def parse_capability(raw: Any, where: str) -> CapabilityConfig:
    """
    Parse one capability entry.

    Args:
        raw: Raw entry ({key, name, config}) or a bare key string.
        where: Location used in error messages.

    Returns:
        Parsed capability configuration.

    Raises:
        ConfigError: If the entry is malformed.
    """
    if isinstance(raw, str):
        return CapabilityConfig(key=raw)
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: expected mapping or string, got {type(raw).__name__}")
    config = raw.get("config") or {}
    if not isinstance(config, dict):
        raise ConfigError(f"{where}: 'config' must be a mapping")
    try:
        return CapabilityConfig(
            key=raw.get("key", ""),
            name=raw.get("name", ""),
            config=config,
        )
    except ConfigError as e:
        raise ConfigError(f"{where}: {e.message}") from e


def parse_rules(raw_rules: list[Any]) -> list[PolicyRuleConfig]:
    """
    Parse policy rules.

    Args:
        raw_rules: Raw rule mappings in declaration order.

    Returns:
        Parsed rules.

    Raises:
        ConfigError: If a rule is malformed.
    """
    rules: list[PolicyRuleConfig] = []
    for index, raw in enumerate(raw_rules):
        if not isinstance(raw, dict):
            raise ConfigError(f"Policy rule #{index + 1} must be a mapping")
        rule_id = str(raw.get("id") or f"rule-{index + 1}")
        if "effect" not in raw:
            raise ConfigError(f"Rule '{rule_id}': missing 'effect'")
        rules.append(
            PolicyRuleConfig(
                id=rule_id,
                subject=raw.get("subject", ""),
                effect=str(raw["effect"]).strip().lower(),
                action=raw.get("action"),
                profile=raw.get("profile"),
                constraints=parse_constraints(raw.get("constraints"), rule_id),
            )
        )
    return rules


class ConfigParser:
    """
    YAML configuration parser with environment variable expansion.

    Usage:
        parser = ConfigParser("config/warden.yaml")
        config = parser.load()
    """

    def __init__(self, config_path: str) -> None:
        """
        Initialize parser with configuration file path.

        Args:
            config_path: Path to YAML configuration file

        Raises:
            FileNotFoundError: If config file doesn't exist
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_path}"
            )

    def load(self) -> WardenConfig:
        """
        Load and parse configuration file.

        Returns:
            Parsed and validated configuration

        Raises:
            yaml.YAMLError: If YAML parsing fails
            ConfigError: If configuration is invalid
        """
        with open(self.config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)

        if not isinstance(raw_config, dict):
            raise ConfigError(
                f"Invalid configuration: expected dict, got {type(raw_config).__name__}"
            )

        return self.parse(expand_env_vars(raw_config))

    def parse(self, raw: dict[str, Any]) -> WardenConfig:
        """
        Parse raw dictionary into WardenConfig.

        Args:
            raw: Raw configuration dictionary (already env-expanded)

        Returns:
            Validated configuration object

        Raises:
            ConfigError: If configuration is invalid
        """
        return WardenConfig(
            agent=self._parse_agent(_section(raw, "agent")),
            providers=[
                parse_capability(p, f"providers[{i}]")
                for i, p in enumerate(_list(raw, "providers"))
            ],
            router=self._parse_router(_section(raw, "router")),
            policy=self._parse_policy(raw),
            sandbox=self._parse_sandbox(_section(raw, "sandbox")),
            tools=self._parse_tools(_section(raw, "tools")),
            memory=self._parse_memory(_section(raw, "memory")),
            channels=[
                parse_capability(c, f"channels[{i}]")
                for i, c in enumerate(_list(raw, "channels"))
            ],
        )

    def _parse_agent(self, raw: dict[str, Any]) -> AgentSettings:
        defaults = AgentSettings()
        return AgentSettings(
            instructions=raw.get("instructions"),
            history_turns=raw.get("historyTurns", defaults.history_turns),
            memory_recall_k=raw.get("memoryRecallK", defaults.memory_recall_k),
            max_tool_calls=raw.get("maxToolCalls", defaults.max_tool_calls),
            max_turn_seconds=raw.get("maxTurnSeconds", defaults.max_turn_seconds),
            max_parallel_tools=raw.get("maxParallelTools", defaults.max_parallel_tools),
            idle_timeout_seconds=raw.get(
                "idleTimeoutSeconds", defaults.idle_timeout_seconds
            ),
            memory_timeout_seconds=raw.get(
                "memoryTimeoutSeconds", defaults.memory_timeout_seconds
            ),
            max_tokens=raw.get("maxTokens", defaults.max_tokens),
            temperature=raw.get("temperature", defaults.temperature),
            remember_turns=raw.get("rememberTurns", defaults.remember_turns),
        )

    def _parse_router(self, raw: dict[str, Any]) -> RouterConfig:
        defaults = RouterConfig()
        return RouterConfig(
            order=list(raw.get("order", [])),
            max_attempts=raw.get("maxAttempts", defaults.max_attempts),
            backoff_base_seconds=raw.get(
                "backoffBaseSeconds", defaults.backoff_base_seconds
            ),
            backoff_max_seconds=raw.get(
                "backoffMaxSeconds", defaults.backoff_max_seconds
            ),
            failure_threshold=raw.get("failureThreshold", defaults.failure_threshold),
            cooldown_seconds=raw.get("cooldownSeconds", defaults.cooldown_seconds),
            request_timeout_seconds=raw.get(
                "requestTimeoutSeconds", defaults.request_timeout_seconds
            ),
        )

    def _parse_policy(self, raw: dict[str, Any]) -> PolicyConfig:
        # A missing policy section is an error: running without rules is
        # never inferred.
        if "policy" not in raw:
            raise ConfigError("Missing 'policy' section")
        policy_raw = _section(raw, "policy")
        source_config = policy_raw.get("sourceConfig") or {}
        if not isinstance(source_config, dict):
            raise ConfigError("policy.sourceConfig must be a mapping")
        return PolicyConfig(
            engine=policy_raw.get("engine", "rules"),
            source=policy_raw.get("source", "static"),
            source_config=source_config,
            rules=parse_rules(_list(policy_raw, "rules")),
            cache_size=policy_raw.get("cacheSize", 1024),
        )

    def _parse_sandbox(self, raw: dict[str, Any]) -> SandboxConfig:
        defaults = SandboxConfig()
        runtimes_raw = raw.get("runtimes")
        runtimes = (
            [
                parse_capability(r, f"sandbox.runtimes[{i}]")
                for i, r in enumerate(runtimes_raw)
            ]
            if runtimes_raw
            else defaults.runtimes
        )
        return SandboxConfig(
            default_runtime=raw.get("defaultRuntime", defaults.default_runtime),
            runtimes=runtimes,
            timeout_seconds=raw.get("timeoutSeconds", defaults.timeout_seconds),
            max_output_bytes=raw.get("maxOutputBytes", defaults.max_output_bytes),
            max_memory_bytes=raw.get("maxMemoryBytes", defaults.max_memory_bytes),
            audit_size=raw.get("auditSize", defaults.audit_size),
        )

    def _parse_tools(self, raw: dict[str, Any]) -> ToolsConfig:
        overrides: dict[str, ToolOverride] = {}
        for name, override_raw in _section(raw, "overrides").items():
            if not isinstance(override_raw, dict):
                raise ConfigError(f"tools.overrides.{name} must be a mapping")
            overrides[name] = ToolOverride(
                runtime=override_raw.get("runtime"),
                timeout_seconds=override_raw.get("timeoutSeconds"),
                max_output_bytes=override_raw.get("maxOutputBytes"),
                config=override_raw.get("config") or {},
            )
        return ToolsConfig(
            allow=list(raw.get("allow", [])),
            deny=list(raw.get("deny", [])),
            overrides=overrides,
            plugin_dir=raw.get("pluginDir"),
        )

    def _parse_memory(self, raw: dict[str, Any]) -> MemoryConfig:
        defaults = MemoryConfig()
        return MemoryConfig(
            enabled=raw.get("enabled", True),
            backend=(
                parse_capability(raw["backend"], "memory.backend")
                if raw.get("backend")
                else defaults.backend
            ),
            embedder=(
                parse_capability(raw["embedder"], "memory.embedder")
                if raw.get("embedder")
                else defaults.embedder
            ),
        )
