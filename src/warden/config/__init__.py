"""Configuration system for the Warden runtime."""

from .parser import ConfigParser, expand_env_vars, parse_rules
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
)
from .settings import WardenSettings, get_settings, reset_settings

__all__ = [
    "ConfigParser",
    "expand_env_vars",
    "parse_rules",
    "AgentSettings",
    "CapabilityConfig",
    "MemoryConfig",
    "PolicyConfig",
    "PolicyRuleConfig",
    "RouterConfig",
    "SandboxConfig",
    "ToolOverride",
    "ToolsConfig",
    "WardenConfig",
    "WardenSettings",
    "get_settings",
    "reset_settings",
]
