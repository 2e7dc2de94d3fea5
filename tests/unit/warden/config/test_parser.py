"""
Unit tests for the configuration parser.

Tests cover YAML parsing, environment variable expansion, camelCase keys
and error cases.
"""

import pytest

from warden.config.parser import ConfigParser, expand_env_vars, parse_capability
from warden.config.schema import WardenConfig
from warden.exceptions import ConfigError

MINIMAL_CONFIG = """
providers:
  - key: scripted
policy:
  rules:
    - id: all-read
      subject: "*"
      effect: allow
      action: "fs.read"
"""


def write_config(tmp_path, text: str) -> str:
    """
    Write a YAML config to a temp file.

    Returns:
        Path of the written file.
    """
    path = tmp_path / "warden.yaml"
    path.write_text(text)
    return str(path)


class TestExpandEnvVars:
    """Tests for environment variable expansion."""

    def test_expands_set_variable(self, monkeypatch) -> None:
        """Test ${VAR} expansion."""
        monkeypatch.setenv("WARDEN_TEST_MODEL", "m1")
        assert expand_env_vars("model-${WARDEN_TEST_MODEL}") == "model-m1"

    def test_default_value(self, monkeypatch) -> None:
        """Test ${VAR:-default} uses the default when unset."""
        monkeypatch.delenv("WARDEN_TEST_UNSET", raising=False)
        assert expand_env_vars("${WARDEN_TEST_UNSET:-fallback}") == "fallback"

    def test_nested_structures(self, monkeypatch) -> None:
        """Test expansion inside dicts and lists."""
        monkeypatch.setenv("WARDEN_TEST_KEY", "secret")
        result = expand_env_vars({"a": ["${WARDEN_TEST_KEY}", 3], "b": True})
        assert result == {"a": ["secret", 3], "b": True}


class TestParseCapability:
    """Tests for capability entries."""

    def test_bare_string(self) -> None:
        """Test that a bare string becomes a keyed entry named after its key."""
        capability = parse_capability("stdio", "channels[0]")
        assert capability.key == "stdio"
        assert capability.name == "stdio"
        assert capability.config == {}

    def test_missing_key(self) -> None:
        """Test that an entry without key names its location."""
        with pytest.raises(ConfigError, match=r"providers\[1\]"):
            parse_capability({"name": "x"}, "providers[1]")

    def test_bad_config_type(self) -> None:
        """Test that a non-mapping config is rejected."""
        with pytest.raises(ConfigError):
            parse_capability({"key": "x", "config": [1]}, "providers[0]")


class TestConfigParser:
    """Tests for ConfigParser."""

    def test_file_not_found(self) -> None:
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            ConfigParser("nonexistent.yaml")

    def test_minimal_config(self, tmp_path) -> None:
        """Test parsing a minimal valid config with defaults."""
        config = ConfigParser(write_config(tmp_path, MINIMAL_CONFIG)).load()

        assert isinstance(config, WardenConfig)
        assert config.providers[0].key == "scripted"
        assert config.router.order == ["scripted"]
        assert config.sandbox.default_runtime == "native"
        assert config.memory.backend.key == "in-memory"
        assert config.policy.rules[0].id == "all-read"
        assert config.channels == []

    def test_complete_config(self, tmp_path, monkeypatch) -> None:
        """Test parsing every section with camelCase keys."""
        monkeypatch.setenv("WARDEN_TEST_API_KEY", "sk-test")
        text = """
agent:
  instructions: "Be brief."
  historyTurns: 3
  maxToolCalls: 2
  maxParallelTools: 2
providers:
  - key: openai
    name: main
    config:
      model: gpt-test
      apiKey: ${WARDEN_TEST_API_KEY}
  - key: scripted
    name: backup
router:
  order: [backup, main]
  failureThreshold: 2
  cooldownSeconds: 5
policy:
  source: static
  cacheSize: 10
  rules:
    - id: shell
      subject: "queue:*"
      effect: allow_with_constraints
      action: shell.exec
      constraints:
        pathPrefixes: ["/tmp/work"]
        denyNetwork: true
        timeoutSeconds: 5
sandbox:
  defaultRuntime: native
  timeoutSeconds: 10
  maxOutputBytes: 2048
tools:
  allow: ["read", "shell"]
  overrides:
    shell:
      timeoutSeconds: 3
memory:
  enabled: false
channels:
  - key: queue
    name: inbox
"""
        config = ConfigParser(write_config(tmp_path, text)).load()

        assert config.agent.instructions == "Be brief."
        assert config.agent.history_turns == 3
        assert config.agent.max_tool_calls == 2
        assert config.get_provider("main").config["apiKey"] == "sk-test"
        assert config.get_provider("missing") is None
        assert config.router.order == ["backup", "main"]
        assert config.router.failure_threshold == 2
        rule = config.policy.rules[0]
        assert rule.constraints.deny_network is True
        assert rule.constraints.timeout_seconds == 5.0
        assert config.policy.cache_size == 10
        assert config.sandbox.max_output_bytes == 2048
        assert config.tools.allow == ["read", "shell"]
        assert config.tools.overrides["shell"].timeout_seconds == 3
        assert config.memory.enabled is False
        assert config.channels[0].name == "inbox"

    def test_missing_policy_section(self, tmp_path) -> None:
        """Test that a config without policy fails closed."""
        text = "providers:\n  - key: scripted\n"
        with pytest.raises(ConfigError, match="policy"):
            ConfigParser(write_config(tmp_path, text)).load()

    def test_rule_without_effect(self, tmp_path) -> None:
        """Test that a rule must declare its effect."""
        text = MINIMAL_CONFIG.replace("      effect: allow\n", "")
        with pytest.raises(ConfigError, match="missing 'effect'"):
            ConfigParser(write_config(tmp_path, text)).load()

    def test_not_a_mapping(self, tmp_path) -> None:
        """Test that a non-mapping document is rejected."""
        with pytest.raises(ConfigError, match="expected dict"):
            ConfigParser(write_config(tmp_path, "- a\n- b\n")).load()

    def test_relative_path_prefix_rejected(self, tmp_path) -> None:
        """Test that constraint path prefixes must be absolute."""
        text = """
providers: [scripted]
policy:
  rules:
    - id: bad
      subject: "*"
      effect: allow_with_constraints
      action: fs.read
      constraints:
        pathPrefixes: ["relative/dir"]
"""
        with pytest.raises(ConfigError, match="must be absolute"):
            ConfigParser(write_config(tmp_path, text)).load()

    def test_unknown_constraint_key(self, tmp_path) -> None:
        """Test that unknown constraint keys are rejected."""
        text = """
providers: [scripted]
policy:
  rules:
    - id: bad
      subject: "*"
      effect: allow_with_constraints
      action: fs.read
      constraints:
        maxCpu: 3
"""
        with pytest.raises(ConfigError, match="unknown constraint keys"):
            ConfigParser(write_config(tmp_path, text)).load()
