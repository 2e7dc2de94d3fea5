"""
Unit tests for plugin tool loading and execution.
"""

import json
import stat

import pytest

from warden.exceptions import ConfigError, ExecutionFaultError, InvalidParametersError
from warden.registry import CapabilityKind, CapabilityRegistry
from warden.sandbox.runtimes import NativeProcessRuntime
from warden.tools import register_core_tools
from warden.tools.plugins import load_plugins, parse_manifest, register_plugins

MANIFEST = """
[tool]
name = "{name}"
version = "1.0.0"
description = "Echo parameters back"

[exec]
binary = "{binary}"

[[parameters]]
name = "target"
type = "string"
description = "What to greet"
required = true

[[parameters]]
name = "count"
type = "integer"
description = "Repetitions"
required = false
default = 1
"""

ECHO_SCRIPT = "#!/bin/sh\ncat\n"


def write_plugin(root, name: str = "greet", binary: str = "run.sh", script: str = ECHO_SCRIPT):
    """Create a plugin directory with manifest and executable."""
    directory = root / name
    directory.mkdir()
    (directory / "tool.toml").write_text(MANIFEST.format(name=name, binary=binary))
    script_path = directory / "run.sh"
    script_path.write_text(script)
    script_path.chmod(script_path.stat().st_mode | stat.S_IXUSR)
    return directory


class TestManifest:
    """Tests for manifest parsing."""

    def test_parse(self, tmp_path) -> None:
        """Test a valid manifest."""
        directory = write_plugin(tmp_path)
        manifest = parse_manifest(directory / "tool.toml")

        assert manifest.tool.name == "greet"
        assert [p.name for p in manifest.parameters] == ["target", "count"]

    def test_invalid_toml(self, tmp_path) -> None:
        """Test that broken TOML raises ConfigError."""
        path = tmp_path / "tool.toml"
        path.write_text("[tool\nname=")
        with pytest.raises(ConfigError):
            parse_manifest(path)

    def test_missing_section(self, tmp_path) -> None:
        """Test that a manifest without [exec] fails validation."""
        path = tmp_path / "tool.toml"
        path.write_text('[tool]\nname = "x"\nversion = "1"\ndescription = "d"\n')
        with pytest.raises(ConfigError, match="exec"):
            parse_manifest(path)


class TestPluginLoading:
    """Tests for load_plugins and register_plugins."""

    def test_load_and_validate(self, tmp_path) -> None:
        """Test that parameters follow the manifest."""
        write_plugin(tmp_path)
        [plugin] = load_plugins(tmp_path)

        assert plugin.action == "plugin.greet"
        assert plugin.uses_runtime
        params = plugin.validate({"target": "world"})
        assert params.count == 1
        with pytest.raises(InvalidParametersError):
            plugin.validate({"count": 2})
        with pytest.raises(InvalidParametersError):
            plugin.validate({"target": "x", "extra": True})

    def test_binary_escape_skipped(self, tmp_path) -> None:
        """Test that a binary outside the plugin directory is rejected."""
        write_plugin(tmp_path, name="bad", binary="../../bin/sh")
        write_plugin(tmp_path, name="good")

        assert [p.name for p in load_plugins(tmp_path)] == ["good"]

    def test_missing_directory(self, tmp_path) -> None:
        """Test that a missing plugin directory yields no plugins."""
        assert load_plugins(tmp_path / "absent") == []

    def test_register_skips_clashes(self, tmp_path) -> None:
        """Test that a plugin named like a core tool is not registered."""
        write_plugin(tmp_path, name="shell")
        write_plugin(tmp_path, name="greet")
        registry = CapabilityRegistry()
        register_core_tools(registry)

        registered = register_plugins(registry, tmp_path)

        assert registered == ["greet"]
        assert registry.contains(CapabilityKind.TOOL, "greet")


class TestPluginExecution:
    """Tests for running plugin binaries."""

    @pytest.mark.asyncio
    async def test_parameters_on_stdin(self, tmp_path, make_context) -> None:
        """Test that validated parameters arrive as JSON on stdin."""
        write_plugin(tmp_path)
        [plugin] = load_plugins(tmp_path)
        context = make_context(NativeProcessRuntime())

        output = await plugin.execute(plugin.validate({"target": "world", "count": 2}), context)

        assert json.loads(output.text) == {"target": "world", "count": 2}
        assert output.data == {"target": "world", "count": 2}

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, tmp_path, make_context) -> None:
        """Test that a failing plugin raises an execution fault."""
        write_plugin(tmp_path, script="#!/bin/sh\necho broken >&2\nexit 4\n")
        [plugin] = load_plugins(tmp_path)

        with pytest.raises(ExecutionFaultError, match="code 4: broken"):
            await plugin.execute(
                plugin.validate({"target": "x"}), make_context(NativeProcessRuntime())
            )
