"""
User plugin tools.

Each plugin lives in its own subdirectory of the plugin directory and
carries a ``tool.toml`` manifest describing the tool, the binary to run
and the parameters it accepts:

    [tool]
    name = "i2c_scan"
    version = "1.0.0"
    description = "Scan the bus"

    [exec]
    binary = "i2c_scan.py"

    [[parameters]]
    name = "bus"
    type = "integer"
    description = "Bus number"
    required = false
    default = 0

The binary receives the validated parameters as a JSON object on stdin.
"""

import json
import logging
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, create_model

from ..exceptions import ConfigError, DuplicateKeyError, ExecutionFaultError
from ..registry import CapabilityKind, CapabilityRegistry
from ..sandbox.context import ToolContext, is_within
from .base import Tool, ToolOutput, ToolParameters

logger = logging.getLogger(__name__)

MANIFEST_FILE = "tool.toml"

PARAMETER_TYPES: dict[str, type] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
}


class ToolMeta(BaseModel):
    name: str = Field(pattern=r"^[a-z0-9_\-]+$")
    version: str
    description: str


class ExecConfig(BaseModel):
    binary: str = Field(min_length=1)


class TransportConfig(BaseModel):
    preferred: str
    device_required: bool = False


class ParameterDef(BaseModel):
    name: str = Field(pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    type: Literal["string", "integer", "number", "boolean"]
    description: str
    required: bool
    default: Any = None


class ToolManifest(BaseModel):
    """Parsed ``tool.toml``."""

    tool: ToolMeta
    exec: ExecConfig
    transport: TransportConfig | None = None
    parameters: list[ParameterDef] = Field(default_factory=list)


def parse_manifest(path: Path) -> ToolManifest:
    """
    Parse and validate a plugin manifest.

    Args:
        path: Path to ``tool.toml``.

    Returns:
        Validated manifest.

    Raises:
        ConfigError: If the file is unreadable, not TOML or fails validation.
    """
    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"{path}: {e}") from e

    try:
        return ToolManifest.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"{path}: {e}") from e


def build_parameter_model(manifest: ToolManifest) -> type[ToolParameters]:
    """
    Derive a pydantic parameter model from the manifest definitions.

    Required parameters get no default; optional ones use their default.
    """
    fields: dict[str, Any] = {}
    for param in manifest.parameters:
        python_type = PARAMETER_TYPES[param.type]
        if param.required:
            fields[param.name] = (python_type, Field(..., description=param.description))
        else:
            fields[param.name] = (
                Optional[python_type],
                Field(default=param.default, description=param.description),
            )

    model_name = "".join(part.capitalize() for part in manifest.tool.name.replace("-", "_").split("_"))
    return create_model(f"{model_name}Parameters", __base__=ToolParameters, **fields)


class PluginTool(Tool):
    """Tool backed by a user plugin binary."""

    uses_runtime = True

    def __init__(self, manifest: ToolManifest, plugin_dir: Path) -> None:
        """
        Initialize plugin tool.

        Args:
            manifest: Parsed manifest.
            plugin_dir: Directory holding the manifest and binary.

        Raises:
            ConfigError: If the binary escapes the plugin directory.
        """
        self.manifest = manifest
        self.name = manifest.tool.name
        self.description = manifest.tool.description
        self.action = f"plugin.{manifest.tool.name}"
        self.Parameters = build_parameter_model(manifest)
        self.version = manifest.tool.version

        root = plugin_dir.resolve()
        binary = (root / manifest.exec.binary).resolve()
        if not is_within(str(binary), (str(root),)):
            raise ConfigError(
                f"Plugin '{self.name}' binary {manifest.exec.binary} escapes {root}"
            )
        self.plugin_dir = root
        self.binary = binary

    @property
    def transport(self) -> TransportConfig | None:
        return self.manifest.transport

    async def execute(self, params: ToolParameters, context: ToolContext) -> ToolOutput:
        payload = json.dumps(params.model_dump(mode="json")).encode("utf-8")
        result = await context.run(
            [str(self.binary)], cwd=str(self.plugin_dir), stdin=payload
        )
        if result.exit_code != 0:
            raise ExecutionFaultError(
                self.name,
                f"Plugin exited with code {result.exit_code}: {result.stderr.strip()}",
            )

        data = None
        try:
            decoded = json.loads(result.stdout)
            if isinstance(decoded, dict):
                data = decoded
        except json.JSONDecodeError:
            pass
        return ToolOutput(text=result.stdout or "(no output)", data=data, exit_code=0)


def load_plugins(plugin_dir: str | Path) -> list[PluginTool]:
    """
    Load every plugin under a directory.

    Malformed manifests are logged and skipped; other plugins still load.

    Args:
        plugin_dir: Directory with one subdirectory per plugin.

    Returns:
        Loaded plugin tools, sorted by directory name.
    """
    root = Path(plugin_dir).expanduser()
    if not root.is_dir():
        logger.warning(f"⚠️ Plugin directory not found: {root}")
        return []

    plugins: list[PluginTool] = []
    for directory in sorted(p for p in root.iterdir() if p.is_dir()):
        manifest_path = directory / MANIFEST_FILE
        if not manifest_path.is_file():
            continue
        try:
            plugins.append(PluginTool(parse_manifest(manifest_path), directory))
        except ConfigError as e:
            logger.error(f"❌ Skipping plugin {directory.name}: {e.message}")

    logger.info(f"🔌 Loaded {len(plugins)} plugin tools from {root}")
    return plugins


def register_plugins(registry: CapabilityRegistry, plugin_dir: str | Path) -> list[str]:
    """
    Load plugins and register them as tool capabilities.

    Args:
        registry: Capability registry.
        plugin_dir: Plugin directory.

    Returns:
        Names of registered plugins.
    """
    registered: list[str] = []
    for plugin in load_plugins(plugin_dir):
        try:
            registry.register(
                CapabilityKind.TOOL, plugin.name, _plugin_factory(plugin)
            )
        except DuplicateKeyError:
            logger.error(f"❌ Plugin '{plugin.name}' clashes with a registered tool; skipped")
            continue
        registered.append(plugin.name)
    return registered


def _plugin_factory(plugin: PluginTool):
    def create(config: Mapping[str, Any]) -> PluginTool:
        return plugin

    return create
