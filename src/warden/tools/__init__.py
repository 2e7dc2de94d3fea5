"""
Sandboxed tools.

Core tools are registered as registry factories by name; memory tools
need the shared memory backend and embedder, plugin tools are loaded
from manifests on disk.
"""

import logging

from ..registry import CapabilityKind, CapabilityRegistry
from .base import Tool, ToolOutput, ToolParameters
from .filesystem import (
    GlobTool,
    GrepTool,
    ReadTool,
    WriteTool,
    create_glob_tool,
    create_grep_tool,
    create_read_tool,
    create_write_tool,
)
from .git import (
    GitAddTool,
    GitCommitTool,
    GitDiffTool,
    GitLogTool,
    GitStatusTool,
    create_git_add_tool,
    create_git_commit_tool,
    create_git_diff_tool,
    create_git_log_tool,
    create_git_status_tool,
)
from .memory import MemoryRecallTool, MemoryStoreTool, memory_tool_factories
from .plugins import PluginTool, ToolManifest, load_plugins, parse_manifest, register_plugins
from .shell import ShellTool, create_shell_tool

logger = logging.getLogger(__name__)


def register_core_tools(registry: CapabilityRegistry) -> None:
    """Register the built-in shell, filesystem and git tools."""
    # Filesystem tools
    registry.register(CapabilityKind.TOOL, "read", create_read_tool)
    registry.register(CapabilityKind.TOOL, "write", create_write_tool)
    registry.register(CapabilityKind.TOOL, "glob", create_glob_tool)
    registry.register(CapabilityKind.TOOL, "grep", create_grep_tool)

    # Execution tools
    registry.register(CapabilityKind.TOOL, "shell", create_shell_tool)

    # Git tools
    registry.register(CapabilityKind.TOOL, "git_status", create_git_status_tool)
    registry.register(CapabilityKind.TOOL, "git_log", create_git_log_tool)
    registry.register(CapabilityKind.TOOL, "git_diff", create_git_diff_tool)
    registry.register(CapabilityKind.TOOL, "git_add", create_git_add_tool)
    registry.register(CapabilityKind.TOOL, "git_commit", create_git_commit_tool)

    logger.info(f"🔧 Registered {len(registry.keys(CapabilityKind.TOOL))} core tools")


__all__ = [
    "GitAddTool",
    "GitCommitTool",
    "GitDiffTool",
    "GitLogTool",
    "GitStatusTool",
    "GlobTool",
    "GrepTool",
    "MemoryRecallTool",
    "MemoryStoreTool",
    "PluginTool",
    "ReadTool",
    "ShellTool",
    "Tool",
    "ToolManifest",
    "ToolOutput",
    "ToolParameters",
    "WriteTool",
    "load_plugins",
    "memory_tool_factories",
    "parse_manifest",
    "register_core_tools",
    "register_plugins",
]
