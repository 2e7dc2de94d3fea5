"""
Tool Execution Sandbox: policy-gated, resource-limited tool execution
through pluggable runtime adapters.
"""

from .audit import AuditEntry, AuditLog
from .context import ToolContext, is_within
from .limits import CommandSpec, ExecutionLimits, ExecutionOutput
from .runtimes import ContainerRuntime, NativeProcessRuntime, RuntimeAdapter
from .sandbox import ToolSandbox

__all__ = [
    "AuditEntry",
    "AuditLog",
    "CommandSpec",
    "ContainerRuntime",
    "ExecutionLimits",
    "ExecutionOutput",
    "NativeProcessRuntime",
    "RuntimeAdapter",
    "ToolContext",
    "ToolSandbox",
    "is_within",
]
