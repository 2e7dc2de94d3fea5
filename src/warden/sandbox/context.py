"""
Execution context handed to a tool by the sandbox.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path

from ..exceptions import ConstraintViolationError
from ..models import Subject, ToolInvocation
from .limits import CommandSpec, ExecutionLimits, ExecutionOutput
from .runtimes import RuntimeAdapter


def is_within(path: str, prefixes: tuple[str, ...]) -> bool:
    """
    Check whether an absolute, normalized path lies under any prefix.

    Args:
        path: Absolute normalized path.
        prefixes: Absolute normalized prefixes.

    Returns:
        True if ``path`` equals or is nested under a prefix.
    """
    for prefix in prefixes:
        root = prefix.rstrip(os.sep) or os.sep
        if path == root or path.startswith(root.rstrip(os.sep) + os.sep):
            return True
    return False


@dataclass(frozen=True)
class ToolContext:
    """
    What a tool may use while executing.

    Attributes:
        invocation: The invocation being executed.
        subject: Subject the invocation runs for.
        limits: Effective limits (configured limits merged with constraints).
        runtime: Runtime adapter selected for this tool.
    """

    invocation: ToolInvocation
    subject: Subject
    limits: ExecutionLimits
    runtime: RuntimeAdapter

    @property
    def tool_name(self) -> str:
        return self.invocation.tool_name

    def resolve_path(self, path: str, base: str | None = None) -> Path:
        """
        Resolve a path and check it against the path constraints.

        Args:
            path: Path supplied by the model.
            base: Directory relative paths are resolved against.

        Returns:
            Absolute resolved path.

        Raises:
            ConstraintViolationError: If the path falls outside the allowed
                prefixes.
        """
        candidate = Path(path).expanduser()
        if not candidate.is_absolute() and base:
            candidate = Path(base).expanduser() / candidate
        resolved = candidate.resolve()

        if self.limits.restricts_filesystem and not is_within(
            str(resolved), self.limits.path_prefixes
        ):
            raise ConstraintViolationError(
                self.tool_name,
                f"path {resolved} is outside allowed prefixes "
                f"{list(self.limits.path_prefixes)}",
            )
        return resolved

    async def run(
        self,
        argv: list[str],
        cwd: str | None = None,
        stdin: bytes | None = None,
        env: dict[str, str] | None = None,
        timeout_seconds: float | None = None,
    ) -> ExecutionOutput:
        """
        Run a command through the selected runtime adapter.

        Args:
            argv: Program and arguments.
            cwd: Working directory (checked against path constraints).
            stdin: Bytes for the process stdin.
            env: Extra environment variables.
            timeout_seconds: Tighter timeout for this command only.

        Returns:
            Captured output.
        """
        limits = self.limits
        if timeout_seconds is not None and timeout_seconds < limits.timeout_seconds:
            limits = replace(limits, timeout_seconds=timeout_seconds)
        if cwd is not None:
            cwd = str(self.resolve_path(cwd))
        spec = CommandSpec(
            argv=tuple(argv), cwd=cwd, stdin=stdin, env=env or {}, tool=self.tool_name
        )
        return await self.runtime.run(spec, limits)
