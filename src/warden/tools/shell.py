"""
Shell execution tool.

Commands run through the sandbox's runtime adapter, never in the
orchestrator process.
"""

from collections.abc import Mapping
from typing import Annotated, Any

from pydantic import Field

from ..sandbox.context import ToolContext
from .base import Tool, ToolOutput, ToolParameters


class ShellParameters(ToolParameters):
    command: Annotated[str, Field(description="Shell command to execute", min_length=1)]
    cwd: Annotated[
        str | None, Field(description="Working directory (optional)")
    ] = None
    timeout: Annotated[
        int | None, Field(description="Timeout in seconds", gt=0, le=300)
    ] = None


class ShellTool(Tool):
    """Executes a shell command and returns stdout, stderr and exit code."""

    name = "shell"
    description = "Execute a shell command and return its output."
    action = "shell.exec"
    Parameters = ShellParameters
    uses_runtime = True

    def __init__(self, shell: str = "/bin/sh") -> None:
        self._shell = shell

    async def execute(self, params: ShellParameters, context: ToolContext) -> ToolOutput:
        result = await context.run(
            [self._shell, "-c", params.command],
            cwd=params.cwd,
            timeout_seconds=params.timeout,
        )

        output = result.combined
        if result.exit_code != 0:
            output += f"\n\n[Exit code: {result.exit_code}]"

        return ToolOutput(
            text=output if output.strip() else "(no output)",
            data={"exit_code": result.exit_code},
            exit_code=result.exit_code,
            output_bytes=result.output_bytes,
        )


def create_shell_tool(config: Mapping[str, Any]) -> ShellTool:
    """Build the shell tool from its registry config."""
    return ShellTool(shell=config.get("shell", "/bin/sh"))
