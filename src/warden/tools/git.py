"""
Git tools.

Each tool runs git through the runtime adapter with an argv list; user
supplied arguments are split with shlex and never passed to a shell.
"""

import shlex
from collections.abc import Mapping
from typing import Annotated, Any

from pydantic import Field

from ..exceptions import ExecutionFaultError
from ..sandbox.context import ToolContext
from .base import Tool, ToolOutput, ToolParameters


class GitTool(Tool):
    """Base class for git tools."""

    uses_runtime = True

    def __init__(self, git_binary: str = "git") -> None:
        self._git = git_binary

    async def _git_run(
        self, args: list[str], context: ToolContext, cwd: str | None
    ) -> str:
        result = await context.run([self._git, *args], cwd=cwd)
        if result.exit_code != 0:
            raise ExecutionFaultError(
                self.name, f"git {args[0]} failed: {result.stderr.strip() or result.stdout.strip()}"
            )
        return result.stdout


def _split(args: str, tool: str) -> list[str]:
    try:
        return shlex.split(args)
    except ValueError as e:
        raise ExecutionFaultError(tool, f"Invalid arguments: {e}") from e


class GitStatusParameters(ToolParameters):
    cwd: Annotated[str | None, Field(description="Working directory (optional)")] = None


class GitStatusTool(GitTool):
    name = "git_status"
    description = "Show the working tree status."
    action = "git.read"
    Parameters = GitStatusParameters

    async def execute(self, params: GitStatusParameters, context: ToolContext) -> ToolOutput:
        output = await self._git_run(["status"], context, params.cwd)
        return ToolOutput(text=output or "(clean)")


class GitLogParameters(ToolParameters):
    args: Annotated[
        str, Field(description="Git log arguments (e.g., '--oneline -10', '--author=alice')")
    ] = "--oneline -10"
    cwd: Annotated[str | None, Field(description="Working directory (optional)")] = None


class GitLogTool(GitTool):
    name = "git_log"
    description = "Show git commit history."
    action = "git.read"
    Parameters = GitLogParameters

    async def execute(self, params: GitLogParameters, context: ToolContext) -> ToolOutput:
        output = await self._git_run(["log", *_split(params.args, self.name)], context, params.cwd)
        return ToolOutput(text=output if output.strip() else "(no commits)")


class GitDiffParameters(ToolParameters):
    args: Annotated[
        str, Field(description="Git diff arguments (e.g., 'HEAD', '--staged', 'main..develop')")
    ] = ""
    cwd: Annotated[str | None, Field(description="Working directory (optional)")] = None


class GitDiffTool(GitTool):
    name = "git_diff"
    description = "Show changes between commits, the index and the working tree."
    action = "git.read"
    Parameters = GitDiffParameters

    async def execute(self, params: GitDiffParameters, context: ToolContext) -> ToolOutput:
        output = await self._git_run(["diff", *_split(params.args, self.name)], context, params.cwd)
        return ToolOutput(text=output if output.strip() else "(no changes)")


class GitAddParameters(ToolParameters):
    files: Annotated[str, Field(description="Files to stage (e.g., '.' or 'src/file.py')")]
    cwd: Annotated[str | None, Field(description="Working directory (optional)")] = None


class GitAddTool(GitTool):
    name = "git_add"
    description = "Stage files for commit."
    action = "git.write"
    Parameters = GitAddParameters

    async def execute(self, params: GitAddParameters, context: ToolContext) -> ToolOutput:
        files = _split(params.files, self.name)
        if not files:
            raise ExecutionFaultError(self.name, "No files given")
        await self._git_run(["add", "--", *files], context, params.cwd)
        status = await self._git_run(["status", "--short"], context, params.cwd)
        return ToolOutput(text=f"Staged files:\n{status}" if status.strip() else "Nothing staged")


class GitCommitParameters(ToolParameters):
    message: Annotated[str, Field(description="Commit message", min_length=1)]
    cwd: Annotated[str | None, Field(description="Working directory (optional)")] = None


class GitCommitTool(GitTool):
    name = "git_commit"
    description = "Create a commit with the staged changes."
    action = "git.write"
    Parameters = GitCommitParameters

    async def execute(self, params: GitCommitParameters, context: ToolContext) -> ToolOutput:
        output = await self._git_run(["commit", "-m", params.message], context, params.cwd)
        return ToolOutput(text=output)


def _git_factory(cls: type[GitTool]):
    def create(config: Mapping[str, Any]) -> GitTool:
        return cls(git_binary=config.get("binary", "git"))

    return create


create_git_status_tool = _git_factory(GitStatusTool)
create_git_log_tool = _git_factory(GitLogTool)
create_git_diff_tool = _git_factory(GitDiffTool)
create_git_add_tool = _git_factory(GitAddTool)
create_git_commit_tool = _git_factory(GitCommitTool)
