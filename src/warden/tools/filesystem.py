"""
Filesystem tools.

read, write, glob and grep run in-process in a worker thread. Every path
goes through ``ToolContext.resolve_path`` so path constraints apply.
"""

import asyncio
import fnmatch
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Annotated, Any

from pydantic import Field

from ..exceptions import ExecutionFaultError
from ..sandbox.context import ToolContext, is_within
from .base import Tool, ToolOutput, ToolParameters

SKIPPED_DIRS = frozenset({".git", "__pycache__", "node_modules", ".venv"})


class ReadParameters(ToolParameters):
    path: Annotated[str, Field(description="File path to read")]
    offset: Annotated[
        int, Field(description="Line number to start from (0-based)", ge=0)
    ] = 0
    limit: Annotated[
        int, Field(description="Maximum number of lines to read", gt=0, le=10000)
    ] = 2000


class ReadTool(Tool):
    """Reads file contents with line numbers."""

    name = "read"
    description = "Read a text file with line numbers, optionally from an offset."
    action = "fs.read"
    Parameters = ReadParameters

    async def execute(self, params: ReadParameters, context: ToolContext) -> ToolOutput:
        file_path = context.resolve_path(params.path)
        return await asyncio.to_thread(self._read, file_path, params)

    def _read(self, file_path: Path, params: ReadParameters) -> ToolOutput:
        if not file_path.exists():
            raise ExecutionFaultError(self.name, f"File not found: {params.path}")
        if not file_path.is_file():
            raise ExecutionFaultError(self.name, f"Not a file: {params.path}")

        try:
            with open(file_path, "r", encoding="utf-8", errors="replace") as f:
                lines = f.readlines()
        except PermissionError as e:
            raise ExecutionFaultError(self.name, f"Permission denied: {params.path}") from e

        total_lines = len(lines)
        if total_lines and params.offset >= total_lines:
            raise ExecutionFaultError(
                self.name,
                f"Offset {params.offset} exceeds file length ({total_lines} lines)",
            )

        selected = lines[params.offset : params.offset + params.limit]
        output = "\n".join(
            f"{i:6d}\t{line.rstrip()}" for i, line in enumerate(selected, start=params.offset + 1)
        )

        if total_lines > params.offset + params.limit:
            remaining = total_lines - (params.offset + params.limit)
            output += (
                f"\n\n[Showing lines {params.offset + 1}-{params.offset + len(selected)} "
                f"of {total_lines} total lines. {remaining} more lines available]"
            )
        return ToolOutput(text=output, data={"total_lines": total_lines})


class WriteParameters(ToolParameters):
    path: Annotated[str, Field(description="File path to write")]
    content: Annotated[str, Field(description="File content to write")]


class WriteTool(Tool):
    """Writes content to a file, creating parent directories."""

    name = "write"
    description = "Write content to a file (creates parent directories if needed)."
    action = "fs.write"
    Parameters = WriteParameters

    async def execute(self, params: WriteParameters, context: ToolContext) -> ToolOutput:
        file_path = context.resolve_path(params.path)
        return await asyncio.to_thread(self._write, file_path, params)

    def _write(self, file_path: Path, params: WriteParameters) -> ToolOutput:
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, "w", encoding="utf-8") as f:
                f.write(params.content)
        except PermissionError as e:
            raise ExecutionFaultError(self.name, f"Permission denied: {params.path}") from e
        except OSError as e:
            raise ExecutionFaultError(self.name, f"Error writing file: {e}") from e

        bytes_written = len(params.content.encode("utf-8"))
        return ToolOutput(
            text=f"Wrote {bytes_written:,} bytes to {params.path}",
            data={"bytes_written": bytes_written, "path": str(file_path)},
        )


class GlobParameters(ToolParameters):
    pattern: Annotated[str, Field(description="Glob pattern (e.g., '**/*.py')")]
    path: Annotated[str, Field(description="Base directory to search")] = "."
    max_results: Annotated[
        int, Field(description="Maximum number of results", gt=0, le=1000)
    ] = 100


class GlobTool(Tool):
    """Finds files matching a glob pattern."""

    name = "glob"
    description = "Find files matching a glob pattern (supports ** for recursion)."
    action = "fs.search"
    Parameters = GlobParameters

    async def execute(self, params: GlobParameters, context: ToolContext) -> ToolOutput:
        base_path = context.resolve_path(params.path)
        return await asyncio.to_thread(self._glob, base_path, params, context)

    def _glob(self, base_path: Path, params: GlobParameters, context: ToolContext) -> ToolOutput:
        if not base_path.is_dir():
            raise ExecutionFaultError(self.name, f"Not a directory: {params.path}")

        matches = sorted(base_path.glob(params.pattern))
        if context.limits.restricts_filesystem:
            matches = [
                m for m in matches if is_within(str(m.resolve()), context.limits.path_prefixes)
            ]
        if not matches:
            return ToolOutput(text=f"No files found matching pattern: {params.pattern}")

        total = len(matches)
        shown = matches[: params.max_results]
        output = "\n".join(str(m.relative_to(base_path)) for m in shown)
        if total > params.max_results:
            output += f"\n\n[Showing first {params.max_results} of {total} matches]"
        else:
            output += f"\n\n[Found {total} matches]"
        return ToolOutput(text=output, data={"matches": total})


class GrepParameters(ToolParameters):
    pattern: Annotated[str, Field(description="Regular expression pattern to search")]
    path: Annotated[str, Field(description="Directory or file to search")] = "."
    glob: Annotated[
        str | None, Field(description="File glob pattern (e.g., '*.py')")
    ] = None
    max_results: Annotated[
        int, Field(description="Maximum number of results", gt=0, le=1000)
    ] = 100


class GrepTool(Tool):
    """Searches file contents with a regular expression."""

    name = "grep"
    description = "Search file contents with a regular expression."
    action = "fs.search"
    Parameters = GrepParameters

    async def execute(self, params: GrepParameters, context: ToolContext) -> ToolOutput:
        try:
            regex = re.compile(params.pattern)
        except re.error as e:
            raise ExecutionFaultError(self.name, f"Invalid pattern: {e}") from e
        base_path = context.resolve_path(params.path)
        return await asyncio.to_thread(self._grep, regex, base_path, params, context)

    def _candidates(self, base_path: Path, params: GrepParameters):
        if base_path.is_file():
            yield base_path
            return
        for path in sorted(base_path.rglob("*")):
            if any(part in SKIPPED_DIRS for part in path.relative_to(base_path).parts):
                continue
            if not path.is_file():
                continue
            if params.glob and not fnmatch.fnmatch(path.name, params.glob):
                continue
            yield path

    def _grep(
        self,
        regex: re.Pattern[str],
        base_path: Path,
        params: GrepParameters,
        context: ToolContext,
    ) -> ToolOutput:
        if not base_path.exists():
            raise ExecutionFaultError(self.name, f"Path not found: {params.path}")

        results: list[str] = []
        for path in self._candidates(base_path, params):
            if context.limits.restricts_filesystem and not is_within(
                str(path.resolve()), context.limits.path_prefixes
            ):
                continue
            try:
                with open(path, "r", encoding="utf-8") as f:
                    for number, line in enumerate(f, start=1):
                        if regex.search(line):
                            results.append(f"{path}:{number}:{line.rstrip()}")
                            if len(results) >= params.max_results:
                                break
            except (UnicodeDecodeError, PermissionError):
                continue
            if len(results) >= params.max_results:
                break

        if not results:
            return ToolOutput(text=f"No matches found for pattern: {params.pattern}")
        return ToolOutput(
            text="\n".join(results) + f"\n\n[Found {len(results)} matches]",
            data={"matches": len(results)},
        )


def create_read_tool(config: Mapping[str, Any]) -> ReadTool:
    return ReadTool()


def create_write_tool(config: Mapping[str, Any]) -> WriteTool:
    return WriteTool()


def create_glob_tool(config: Mapping[str, Any]) -> GlobTool:
    return GlobTool()


def create_grep_tool(config: Mapping[str, Any]) -> GrepTool:
    return GrepTool()
