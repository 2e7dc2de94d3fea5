"""
Shared fixtures for tool tests.
"""

from collections.abc import Callable
from unittest.mock import AsyncMock

import pytest

from warden.models import Subject, ToolInvocation
from warden.sandbox.context import ToolContext
from warden.sandbox.limits import ExecutionLimits, ExecutionOutput
from warden.sandbox.runtimes import NativeProcessRuntime, RuntimeAdapter


def make_output(stdout: str = "", stderr: str = "", exit_code: int = 0) -> ExecutionOutput:
    """Build a canned process output."""
    return ExecutionOutput(
        stdout=stdout,
        stderr=stderr,
        exit_code=exit_code,
        output_bytes=len(stdout) + len(stderr),
        wall_time_seconds=0.01,
    )


@pytest.fixture
def mock_runtime() -> RuntimeAdapter:
    """Native runtime whose ``run`` is an AsyncMock."""
    runtime = NativeProcessRuntime()
    runtime.run = AsyncMock(return_value=make_output())
    return runtime


@pytest.fixture
def canned_output() -> Callable[..., ExecutionOutput]:
    """Factory for canned process outputs."""
    return make_output


@pytest.fixture
def make_context() -> Callable[..., ToolContext]:
    """Factory for tool contexts."""

    def build(
        runtime: RuntimeAdapter | None = None,
        path_prefixes: tuple[str, ...] = (),
        tool_name: str = "tool",
    ) -> ToolContext:
        return ToolContext(
            invocation=ToolInvocation(tool_name=tool_name, parameters={}, turn_id="turn-1"),
            subject=Subject("queue", "alice"),
            limits=ExecutionLimits(
                timeout_seconds=10.0, max_output_bytes=65536, path_prefixes=path_prefixes
            ),
            runtime=runtime or NativeProcessRuntime(),
        )

    return build
