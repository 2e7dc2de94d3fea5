"""
Unit tests for the tool sandbox pipeline.

A recording runtime stands in for real process execution so tests can
assert whether execution was reached.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from warden.config.schema import CapabilityConfig, SandboxConfig, ToolOverride, ToolsConfig
from warden.models import Constraints, Subject, ToolInvocation, ToolOutcome
from warden.registry import CapabilityKind, CapabilityRegistry
from warden.sandbox.limits import ExecutionOutput
from warden.sandbox.runtimes import RuntimeAdapter
from warden.sandbox.sandbox import ToolSandbox
from warden.tools.base import Tool, ToolOutput, ToolParameters
from warden.tools.shell import create_shell_tool


class RecordingRuntime(RuntimeAdapter):
    """Runtime that records commands and returns a canned output."""

    def __init__(self, name: str = "fake", enforces: bool = False) -> None:
        self._name = name
        self.enforces_paths = enforces
        self.enforces_network = enforces
        self.run = AsyncMock(
            return_value=ExecutionOutput(
                stdout="ran", stderr="", exit_code=0, output_bytes=3, wall_time_seconds=0.0
            )
        )

    @property
    def name(self) -> str:
        return self._name

    async def run(self, spec, limits):  # replaced by AsyncMock in __init__
        raise NotImplementedError


class EchoParameters(ToolParameters):
    text: str
    delay: float = 0.0


class EchoTool(Tool):
    """In-process tool returning its input."""

    name = "echo"
    description = "Echo text back."
    action = "test.echo"
    Parameters = EchoParameters

    async def execute(self, params: EchoParameters, context) -> ToolOutput:
        if params.delay:
            await asyncio.sleep(params.delay)
        return ToolOutput(text=params.text, data={"length": len(params.text)})


class BrokenTool(Tool):
    """Tool that fails with an unexpected exception."""

    name = "broken"
    description = "Always fails."
    action = "test.broken"

    async def execute(self, params, context) -> ToolOutput:
        raise KeyError("missing")


def make_registry() -> CapabilityRegistry:
    """Registry with the echo, broken and shell tools."""
    registry = CapabilityRegistry()
    registry.register(CapabilityKind.TOOL, "echo", lambda config: EchoTool())
    registry.register(CapabilityKind.TOOL, "broken", lambda config: BrokenTool())
    registry.register(CapabilityKind.TOOL, "shell", create_shell_tool)
    return registry


def make_sandbox(
    policy,
    runtimes: dict[str, RuntimeAdapter] | None = None,
    tools_config: ToolsConfig | None = None,
    registry: CapabilityRegistry | None = None,
    **sandbox_kwargs,
) -> ToolSandbox:
    """Build a sandbox whose default runtime is the first given runtime."""
    runtimes = runtimes or {"fake": RecordingRuntime()}
    config = SandboxConfig(
        default_runtime=next(iter(runtimes)),
        runtimes=[CapabilityConfig(key=name) for name in runtimes],
        **sandbox_kwargs,
    )
    return ToolSandbox(registry or make_registry(), policy, runtimes, config, tools_config)


def invocation(tool: str, **parameters) -> ToolInvocation:
    """Build an invocation for a tool."""
    return ToolInvocation(tool_name=tool, parameters=parameters, turn_id="turn-1")


class TestSandboxLookupAndValidation:
    """Tests for lookup and validation stages."""

    @pytest.mark.asyncio
    async def test_unknown_tool(self, make_policy, subject: Subject) -> None:
        """Test that an unregistered tool yields UNKNOWN_TOOL."""
        sandbox = make_sandbox(make_policy(("*", "*", "allow")))
        result = await sandbox.invoke(invocation("nope"), subject)

        assert result.outcome is ToolOutcome.UNKNOWN_TOOL
        assert len(sandbox.audit) == 0

    @pytest.mark.asyncio
    async def test_invalid_parameters_before_policy(self, make_policy, subject: Subject) -> None:
        """Test that validation fails before the policy engine is consulted."""
        policy = MagicMock(wraps=make_policy(("*", "*", "deny")))
        sandbox = make_sandbox(policy)

        result = await sandbox.invoke(invocation("echo", wrong="x"), subject)

        assert result.outcome is ToolOutcome.INVALID_PARAMETERS
        assert result.decision is None
        policy.evaluate.assert_not_called()

    @pytest.mark.asyncio
    async def test_disabled_tool_is_unknown(self, make_policy, subject: Subject) -> None:
        """Test that deny-listed tools are treated as unknown."""
        sandbox = make_sandbox(
            make_policy(("*", "*", "allow")), tools_config=ToolsConfig(deny=["sh*"])
        )
        result = await sandbox.invoke(invocation("shell", command="ls"), subject)

        assert result.outcome is ToolOutcome.UNKNOWN_TOOL
        assert "shell" not in sandbox.tool_names()

    @pytest.mark.asyncio
    async def test_construction_failure(self, make_policy, subject: Subject) -> None:
        """Test that a tool whose factory fails yields EXECUTION_FAULT."""
        registry = make_registry()

        def broken_factory(config):
            raise RuntimeError("no binary")

        registry.register(CapabilityKind.TOOL, "flaky", broken_factory)
        sandbox = make_sandbox(make_policy(("*", "*", "allow")), registry=registry)

        result = await sandbox.invoke(invocation("flaky"), subject)

        assert result.outcome is ToolOutcome.EXECUTION_FAULT
        assert "no binary" in result.error


class TestSandboxPolicy:
    """Tests for the policy gate."""

    @pytest.mark.asyncio
    async def test_shell_without_allow_rule_denied(self, make_policy, subject: Subject) -> None:
        """Test that shell.exec without an allow rule never reaches the runtime."""
        runtime = RecordingRuntime()
        sandbox = make_sandbox(
            make_policy(("*", "fs.read", "allow")), runtimes={"fake": runtime}
        )

        inv = invocation("shell", command="rm -rf /")
        result = await sandbox.invoke(inv, subject)

        assert result.outcome is ToolOutcome.POLICY_DENIED
        assert result.decision.rule_id is None
        runtime.run.assert_not_called()
        phases = [e.phase for e in sandbox.audit.entries_for(inv.invocation_id)]
        assert phases == ["denied"]

    @pytest.mark.asyncio
    async def test_explicit_deny_records_rule(self, make_policy, subject: Subject) -> None:
        """Test that the denying rule id is kept on the result and audit."""
        sandbox = make_sandbox(make_policy(("queue:alice", "test.echo", "deny")))

        inv = invocation("echo", text="hi")
        result = await sandbox.invoke(inv, subject)

        assert result.outcome is ToolOutcome.POLICY_DENIED
        assert result.decision.rule_id == "r1"
        assert sandbox.audit.entries_for(inv.invocation_id)[0].rule_id == "r1"

    @pytest.mark.asyncio
    async def test_allowed_shell_runs(self, make_policy, subject: Subject) -> None:
        """Test that an allowed runtime-backed tool executes and is audited."""
        runtime = RecordingRuntime()
        sandbox = make_sandbox(make_policy(("*", "shell.exec", "allow")), runtimes={"fake": runtime})

        inv = invocation("shell", command="echo hi")
        result = await sandbox.invoke(inv, subject)

        assert result.outcome is ToolOutcome.SUCCESS
        assert result.output == "ran"
        assert result.usage.exit_code == 0
        spec, limits = runtime.run.call_args.args
        assert spec.argv == ("/bin/sh", "-c", "echo hi")
        assert limits.timeout_seconds == 30.0
        entries = sandbox.audit.entries_for(inv.invocation_id)
        assert [e.phase for e in entries] == ["execute", "result"]
        assert entries[0].runtime == "fake"
        assert entries[1].outcome == "success"

    @pytest.mark.asyncio
    async def test_constraints_unenforceable_denied(self, make_policy, subject: Subject) -> None:
        """Test that path constraints on a runtime that cannot confine paths deny."""
        runtime = RecordingRuntime(enforces=False)
        constraints = Constraints(path_prefixes=("/srv/work",))
        sandbox = make_sandbox(
            make_policy(("*", "shell.exec", "allow_with_constraints", constraints)),
            runtimes={"fake": runtime},
        )

        result = await sandbox.invoke(invocation("shell", command="ls"), subject)

        assert result.outcome is ToolOutcome.POLICY_DENIED
        assert "cannot enforce" in result.error
        runtime.run.assert_not_called()

    @pytest.mark.asyncio
    async def test_constraints_merged_into_limits(self, make_policy, subject: Subject) -> None:
        """Test that constraint limits tighten the configured limits."""
        runtime = RecordingRuntime(enforces=True)
        constraints = Constraints(
            path_prefixes=("/srv/work",), deny_network=True, timeout_seconds=5.0
        )
        sandbox = make_sandbox(
            make_policy(("*", "shell.exec", "allow_with_constraints", constraints)),
            runtimes={"jail": runtime},
        )

        result = await sandbox.invoke(invocation("shell", command="ls"), subject)

        assert result.ok
        _, limits = runtime.run.call_args.args
        assert limits.timeout_seconds == 5.0
        assert limits.path_prefixes == ("/srv/work",)
        assert limits.deny_network is True

    @pytest.mark.asyncio
    async def test_in_process_tool_ignores_runtime_capability(
        self, make_policy, subject: Subject
    ) -> None:
        """Test that in-process tools run under constraints on any runtime."""
        constraints = Constraints(path_prefixes=("/srv/work",))
        sandbox = make_sandbox(
            make_policy(("*", "test.echo", "allow_with_constraints", constraints))
        )

        result = await sandbox.invoke(invocation("echo", text="hi"), subject)

        assert result.ok
        assert result.data == {"length": 2}

    def test_available_tools_filtered_by_policy(self, make_policy, subject: Subject) -> None:
        """Test that only tools whose action is not denied are offered."""
        sandbox = make_sandbox(make_policy(("*", "test.*", "allow")))

        names = [spec.name for spec in sandbox.available_tools(subject)]

        assert names == ["broken", "echo"]


class TestSandboxExecution:
    """Tests for execution limits and failure classification."""

    @pytest.mark.asyncio
    async def test_timeout(self, make_policy, subject: Subject) -> None:
        """Test that a tool exceeding the timeout yields EXECUTION_TIMEOUT."""
        sandbox = make_sandbox(make_policy(("*", "*", "allow")), timeout_seconds=0.05)

        result = await sandbox.invoke(invocation("echo", text="x", delay=5), subject)

        assert result.outcome is ToolOutcome.EXECUTION_TIMEOUT

    @pytest.mark.asyncio
    async def test_per_tool_timeout_override(self, make_policy, subject: Subject) -> None:
        """Test that a tool override tightens the timeout."""
        sandbox = make_sandbox(
            make_policy(("*", "*", "allow")),
            tools_config=ToolsConfig(overrides={"echo": ToolOverride(timeout_seconds=0.05)}),
        )

        result = await sandbox.invoke(invocation("echo", text="x", delay=5), subject)

        assert result.outcome is ToolOutcome.EXECUTION_TIMEOUT

    @pytest.mark.asyncio
    async def test_output_cap(self, make_policy, subject: Subject) -> None:
        """Test that oversized output yields RESOURCE_LIMIT_EXCEEDED with partial output."""
        sandbox = make_sandbox(make_policy(("*", "*", "allow")), max_output_bytes=10)

        result = await sandbox.invoke(invocation("echo", text="x" * 100), subject)

        assert result.outcome is ToolOutcome.RESOURCE_LIMIT_EXCEEDED
        assert result.output == "x" * 10
        assert result.usage.truncated is True

    @pytest.mark.asyncio
    async def test_output_cap_measures_process_bytes(self, make_policy, subject: Subject) -> None:
        """Test that exit code framing does not count against the output cap."""
        runtime = RecordingRuntime()
        runtime.run.return_value = ExecutionOutput(
            stdout="x" * 8, stderr="", exit_code=1, output_bytes=8, wall_time_seconds=0.0
        )
        sandbox = make_sandbox(
            make_policy(("*", "shell.exec", "allow")), runtimes={"fake": runtime}, max_output_bytes=10
        )

        result = await sandbox.invoke(invocation("shell", command="false"), subject)

        assert result.outcome is ToolOutcome.SUCCESS
        assert result.output.endswith("[Exit code: 1]")
        assert result.usage.output_bytes == 8

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_fault(self, make_policy, subject: Subject) -> None:
        """Test that unexpected exceptions become EXECUTION_FAULT."""
        sandbox = make_sandbox(make_policy(("*", "*", "allow")))

        result = await sandbox.invoke(invocation("broken"), subject)

        assert result.outcome is ToolOutcome.EXECUTION_FAULT
        assert "KeyError" in result.error

    @pytest.mark.asyncio
    async def test_unavailable_runtime_override(self, make_policy, subject: Subject) -> None:
        """Test that an override naming a missing runtime yields EXECUTION_FAULT."""
        sandbox = make_sandbox(
            make_policy(("*", "*", "allow")),
            tools_config=ToolsConfig(overrides={"shell": ToolOverride(runtime="container")}),
        )

        result = await sandbox.invoke(invocation("shell", command="ls"), subject)

        assert result.outcome is ToolOutcome.EXECUTION_FAULT
        assert "container" in result.error

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, make_policy, subject: Subject) -> None:
        """Test that cancelling an invocation raises CancelledError."""
        sandbox = make_sandbox(make_policy(("*", "*", "allow")))

        task = asyncio.create_task(sandbox.invoke(invocation("echo", text="x", delay=5), subject))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_tool_instances_cached(self, make_policy, subject: Subject) -> None:
        """Test that a tool is constructed once and reused."""
        sandbox = make_sandbox(make_policy(("*", "*", "allow")))
        assert sandbox.get_tool("echo") is sandbox.get_tool("echo")
