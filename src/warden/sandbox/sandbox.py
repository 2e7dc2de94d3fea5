"""
Tool Execution Sandbox.

Single entry point for tool execution. Every invocation goes through the
same pipeline:
    1. Tool lookup (registry, allow/deny enablement)
    2. Parameter validation (before any policy call)
    3. Policy evaluation of the tool's action
    4. Audit, runtime selection, limit merge and execution
    5. Failure classification into a ToolResult

Nothing but asyncio.CancelledError escapes ``invoke``.
"""

import asyncio
import fnmatch
import logging
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..config.schema import SandboxConfig, ToolsConfig
from ..exceptions import (
    ConstraintViolationError,
    ConstructionError,
    ExecutionFaultError,
    ExecutionTimeoutError,
    PolicyDeniedError,
    ResourceLimitExceededError,
    ToolError,
    UnknownKeyError,
    UnknownToolError,
)
from ..models import (
    PolicyDecision,
    ResourceUsage,
    Subject,
    ToolInvocation,
    ToolOutcome,
    ToolResult,
    ToolSpec,
)
from ..policy.engine import PolicyEngine
from ..registry import CapabilityKind, CapabilityRegistry
from .audit import AuditEntry, AuditLog
from .context import ToolContext
from .limits import ExecutionLimits
from .runtimes import RuntimeAdapter

if TYPE_CHECKING:
    from ..tools.base import Tool

logger = logging.getLogger(__name__)


class ToolSandbox:
    """
    Policy-gated, resource-limited tool executor.

    Usage:
        sandbox = ToolSandbox(registry, policy, {"native": NativeProcessRuntime()})
        result = await sandbox.invoke(invocation, subject)
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        policy: PolicyEngine,
        runtimes: Mapping[str, RuntimeAdapter],
        config: SandboxConfig | None = None,
        tools_config: ToolsConfig | None = None,
    ) -> None:
        """
        Initialize the sandbox.

        Args:
            registry: Registry tools are resolved from.
            policy: Policy engine consulted for every invocation.
            runtimes: Runtime adapters keyed by configured name.
            config: Limits and default runtime.
            tools_config: Tool enablement and per-tool overrides.
        """
        self._registry = registry
        self._policy = policy
        self._runtimes = dict(runtimes)
        self._config = config or SandboxConfig()
        self._tools_config = tools_config or ToolsConfig()
        self._tools: dict[str, "Tool"] = {}
        self.audit = AuditLog(self._config.audit_size)

        logger.info(
            f"🛡️ ToolSandbox initialized (runtimes={sorted(self._runtimes)}, "
            f"default={self._config.default_runtime})"
        )

    # ------------------------------------------------------------------
    # Tool lookup
    # ------------------------------------------------------------------

    def is_enabled(self, name: str) -> bool:
        """
        Apply allow/deny wildcard patterns to a tool name.

        Allow patterns are applied first (empty = all tools). Deny patterns
        override allow.
        """
        allow = self._tools_config.allow
        deny = self._tools_config.deny
        if allow and not any(fnmatch.fnmatch(name, p) for p in allow):
            return False
        if deny and any(fnmatch.fnmatch(name, p) for p in deny):
            return False
        return True

    def tool_names(self) -> list[str]:
        """Registered and enabled tool names."""
        return [n for n in self._registry.keys(CapabilityKind.TOOL) if self.is_enabled(n)]

    def get_tool(self, name: str) -> "Tool":
        """
        Resolve a tool instance, constructing it on first use.

        Raises:
            UnknownToolError: If the tool is absent or disabled.
            ExecutionFaultError: If the tool factory failed.
        """
        cached = self._tools.get(name)
        if cached is not None:
            return cached
        if not self.is_enabled(name):
            raise UnknownToolError(name)

        override = self._tools_config.overrides.get(name)
        config: dict[str, Any] = {"name": name}
        if override is not None:
            config.update(override.config)
        try:
            tool = self._registry.resolve(CapabilityKind.TOOL, name, config)
        except UnknownKeyError:
            raise UnknownToolError(name) from None
        except ConstructionError as e:
            logger.error(f"❌ Tool '{name}' failed to construct: {e.cause}")
            raise ExecutionFaultError(name, f"Tool unavailable: {e.cause}") from e

        self._tools[name] = tool
        return tool

    def available_tools(self, subject: Subject) -> list[ToolSpec]:
        """
        Tools the subject may use, for offering to the model.

        Args:
            subject: Session subject.

        Returns:
            Specs of enabled tools whose action is not denied.
        """
        specs: list[ToolSpec] = []
        for name in self.tool_names():
            try:
                tool = self.get_tool(name)
            except ToolError:
                continue
            if self._policy.evaluate(subject, tool.action, {"listing": name}).allowed:
                specs.append(tool.spec())

        logger.debug(f"🔒 {len(specs)} tools available for {subject.key}")
        return specs

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _runtime_for(self, tool: "Tool") -> RuntimeAdapter:
        override = self._tools_config.overrides.get(tool.name)
        runtime_name = (
            override.runtime if override and override.runtime else self._config.default_runtime
        )
        runtime = self._runtimes.get(runtime_name)
        if runtime is None:
            raise ExecutionFaultError(tool.name, f"Runtime '{runtime_name}' is unavailable")
        return runtime

    def _limits_for(self, tool: "Tool", decision: PolicyDecision) -> ExecutionLimits:
        override = self._tools_config.overrides.get(tool.name)
        timeout = self._config.timeout_seconds
        max_output = self._config.max_output_bytes
        if override is not None:
            timeout = override.timeout_seconds or timeout
            max_output = override.max_output_bytes or max_output
        return ExecutionLimits.build(
            timeout_seconds=timeout,
            max_output_bytes=max_output,
            max_memory_bytes=self._config.max_memory_bytes,
            constraints=decision.constraints,
        )

    async def invoke(self, invocation: ToolInvocation, subject: Subject) -> ToolResult:
        """
        Execute one tool invocation.

        Args:
            invocation: Invocation requested by the model.
            subject: Subject the session belongs to.

        Returns:
            ToolResult; failures are classified, never raised.
        """
        start = time.monotonic()
        decision: PolicyDecision | None = None
        action = ""

        try:
            tool = self.get_tool(invocation.tool_name)
            action = tool.action
            params = tool.validate(invocation.parameters)

            decision = self._policy.evaluate(
                subject,
                tool.action,
                {"tool": tool.name, "invocation_id": invocation.invocation_id},
            )
            if not decision.allowed:
                self._audit(invocation, subject, action, "denied", decision)
                raise PolicyDeniedError(tool.name, decision.reason, decision.rule_id)

            runtime = self._runtime_for(tool)
            limits = self._limits_for(tool, decision)
            if tool.uses_runtime and not runtime.can_enforce(limits):
                self._audit(invocation, subject, action, "denied", decision, runtime.name)
                raise ConstraintViolationError(
                    tool.name,
                    f"runtime '{runtime.name}' cannot enforce the required constraints",
                )

            self._audit(invocation, subject, action, "execute", decision, runtime.name)
            context = ToolContext(
                invocation=invocation, subject=subject, limits=limits, runtime=runtime
            )
            logger.info(f"🛠️ Executing {tool.name} for {subject.key} on {runtime.name}")

            try:
                output = await asyncio.wait_for(
                    tool.execute(params, context), timeout=limits.timeout_seconds
                )
            except asyncio.TimeoutError:
                raise ExecutionTimeoutError(tool.name, limits.timeout_seconds) from None

            output_bytes = output.output_bytes
            if output_bytes is None:
                output_bytes = len(output.text.encode("utf-8"))
            if output_bytes > limits.max_output_bytes:
                raise ResourceLimitExceededError(
                    tool.name,
                    f"output cap of {limits.max_output_bytes} bytes",
                    partial_output=output.text.encode("utf-8")[: limits.max_output_bytes].decode(
                        "utf-8", errors="ignore"
                    ),
                )

            result = ToolResult(
                invocation_id=invocation.invocation_id,
                tool_name=invocation.tool_name,
                outcome=ToolOutcome.SUCCESS,
                output=output.text,
                data=output.data,
                usage=ResourceUsage(
                    wall_time_seconds=time.monotonic() - start,
                    output_bytes=output_bytes,
                    exit_code=output.exit_code,
                ),
                decision=decision,
            )
        except asyncio.CancelledError:
            logger.info(f"🛑 {invocation.tool_name} cancelled ({invocation.invocation_id})")
            raise
        except ToolError as e:
            result = self._failure(invocation, e, decision, start)
        except Exception as e:
            logger.exception(f"❌ Unexpected error in {invocation.tool_name}")
            result = self._failure(
                invocation,
                ExecutionFaultError(invocation.tool_name, f"{type(e).__name__}: {e}"),
                decision,
                start,
            )

        if decision is not None and decision.allowed:
            self._audit(
                invocation, subject, action, "result", decision, outcome=result.outcome.value
            )
        log = logger.info if result.ok else logger.warning
        log(
            f"{'✅' if result.ok else '❌'} {invocation.tool_name} -> {result.outcome.value} "
            f"({result.usage.wall_time_seconds:.2f}s)"
        )
        return result

    def _failure(
        self,
        invocation: ToolInvocation,
        error: ToolError,
        decision: PolicyDecision | None,
        start: float,
    ) -> ToolResult:
        partial = getattr(error, "partial_output", "")
        return ToolResult(
            invocation_id=invocation.invocation_id,
            tool_name=invocation.tool_name,
            outcome=ToolOutcome(error.outcome),
            output=partial,
            usage=ResourceUsage(
                wall_time_seconds=time.monotonic() - start,
                output_bytes=len(partial.encode("utf-8")),
                truncated=isinstance(error, ResourceLimitExceededError),
            ),
            decision=decision,
            error=error.message,
        )

    def _audit(
        self,
        invocation: ToolInvocation,
        subject: Subject,
        action: str,
        phase: str,
        decision: PolicyDecision,
        runtime: str | None = None,
        outcome: str | None = None,
    ) -> None:
        self.audit.record(
            AuditEntry(
                invocation_id=invocation.invocation_id,
                tool_name=invocation.tool_name,
                action=action,
                subject=subject.key,
                phase=phase,
                verdict=decision.verdict.value,
                rule_id=decision.rule_id,
                policy_version=decision.policy_version,
                runtime=runtime,
                outcome=outcome,
            )
        )

    async def close(self) -> None:
        """Close every runtime adapter."""
        for runtime in self._runtimes.values():
            await runtime.close()
