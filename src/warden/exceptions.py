"""
Warden domain exceptions.

All exceptions raised by the runtime core derive from WardenError.
Tool errors are mapped to ToolResult outcomes by the sandbox and never
escape it; provider errors are absorbed by the router until every
provider has been exhausted.
"""

from typing import Any


class WardenError(Exception):
    """Base exception for Warden runtime errors."""

    def __init__(self, message: str, retryable: bool = False) -> None:
        """
        Initialize Warden error.

        Args:
            message: Error message.
            retryable: Whether the operation can be retried.
        """
        self.message = message
        self.retryable = retryable
        super().__init__(message)


class ConfigError(WardenError, ValueError):
    """Configuration entry is malformed or missing a required field."""

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=False)


class StartupError(WardenError):
    """A mandatory capability could not be initialized."""

    def __init__(self, capability: str, message: str) -> None:
        """
        Initialize startup error.

        Args:
            capability: Name of the mandatory capability that failed.
            message: Error message.
        """
        self.capability = capability
        super().__init__(f"{capability}: {message}", retryable=False)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class RegistryError(WardenError):
    """Base exception for capability registry errors."""

    def __init__(self, kind: str, key: str, message: str) -> None:
        """
        Initialize registry error.

        Args:
            kind: Capability kind.
            key: Capability key within the kind.
            message: Error message.
        """
        self.kind = kind
        self.key = key
        super().__init__(f"{kind}/{key}: {message}", retryable=False)


class UnknownKeyError(RegistryError):
    """No factory registered for the kind/key pair."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(kind, key, "no capability registered")


class DuplicateKeyError(RegistryError):
    """A factory is already registered for the kind/key pair."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(kind, key, "already registered")


class ConstructionError(RegistryError):
    """The capability factory raised while building an instance."""

    def __init__(self, kind: str, key: str, cause: BaseException) -> None:
        """
        Initialize construction error.

        Args:
            kind: Capability kind.
            key: Capability key.
            cause: Exception raised by the factory.
        """
        self.cause = cause
        super().__init__(kind, key, f"construction failed: {cause}")


# ---------------------------------------------------------------------------
# Providers and routing
# ---------------------------------------------------------------------------


class ProviderError(WardenError):
    """Base exception for model provider failures."""

    def __init__(
        self,
        provider: str,
        message: str,
        retryable: bool,
        status_code: int | None = None,
    ) -> None:
        """
        Initialize provider error.

        Args:
            provider: Provider name.
            message: Error message.
            retryable: Whether the failure is transient.
            status_code: HTTP status code, if the failure came from HTTP.
        """
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider}: {message}", retryable=retryable)


class TransientProviderError(ProviderError):
    """Timeout, rate limit, server error or connection failure."""

    def __init__(
        self, provider: str, message: str, status_code: int | None = None
    ) -> None:
        super().__init__(provider, message, retryable=True, status_code=status_code)


class PermanentProviderError(ProviderError):
    """Authentication failure or malformed request."""

    def __init__(
        self, provider: str, message: str, status_code: int | None = None
    ) -> None:
        super().__init__(provider, message, retryable=False, status_code=status_code)


class RouterExhaustedError(WardenError):
    """Every eligible provider failed or had an open circuit."""

    def __init__(self, failures: list[tuple[str, str]]) -> None:
        """
        Initialize router exhaustion error.

        Args:
            failures: (provider, reason) pairs in the order they were tried.
        """
        self.failures = failures
        summary = "; ".join(f"{name}: {reason}" for name, reason in failures)
        super().__init__(
            f"All providers exhausted ({summary or 'no providers configured'})",
            retryable=False,
        )


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class ToolError(WardenError):
    """Base exception for tool execution errors."""

    outcome: str = "execution_fault"

    def __init__(self, tool: str, message: str) -> None:
        """
        Initialize tool error.

        Args:
            tool: Tool name.
            message: Error message.
        """
        self.tool = tool
        super().__init__(message, retryable=False)


class UnknownToolError(ToolError):
    """Tool is not registered or not enabled."""

    outcome = "unknown_tool"

    def __init__(self, tool: str) -> None:
        super().__init__(tool, f"Unknown tool: {tool}")


class InvalidParametersError(ToolError):
    """Parameter payload does not match the tool schema."""

    outcome = "invalid_parameters"

    def __init__(self, tool: str, errors: list[dict[str, Any]]) -> None:
        """
        Initialize invalid parameters error.

        Args:
            tool: Tool name.
            errors: Validation error entries (location and message).
        """
        self.errors = errors
        details = "; ".join(
            f"{'.'.join(str(p) for p in e.get('loc', ())) or '<root>'}: {e.get('msg')}"
            for e in errors
        )
        super().__init__(tool, f"Invalid parameters for {tool}: {details}")


class PolicyDeniedError(ToolError):
    """Policy evaluation refused the action."""

    outcome = "policy_denied"

    def __init__(self, tool: str, reason: str, rule_id: str | None = None) -> None:
        """
        Initialize policy denial.

        Args:
            tool: Tool name.
            reason: Reason code from the decision.
            rule_id: Rule that produced the denial (None for default deny).
        """
        self.reason = reason
        self.rule_id = rule_id
        super().__init__(tool, f"Policy denied {tool}: {reason} (rule={rule_id})")


class ConstraintViolationError(PolicyDeniedError):
    """Execution would break a constraint attached to the decision."""

    def __init__(self, tool: str, message: str) -> None:
        super().__init__(tool, f"constraint_violation: {message}")


class ExecutionTimeoutError(ToolError):
    """Execution exceeded its wall-clock limit."""

    outcome = "execution_timeout"

    def __init__(self, tool: str, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(tool, f"{tool} timed out after {timeout_seconds:g}s")


class ExecutionFaultError(ToolError):
    """Execution failed (spawn error, crash, runtime failure)."""

    outcome = "execution_fault"


class ResourceLimitExceededError(ToolError):
    """Execution exceeded an output or memory limit."""

    outcome = "resource_limit_exceeded"

    def __init__(self, tool: str, limit: str, partial_output: str = "") -> None:
        """
        Initialize resource limit error.

        Args:
            tool: Tool name.
            limit: Description of the exceeded limit.
            partial_output: Output captured before the limit was hit.
        """
        self.limit = limit
        self.partial_output = partial_output
        super().__init__(tool, f"{tool} exceeded {limit}")


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------


class MemoryStoreError(WardenError):
    """Base exception for memory backend errors."""


class CapacityExceededError(MemoryStoreError):
    """Backend is at its hard cap and eviction was not permitted."""

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        super().__init__(f"Memory capacity of {capacity} records reached")


class BackendUnavailableError(MemoryStoreError):
    """Memory backend could not be reached."""

    def __init__(self, backend: str, message: str) -> None:
        self.backend = backend
        super().__init__(f"{backend}: {message}", retryable=True)


# ---------------------------------------------------------------------------
# Orchestration and channels
# ---------------------------------------------------------------------------


class InvalidTransitionError(WardenError):
    """Session loop state change not permitted by the transition table."""

    def __init__(self, session_id: str, current: str, target: str) -> None:
        self.session_id = session_id
        self.current = current
        self.target = target
        super().__init__(
            f"Session {session_id}: invalid transition {current} -> {target}"
        )


class SessionClosedError(WardenError):
    """Operation attempted on a closed session."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} is closed")


class ChannelError(WardenError):
    """Channel connection failed; listening may be restarted."""

    def __init__(self, channel: str, message: str) -> None:
        self.channel = channel
        super().__init__(f"{channel}: {message}", retryable=True)
