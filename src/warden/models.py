"""
Core data model shared by the registry, router, sandbox and orchestrator.

Value objects are frozen dataclasses. AgentSession is the only mutable
type here and is owned by the orchestrator's SessionManager.
"""

import asyncio
import itertools
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from .exceptions import InvalidTransitionError, SessionClosedError


_record_sequence = itertools.count(1)


def new_id() -> str:
    """Return a new random identifier."""
    return uuid.uuid4().hex


def _freeze(payload: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(payload or {}))


class SessionState(str, Enum):
    """Lifecycle state of an AgentSession."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    CLOSED = "closed"


class LoopState(str, Enum):
    """Orchestrator loop state of an AgentSession."""

    AWAITING_INPUT = "awaiting_input"
    GENERATING = "generating"
    EXECUTING_TOOLS = "executing_tools"
    RESPONDING = "responding"
    CLOSED = "closed"


ALLOWED_TRANSITIONS: dict[LoopState, frozenset[LoopState]] = {
    LoopState.AWAITING_INPUT: frozenset({LoopState.GENERATING, LoopState.CLOSED}),
    LoopState.GENERATING: frozenset(
        {LoopState.EXECUTING_TOOLS, LoopState.RESPONDING}
    ),
    LoopState.EXECUTING_TOOLS: frozenset(
        {LoopState.GENERATING, LoopState.RESPONDING}
    ),
    LoopState.RESPONDING: frozenset({LoopState.AWAITING_INPUT, LoopState.CLOSED}),
    LoopState.CLOSED: frozenset(),
}


class PolicyVerdict(str, Enum):
    """Outcome of a policy evaluation."""

    ALLOW = "allow"
    DENY = "deny"
    ALLOW_WITH_CONSTRAINTS = "allow_with_constraints"


class ToolOutcome(str, Enum):
    """Classification of a ToolResult."""

    SUCCESS = "success"
    UNKNOWN_TOOL = "unknown_tool"
    INVALID_PARAMETERS = "invalid_parameters"
    POLICY_DENIED = "policy_denied"
    EXECUTION_TIMEOUT = "execution_timeout"
    EXECUTION_FAULT = "execution_fault"
    RESOURCE_LIMIT_EXCEEDED = "resource_limit_exceeded"


class CircuitStatus(str, Enum):
    """Circuit breaker position for one provider."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class ResponseKind(str, Enum):
    """Tag of a ProviderResponse."""

    FINAL = "final"
    TOOL_CALLS = "tool_calls"


# ---------------------------------------------------------------------------
# Subjects and policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Subject:
    """
    Identity that a session and its policy decisions belong to.

    Attributes:
        channel: Channel name the subject talks through.
        user_id: User identifier within the channel.
    """

    channel: str
    user_id: str

    @property
    def key(self) -> str:
        """Canonical key used for policy matching and session lookup."""
        return f"{self.channel}:{self.user_id}"


@dataclass(frozen=True)
class Constraints:
    """
    Restrictions attached to an AllowWithConstraints decision.

    Attributes:
        path_prefixes: Absolute paths the tool may touch (empty = unrestricted).
        deny_network: Whether network egress must be blocked.
        timeout_seconds: Tighter wall-clock limit, if any.
        max_output_bytes: Tighter output cap, if any.
    """

    path_prefixes: tuple[str, ...] = ()
    deny_network: bool = False
    timeout_seconds: float | None = None
    max_output_bytes: int | None = None

    @property
    def restricts_filesystem(self) -> bool:
        return bool(self.path_prefixes)


@dataclass(frozen=True)
class PolicyDecision:
    """
    Verdict for one (subject, action) pair.

    Attributes:
        verdict: Allow, Deny or AllowWithConstraints.
        reason: Reason code (e.g. "rule_match", "no_matching_rule").
        rule_id: Matching rule, None for the default deny.
        subject: Subject key the decision was computed for.
        action: Action identity the decision was computed for.
        policy_version: Rule set version used for the evaluation.
        constraints: Constraints to enforce (AllowWithConstraints only).
        decided_at: Unix timestamp of the evaluation.
    """

    verdict: PolicyVerdict
    reason: str
    rule_id: str | None
    subject: str
    action: str
    policy_version: int
    constraints: Constraints | None = None
    decided_at: float = field(default_factory=time.time)

    @property
    def allowed(self) -> bool:
        return self.verdict is not PolicyVerdict.DENY


# ---------------------------------------------------------------------------
# Provider contract
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequestedToolCall:
    """A tool call requested by the model."""

    call_id: str
    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "arguments", _freeze(self.arguments))


@dataclass(frozen=True)
class ChatMessage:
    """
    One message of the model context.

    Attributes:
        role: system, user, assistant or tool.
        content: Message text.
        tool_call_id: Call id this message answers (tool role only).
        tool_calls: Calls requested by the assistant (assistant role only).
    """

    role: str
    content: str
    tool_call_id: str | None = None
    tool_calls: tuple[RequestedToolCall, ...] = ()


@dataclass(frozen=True)
class ToolSpec:
    """Tool description offered to the model."""

    name: str
    description: str
    parameters: Mapping[str, Any]


@dataclass(frozen=True)
class GenerationParams:
    """Sampling parameters for a provider request."""

    max_tokens: int = 1024
    temperature: float = 0.2


@dataclass(frozen=True)
class ProviderRequest:
    """Normalized request sent through the router."""

    messages: tuple[ChatMessage, ...]
    tools: tuple[ToolSpec, ...] = ()
    params: GenerationParams = field(default_factory=GenerationParams)
    request_id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class ProviderResponse:
    """
    Normalized provider response.

    Tagged by ``kind``: FINAL carries ``content``; TOOL_CALLS carries a
    non-empty ``tool_calls`` tuple and optional interim ``content``.
    """

    kind: ResponseKind
    content: str = ""
    tool_calls: tuple[RequestedToolCall, ...] = ()
    provider: str | None = None
    usage: Mapping[str, int] | None = None

    def __post_init__(self) -> None:
        if self.kind is ResponseKind.TOOL_CALLS and not self.tool_calls:
            raise ValueError("TOOL_CALLS response requires at least one tool call")
        if self.kind is ResponseKind.FINAL and self.tool_calls:
            raise ValueError("FINAL response cannot carry tool calls")

    @classmethod
    def final(cls, content: str, **kwargs: Any) -> "ProviderResponse":
        return cls(kind=ResponseKind.FINAL, content=content, **kwargs)

    @classmethod
    def calls(
        cls, tool_calls: list[RequestedToolCall], content: str = "", **kwargs: Any
    ) -> "ProviderResponse":
        return cls(
            kind=ResponseKind.TOOL_CALLS,
            content=content,
            tool_calls=tuple(tool_calls),
            **kwargs,
        )


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolInvocation:
    """
    One requested tool execution.

    Attributes:
        tool_name: Registered tool name.
        parameters: Raw parameter payload (read-only).
        turn_id: Correlation id of the Turn that produced it.
        call_id: Provider call id, echoed back with the result.
        invocation_id: Unique id of this invocation record.
    """

    tool_name: str
    parameters: Mapping[str, Any]
    turn_id: str
    call_id: str = ""
    invocation_id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", _freeze(self.parameters))


@dataclass(frozen=True)
class ResourceUsage:
    """Timing and resource record of one execution attempt."""

    wall_time_seconds: float = 0.0
    output_bytes: int = 0
    exit_code: int | None = None
    truncated: bool = False


@dataclass(frozen=True)
class ToolResult:
    """
    Outcome of exactly one execution attempt of a ToolInvocation.

    Attributes:
        invocation_id: Id of the invocation this result answers.
        tool_name: Tool name.
        outcome: Success or failure classification.
        output: Text output (bounded by the sandbox output cap).
        data: Optional structured payload.
        usage: Timing/resource usage.
        decision: Policy decision consulted, if evaluation happened.
        error: Error message for failure outcomes.
    """

    invocation_id: str
    tool_name: str
    outcome: ToolOutcome
    output: str = ""
    data: Mapping[str, Any] | None = None
    usage: ResourceUsage = field(default_factory=ResourceUsage)
    decision: PolicyDecision | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is ToolOutcome.SUCCESS

    def render(self) -> str:
        """Text handed back to the model as the tool message."""
        if self.ok:
            return self.output or "(no output)"
        text = f"[{self.outcome.value}] {self.error or ''}".rstrip()
        if self.output:
            text += f"\n{self.output}"
        return text


@dataclass(frozen=True)
class ToolRound:
    """One Generating -> ExecutingTools round inside a Turn."""

    assistant_content: str
    invocations: tuple[ToolInvocation, ...]
    results: tuple[ToolResult, ...]


@dataclass(frozen=True)
class Turn:
    """
    One exchange unit of a session.

    Immutable once appended to a session's history.
    """

    turn_id: str
    input: str
    reply: str
    rounds: tuple[ToolRound, ...] = ()
    budget_exhausted: bool = False
    started_at: float = field(default_factory=time.time)
    completed_at: float = field(default_factory=time.time)

    @property
    def invocations(self) -> tuple[ToolInvocation, ...]:
        return tuple(inv for r in self.rounds for inv in r.invocations)


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MemoryRecord:
    """
    Stored fact or conversation excerpt.

    Attributes:
        text: Stored text.
        embedding: Embedding vector of the text.
        metadata: Free-form metadata (subject, turn id, ...).
        importance: Importance score used by some eviction policies.
        record_id: Unique record id.
        created_at: Unix timestamp of creation.
        sequence: In-process creation counter; orders records sharing a
            creation timestamp.
    """

    text: str
    embedding: tuple[float, ...]
    metadata: Mapping[str, Any] = field(default_factory=dict)
    importance: float = 0.5
    record_id: str = field(default_factory=new_id)
    created_at: float = field(default_factory=time.time)
    sequence: int = field(default_factory=lambda: next(_record_sequence))

    def __post_init__(self) -> None:
        object.__setattr__(self, "embedding", tuple(float(v) for v in self.embedding))
        object.__setattr__(self, "metadata", _freeze(self.metadata))


@dataclass(frozen=True)
class ScoredMemory:
    """A recalled record with its similarity score."""

    record: MemoryRecord
    score: float


# ---------------------------------------------------------------------------
# Routing diagnostics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CircuitState:
    """Snapshot of one provider's circuit breaker."""

    provider: str
    status: CircuitStatus
    consecutive_failures: int
    cooldown_until: float | None


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InboundMessage:
    """Message received from a channel."""

    channel: str
    user_id: str
    content: str
    message_id: str = field(default_factory=new_id)
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def subject(self) -> Subject:
        return Subject(channel=self.channel, user_id=self.user_id)


@dataclass(frozen=True)
class OutboundMessage:
    """Reply delivered to a channel."""

    channel: str
    user_id: str
    content: str
    reply_to: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionBudget:
    """
    Resource budget applied to each turn of a session.

    Attributes:
        max_tool_calls: Tool invocations allowed per turn.
        max_turn_seconds: Wall-clock seconds allowed per turn.
    """

    max_tool_calls: int = 8
    max_turn_seconds: float = 120.0


class AgentSession:
    """
    One ongoing conversation for a subject.

    History is append-only. The ``lock`` enforces that only one turn is
    in flight for the session at a time.
    """

    def __init__(
        self,
        subject: Subject,
        budget: SessionBudget,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or new_id()
        self.subject = subject
        self.budget = budget
        self.state = SessionState.ACTIVE
        self.loop_state = LoopState.AWAITING_INPUT
        self.created_at = time.time()
        self.last_active_at = time.monotonic()
        self.lock = asyncio.Lock()
        self._turns: list[Turn] = []

    @property
    def history(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def append_turn(self, turn: Turn) -> None:
        """
        Append a completed turn to the history.

        Raises:
            SessionClosedError: If the session is closed.
        """
        if self.closed:
            raise SessionClosedError(self.session_id)
        self._turns.append(turn)
        self.touch()

    def touch(self) -> None:
        self.last_active_at = time.monotonic()

    def transition(self, target: LoopState) -> None:
        """
        Move the loop state machine.

        Raises:
            InvalidTransitionError: If the table does not allow the move.
        """
        if target not in ALLOWED_TRANSITIONS[self.loop_state]:
            raise InvalidTransitionError(
                self.session_id, self.loop_state.value, target.value
            )
        self.loop_state = target

    def abort_turn(self) -> None:
        """Return to AWAITING_INPUT after a cancelled or failed turn."""
        if not self.closed:
            self.loop_state = LoopState.AWAITING_INPUT

    def close(self) -> None:
        """Close the session; further turns are rejected."""
        if self.loop_state is not LoopState.CLOSED:
            self.loop_state = LoopState.CLOSED
        self.state = SessionState.CLOSED
