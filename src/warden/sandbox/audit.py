"""
Tool execution audit log.

Bounded in-memory record of every sandbox decision, mirrored to the
logger so entries survive in the process log.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEntry:
    """
    One audit record.

    Attributes:
        invocation_id: Invocation the entry belongs to.
        tool_name: Tool name.
        action: Policy action of the tool.
        subject: Subject key.
        phase: "denied", "execute" or "result".
        verdict: Policy verdict value, if evaluated.
        rule_id: Rule that decided, if any.
        policy_version: Rule set version of the decision.
        runtime: Runtime adapter name, for executions.
        outcome: ToolOutcome value, for results.
        recorded_at: Unix timestamp.
    """

    invocation_id: str
    tool_name: str
    action: str
    subject: str
    phase: str
    verdict: str | None = None
    rule_id: str | None = None
    policy_version: int | None = None
    runtime: str | None = None
    outcome: str | None = None
    recorded_at: float = field(default_factory=time.time)


class AuditLog:
    """Bounded, thread-safe audit log."""

    def __init__(self, max_entries: int = 1000) -> None:
        self._entries: deque[AuditEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def record(self, entry: AuditEntry) -> None:
        """Append an entry and log it."""
        with self._lock:
            self._entries.append(entry)
        logger.info(
            f"📝 audit {entry.phase} tool={entry.tool_name} action={entry.action} "
            f"subject={entry.subject} verdict={entry.verdict} rule={entry.rule_id} "
            f"policy_version={entry.policy_version} "
            f"runtime={entry.runtime} outcome={entry.outcome} "
            f"invocation={entry.invocation_id}"
        )

    def entries(self) -> list[AuditEntry]:
        with self._lock:
            return list(self._entries)

    def entries_for(self, invocation_id: str) -> list[AuditEntry]:
        """Get entries of one invocation in recording order."""
        with self._lock:
            return [e for e in self._entries if e.invocation_id == invocation_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
