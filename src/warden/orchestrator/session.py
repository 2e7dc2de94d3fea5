"""
Session management.

One AgentSession per subject. Sessions idle past the timeout are closed
by ``reap_idle``, which skips sessions with a turn in flight.
"""

import logging
import time
from collections.abc import Callable

from ..models import AgentSession, LoopState, SessionBudget, Subject

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Owns the live sessions of the runtime.

    Usage:
        sessions = SessionManager(SessionBudget(), idle_timeout_seconds=1800)
        session = sessions.get_or_create(Subject("queue", "alice"))
    """

    def __init__(
        self,
        budget: SessionBudget,
        idle_timeout_seconds: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the session manager.

        Args:
            budget: Budget given to new sessions.
            idle_timeout_seconds: Idle time after which sessions are reaped.
            clock: Monotonic clock compared against ``last_active_at``.
        """
        self._budget = budget
        self._idle_timeout = idle_timeout_seconds
        self._clock = clock
        self._sessions: dict[str, AgentSession] = {}

    def get_or_create(self, subject: Subject) -> AgentSession:
        """
        Get the open session of a subject, creating one if needed.

        Args:
            subject: Session subject.

        Returns:
            Open session.
        """
        session = self._sessions.get(subject.key)
        if session is None or session.closed:
            session = AgentSession(subject=subject, budget=self._budget)
            self._sessions[subject.key] = session
            logger.info(f"💬 New session {session.session_id} for {subject.key}")
        return session

    def get(self, subject: Subject) -> AgentSession | None:
        return self._sessions.get(subject.key)

    def close(self, subject: Subject) -> bool:
        """
        Close and forget the session of a subject.

        Returns:
            True if a session was closed.
        """
        session = self._sessions.pop(subject.key, None)
        if session is None:
            return False
        self._terminate(session)
        return True

    def reap_idle(self) -> list[str]:
        """
        Close sessions idle longer than the timeout.

        Sessions with a turn in flight are left alone.

        Returns:
            Ids of closed sessions.
        """
        now = self._clock()
        reaped: list[str] = []
        for key, session in list(self._sessions.items()):
            if session.lock.locked():
                continue
            if now - session.last_active_at < self._idle_timeout:
                continue
            del self._sessions[key]
            self._terminate(session)
            reaped.append(session.session_id)

        if reaped:
            logger.info(f"🧹 Reaped {len(reaped)} idle sessions")
        return reaped

    def active_sessions(self) -> list[AgentSession]:
        return [s for s in self._sessions.values() if not s.closed]

    @staticmethod
    def _terminate(session: AgentSession) -> None:
        if session.loop_state is LoopState.AWAITING_INPUT:
            session.transition(LoopState.CLOSED)
        session.close()
        logger.info(f"💬 Closed session {session.session_id}")
