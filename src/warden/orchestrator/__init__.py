"""Session management and the agent turn loop."""

from .context import DEFAULT_INSTRUCTIONS, ContextBuilder
from .loop import APOLOGY_NOTICE, BUDGET_NOTICE, DEADLINE_NOTICE, Orchestrator
from .session import SessionManager

__all__ = [
    "APOLOGY_NOTICE",
    "BUDGET_NOTICE",
    "DEADLINE_NOTICE",
    "DEFAULT_INSTRUCTIONS",
    "ContextBuilder",
    "Orchestrator",
    "SessionManager",
]
