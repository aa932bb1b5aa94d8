"""Operator sessions: authentication state machine and lifecycle."""

from .machine import SessionContext, SessionState, build_session_definition
from .manager import SessionManager

__all__ = [
    "SessionContext",
    "SessionState",
    "build_session_definition",
    "SessionManager",
]
