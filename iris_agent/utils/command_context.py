"""Command context management for tracing commands through the engine.

Every command submitted to a session gets a short unique id that follows it
through parsing, routing, resolver calls and booking API dispatch, so that the
log lines belonging to one command can be filtered out of a busy session.
Retries of the same command reuse the parent id with a numeric suffix.

Key features:
- Async-safe id propagation using contextvars
- Short 6-digit hex ids with a ``cmd_`` prefix
- Attempt suffixes for retried commands (``cmd_a1b2c3.002``)
"""

import secrets
from contextvars import ContextVar
from typing import Optional

COMMAND_ID_CONTEXT: ContextVar[Optional[str]] = ContextVar("command_id", default=None)


def generate_command_id() -> str:
    """Generate a unique command id.

    Returns:
        str: Command id in format 'cmd_a1b2c3'

    Examples:
        >>> command_id = generate_command_id()
        >>> command_id.startswith('cmd_')
        True
        >>> len(command_id) == 10  # 'cmd_' + 6 hex chars
        True
    """
    return f"cmd_{secrets.token_hex(3)}"


def generate_attempt_id(parent_id: str, attempt: int) -> str:
    """Generate the id of a retry attempt of a command.

    Args:
        parent_id: Id of the originally submitted command
        attempt: Attempt number (1 for the first retry)

    Returns:
        str: Attempt id in format 'cmd_a1b2c3.001'
    """
    return f"{extract_parent_id(parent_id)}.{attempt:03d}"


def get_command_id() -> Optional[str]:
    """Get the current command id from context, or None."""
    return COMMAND_ID_CONTEXT.get()


def set_command_id(command_id: Optional[str]):
    """Set the command id in the current context.

    Returns:
        The contextvars token, usable with :func:`reset_command_id`.
    """
    return COMMAND_ID_CONTEXT.set(command_id)


def reset_command_id(token) -> None:
    """Restore the command id that was active before ``set_command_id``."""
    COMMAND_ID_CONTEXT.reset(token)


def format_command_id(command_id: Optional[str]) -> str:
    """Format command id for logging, with fallback.

    Examples:
        >>> format_command_id('cmd_a1b2c3')
        'cmd_a1b2c3'
        >>> format_command_id(None)
        'cmd_none'
    """
    return command_id or "cmd_none"


def extract_parent_id(command_id: str) -> str:
    """Strip an attempt suffix from a command id.

    Examples:
        >>> extract_parent_id('cmd_a1b2c3.001')
        'cmd_a1b2c3'
    """
    return command_id.split(".")[0] if "." in command_id else command_id
