"""Error taxonomy for IRIS Agent.

Resolver-level errors (ParseError, ResolverUnavailableError) are recovered by
the fallback cascade and only surface once every alternative is exhausted.
ValidationError is informational: it becomes a clarification prompt and never
counts as a failed attempt. ExecutionError from the booking API is surfaced
immediately and never retried automatically.
"""

from typing import Any, Dict, List, Optional


class IrisError(Exception):
    """Base class for all engine errors."""

    code = "IRIS_ERROR"

    def __init__(self, message: str, context: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.context = context

    @property
    def recoverable(self) -> bool:
        """Whether the fallback cascade may try another resolver."""
        return False


class ParseError(IrisError):
    """The command could not be classified by the resolver that saw it."""

    code = "PARSE_ERROR"

    @property
    def recoverable(self) -> bool:
        return True


class ResolverUnavailableError(IrisError):
    """The remote resolver is unreachable, timed out, or answered garbage."""

    code = "RESOLVER_UNAVAILABLE"

    @property
    def recoverable(self) -> bool:
        return True


class ValidationError(IrisError):
    """A resolved intent is missing parameters its action requires."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, missing_fields: Optional[List[str]] = None):
        super().__init__(message, context=missing_fields)
        self.missing_fields = missing_fields or []


class SettingsInvariantError(IrisError):
    """A settings update would disable both resolvers."""

    code = "SETTINGS_INVARIANT"


class ExecutionError(IrisError):
    """A booking API call made on behalf of an intent failed."""

    code = "EXECUTION_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, context: Optional[Any] = None):
        super().__init__(message, context=context)
        self.status_code = status_code


class BookingAPIError(Exception):
    """Exception raised for booking API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_data: Optional[Dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


class AuthenticationError(IrisError):
    """Login failed or the session is not authenticated."""

    code = "AUTHENTICATION_ERROR"


class CommandRejectedError(IrisError):
    """A command was submitted while the session cannot run commands."""

    code = "COMMAND_REJECTED"


class InvalidTransitionError(IrisError):
    """A state machine received an event it has no transition for."""

    code = "INVALID_TRANSITION"

    def __init__(self, machine_id: str, state: str, event: str):
        super().__init__(
            f"{machine_id}: no transition for event {event} in state {state}",
            context={"state": state, "event": event},
        )
        self.machine_id = machine_id
        self.state = state
        self.event = event


def describe_error(error: BaseException) -> str:
    """One-line, user-facing description of an error."""
    message = str(error) or error.__class__.__name__
    if len(message) > 200:
        message = message[:200] + "..."
    return message
