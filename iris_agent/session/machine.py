"""Session/auth state machine definition.

::

    initializing --INITIALIZE [hasStoredSession]--> authenticated.ready
    initializing --INITIALIZE-->                    unauthenticated
    unauthenticated --LOGIN_START-->                authenticating
    authenticating  --LOGIN_SUCCESS-->              authenticated.ready
    authenticating  --LOGIN_FAILURE-->              unauthenticated
    authenticated.* --LOGOUT-->                     unauthenticated
    authenticated.ready --START_DEMO-->             authenticated.demo_mode
    authenticated.demo_mode --STOP_DEMO-->          authenticated.ready
    ready|demo_mode --UPDATE_SETTINGS-->            authenticated.updating_settings
    updating_settings --SETTINGS_UPDATED|SETTINGS_ERROR--> ready (or demo_mode)
    authenticated.* --SESSION_ERROR-->              authenticated.error
    authenticated.error --RESET_ERROR-->            authenticated.ready
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..models import ResolverSettings, User
from ..statemachine import Event, MachineDefinition, StateDefinition, Transition


class SessionState(str, Enum):
    INITIALIZING = "initializing"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    READY = "authenticated.ready"
    DEMO_MODE = "authenticated.demo_mode"
    UPDATING_SETTINGS = "authenticated.updating_settings"
    ERROR = "authenticated.error"

    @property
    def authenticated(self) -> bool:
        return self.value.startswith("authenticated.")


INITIALIZE = "INITIALIZE"
LOGIN_START = "LOGIN_START"
LOGIN_SUCCESS = "LOGIN_SUCCESS"
LOGIN_FAILURE = "LOGIN_FAILURE"
LOGOUT = "LOGOUT"
START_DEMO = "START_DEMO"
STOP_DEMO = "STOP_DEMO"
UPDATE_SETTINGS = "UPDATE_SETTINGS"
SETTINGS_UPDATED = "SETTINGS_UPDATED"
SETTINGS_ERROR = "SETTINGS_ERROR"
SESSION_ERROR = "SESSION_ERROR"
RESET_ERROR = "RESET_ERROR"


@dataclass
class SessionContext:
    token: Optional[str] = None
    user: Optional[User] = None
    settings: ResolverSettings = field(default_factory=ResolverSettings)
    error: Optional[str] = None
    resume_demo: bool = False


def has_stored_session(ctx: SessionContext, event: Event) -> bool:
    return bool(event.get("token")) and event.get("user") is not None


def resume_demo(ctx: SessionContext, event: Event) -> bool:
    return ctx.resume_demo


SESSION_GUARDS = {
    "hasStoredSession": has_stored_session,
    "resumeDemo": resume_demo,
}


def restore_settings(ctx: SessionContext, event: Event) -> None:
    settings = event.get("settings")
    if settings is not None:
        ctx.settings = settings


def assign_auth(ctx: SessionContext, event: Event) -> None:
    ctx.token = event.get("token")
    ctx.user = event.get("user")
    ctx.error = None


def restore_session(ctx: SessionContext, event: Event) -> None:
    restore_settings(ctx, event)
    assign_auth(ctx, event)


def clear_auth(ctx: SessionContext, event: Event) -> None:
    ctx.token = None
    ctx.user = None
    ctx.error = None
    ctx.resume_demo = False


def assign_error(ctx: SessionContext, event: Event) -> None:
    ctx.error = event.get("error")


def clear_error(ctx: SessionContext, event: Event) -> None:
    ctx.error = None


def remember_demo(ctx: SessionContext, event: Event) -> None:
    ctx.resume_demo = bool(event.get("from_demo", False))


def commit_settings(ctx: SessionContext, event: Event) -> None:
    ctx.settings = event.get("settings", ctx.settings)


SESSION_ACTIONS = {
    "restoreSettings": restore_settings,
    "restoreSession": restore_session,
    "assignAuth": assign_auth,
    "clearAuth": clear_auth,
    "assignError": assign_error,
    "clearError": clear_error,
    "rememberDemo": remember_demo,
    "commitSettings": commit_settings,
}


def _t(source, event, target, guard=None, actions=()):
    return Transition(
        source=source.value if isinstance(source, SessionState) else source,
        event=event,
        target=target.value if isinstance(target, SessionState) else target,
        guard=guard,
        actions=tuple(actions),
    )


def build_session_definition(machine_id: str = "session") -> MachineDefinition:
    S = SessionState
    transitions = [
        _t(S.INITIALIZING, INITIALIZE, S.READY, guard="hasStoredSession", actions=["restoreSession"]),
        _t(S.INITIALIZING, INITIALIZE, S.UNAUTHENTICATED, actions=["restoreSettings"]),

        _t(S.UNAUTHENTICATED, LOGIN_START, S.AUTHENTICATING, actions=["clearError"]),
        _t(S.AUTHENTICATING, LOGIN_SUCCESS, S.READY, actions=["assignAuth"]),
        _t(S.AUTHENTICATING, LOGIN_FAILURE, S.UNAUTHENTICATED, actions=["assignError"]),
        _t("authenticated.*", LOGOUT, S.UNAUTHENTICATED, actions=["clearAuth"]),

        _t(S.READY, START_DEMO, S.DEMO_MODE),
        _t(S.DEMO_MODE, STOP_DEMO, S.READY),

        _t(S.READY, UPDATE_SETTINGS, S.UPDATING_SETTINGS, actions=["rememberDemo"]),
        _t(S.DEMO_MODE, UPDATE_SETTINGS, S.UPDATING_SETTINGS, actions=["rememberDemo"]),
        _t(S.UPDATING_SETTINGS, SETTINGS_UPDATED, S.DEMO_MODE, guard="resumeDemo", actions=["commitSettings"]),
        _t(S.UPDATING_SETTINGS, SETTINGS_UPDATED, S.READY, actions=["commitSettings"]),
        _t(S.UPDATING_SETTINGS, SETTINGS_ERROR, S.DEMO_MODE, guard="resumeDemo", actions=["assignError"]),
        _t(S.UPDATING_SETTINGS, SETTINGS_ERROR, S.READY, actions=["assignError"]),
        # Settings changed outside an authenticated session, or from the error substate
        _t("*", SETTINGS_UPDATED, None, actions=["commitSettings"]),

        _t("authenticated.*", SESSION_ERROR, S.ERROR, actions=["assignError"]),
        _t(S.ERROR, RESET_ERROR, S.READY, actions=["clearError"]),
    ]
    states = [StateDefinition(s.value) for s in SessionState]
    return MachineDefinition(machine_id, S.INITIALIZING.value, states, transitions)
