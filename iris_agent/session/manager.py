"""Session lifecycle: authentication, settings and the command processor.

A :class:`SessionManager` owns the session state machine, persists auth and
settings through a :class:`~iris_agent.state_store.StateStore`, and creates
the operator's :class:`~iris_agent.processor.CommandProcessor` when the
session becomes authenticated. Commands are only accepted while the session
is in an ``authenticated`` substate.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from ..api_client import BookingClient
from ..async_api_client import AsyncBookingClient
from ..commands.builtin import CommandRegistry, create_builtin_registry
from ..commands.executor import IntentExecutor
from ..config import AppConfig
from ..errors import (
    AuthenticationError,
    BookingAPIError,
    CommandRejectedError,
    SettingsInvariantError,
    describe_error,
)
from ..llm_client import create_intent_backend
from ..models import CommandOutcome, ResolverHealth, ResolverSettings, User
from ..processor import CommandProcessor
from ..resolvers import PatternResolver, RemoteResolver
from ..services import (
    Clock,
    ConversationContextStore,
    HealthMonitor,
    ScheduledTask,
    Scheduler,
    SystemClock,
)
from ..state_store import PersistedState, StateStore
from ..statemachine import StateMachine, TransitionRecord
from .machine import (
    INITIALIZE,
    LOGIN_FAILURE,
    LOGIN_START,
    LOGIN_SUCCESS,
    LOGOUT,
    RESET_ERROR,
    SESSION_ACTIONS,
    SESSION_ERROR,
    SESSION_GUARDS,
    SETTINGS_ERROR,
    SETTINGS_UPDATED,
    START_DEMO,
    STOP_DEMO,
    UPDATE_SETTINGS,
    SessionContext,
    SessionState,
    build_session_definition,
)


class SessionManager:
    """Owns one operator session on this client.

    Args:
        client: Async booking API client.
        state_store: Durable store for token, user and settings.
        config: Application configuration; defaults are used if omitted.
        remote_resolver: Remote intent resolver, or None to run pattern-only.
        context_store: Conversation memory shared by sessions on this client.
        health_monitor: Remote resolver health; built from ``client.health`` if omitted.
        scheduler: Runs health polling and context sweeping.
        clock: Time source.
        indicator: Activity indicator callback passed to the processor.
    """

    def __init__(self, client: AsyncBookingClient, state_store: StateStore,
                 config: Optional[AppConfig] = None,
                 remote_resolver: Optional[RemoteResolver] = None,
                 context_store: Optional[ConversationContextStore] = None,
                 health_monitor: Optional[HealthMonitor] = None,
                 scheduler: Optional[Scheduler] = None,
                 builtins: Optional[CommandRegistry] = None,
                 clock: Optional[Clock] = None,
                 indicator: Optional[Callable[[str], None]] = None):
        self.config = config or AppConfig()
        self.client = client
        self.state_store = state_store
        self.remote_resolver = remote_resolver
        self.clock = clock or SystemClock()
        self.scheduler = scheduler or Scheduler(self.clock)
        self.context_store = context_store or ConversationContextStore(
            max_entries=self.config.context.max_entries,
            ttl=timedelta(minutes=self.config.context.ttl_minutes),
            clock=self.clock,
        )
        self.health_monitor = health_monitor or HealthMonitor(
            client.health,
            poll_interval=self.config.resolver.health_poll_interval,
            clock=self.clock,
        )
        self.pattern_resolver = PatternResolver(self.config.resolver.contextual_phrases)
        self.executor = IntentExecutor(client)
        self.builtins = builtins or create_builtin_registry()
        self.indicator = indicator
        self.logger = logging.getLogger(__name__)

        self.machine = StateMachine(build_session_definition(), SessionContext(),
                                    SESSION_GUARDS, SESSION_ACTIONS)
        self.processor: Optional[CommandProcessor] = None
        self._sweep_task: Optional[ScheduledTask] = None
        self._background: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config: AppConfig, **kwargs) -> "SessionManager":
        """Wire up a manager with real clients from configuration."""
        sync_client = BookingClient(config.booking_api, intent_url=config.resolver.intent_url)
        client = AsyncBookingClient(sync_client)
        backend = create_intent_backend(config, client)
        remote = RemoteResolver(
            backend,
            timeout=config.resolver.request_timeout,
            history_window=config.resolver.history_window,
        )
        return cls(client, StateStore(config.storage.state_file), config=config,
                   remote_resolver=remote, **kwargs)

    # State

    @property
    def state(self) -> SessionState:
        return SessionState(self.machine.state)

    @property
    def is_authenticated(self) -> bool:
        return self.machine.matches("authenticated.*")

    @property
    def user(self) -> Optional[User]:
        return self.machine.context.user

    @property
    def token(self) -> Optional[str]:
        return self.machine.context.token

    @property
    def settings(self) -> ResolverSettings:
        return self.machine.context.settings

    @property
    def error(self) -> Optional[str]:
        return self.machine.context.error

    def add_listener(self, listener: Callable[[TransitionRecord], None]) -> Callable[[], None]:
        return self.machine.add_listener(listener)

    # Lifecycle

    def bootstrap(self) -> PersistedState:
        """Restore persisted auth and settings. Call once at startup."""
        stored = self.state_store.load()
        self.machine.send(INITIALIZE, token=stored.token, user=stored.user, settings=stored.settings)
        if self.is_authenticated:
            self.logger.info(f"Restored session for {stored.user.display_name}")
            self.client.set_auth_token(stored.token)
            self._start_session()
        return stored

    async def login(self, email: str, password: str) -> User:
        """Authenticate against the booking API and start the session.

        Raises:
            AuthenticationError: if credentials are rejected or a session is active.
        """
        if self.machine.send(LOGIN_START) is None:
            raise AuthenticationError(f"Cannot log in while {self.state.value}")

        try:
            response = await self.client.login(email, password)
            token = response.get("token")
            user = User.model_validate(response.get("user") or {})
            if not token:
                raise BookingAPIError("Login response did not include a token")
        except Exception as e:
            message = describe_error(e)
            self.logger.warning(f"Login failed for {email}: {message}")
            self.machine.send(LOGIN_FAILURE, error=message)
            raise AuthenticationError(f"Login failed: {message}") from e

        self.machine.send(LOGIN_SUCCESS, token=token, user=user)
        try:
            self.state_store.save_auth(token, user, self.settings)
        except OSError as e:
            self.logger.error(f"Session for {user.display_name} will not survive a restart: {e}")
        self._start_session()
        self.logger.info(f"Logged in as {user.display_name}")
        return user

    def logout(self) -> None:
        if not self.is_authenticated:
            return
        user = self.user
        self._stop_session()
        self.machine.send(LOGOUT)
        self.client.set_auth_token(None)
        try:
            self.state_store.clear_auth()
        except OSError as e:
            self.logger.error(f"Failed to clear stored auth: {e}")
        self.logger.info(f"Logged out {user.display_name if user else ''}".rstrip())

    async def close(self) -> None:
        """Stop background work. The session stays persisted."""
        self._stop_session()
        self.scheduler.shutdown()
        if self._background is not None:
            self._background.cancel()
            try:
                await self._background
            except asyncio.CancelledError:
                pass
            self._background = None

    def start_background(self) -> asyncio.Task:
        """Run the scheduler on the current event loop."""
        if self._background is None or self._background.done():
            self._background = asyncio.get_running_loop().create_task(self.scheduler.run_forever())
        return self._background

    # Settings

    def get_settings(self) -> ResolverSettings:
        return self.settings

    def update_settings(self, use_simple_nlp: Optional[bool] = None,
                        use_llm: Optional[bool] = None) -> ResolverSettings:
        """Validate, persist and apply new resolver settings.

        The update is all-or-nothing: on any failure the previous settings
        stay in effect.

        Raises:
            SettingsInvariantError: if both resolvers would be disabled.
            OSError: if the settings could not be persisted.
        """
        previous = self.settings
        from_demo = self.state == SessionState.DEMO_MODE
        self.machine.send(UPDATE_SETTINGS, from_demo=from_demo)

        try:
            updated = previous.with_changes(use_simple_nlp, use_llm)
            self.state_store.save_settings(updated)
        except (SettingsInvariantError, OSError) as e:
            self.logger.warning(f"Settings update rejected: {describe_error(e)}")
            self.machine.send(SETTINGS_ERROR, error=describe_error(e))
            raise

        self.machine.send(SETTINGS_UPDATED, settings=updated)
        if self.processor is not None:
            self.processor.update_settings(updated)
        self.logger.info(f"Settings updated: {updated.to_storage()}")
        return updated

    # Demo mode and errors

    def start_demo(self) -> None:
        if self.machine.send(START_DEMO) is None:
            raise CommandRejectedError(f"Cannot start demo mode while {self.state.value}")

    def stop_demo(self) -> None:
        if self.machine.send(STOP_DEMO) is None:
            raise CommandRejectedError("Demo mode is not active")

    def report_error(self, message: str) -> None:
        self.machine.send(SESSION_ERROR, error=message)

    def reset_error(self) -> None:
        self.machine.send(RESET_ERROR)

    # Health

    def get_health(self) -> ResolverHealth:
        return self.health_monitor.health

    async def check_health(self) -> ResolverHealth:
        return await self.health_monitor.check()

    def describe(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {
            "session": self.state.value,
            "user": self.user.display_name if self.user else None,
            "simple_nlp": self.settings.use_simple_nlp,
            "llm": self.settings.use_llm,
            "llm_status": self.get_health().status.value,
        }
        if self.processor is not None:
            info["processor"] = self.processor.state.value
            info["context_entries"] = self.processor.context.size()
        return info

    # Commands

    async def submit(self, text: str) -> CommandOutcome:
        """Run a command through the processor.

        Raises:
            CommandRejectedError: if the session is not authenticated.
        """
        return await self._require_processor().submit(text)

    async def retry(self) -> CommandOutcome:
        return await self._require_processor().retry()

    def _require_processor(self) -> CommandProcessor:
        if not self.is_authenticated or self.processor is None:
            raise CommandRejectedError(f"Commands need an authenticated session (state: {self.state.value})")
        return self.processor

    def _start_session(self) -> None:
        user = self.user
        self.processor = CommandProcessor(
            user_id=user.id,
            executor=self.executor,
            context=self.context_store.for_user(user.id),
            pattern_resolver=self.pattern_resolver,
            remote_resolver=self.remote_resolver,
            health_monitor=self.health_monitor,
            settings=self.settings,
            timezone=self.config.timezone,
            host=self,
            builtins=self.builtins,
            confidence_threshold=self.config.resolver.confidence_threshold,
            max_attempts=self.config.processor.max_attempts,
            indicator=self.indicator,
            clock=self.clock,
        )
        self.health_monitor.start(self.scheduler)
        self._sweep_task = self.context_store.start_sweeping(
            self.scheduler, timedelta(minutes=self.config.context.sweep_interval_minutes)
        )

    def _stop_session(self) -> None:
        if self.processor is not None:
            self.processor.close()
            self.processor = None
        self.health_monitor.stop()
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            self._sweep_task = None
