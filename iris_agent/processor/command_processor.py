"""Per-session command processor.

Drives one command at a time through the processor state machine: parse,
route, execute, fall back, and either return to ``idle`` or stop in
``error`` where the operator may retry. Commands submitted while another is
running wait their turn in submission order.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from ..commands.base import CommandContext, CommandHost, CommandResult
from ..commands.builtin import CommandRegistry, create_builtin_registry
from ..commands.executor import IntentExecutor
from ..errors import (
    ExecutionError,
    IrisError,
    ParseError,
    ResolverUnavailableError,
    SettingsInvariantError,
    describe_error,
)
from ..models import (
    CommandOutcome,
    Intent,
    IntentAction,
    ProcessingState,
    ResolverHealth,
    ResolverSettings,
    ResolverSource,
)
from ..resolvers.pattern_resolver import PatternResolver
from ..resolvers.remote_resolver import RemoteResolver
from ..services.context_store import UserContext
from ..services.health_monitor import HealthMonitor
from ..services.scheduler import Clock, SystemClock
from ..statemachine import Event, StateMachine, TransitionRecord
from ..utils.command_context import (
    generate_attempt_id,
    generate_command_id,
    reset_command_id,
    set_command_id,
)
from .fallback import FallbackCoordinator
from .machine import (
    CONTEXT_ACTIONS,
    COMMAND_PARSED,
    EXECUTION_ERROR,
    EXECUTION_SUCCESS,
    GUARDS,
    PROCESS_COMMAND,
    RESET,
    RETRY_COMMAND,
    ProcessorContext,
    build_processor_definition,
    can_fallback_to_llm,
    can_retry,
)
from .routing import CommandRouter, parse_direct_command

S = ProcessingState

INDICATOR_THINKING = "thinking"
INDICATOR_ERROR = "error"
INDICATOR_IDLE = "idle"

Indicator = Callable[[str], None]


class LocalCommandHost:
    """Minimal :class:`CommandHost` for a processor running without a session."""

    def __init__(self, processor: "CommandProcessor"):
        self.processor = processor
        self.demo = False

    def get_settings(self) -> ResolverSettings:
        return self.processor.settings

    def update_settings(self, use_simple_nlp: Optional[bool] = None,
                        use_llm: Optional[bool] = None) -> ResolverSettings:
        settings = self.processor.settings.with_changes(use_simple_nlp, use_llm)
        self.processor.update_settings(settings)
        return settings

    def get_health(self) -> ResolverHealth:
        return self.processor.health

    def describe(self) -> Dict[str, Any]:
        return self.processor.describe()

    def start_demo(self) -> None:
        self.demo = True

    def stop_demo(self) -> None:
        self.demo = False


class CommandProcessor:
    """Resolves and executes an operator's commands.

    Args:
        user_id: Operator the processor belongs to.
        executor: Dispatches intents onto the booking API.
        context: The operator's slice of the conversation context store.
        pattern_resolver: Local pattern matcher. A default one is built if omitted.
        remote_resolver: Remote intent resolver, or None when not configured.
        health_monitor: Source of remote resolver connectivity.
        settings: Initial resolver settings.
        timezone: IANA timezone name of the operator.
        host: Session facilities for built-in commands.
        builtins: Built-in command registry.
        confidence_threshold: Minimum pattern confidence to skip the remote resolver.
        max_attempts: Consecutive failed attempts after which retry is refused.
        indicator: Called with ``thinking``, ``error`` or ``idle`` on state changes.
        clock: Time source handed to commands.
    """

    def __init__(self, user_id: str, executor: IntentExecutor, context: UserContext,
                 pattern_resolver: Optional[PatternResolver] = None,
                 remote_resolver: Optional[RemoteResolver] = None,
                 health_monitor: Optional[HealthMonitor] = None,
                 settings: Optional[ResolverSettings] = None,
                 timezone: str = "UTC",
                 host: Optional[CommandHost] = None,
                 builtins: Optional[CommandRegistry] = None,
                 confidence_threshold: float = 0.8,
                 max_attempts: int = 3,
                 indicator: Optional[Indicator] = None,
                 clock: Optional[Clock] = None):
        settings = settings or ResolverSettings()
        settings.ensure_valid()

        self.user_id = user_id
        self.executor = executor
        self.context = context
        self.pattern_resolver = pattern_resolver or PatternResolver()
        self.remote_resolver = remote_resolver
        self.health_monitor = health_monitor
        self.timezone = timezone
        self.host = host or LocalCommandHost(self)
        self.builtins = builtins or create_builtin_registry()
        self.indicator = indicator
        self.clock = clock or SystemClock()
        self.logger = logging.getLogger(__name__)

        self.router = CommandRouter(self.builtins)
        self.fallback = FallbackCoordinator()
        self.ctx = ProcessorContext(
            settings=settings,
            confidence_threshold=confidence_threshold,
            max_attempts=max_attempts,
        )

        actions = dict(CONTEXT_ACTIONS)
        actions.update({
            "signalThinking": lambda ctx, event: self._signal(INDICATOR_THINKING),
            "signalError": lambda ctx, event: self._signal(INDICATOR_ERROR),
            "clearIndicator": lambda ctx, event: self._signal(INDICATOR_IDLE),
        })
        self.machine = StateMachine(
            build_processor_definition(f"processor:{user_id}"), self.ctx, GUARDS, actions
        )

        self._lock = asyncio.Lock()
        self._waiting = 0
        self._health = ResolverHealth()
        self._unsubscribe_health: Optional[Callable[[], None]] = None
        if health_monitor is not None:
            self._unsubscribe_health = health_monitor.subscribe(self._on_health)

    @property
    def state(self) -> ProcessingState:
        return ProcessingState(self.machine.state)

    @property
    def settings(self) -> ResolverSettings:
        return self.ctx.settings

    @property
    def health(self) -> ResolverHealth:
        return self._health

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def queued(self) -> int:
        """Commands waiting for the one in flight to finish."""
        return self._waiting

    @property
    def history(self) -> List[TransitionRecord]:
        return self.machine.history

    def add_listener(self, listener: Callable[[TransitionRecord], None]) -> Callable[[], None]:
        return self.machine.add_listener(listener)

    def update_settings(self, settings: ResolverSettings) -> None:
        """Apply new resolver settings to subsequent routing decisions."""
        try:
            settings.ensure_valid()
        except SettingsInvariantError:
            self.logger.error(f"Refusing invalid settings for {self.user_id}")
            raise
        self.ctx.settings = settings

    def describe(self) -> Dict[str, Any]:
        return {
            "user": self.user_id,
            "state": self.state.value,
            "simple_nlp": self.settings.use_simple_nlp,
            "llm": self.settings.use_llm,
            "llm_status": self._health.status.value,
            "context_entries": self.context.size(),
            "timezone": self.timezone,
        }

    async def submit(self, text: str) -> CommandOutcome:
        """Process one command and report its outcome.

        Commands are handled strictly one at a time in submission order.
        """
        command = (text or "").strip()
        if not command:
            return CommandOutcome(command="", state=self.state, success=True)

        self._waiting += 1
        try:
            await self._lock.acquire()
        finally:
            self._waiting -= 1
        try:
            command_id = generate_command_id()
            token = set_command_id(command_id)
            try:
                self.logger.info(f"Processing command: {command!r}")
                self.machine.send(PROCESS_COMMAND, command=command, command_id=command_id)
                await self._run_attempt()
                return self._outcome()
            finally:
                reset_command_id(token)
        finally:
            self._lock.release()

    async def retry(self) -> CommandOutcome:
        """Re-run the failed command. Refused once ``max_attempts`` attempts failed."""
        async with self._lock:
            if self.state != S.ERROR:
                return CommandOutcome(
                    command=self.ctx.command or "",
                    command_id=self.ctx.command_id,
                    state=self.state,
                    success=False,
                    error="Nothing to retry",
                    message="Nothing to retry",
                )
            if not self.machine.can(RETRY_COMMAND):
                outcome = self._outcome()
                outcome.message = (
                    f"Retry limit reached after {self.ctx.failure_count} failed attempts"
                )
                return outcome

            attempt_id = generate_attempt_id(self.ctx.command_id, self.ctx.retry_count + 1)
            token = set_command_id(attempt_id)
            try:
                self.logger.info(f"Retrying command: {self.ctx.command!r}")
                self.machine.send(RETRY_COMMAND, command_id=attempt_id)
                await self._run_attempt()
                return self._outcome()
            finally:
                reset_command_id(token)

    def reset(self) -> None:
        """Abandon the current command and return to ``idle``."""
        self.machine.send(RESET)

    def close(self) -> None:
        """Detach from the health monitor. The processor is not used afterwards."""
        if self._unsubscribe_health is not None:
            self._unsubscribe_health()
            self._unsubscribe_health = None
        if self.state != S.IDLE:
            self.machine.send(RESET)

    async def _run_attempt(self) -> None:
        try:
            parsed = self.pattern_resolver.parse(self.ctx.command)
        except Exception as e:
            self.logger.exception("Command parsing failed")
            self.machine.send(EXECUTION_ERROR, error=ParseError(describe_error(e)))
            return
        self.machine.send(COMMAND_PARSED, parsed=parsed)
        self._dispatch(self.router.route(self.ctx))

        while True:
            state = self.state
            if state.is_executing:
                await self._execute(state)
            elif state == S.FALLBACK:
                self._dispatch(self.fallback.next_event(self.ctx))
            else:
                return

    def _dispatch(self, event: Event) -> None:
        if self.machine.send(event) is None:
            self.machine.send(EXECUTION_ERROR, error=ResolverUnavailableError(
                f"{event.type} is not permitted in state {self.machine.state}"
            ))

    async def _execute(self, state: ProcessingState) -> None:
        intent: Optional[Intent] = None
        try:
            if state == S.EXECUTING_BUILTIN:
                result = await self._run_builtin()
            else:
                intent = await self._resolve(state)
                result = await self.executor.execute(intent, self._command_context())
        except IrisError as e:
            self.logger.warning(f"{state.value} failed: {e.message}")
            self.machine.send(EXECUTION_ERROR, error=e)
            return
        except Exception as e:
            self.logger.exception(f"{state.value} failed unexpectedly")
            self.machine.send(EXECUTION_ERROR, error=ExecutionError(describe_error(e)))
            return

        self.machine.send(EXECUTION_SUCCESS, result=result, intent=intent)

    async def _run_builtin(self) -> CommandResult:
        command = self.builtins.match(self.ctx.command)
        return await command.execute(self._command_context())

    async def _resolve(self, state: ProcessingState) -> Intent:
        command = self.ctx.command
        if state == S.EXECUTING_DIRECT:
            intent = parse_direct_command(command)
        elif state == S.EXECUTING_NLP:
            intent = self._resolve_with_patterns()
            if intent.action == IntentAction.UNKNOWN and intent.response_text is None:
                return intent
        else:
            if self.remote_resolver is None:
                raise ResolverUnavailableError("Remote resolver is not configured")
            intent = await self.remote_resolver.resolve(
                command, self.user_id, self.timezone, self.context
            )

        if not self.ctx.recorded:
            self.context.record(command, intent.action, intent.params, intent.response_text)
            self.ctx.recorded = True
        return intent

    def _resolve_with_patterns(self) -> Intent:
        try:
            return self.pattern_resolver.resolve(
                self.ctx.command, self.ctx.parsed, now=self.clock.now(), tz_name=self.timezone
            )
        except ParseError as e:
            if can_fallback_to_llm(self.ctx, Event(EXECUTION_ERROR, {"error": e})):
                raise
            self.logger.info("Pattern resolver did not recognise command, no fallback left")
            return Intent(
                action=IntentAction.UNKNOWN,
                confidence=self.ctx.confidence,
                source_resolver=ResolverSource.PATTERN,
            )

    def _command_context(self) -> CommandContext:
        return CommandContext(
            user_input=self.ctx.command,
            user_id=self.user_id,
            timezone=self.timezone,
            now=self.clock.now(),
            host=self.host,
        )

    def _outcome(self) -> CommandOutcome:
        ctx = self.ctx
        state = self.state
        attempts = ctx.retry_count + 1

        if state == S.ERROR:
            message = describe_error(ctx.error) if ctx.error else "Command failed"
            return CommandOutcome(
                command=ctx.command or "",
                command_id=ctx.command_id,
                state=state,
                success=False,
                message=message,
                error=message,
                attempts=attempts,
                can_retry=can_retry(ctx),
            )

        result: Optional[CommandResult] = ctx.result
        intent: Optional[Intent] = ctx.intent
        resolver = intent.source_resolver if intent is not None else ResolverSource.BUILTIN
        if result is None:
            return CommandOutcome(command=ctx.command or "", command_id=ctx.command_id,
                                  state=state, success=True, resolver=resolver, attempts=attempts)
        return CommandOutcome(
            command=ctx.command or "",
            command_id=ctx.command_id,
            state=state,
            success=result.success,
            intent=intent,
            resolver=resolver,
            message=result.message,
            data=result.data,
            error=result.error,
            clarification=result.clarification,
            missing_fields=result.missing_fields,
            metadata=dict(result.metadata),
            attempts=attempts,
        )

    def _on_health(self, health: ResolverHealth) -> None:
        self._health = health
        self.ctx.llm_connected = health.connected

    def _signal(self, status: str) -> None:
        if self.indicator is None:
            return
        try:
            self.indicator(status)
        except Exception as e:
            self.logger.error(f"Activity indicator failed: {e}")
