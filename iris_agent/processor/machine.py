"""Command processor state machine: context, guards and transition table.

The table below is the complete behaviour of one command attempt::

    idle      --PROCESS_COMMAND-->            parsing
    parsing   --COMMAND_PARSED-->             routing
    routing   --EXECUTE_BUILTIN-->            executing_builtin
    routing   --EXECUTE_DIRECT_API-->         executing_direct
    routing   --EXECUTE_NLP [shouldUseNLP]--> executing_nlp
    routing   --EXECUTE_LLM [shouldUseLLM]--> executing_llm
    routing   --FALLBACK_TO_NLP [canUseNLP]-> executing_nlp
    executing_nlp --EXECUTION_ERROR [canFallbackToLLM]--> fallback
    executing_llm --EXECUTION_ERROR [canFallbackToNLP]--> fallback
    fallback  --EXECUTE_NLP|EXECUTE_LLM-->    executing_*
    executing_* --EXECUTION_SUCCESS-->        idle
    *         --EXECUTION_ERROR-->            error
    error     --RETRY_COMMAND [canRetry]-->   parsing

Guards only read the machine context and the event payload.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Set

from ..errors import IrisError
from ..models import ProcessingState, ResolverSettings, ResolverSource
from ..statemachine import Event, MachineDefinition, StateDefinition, Transition

S = ProcessingState

PROCESS_COMMAND = "PROCESS_COMMAND"
COMMAND_PARSED = "COMMAND_PARSED"
EXECUTE_BUILTIN = "EXECUTE_BUILTIN"
EXECUTE_DIRECT_API = "EXECUTE_DIRECT_API"
EXECUTE_NLP = "EXECUTE_NLP"
EXECUTE_LLM = "EXECUTE_LLM"
FALLBACK_TO_NLP = "FALLBACK_TO_NLP"
EXECUTION_SUCCESS = "EXECUTION_SUCCESS"
EXECUTION_ERROR = "EXECUTION_ERROR"
RETRY_COMMAND = "RETRY_COMMAND"
RESET = "RESET"


@dataclass
class ProcessorContext:
    """Mutable state owned by one command processor machine."""

    settings: ResolverSettings = field(default_factory=ResolverSettings)
    llm_connected: bool = False
    confidence_threshold: float = 0.8
    max_attempts: int = 3

    command: Optional[str] = None
    command_id: Optional[str] = None
    parsed: Any = None
    intent: Any = None
    result: Any = None
    error: Optional[IrisError] = None
    failure_count: int = 0
    retry_count: int = 0
    tried: Set[ResolverSource] = field(default_factory=set)
    # Set once the command has a context entry; retries do not add another
    recorded: bool = False

    @property
    def confidence(self) -> float:
        return getattr(self.parsed, "confidence", 0.0) if self.parsed is not None else 0.0

    @property
    def contextual(self) -> bool:
        return bool(getattr(self.parsed, "contextual", False))


# Guards

def should_use_nlp(ctx: ProcessorContext, event: Optional[Event] = None) -> bool:
    return (
        ctx.settings.use_simple_nlp
        and ctx.confidence >= ctx.confidence_threshold
        and not ctx.contextual
    )


def should_use_llm(ctx: ProcessorContext, event: Optional[Event] = None) -> bool:
    return ctx.settings.use_llm and (
        ctx.confidence < ctx.confidence_threshold
        or ctx.contextual
        or not ctx.settings.use_simple_nlp
    )


def can_use_nlp(ctx: ProcessorContext, event: Optional[Event] = None) -> bool:
    return ctx.settings.use_simple_nlp and ResolverSource.PATTERN not in ctx.tried


def can_use_llm(ctx: ProcessorContext, event: Optional[Event] = None) -> bool:
    return ctx.settings.use_llm and ctx.llm_connected and ResolverSource.REMOTE not in ctx.tried


def _recoverable(event: Optional[Event]) -> bool:
    error = event.get("error") if event is not None else None
    return isinstance(error, IrisError) and error.recoverable


def can_fallback_to_llm(ctx: ProcessorContext, event: Optional[Event] = None) -> bool:
    return _recoverable(event) and can_use_llm(ctx)


def can_fallback_to_nlp(ctx: ProcessorContext, event: Optional[Event] = None) -> bool:
    return _recoverable(event) and can_use_nlp(ctx)


def can_retry(ctx: ProcessorContext, event: Optional[Event] = None) -> bool:
    return ctx.command is not None and ctx.failure_count < ctx.max_attempts


GUARDS = {
    "shouldUseNLP": should_use_nlp,
    "shouldUseLLM": should_use_llm,
    "canUseNLP": can_use_nlp,
    "canUseLLM": can_use_llm,
    "canFallbackToLLM": can_fallback_to_llm,
    "canFallbackToNLP": can_fallback_to_nlp,
    "canRetry": can_retry,
}


EXECUTING = (S.EXECUTING_BUILTIN, S.EXECUTING_DIRECT, S.EXECUTING_NLP, S.EXECUTING_LLM)


def _t(source, event, target, guard=None, actions=()):
    return Transition(
        source=source.value if isinstance(source, S) else source,
        event=event,
        target=target.value if isinstance(target, S) else target,
        guard=guard,
        actions=tuple(actions),
    )


def _build_transitions():
    rows = [
        _t(S.IDLE, PROCESS_COMMAND, S.PARSING, actions=["startCommand"]),
        _t(S.ERROR, PROCESS_COMMAND, S.PARSING, actions=["startCommand"]),
        _t(S.PARSING, COMMAND_PARSED, S.ROUTING, actions=["assignParsed"]),

        _t(S.ROUTING, EXECUTE_BUILTIN, S.EXECUTING_BUILTIN),
        _t(S.ROUTING, EXECUTE_DIRECT_API, S.EXECUTING_DIRECT),
        _t(S.ROUTING, EXECUTE_NLP, S.EXECUTING_NLP, guard="shouldUseNLP"),
        _t(S.ROUTING, EXECUTE_LLM, S.EXECUTING_LLM, guard="shouldUseLLM"),
        _t(S.ROUTING, FALLBACK_TO_NLP, S.EXECUTING_NLP, guard="canUseNLP"),

        _t(S.EXECUTING_NLP, EXECUTION_ERROR, S.FALLBACK, guard="canFallbackToLLM", actions=["assignError"]),
        _t(S.EXECUTING_LLM, EXECUTION_ERROR, S.FALLBACK, guard="canFallbackToNLP", actions=["assignError"]),

        _t(S.FALLBACK, EXECUTE_NLP, S.EXECUTING_NLP, guard="canUseNLP"),
        _t(S.FALLBACK, EXECUTE_LLM, S.EXECUTING_LLM, guard="canUseLLM"),

        _t(S.ERROR, RETRY_COMMAND, S.PARSING, guard="canRetry", actions=["startRetry"]),
        _t("*", RESET, S.IDLE, actions=["clearCommand"]),
    ]
    for state in EXECUTING:
        rows.append(_t(state, EXECUTION_SUCCESS, S.IDLE, actions=["assignResult"]))
    # No fallback guard passed: the attempt fails
    for state in (S.PARSING, S.ROUTING, S.FALLBACK) + EXECUTING:
        rows.append(_t(state, EXECUTION_ERROR, S.ERROR, actions=["assignError", "countFailure"]))
    return rows


STATES = [
    StateDefinition(S.IDLE.value, entry=("clearIndicator",)),
    StateDefinition(S.PARSING.value, entry=("signalThinking",)),
    StateDefinition(S.ROUTING.value),
    StateDefinition(S.EXECUTING_BUILTIN.value, entry=("signalThinking",)),
    StateDefinition(S.EXECUTING_DIRECT.value, entry=("signalThinking",)),
    StateDefinition(S.EXECUTING_NLP.value, entry=("signalThinking", "markPatternTried")),
    StateDefinition(S.EXECUTING_LLM.value, entry=("signalThinking", "markRemoteTried")),
    StateDefinition(S.FALLBACK.value),
    StateDefinition(S.ERROR.value, entry=("signalError",)),
]


def build_processor_definition(machine_id: str = "command-processor") -> MachineDefinition:
    return MachineDefinition(machine_id, S.IDLE.value, STATES, _build_transitions())


# Context actions

def start_command(ctx: ProcessorContext, event: Event) -> None:
    ctx.command = event.get("command")
    ctx.command_id = event.get("command_id")
    ctx.parsed = None
    ctx.intent = None
    ctx.result = None
    ctx.error = None
    ctx.failure_count = 0
    ctx.retry_count = 0
    ctx.tried = set()
    ctx.recorded = False


def start_retry(ctx: ProcessorContext, event: Event) -> None:
    ctx.retry_count += 1
    ctx.command_id = event.get("command_id", ctx.command_id)
    ctx.parsed = None
    ctx.intent = None
    ctx.result = None
    ctx.error = None
    ctx.tried = set()


def assign_parsed(ctx: ProcessorContext, event: Event) -> None:
    ctx.parsed = event.get("parsed")


def assign_result(ctx: ProcessorContext, event: Event) -> None:
    ctx.result = event.get("result")
    ctx.intent = event.get("intent", ctx.intent)
    ctx.error = None
    ctx.failure_count = 0


def assign_error(ctx: ProcessorContext, event: Event) -> None:
    ctx.error = event.get("error")


def count_failure(ctx: ProcessorContext, event: Event) -> None:
    ctx.failure_count += 1


def clear_command(ctx: ProcessorContext, event: Event) -> None:
    start_command(ctx, Event(RESET))


def mark_pattern_tried(ctx: ProcessorContext, event: Event) -> None:
    ctx.tried.add(ResolverSource.PATTERN)


def mark_remote_tried(ctx: ProcessorContext, event: Event) -> None:
    ctx.tried.add(ResolverSource.REMOTE)


CONTEXT_ACTIONS = {
    "startCommand": start_command,
    "startRetry": start_retry,
    "assignParsed": assign_parsed,
    "assignResult": assign_result,
    "assignError": assign_error,
    "countFailure": count_failure,
    "clearCommand": clear_command,
    "markPatternTried": mark_pattern_tried,
    "markRemoteTried": mark_remote_tried,
}
