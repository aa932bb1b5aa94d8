"""Table-driven finite state machines.

A machine is described by a :class:`MachineDefinition`: a list of states with
entry/exit action names and a transition table of
``(source, event) -> target [guard] / actions`` rows. Selecting the row for an
event is a pure function of the table, the current state, the context and the
guard functions (:func:`select_transition`). :class:`StateMachine` interprets
a definition: it owns the mutable context, runs the named actions, keeps an
audit trail of transitions and notifies typed listeners.

Source patterns in the table:
  - ``"idle"``           exact state
  - ``"authenticated.*"`` any substate of a compound state
  - ``"*"``              any state
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional, Tuple

from ..errors import InvalidTransitionError
from ..logging_utils import log_transition


@dataclass(frozen=True)
class Event:
    """An event sent to a machine, with an optional payload."""

    type: str
    payload: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)


@dataclass(frozen=True)
class StateDefinition:
    name: str
    entry: Tuple[str, ...] = ()
    exit: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Transition:
    """One row of the transition table.

    A ``target`` of None is an internal transition: actions run but the
    machine stays where it is and no entry/exit actions fire.
    """

    source: str
    event: str
    target: Optional[str]
    guard: Optional[str] = None
    actions: Tuple[str, ...] = ()

    def matches_source(self, state: str) -> bool:
        if self.source == "*":
            return True
        if self.source.endswith(".*"):
            prefix = self.source[:-2]
            return state == prefix or state.startswith(prefix + ".")
        return self.source == state


@dataclass(frozen=True)
class TransitionRecord:
    """Audit record of a transition that happened."""

    machine_id: str
    source: str
    target: str
    event: str
    guard: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def internal(self) -> bool:
        return self.source == self.target


Guard = Callable[[Any, Event], bool]
Action = Callable[[Any, Event], None]
TransitionListener = Callable[[TransitionRecord], None]


class MachineDefinition:
    """Immutable description of a state machine."""

    def __init__(self, machine_id: str, initial: str,
                 states: Iterable[StateDefinition], transitions: Iterable[Transition]):
        self.machine_id = machine_id
        self.initial = initial
        self.states: Dict[str, StateDefinition] = {s.name: s for s in states}
        self.transitions: Tuple[Transition, ...] = tuple(transitions)

        if initial not in self.states:
            raise ValueError(f"{machine_id}: unknown initial state {initial}")
        for t in self.transitions:
            if t.target is not None and t.target not in self.states:
                raise ValueError(f"{machine_id}: transition to unknown state {t.target}")
            if t.source not in self.states and t.source != "*" and not t.source.endswith(".*"):
                raise ValueError(f"{machine_id}: transition from unknown state {t.source}")

    def candidates(self, state: str, event_type: str) -> List[Transition]:
        """Rows for ``event_type`` applicable in ``state``, in table order."""
        return [t for t in self.transitions
                if t.event == event_type and t.matches_source(state)]

    def events_for(self, state: str) -> List[str]:
        seen: List[str] = []
        for t in self.transitions:
            if t.matches_source(state) and t.event not in seen:
                seen.append(t.event)
        return seen

    def guard_names(self) -> List[str]:
        return sorted({t.guard for t in self.transitions if t.guard})

    def action_names(self) -> List[str]:
        names = set()
        for t in self.transitions:
            names.update(t.actions)
        for s in self.states.values():
            names.update(s.entry)
            names.update(s.exit)
        return sorted(names)


def select_transition(definition: MachineDefinition, state: str, event: Event,
                      context: Any, guards: Mapping[str, Guard]) -> Optional[Transition]:
    """Pick the first row whose source matches and whose guard passes.

    Pure: reads the context, never mutates it.
    """
    for candidate in definition.candidates(state, event.type):
        if candidate.guard is None:
            return candidate
        guard = guards[candidate.guard]
        if guard(context, event):
            return candidate
    return None


class StateMachine:
    """Interpreter for a :class:`MachineDefinition`."""

    def __init__(self, definition: MachineDefinition, context: Any,
                 guards: Optional[Mapping[str, Guard]] = None,
                 actions: Optional[Mapping[str, Action]] = None,
                 strict: bool = False, history_limit: int = 200):
        self.definition = definition
        self.context = context
        self.guards: Dict[str, Guard] = dict(guards or {})
        self.actions: Dict[str, Action] = dict(actions or {})
        self.strict = strict
        self.logger = logging.getLogger(__name__)
        self._state = definition.initial
        self._listeners: List[TransitionListener] = []
        self._history: Deque[TransitionRecord] = deque(maxlen=history_limit)

        missing_guards = [g for g in definition.guard_names() if g not in self.guards]
        if missing_guards:
            raise ValueError(f"{definition.machine_id}: missing guards {missing_guards}")
        missing_actions = [a for a in definition.action_names() if a not in self.actions]
        if missing_actions:
            raise ValueError(f"{definition.machine_id}: missing actions {missing_actions}")

        self._run_actions(definition.states[self._state].entry, Event("__init__"))

    @property
    def state(self) -> str:
        return self._state

    @property
    def history(self) -> List[TransitionRecord]:
        return list(self._history)

    def matches(self, pattern: str) -> bool:
        """Whether the current state matches a source pattern."""
        return Transition(pattern, "", None).matches_source(self._state)

    def can(self, event_type: str, **payload) -> bool:
        """Whether ``event_type`` would currently cause a transition."""
        event = Event(event_type, payload)
        return select_transition(self.definition, self._state, event,
                                 self.context, self.guards) is not None

    def add_listener(self, listener: TransitionListener) -> Callable[[], None]:
        """Register a transition listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def send(self, event_or_type, **payload) -> Optional[TransitionRecord]:
        """Deliver an event. Returns the transition record, or None if ignored."""
        event = event_or_type if isinstance(event_or_type, Event) else Event(event_or_type, payload)
        source = self._state
        transition = select_transition(self.definition, source, event, self.context, self.guards)

        if transition is None:
            if self.strict:
                raise InvalidTransitionError(self.definition.machine_id, source, event.type)
            self.logger.debug(f"[{self.definition.machine_id}] {event.type} ignored in {source}")
            return None

        if transition.target is None:
            self._run_actions(transition.actions, event)
            target = source
        else:
            target = transition.target
            self._run_actions(self.definition.states[source].exit, event)
            self._run_actions(transition.actions, event)
            self._state = target
            self._run_actions(self.definition.states[target].entry, event)

        record = TransitionRecord(
            machine_id=self.definition.machine_id,
            source=source,
            target=target,
            event=event.type,
            guard=transition.guard,
        )
        self._history.append(record)
        log_transition(self.logger, self.definition.machine_id, source, target, event.type)
        self._notify(record)
        return record

    def reset(self, context: Any = None) -> None:
        """Return to the initial state without running exit actions."""
        if context is not None:
            self.context = context
        self._state = self.definition.initial
        self._run_actions(self.definition.states[self._state].entry, Event("__reset__"))

    def _run_actions(self, names: Iterable[str], event: Event) -> None:
        for name in names:
            self.actions[name](self.context, event)

    def _notify(self, record: TransitionRecord) -> None:
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception as e:
                self.logger.error(f"Transition listener failed on {record.event}: {e}")
