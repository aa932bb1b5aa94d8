"""Table-driven state machine core shared by the processor and sessions."""

from .core import (
    Event,
    StateDefinition,
    Transition,
    TransitionRecord,
    MachineDefinition,
    StateMachine,
    select_transition,
)

__all__ = [
    'Event',
    'StateDefinition',
    'Transition',
    'TransitionRecord',
    'MachineDefinition',
    'StateMachine',
    'select_transition',
]
