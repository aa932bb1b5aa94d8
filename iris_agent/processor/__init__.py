"""Command processing: state machine, routing, fallback and the processor itself."""

from .machine import ProcessorContext, build_processor_definition
from .routing import CommandRouter, parse_direct_command
from .fallback import FallbackCoordinator
from .command_processor import CommandProcessor, LocalCommandHost

__all__ = [
    "ProcessorContext",
    "build_processor_definition",
    "CommandRouter",
    "parse_direct_command",
    "FallbackCoordinator",
    "CommandProcessor",
    "LocalCommandHost",
]
