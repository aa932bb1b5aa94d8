"""Command dispatch: built-in commands and intent execution."""

from .base import BaseCommand, CommandContext, CommandResult, CommandHost
from .builtin import CommandRegistry, create_builtin_registry
from .executor import IntentExecutor

__all__ = [
    "BaseCommand",
    "CommandContext",
    "CommandResult",
    "CommandHost",
    "CommandRegistry",
    "create_builtin_registry",
    "IntentExecutor",
]
