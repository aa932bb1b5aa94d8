"""Formatter layer for presenting command outcomes in the terminal."""

from .base_formatter import BaseFormatter
from .cli_formatter import CLIFormatter, MessageType

__all__ = [
    "BaseFormatter",
    "CLIFormatter",
    "MessageType",
]
