"""Utility helpers for IRIS Agent."""

from .command_context import (
    generate_command_id,
    generate_attempt_id,
    get_command_id,
    set_command_id,
    reset_command_id,
    format_command_id,
)
from .helpers import retry_on_failure, extract_error_message

__all__ = [
    'generate_command_id',
    'generate_attempt_id',
    'get_command_id',
    'set_command_id',
    'reset_command_id',
    'format_command_id',
    'retry_on_failure',
    'extract_error_message',
]
