"""Routing decision for a parsed command.

Given the processor context after parsing, pick the event that moves the
machine out of ``routing``: a built-in, a direct API command, the pattern
resolver or the remote resolver. The choice uses the same guard functions
as the transition table, plus the last known remote resolver health.
"""

import logging
from typing import Optional

from ..commands.builtin import CommandRegistry
from ..errors import ResolverUnavailableError
from ..models import Intent, IntentAction, ResolverSource
from ..statemachine import Event
from .machine import (
    EXECUTE_BUILTIN,
    EXECUTE_DIRECT_API,
    EXECUTE_LLM,
    EXECUTE_NLP,
    EXECUTION_ERROR,
    FALLBACK_TO_NLP,
    ProcessorContext,
    should_use_llm,
    should_use_nlp,
)

DIRECT_COMMANDS = {
    "rooms": IntentAction.GET_ROOMS,
    "bookings": IntentAction.GET_BOOKINGS,
    "list": IntentAction.GET_BOOKINGS,
}


def parse_direct_command(text: str) -> Optional[Intent]:
    """Intent for a direct API command (``rooms``, ``bookings``, ``list``,
    ``cancel <id>``), or None if ``text`` is not one."""
    words = (text or "").strip().split()
    if not words:
        return None
    head = words[0].lower()

    if len(words) == 1 and head in DIRECT_COMMANDS:
        return Intent(action=DIRECT_COMMANDS[head], confidence=1.0,
                      source_resolver=ResolverSource.DIRECT)

    if head == "cancel" and len(words) <= 2:
        if len(words) == 2 and words[1].lower() == "all":
            return None
        params = {"bookingId": words[1]} if len(words) == 2 else {}
        return Intent(action=IntentAction.CANCEL_BOOKING, params=params, confidence=1.0,
                      source_resolver=ResolverSource.DIRECT)

    return None


class CommandRouter:
    """Chooses the execution path for a command."""

    def __init__(self, builtins: CommandRegistry):
        self.builtins = builtins
        self.logger = logging.getLogger(__name__)

    def route(self, ctx: ProcessorContext) -> Event:
        command = ctx.command or ""

        if self.builtins.match(command) is not None:
            return Event(EXECUTE_BUILTIN)

        if parse_direct_command(command) is not None:
            return Event(EXECUTE_DIRECT_API)

        if should_use_nlp(ctx):
            return Event(EXECUTE_NLP)

        if should_use_llm(ctx):
            if ctx.llm_connected or not ctx.settings.use_simple_nlp:
                return Event(EXECUTE_LLM)
            self.logger.info("Remote resolver disconnected, using pattern resolver")
            return Event(FALLBACK_TO_NLP)

        if ctx.settings.use_simple_nlp:
            # Low confidence and the remote resolver is switched off
            return Event(FALLBACK_TO_NLP)

        return Event(EXECUTION_ERROR, {"error": ResolverUnavailableError("No resolver is enabled")})
