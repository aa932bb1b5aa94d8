"""Fallback coordination between resolvers.

Runs when the processor enters ``fallback``: re-checks which alternate
resolver is enabled, healthy and not yet tried for this attempt, and emits
the event that runs it. When none qualifies the attempt fails.
"""

import logging
from typing import Optional

from ..errors import ResolverUnavailableError
from ..models import ResolverSource
from ..statemachine import Event
from .machine import (
    EXECUTE_LLM,
    EXECUTE_NLP,
    EXECUTION_ERROR,
    ProcessorContext,
    can_use_llm,
    can_use_nlp,
)


class FallbackCoordinator:
    """Picks the next resolver in the fallback cascade."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def next_resolver(self, ctx: ProcessorContext) -> Optional[ResolverSource]:
        if can_use_llm(ctx):
            return ResolverSource.REMOTE
        if can_use_nlp(ctx):
            return ResolverSource.PATTERN
        return None

    def next_event(self, ctx: ProcessorContext) -> Event:
        resolver = self.next_resolver(ctx)
        if resolver == ResolverSource.REMOTE:
            self.logger.info(f"Falling back to remote resolver after: {ctx.error}")
            return Event(EXECUTE_LLM)
        if resolver == ResolverSource.PATTERN:
            self.logger.info(f"Falling back to pattern resolver after: {ctx.error}")
            return Event(EXECUTE_NLP)

        error = ctx.error or ResolverUnavailableError("No resolver left to try")
        self.logger.warning(f"Fallback exhausted: {error}")
        return Event(EXECUTION_ERROR, {"error": error})
