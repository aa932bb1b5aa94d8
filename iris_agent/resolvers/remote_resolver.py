"""Remote intent resolver.

Sends a command, the operator's identity and timezone, and the last few
context entries to an :class:`~iris_agent.llm_client.IntentBackend` and turns
the reply into an :class:`~iris_agent.models.Intent`. Every failure (timeout,
transport error, malformed reply) is normalised into
:class:`~iris_agent.errors.ResolverUnavailableError` so the command processor
can decide on a fallback.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from ..errors import ResolverUnavailableError, describe_error
from ..llm_client import IntentBackend
from ..models import ContextEntry, Intent, ResolverSource
from ..services.context_store import UserContext


class RemoteResolver:
    """Resolves commands through a remote intent backend.

    Args:
        backend: Backend that produces raw intent payloads.
        timeout: Seconds to wait for the backend before giving up.
        history_window: How many recent context entries to send along.
    """

    def __init__(self, backend: IntentBackend, timeout: float = 12.0, history_window: int = 3):
        self.backend = backend
        self.timeout = timeout
        self.history_window = history_window
        self.logger = logging.getLogger(__name__)

    async def resolve(self, command: str, user_id: str, tz_name: str,
                      context: Optional[UserContext] = None) -> Intent:
        """Resolve ``command`` into an intent.

        Raises:
            ResolverUnavailableError: on timeout, transport failure or a reply
                that is not an intent payload.
        """
        history: List[ContextEntry] = context.recent(self.history_window) if context else []
        self.logger.debug(f"Remote resolve with {len(history)} history entries")

        try:
            payload = await asyncio.wait_for(
                self.backend.parse(command, user_id, tz_name, history),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise ResolverUnavailableError(
                f"Intent parser did not answer within {self.timeout:g}s", context=command
            )
        except Exception as e:
            raise ResolverUnavailableError(
                f"Intent parser unavailable: {describe_error(e)}", context=command
            ) from e

        self._check_payload(payload, command)
        intent = Intent.from_payload(payload, ResolverSource.REMOTE)
        self.logger.info(f"Remote resolver: {intent.action.value} {intent.params}")
        return intent

    @staticmethod
    def _check_payload(payload: Any, command: str) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            raise ResolverUnavailableError("Intent parser returned a non-object reply", context=command)
        if not isinstance(payload.get("action"), str):
            raise ResolverUnavailableError("Intent parser reply has no action", context=command)
        return payload
