"""Conversation context store.

Keeps a short, time-limited memory of resolved intents per user so that
elliptical follow-ups ("book it", "that room") can be resolved by the remote
intent parser. Each user's history is a bounded FIFO: appending past the
limit evicts the oldest entry, and entries older than the TTL are dropped
by a periodic sweep and filtered out lazily on read.

All operations are synchronous and run on the session's event loop, so no
locking is needed. Entries are immutable once stored.
"""

import json
import logging
from collections import deque
from datetime import timedelta
from typing import Any, Deque, Dict, Iterable, List, Optional

from ..models import ContextEntry, IntentAction
from .scheduler import Clock, ScheduledTask, Scheduler, SystemClock


class ConversationContextStore:
    """Per-user bounded, expiring history of :class:`ContextEntry` records."""

    def __init__(self, max_entries: int = 10, ttl: timedelta = timedelta(minutes=30),
                 clock: Optional[Clock] = None):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.ttl = ttl
        self.clock = clock or SystemClock()
        self.logger = logging.getLogger(__name__)
        self._histories: Dict[str, Deque[ContextEntry]] = {}

    def append(self, user_id: str, entry: ContextEntry) -> None:
        """Push ``entry`` to the tail of the user's history, evicting the oldest if full."""
        history = self._histories.get(user_id)
        if history is None:
            history = deque(maxlen=self.max_entries)
            self._histories[user_id] = history
        if len(history) == self.max_entries:
            self.logger.debug(f"Context for {user_id} full, evicting oldest entry")
        history.append(entry.model_copy(deep=True))

    def record(self, user_id: str, command: str, action: IntentAction,
               params: Optional[Dict[str, Any]] = None,
               response: Optional[str] = None) -> ContextEntry:
        """Create an entry stamped with the store clock and append it."""
        entry = ContextEntry(
            timestamp=self.clock.now(),
            command=command,
            action=action,
            params=dict(params or {}),
            response=response,
        )
        self.append(user_id, entry)
        return entry

    def recent(self, user_id: str, n: int) -> List[ContextEntry]:
        """Copies of the last ``n`` live entries, oldest first."""
        if n <= 0:
            return []
        live = self._live(user_id)
        return [e.model_copy(deep=True) for e in live[-n:]]

    def last(self, user_id: str) -> Optional[ContextEntry]:
        live = self._live(user_id)
        return live[-1].model_copy(deep=True) if live else None

    def size(self, user_id: str) -> int:
        return len(self._histories.get(user_id, ()))

    def users(self) -> List[str]:
        return sorted(self._histories)

    def clear(self, user_id: str) -> None:
        self._histories.pop(user_id, None)

    def sweep(self) -> int:
        """Remove expired entries for every user. Returns how many were removed."""
        now = self.clock.now()
        removed = 0
        for user_id in list(self._histories):
            history = self._histories[user_id]
            kept = [e for e in history if not self._expired(e, now)]
            removed += len(history) - len(kept)
            if kept:
                self._histories[user_id] = deque(kept, maxlen=self.max_entries)
            else:
                del self._histories[user_id]
        if removed:
            self.logger.info(f"Swept {removed} expired context entries")
        return removed

    def start_sweeping(self, scheduler: Scheduler,
                       interval: timedelta = timedelta(minutes=15)) -> ScheduledTask:
        return scheduler.call_every("context-sweep", interval.total_seconds(), self.sweep)

    def for_user(self, user_id: str) -> "UserContext":
        return UserContext(self, user_id)

    @staticmethod
    def summarize(entries: Iterable[ContextEntry]) -> str:
        """Compact one-line-per-entry summary for the intent parser prompt."""
        lines = []
        for entry in entries:
            line = f'- User: "{entry.command}" -> Action: {entry.action.value}'
            if entry.params:
                line += f" | Params: {json.dumps(entry.params, sort_keys=True, default=str)}"
            lines.append(line)
        return "\n".join(lines)

    def _live(self, user_id: str) -> List[ContextEntry]:
        now = self.clock.now()
        return [e for e in self._histories.get(user_id, ()) if not self._expired(e, now)]

    def _expired(self, entry: ContextEntry, now) -> bool:
        return now - entry.timestamp > self.ttl


class UserContext:
    """View of the store restricted to one user.

    Handed to a session's command processor so it can never read or write
    another user's history.
    """

    def __init__(self, store: ConversationContextStore, user_id: str):
        self._store = store
        self.user_id = user_id

    def record(self, command: str, action: IntentAction,
               params: Optional[Dict[str, Any]] = None,
               response: Optional[str] = None) -> ContextEntry:
        return self._store.record(self.user_id, command, action, params, response)

    def recent(self, n: int) -> List[ContextEntry]:
        return self._store.recent(self.user_id, n)

    def last(self) -> Optional[ContextEntry]:
        return self._store.last(self.user_id)

    def size(self) -> int:
        return self._store.size(self.user_id)

    def clear(self) -> None:
        self._store.clear(self.user_id)
