"""Simple pattern resolver.

Fast, deterministic, offline classification of operator text using regular
expression templates. Every result carries a confidence score; only
unambiguous, fully specified commands score at or above the routing
threshold. Commands that refer back to earlier conversation ("book it",
"that room") are flagged as contextual so routing can hand them to the
remote resolver, which sees the conversation history.
"""

import logging
import random
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Pattern

from ..config import DEFAULT_CONTEXTUAL_PHRASES
from ..errors import ParseError
from ..models import Intent, IntentAction, ResolverSource
from ..utils.helpers import format_iso_datetime, resolve_timezone


class PatternType(str, Enum):
    GREETING = "greeting"
    ROOMS_QUERY = "rooms_query"
    BOOKINGS_QUERY = "bookings_query"
    AVAILABILITY_CHECK = "availability_check"
    BOOKING_CREATE = "booking_create"
    CANCEL_ALL = "cancel_all"
    UNKNOWN = "unknown"


GREETING_RESPONSES = [
    "Greetings. I am IRIS, your intelligent room interface system. How may I assist you with workspace allocation?",
    "Hello. All systems operational. What room booking operations do you require?",
    "IRIS online. Ready for room management queries.",
    "Query received. All systems nominal. State your requirements.",
]


def _compile(patterns: Iterable[str]) -> List[Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


GREETING_PATTERNS = _compile([
    r"\b(hello|hi|hey|greetings?|what'?s up|how are you|good (morning|afternoon|evening))\b",
    r"^(hello|hi|hey)[\s?]*$",
    r"^(what'?s up|how are you)[\s?]*$",
])

ROOMS_QUERY_PATTERNS = _compile([
    r"\b(show me all|list|what) rooms\b",
    r"\b(what rooms are|rooms) available\b",
    r"\bshow rooms\b",
    r"\blist rooms\b",
    r"\bshow all rooms\b",
    r"^rooms[\s?]*$",
])

BOOKINGS_QUERY_PATTERNS = _compile([
    r"\b(show|list|what are) (my )?bookings\b",
    r"\bmy bookings\b",
    r"\bshow bookings\b",
    r"\blist bookings\b",
    r"^bookings[\s?]*$",
])

CANCEL_ALL_PATTERNS = _compile([
    r"\bcancel all (bookings?|reservations?)\b",
    r"\bcancel all today\b",
    r"\bcancel all tomorrow\b",
    r"\bcancel all this week\b",
])

# Group 2 (or the only group) holds the room name
AVAILABILITY_PATTERNS = _compile([
    r"\b(when is|is) (.+?) (available|free)\b",
    r"\bcheck (.+?) availability\b",
    r"\b(.+?) availability\b",
    r"\bis (.+?) free\b",
])

BOOKING_PATTERNS = _compile([
    r"\b(book|reserve|schedule) (.+?) (tomorrow|today|at \d+|\d+:\d+)\b",
    r"\b(can I|I want to) (book|reserve) (.+?)(?:\s+(tomorrow|today|at \d+|\d+:\d+))?$",
    r"\b(book|reserve) (.+?) for \d+ (hour|minute|min)s?\b",
])

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

# "book skagen tomorrow at 9:00 for 2 hours"
BOOKING_SLOT_PATTERN = re.compile(
    r"\b(?:book|reserve|schedule)\s+(?:room\s+)?(?P<room>.+?)\s+(?:(?:on|for)\s+)?"
    r"(?P<day>today|tomorrow|" + "|".join(WEEKDAYS) + r")\s+at\s+"
    r"(?P<hour>\d{1,2})(?::(?P<minute>\d{2}))?(?:\s*(?P<meridiem>am|pm))?"
    r"(?:\s+for\s+(?P<amount>\d+)\s*(?P<unit>hour|hr|minute|min)s?)?\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ParsedIntent:
    """Classification of a command by the pattern resolver."""

    type: PatternType
    entities: Dict[str, str] = field(default_factory=dict)
    confidence: float = 0.1
    contextual: bool = False

    @property
    def recognized(self) -> bool:
        return self.type != PatternType.UNKNOWN


class PatternResolver:
    """Template-based intent classifier.

    Args:
        contextual_phrases: Regexes marking contextual references.
        rng: Random source for greeting replies.
    """

    def __init__(self, contextual_phrases: Optional[Iterable[str]] = None,
                 rng: Optional[random.Random] = None):
        phrases = DEFAULT_CONTEXTUAL_PHRASES if contextual_phrases is None else list(contextual_phrases)
        self.contextual_patterns = _compile(phrases)
        self.rng = rng or random.Random()
        self.logger = logging.getLogger(__name__)

    def is_contextual(self, text: str) -> bool:
        text = text.strip()
        return any(p.search(text) for p in self.contextual_patterns)

    def parse(self, text: str) -> ParsedIntent:
        """Classify ``text``. Never raises; unrecognised input scores 0.1."""
        text = text.strip()

        if self.is_contextual(text):
            return ParsedIntent(PatternType.UNKNOWN, confidence=0.1, contextual=True)

        if _any_match(GREETING_PATTERNS, text):
            return ParsedIntent(PatternType.GREETING, confidence=0.9)

        if _any_match(ROOMS_QUERY_PATTERNS, text):
            return ParsedIntent(PatternType.ROOMS_QUERY, confidence=0.8)

        if _any_match(BOOKINGS_QUERY_PATTERNS, text):
            return ParsedIntent(PatternType.BOOKINGS_QUERY, confidence=0.8)

        if _any_match(CANCEL_ALL_PATTERNS, text):
            return ParsedIntent(
                PatternType.CANCEL_ALL,
                entities={"filter": _cancel_filter(text)},
                confidence=0.9,
            )

        match = _first_match(AVAILABILITY_PATTERNS, text)
        if match:
            groups = match.groups()
            room = groups[1] if len(groups) > 1 and groups[1] else groups[0]
            return ParsedIntent(
                PatternType.AVAILABILITY_CHECK,
                entities=_clean({"roomName": room}),
                confidence=0.6,
            )

        slot = BOOKING_SLOT_PATTERN.search(text)
        entities = _slot_entities(slot) if slot else None
        if entities:
            return ParsedIntent(PatternType.BOOKING_CREATE, entities=_clean(entities), confidence=0.4)

        match = _first_match(BOOKING_PATTERNS, text)
        if match:
            groups = match.groups()
            if match.re is BOOKING_PATTERNS[1]:
                room, when = groups[2], groups[3]
            else:
                room = groups[1]
                when = groups[2] if match.re is BOOKING_PATTERNS[0] else None
            return ParsedIntent(
                PatternType.BOOKING_CREATE,
                entities=_clean({"roomName": room, "time": when}),
                confidence=0.4,
            )

        return ParsedIntent(PatternType.UNKNOWN, confidence=0.1)

    def resolve(self, text: str, parsed: Optional[ParsedIntent] = None,
                now: Optional[datetime] = None, tz_name: str = "UTC") -> Intent:
        """Turn a classification into an :class:`Intent`.

        A booking slot ("tomorrow at 9:00 for 2 hours") becomes ``startTime``
        and ``duration`` (minutes), with the start placed in ``tz_name``
        relative to ``now``.

        Raises:
            ParseError: if the command is unrecognised or contextual, which
                this resolver cannot interpret.
        """
        parsed = parsed or self.parse(text)
        if parsed.contextual:
            raise ParseError("Command refers to earlier conversation", context=text)
        if not parsed.recognized:
            raise ParseError("Command not recognized", context=text)

        entities: Dict[str, Any] = dict(parsed.entities)
        response = None
        if parsed.type == PatternType.GREETING:
            action = IntentAction.UNKNOWN
            response = self.rng.choice(GREETING_RESPONSES)
        elif parsed.type == PatternType.ROOMS_QUERY:
            action = IntentAction.GET_ROOMS
        elif parsed.type == PatternType.BOOKINGS_QUERY:
            action = IntentAction.GET_BOOKINGS
        elif parsed.type == PatternType.CANCEL_ALL:
            action = IntentAction.BULK_CANCEL
        elif parsed.type == PatternType.AVAILABILITY_CHECK:
            action = IntentAction.CHECK_AVAILABILITY
        else:
            action = IntentAction.CREATE_BOOKING
            if "day" in entities:
                start = booking_start(
                    entities.pop("day"), int(entities.pop("hour")), int(entities.pop("minute")),
                    now or datetime.now(timezone.utc), tz_name,
                )
                entities["startTime"] = format_iso_datetime(start)
                if "duration" in entities:
                    entities["duration"] = int(entities["duration"])

        return Intent(
            action=action,
            params=entities,
            confidence=parsed.confidence,
            source_resolver=ResolverSource.PATTERN,
            response_text=response,
        )


def _any_match(patterns: List[Pattern], text: str) -> bool:
    return any(p.search(text) for p in patterns)


def _first_match(patterns: List[Pattern], text: str):
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match
    return None


def _clean(entities: Dict[str, Optional[str]]) -> Dict[str, str]:
    return {k: v.strip() for k, v in entities.items() if v and v.strip()}


def _cancel_filter(text: str) -> str:
    lowered = text.lower()
    if "today" in lowered:
        return "today"
    if "tomorrow" in lowered:
        return "tomorrow"
    if "week" in lowered:
        return "week"
    return "all"


def _slot_entities(match) -> Optional[Dict[str, Optional[str]]]:
    """Entities of a booking slot match, or None if the clock time is impossible."""
    hour = int(match.group("hour"))
    minute = int(match.group("minute") or 0)
    meridiem = (match.group("meridiem") or "").lower()
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        hour = hour % 12 + (12 if meridiem == "pm" else 0)
    if hour > 23 or minute > 59:
        return None

    duration = None
    if match.group("amount"):
        amount = int(match.group("amount"))
        duration = str(amount * 60 if match.group("unit").lower().startswith("h") else amount)
    return {
        "roomName": match.group("room"),
        "day": match.group("day").lower(),
        "hour": str(hour),
        "minute": str(minute),
        "duration": duration,
    }


def booking_start(day: str, hour: int, minute: int, now: datetime,
                  tz_name: str = "UTC") -> datetime:
    """Aware start of a slot named by a day word and a local clock time.

    A weekday means its next occurrence; today's weekday counts only while
    the time is still ahead.
    """
    tz = resolve_timezone(tz_name)
    local_now = now.astimezone(tz)
    date = local_now.date()
    if day == "tomorrow":
        date += timedelta(days=1)
    elif day in WEEKDAYS:
        date += timedelta(days=(WEEKDAYS.index(day) - date.weekday()) % 7)

    start = datetime(date.year, date.month, date.day, hour, minute, tzinfo=tz)
    if day in WEEKDAYS and start <= local_now:
        start += timedelta(days=7)
    return start
