"""Tests for the pattern resolver."""

import pytest
import random
from datetime import datetime, timezone

from iris_agent.errors import ParseError
from iris_agent.models import IntentAction, ResolverSource
from iris_agent.resolvers import PatternResolver, PatternType
from iris_agent.resolvers.pattern_resolver import GREETING_RESPONSES, booking_start

# A Wednesday
NOW = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def resolver():
    return PatternResolver(rng=random.Random(42))


class TestPatternClassification:
    """Test parse() classification and confidence."""

    @pytest.mark.parametrize("text,pattern_type,confidence", [
        ("hello", PatternType.GREETING, 0.9),
        ("Good morning", PatternType.GREETING, 0.9),
        ("show me all rooms", PatternType.ROOMS_QUERY, 0.8),
        ("list rooms", PatternType.ROOMS_QUERY, 0.8),
        ("show my bookings", PatternType.BOOKINGS_QUERY, 0.8),
        ("cancel all today", PatternType.CANCEL_ALL, 0.9),
        ("is skagen free", PatternType.AVAILABILITY_CHECK, 0.6),
        ("book skagen tomorrow", PatternType.BOOKING_CREATE, 0.4),
        ("what is the weather like", PatternType.UNKNOWN, 0.1),
    ])
    def test_classification(self, resolver, text, pattern_type, confidence):
        parsed = resolver.parse(text)
        assert parsed.type == pattern_type
        assert parsed.confidence == confidence
        assert not parsed.contextual

    @pytest.mark.parametrize("text", ["book it", "reserve that", "same time", "that room please", "it"])
    def test_contextual_references(self, resolver, text):
        """Test that references to earlier conversation are flagged."""
        parsed = resolver.parse(text)
        assert parsed.contextual
        assert parsed.type == PatternType.UNKNOWN
        assert parsed.confidence == 0.1

    def test_availability_entities(self, resolver):
        assert resolver.parse("is skagen free").entities == {"roomName": "skagen"}
        assert resolver.parse("check skagen availability").entities == {"roomName": "skagen"}

    def test_booking_entities(self, resolver):
        parsed = resolver.parse("book skagen tomorrow")
        assert parsed.entities == {"roomName": "skagen", "time": "tomorrow"}

    @pytest.mark.parametrize("text,filter_name", [
        ("cancel all bookings", "all"),
        ("cancel all today", "today"),
        ("cancel all tomorrow", "tomorrow"),
        ("cancel all this week", "week"),
    ])
    def test_cancel_all_filters(self, resolver, text, filter_name):
        assert resolver.parse(text).entities == {"filter": filter_name}

    def test_recognized(self, resolver):
        assert resolver.parse("list rooms").recognized
        assert not resolver.parse("gibberish words").recognized

    def test_custom_contextual_phrases(self):
        """Test that configured phrases replace the defaults."""
        resolver = PatternResolver([r"\bthe usual\b"])
        assert resolver.is_contextual("book the usual")
        assert not resolver.is_contextual("book it")


class TestPatternResolution:
    """Test resolve() turning classifications into intents."""

    def test_rooms_query(self, resolver):
        intent = resolver.resolve("list rooms")
        assert intent.action == IntentAction.GET_ROOMS
        assert intent.source_resolver == ResolverSource.PATTERN
        assert intent.confidence == 0.8

    def test_bookings_query(self, resolver):
        assert resolver.resolve("show my bookings").action == IntentAction.GET_BOOKINGS

    def test_cancel_all(self, resolver):
        intent = resolver.resolve("cancel all tomorrow")
        assert intent.action == IntentAction.BULK_CANCEL
        assert intent.params == {"filter": "tomorrow"}

    def test_availability(self, resolver):
        intent = resolver.resolve("is skagen free")
        assert intent.action == IntentAction.CHECK_AVAILABILITY
        assert intent.params == {"roomName": "skagen"}

    def test_booking(self, resolver):
        intent = resolver.resolve("book skagen tomorrow")
        assert intent.action == IntentAction.CREATE_BOOKING
        assert intent.params["roomName"] == "skagen"

    def test_greeting_has_canned_reply(self, resolver):
        intent = resolver.resolve("hello")
        assert intent.action == IntentAction.UNKNOWN
        assert intent.response_text in GREETING_RESPONSES

    def test_reuses_given_classification(self, resolver):
        parsed = resolver.parse("list rooms")
        intent = resolver.resolve("ignored text", parsed)
        assert intent.action == IntentAction.GET_ROOMS

    def test_unknown_raises(self, resolver):
        with pytest.raises(ParseError, match="not recognized") as exc_info:
            resolver.resolve("what is the weather like")
        assert exc_info.value.recoverable

    def test_contextual_raises(self, resolver):
        with pytest.raises(ParseError, match="earlier conversation"):
            resolver.resolve("book it")


class TestBookingSlots:
    """Test booking commands that name a day, a time and a duration."""

    def test_slot_entities(self, resolver):
        parsed = resolver.parse("book skagen tomorrow at 9:00 for 2 hours")
        assert parsed.type == PatternType.BOOKING_CREATE
        assert parsed.confidence == 0.4
        assert parsed.entities == {
            "roomName": "skagen", "day": "tomorrow", "hour": "9", "minute": "0", "duration": "120",
        }

    def test_slot_becomes_start_and_duration(self, resolver):
        intent = resolver.resolve("book skagen tomorrow at 9:00 for 2 hours", now=NOW)
        assert intent.action == IntentAction.CREATE_BOOKING
        assert intent.params == {
            "roomName": "skagen", "startTime": "2025-01-02T09:00:00Z", "duration": 120,
        }

    def test_start_is_local_to_operator(self, resolver):
        """Test that the clock time is read in the operator's timezone."""
        intent = resolver.resolve("reserve room aarhus hall today at 14:30", now=NOW,
                                  tz_name="Europe/Copenhagen")
        assert intent.params == {"roomName": "aarhus hall", "startTime": "2025-01-01T13:30:00Z"}

    @pytest.mark.parametrize("text,start,duration", [
        ("book skagen for tomorrow at 2pm for 30 minutes", "2025-01-02T14:00:00Z", 30),
        ("schedule skagen friday at 10 for 1 hour", "2025-01-03T10:00:00Z", 60),
        ("book skagen on Wednesday at 8:00", "2025-01-08T08:00:00Z", None),
        ("book skagen wednesday at 12:15 for 45 mins", "2025-01-01T12:15:00Z", 45),
    ])
    def test_day_and_time_forms(self, resolver, text, start, duration):
        params = resolver.resolve(text, now=NOW).params
        assert params["roomName"] == "skagen"
        assert params["startTime"] == start
        assert params.get("duration") == duration

    def test_impossible_time_falls_back_to_plain_booking(self, resolver):
        parsed = resolver.parse("book skagen tomorrow at 25:00")
        assert parsed.type == PatternType.BOOKING_CREATE
        assert parsed.entities == {"roomName": "skagen", "time": "tomorrow"}

    def test_booking_start_unknown_timezone_is_utc(self):
        start = booking_start("today", 16, 0, NOW, "Nowhere/Special")
        assert start.utcoffset().total_seconds() == 0
        assert start.hour == 16
