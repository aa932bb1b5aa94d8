"""Tests for the command processor."""

import pytest
import asyncio
from unittest.mock import AsyncMock, Mock

from iris_agent.commands.executor import NOT_RECOGNIZED, IntentExecutor
from iris_agent.errors import BookingAPIError, SettingsInvariantError
from iris_agent.models import (
    IntentAction,
    ProcessingState,
    ResolverSettings,
    ResolverSource,
)
from iris_agent.processor import CommandProcessor
from iris_agent.processor.machine import EXECUTION_SUCCESS, PROCESS_COMMAND
from iris_agent.resolvers import RemoteResolver
from iris_agent.services import ConversationContextStore, HealthMonitor, ManualClock

BOTH = ResolverSettings(use_simple_nlp=True, use_llm=True)
LLM_ONLY = ResolverSettings(use_simple_nlp=False, use_llm=True)
NLP_ONLY = ResolverSettings(use_simple_nlp=True, use_llm=False)


async def make_processor(client, settings=BOTH, responses=None, connected=True, **kwargs):
    """Build a processor wired to a mocked intent backend.

    ``responses`` becomes the backend's side effect: a list of payloads or
    exceptions, a single exception, or a coroutine function.
    """
    clock = ManualClock()
    probe = AsyncMock(return_value={"status": "ok" if connected else "down"})
    monitor = HealthMonitor(probe, clock=clock)
    await monitor.check()

    backend = Mock()
    backend.parse = AsyncMock(return_value={"action": "unknown"})
    if responses is not None:
        backend.parse.side_effect = responses

    store = ConversationContextStore(clock=clock)
    processor = CommandProcessor(
        user_id="user-1",
        executor=IntentExecutor(client),
        context=store.for_user("user-1"),
        remote_resolver=RemoteResolver(backend, timeout=1.0),
        health_monitor=monitor,
        settings=settings,
        clock=clock,
        **kwargs,
    )
    return processor, backend, monitor


class TestDirectAndBuiltinCommands:
    """Test commands that bypass the resolvers."""

    @pytest.mark.asyncio
    async def test_direct_rooms(self, mock_client, sample_rooms):
        """Test a direct command end to end, including the context entry it leaves."""
        processor, backend, _ = await make_processor(mock_client)

        outcome = await processor.submit("rooms")

        assert outcome.success
        assert outcome.state == ProcessingState.IDLE
        assert outcome.resolver == ResolverSource.DIRECT
        assert outcome.intent.action == IntentAction.GET_ROOMS
        assert outcome.data == sample_rooms
        assert outcome.message == "Found 3 rooms"
        assert [r.target for r in processor.history] == ["parsing", "routing", "executing_direct", "idle"]
        assert processor.context.size() == 1
        assert processor.context.last().action == IntentAction.GET_ROOMS
        backend.parse.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_direct_cancel(self, mock_client):
        processor, _, _ = await make_processor(mock_client)
        outcome = await processor.submit("cancel b-1")
        assert outcome.success
        mock_client.cancel_booking.assert_awaited_once_with("b-1")

    @pytest.mark.asyncio
    async def test_builtin_leaves_no_context(self, mock_client):
        processor, backend, _ = await make_processor(mock_client)

        outcome = await processor.submit("help")

        assert outcome.success
        assert outcome.resolver == ResolverSource.BUILTIN
        assert outcome.intent is None
        assert "Built-in commands" in outcome.message
        assert processor.context.size() == 0
        backend.parse.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_settings_builtin_updates_processor(self, mock_client):
        processor, _, _ = await make_processor(mock_client)
        outcome = await processor.submit("settings nlp off")
        assert outcome.success
        assert processor.settings == LLM_ONLY

    @pytest.mark.asyncio
    async def test_rejected_settings_change_is_not_a_failure(self, mock_client):
        """Test that refusing to disable the last resolver reports an error without entering error state."""
        processor, _, _ = await make_processor(mock_client, settings=LLM_ONLY)

        outcome = await processor.submit("settings llm off")

        assert not outcome.success
        assert outcome.state == ProcessingState.IDLE
        assert processor.settings == LLM_ONLY
        assert processor.ctx.failure_count == 0

    @pytest.mark.asyncio
    async def test_clear_metadata(self, mock_client):
        processor, _, _ = await make_processor(mock_client)
        outcome = await processor.submit("clear")
        assert outcome.metadata["clear_screen"] is True

    @pytest.mark.asyncio
    async def test_demo_without_session(self, mock_client):
        processor, _, _ = await make_processor(mock_client)
        await processor.submit("demo")
        assert processor.host.demo is True
        await processor.submit("stop")
        assert processor.host.demo is False

    @pytest.mark.asyncio
    async def test_empty_command(self, mock_client):
        processor, _, _ = await make_processor(mock_client)
        outcome = await processor.submit("   ")
        assert outcome.success
        assert outcome.command == ""
        assert processor.history == []


class TestResolverRouting:
    """Test which resolver handles a command."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("command", ["list rooms", "show my bookings", "cancel all today", "hello"])
    async def test_confident_patterns_never_call_remote(self, mock_client, command):
        """Test that a confident pattern match is resolved locally."""
        processor, backend, _ = await make_processor(mock_client)

        outcome = await processor.submit(command)

        assert outcome.success
        assert outcome.resolver == ResolverSource.PATTERN
        backend.parse.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_contextual_reference_goes_remote(self, mock_client):
        """Test that 'book it' reaches the remote resolver even with a zero threshold."""
        processor, backend, _ = await make_processor(
            mock_client, confidence_threshold=0.0,
            responses=[{"action": "needsMoreInfo", "response": "Which room?"}],
        )

        outcome = await processor.submit("book it")

        backend.parse.assert_awaited_once()
        assert outcome.resolver == ResolverSource.REMOTE
        assert outcome.clarification
        assert outcome.message == "Which room?"

    @pytest.mark.asyncio
    async def test_contextual_follow_up_uses_history(self, mock_client):
        """Test an availability check followed by 'book it' resolved from history."""
        processor, backend, _ = await make_processor(mock_client, responses=[
            {"action": "checkAvailability",
             "params": {"roomName": "skagen", "startTime": "2025-01-02T08:00:00Z"}},
            {"action": "createBooking",
             "params": {"roomName": "skagen", "startTime": "2025-01-02T08:00:00Z", "duration": 60}},
        ])

        first = await processor.submit("check skagen tomorrow at 8")
        assert first.success
        assert first.intent.action == IntentAction.CHECK_AVAILABILITY
        assert processor.context.size() == 1

        second = await processor.submit("book it")
        assert second.success
        assert second.message == "Booking confirmed: Skagen for 60 minutes"

        history = backend.parse.await_args_list[1].args[3]
        assert history[-1].action == IntentAction.CHECK_AVAILABILITY
        assert history[-1].command == "check skagen tomorrow at 8"
        mock_client.create_booking.assert_awaited_once_with(
            "room-1", "2025-01-02T08:00:00Z", "2025-01-02T09:00:00Z", "Meeting"
        )
        assert processor.context.size() == 2

    @pytest.mark.asyncio
    async def test_disconnected_remote_uses_patterns(self, mock_client):
        """Test that a low-confidence command is handled locally while the remote resolver is down."""
        processor, backend, _ = await make_processor(mock_client, connected=False)

        outcome = await processor.submit("book skagen tomorrow")

        backend.parse.assert_not_awaited()
        assert outcome.success
        assert outcome.resolver == ResolverSource.PATTERN
        assert outcome.clarification
        assert outcome.missing_fields == ["startTime"]
        assert processor.state == ProcessingState.IDLE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("settings,connected", [(NLP_ONLY, True), (BOTH, False)])
    async def test_patterns_alone_create_booking(self, mock_client, settings, connected):
        """Test that a fully specified booking is created without the remote resolver."""
        processor, backend, _ = await make_processor(
            mock_client, settings=settings, connected=connected, timezone="Europe/Copenhagen",
        )

        outcome = await processor.submit("book skagen tomorrow at 9:00 for 2 hours")

        backend.parse.assert_not_awaited()
        assert outcome.success
        assert not outcome.clarification
        assert outcome.resolver == ResolverSource.PATTERN
        assert outcome.message == "Booking confirmed: Skagen for 120 minutes"
        mock_client.create_booking.assert_awaited_once_with(
            "room-1", "2025-01-02T08:00:00Z", "2025-01-02T10:00:00Z", "Meeting"
        )

    @pytest.mark.asyncio
    async def test_unrecognised_with_no_fallback(self, mock_client):
        """Test that patterns-only processing answers unknown commands instead of failing."""
        processor, _, _ = await make_processor(mock_client, settings=NLP_ONLY)

        outcome = await processor.submit("what is the weather like")

        assert outcome.success
        assert outcome.message == NOT_RECOGNIZED
        assert outcome.intent.action == IntentAction.UNKNOWN
        assert processor.context.size() == 0

    @pytest.mark.asyncio
    async def test_greeting_recorded_in_context(self, mock_client):
        processor, _, _ = await make_processor(mock_client, settings=NLP_ONLY)
        outcome = await processor.submit("hello")
        assert outcome.message
        assert processor.context.last().action == IntentAction.UNKNOWN


class TestFallback:
    """Test the fallback cascade between resolvers."""

    @pytest.mark.asyncio
    async def test_remote_failure_falls_back_to_patterns(self, mock_client):
        processor, backend, _ = await make_processor(mock_client, responses=ConnectionError("down"))

        outcome = await processor.submit("is skagen free")

        backend.parse.assert_awaited_once()
        assert outcome.success
        assert outcome.resolver == ResolverSource.PATTERN
        assert outcome.intent.action == IntentAction.CHECK_AVAILABILITY
        events = [r.target for r in processor.history]
        assert events == ["parsing", "routing", "executing_llm", "fallback", "executing_nlp", "idle"]

    @pytest.mark.asyncio
    async def test_pattern_failure_falls_back_to_remote(self, mock_client):
        processor, backend, _ = await make_processor(
            mock_client, confidence_threshold=0.1,
            responses=[{"action": "unknown", "response": "I only handle room bookings."}],
        )

        outcome = await processor.submit("what is the weather like")

        assert outcome.success
        assert outcome.resolver == ResolverSource.REMOTE
        assert outcome.message == "I only handle room bookings."
        assert "fallback" in [r.target for r in processor.history]

    @pytest.mark.asyncio
    async def test_each_resolver_tried_once(self, mock_client):
        """Test that when both resolvers fail the attempt ends in error without looping."""
        processor, backend, _ = await make_processor(
            mock_client, confidence_threshold=0.1, responses=ConnectionError("down"),
        )

        outcome = await processor.submit("what is the weather like")

        assert not outcome.success
        assert outcome.state == ProcessingState.ERROR
        assert "Intent parser unavailable" in outcome.message
        assert outcome.can_retry
        backend.parse.assert_awaited_once()
        assert processor.ctx.failure_count == 1

    @pytest.mark.asyncio
    async def test_execution_error_is_not_recovered(self, mock_client):
        """Test that a failed booking API call goes straight to error without trying patterns."""
        mock_client.create_booking.side_effect = BookingAPIError("API request failed: boom", status_code=500)
        processor, backend, _ = await make_processor(mock_client, responses=[
            {"action": "createBooking",
             "params": {"roomName": "skagen", "startTime": "2025-01-02T08:00:00Z"}},
        ])

        outcome = await processor.submit("grab skagen first thing tomorrow")

        assert outcome.state == ProcessingState.ERROR
        assert outcome.message == "createBooking failed: API request failed: boom"
        assert "fallback" not in [r.target for r in processor.history]
        mock_client.create_booking.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_error(self, mock_client):
        mock_client.list_rooms.side_effect = RuntimeError("socket closed")
        processor, _, _ = await make_processor(mock_client)

        outcome = await processor.submit("rooms")

        assert outcome.state == ProcessingState.ERROR
        assert outcome.error == "socket closed"


class TestRetry:
    """Test retrying failed commands."""

    @pytest.mark.asyncio
    async def test_retry_limit(self, mock_client):
        """Test that three consecutive failures exhaust retries."""
        processor, backend, _ = await make_processor(
            mock_client, settings=LLM_ONLY, responses=ConnectionError("down"),
        )

        first = await processor.submit("is skagen free")
        second = await processor.retry()
        third = await processor.retry()

        assert [o.attempts for o in (first, second, third)] == [1, 2, 3]
        assert first.can_retry and second.can_retry
        assert not third.can_retry
        assert processor.ctx.failure_count == 3

        refused = await processor.retry()
        assert not refused.success
        assert refused.message == "Retry limit reached after 3 failed attempts"
        assert processor.state == ProcessingState.ERROR
        assert backend.parse.await_count == 3
        assert processor.history[-1].event != "RETRY_COMMAND"

    @pytest.mark.asyncio
    async def test_retry_success(self, mock_client):
        processor, _, _ = await make_processor(
            mock_client, settings=LLM_ONLY,
            responses=[ConnectionError("down"), {"action": "getRooms"}],
        )

        failed = await processor.submit("what rooms have a projector")
        retried = await processor.retry()

        assert failed.state == ProcessingState.ERROR
        assert retried.success
        assert retried.attempts == 2
        assert retried.command_id == f"{failed.command_id}.001"
        assert processor.ctx.failure_count == 0

    @pytest.mark.asyncio
    async def test_retries_record_one_context_entry(self, mock_client):
        """Test that retrying a command does not push earlier context out."""
        processor, _, _ = await make_processor(
            mock_client, settings=LLM_ONLY,
            responses=[
                {"action": "checkAvailability", "params": {"roomName": "Skagen"}},
                {"action": "getBookings"},
                {"action": "getBookings"},
                {"action": "getBookings"},
            ],
        )
        mock_client.get_room_availability.return_value = []
        await processor.submit("is skagen free tomorrow at 9")

        mock_client.list_bookings.side_effect = BookingAPIError("API request failed: boom", status_code=500)
        await processor.submit("what do I have booked next week")
        await processor.retry()
        last = await processor.retry()

        assert last.attempts == 3
        entries = processor.context.recent(10)
        assert [(e.command, e.action) for e in entries] == [
            ("is skagen free tomorrow at 9", IntentAction.CHECK_AVAILABILITY),
            ("what do I have booked next week", IntentAction.GET_BOOKINGS),
        ]

    @pytest.mark.asyncio
    async def test_retry_after_unresolved_attempt_records_context(self, mock_client):
        processor, _, _ = await make_processor(
            mock_client, settings=LLM_ONLY,
            responses=[ConnectionError("down"), {"action": "getRooms"}],
        )

        await processor.submit("what rooms have a projector")
        assert processor.context.size() == 0

        await processor.retry()

        assert [e.action for e in processor.context.recent(10)] == [IntentAction.GET_ROOMS]

    @pytest.mark.asyncio
    async def test_nothing_to_retry(self, mock_client):
        processor, _, _ = await make_processor(mock_client)
        outcome = await processor.retry()
        assert not outcome.success
        assert outcome.message == "Nothing to retry"

    @pytest.mark.asyncio
    async def test_new_command_after_error(self, mock_client):
        """Test that a new command from the error state starts with a clean failure count."""
        processor, _, _ = await make_processor(
            mock_client, settings=LLM_ONLY, responses=ConnectionError("down"),
        )
        await processor.submit("is skagen free")

        outcome = await processor.submit("rooms")

        assert outcome.success
        assert processor.ctx.failure_count == 0

    @pytest.mark.asyncio
    async def test_reset(self, mock_client):
        processor, _, _ = await make_processor(
            mock_client, settings=LLM_ONLY, responses=ConnectionError("down"),
        )
        await processor.submit("is skagen free")

        processor.reset()

        assert processor.state == ProcessingState.IDLE
        assert processor.ctx.command is None


class TestOrderingAndSignals:
    """Test command ordering, indicator and listeners."""

    @pytest.mark.asyncio
    async def test_commands_run_one_at_a_time_in_order(self, mock_client):
        queued_seen = []

        async def slow_parse(command, user_id, tz_name, history):
            await asyncio.sleep(0.01)
            queued_seen.append(processor.queued)
            return {"action": "getRooms"}

        processor, _, _ = await make_processor(mock_client, responses=slow_parse)
        started = []
        processor.add_listener(
            lambda record: started.append(processor.ctx.command) if record.event == PROCESS_COMMAND else None
        )

        outcomes = await asyncio.gather(
            processor.submit("is skagen free"),
            processor.submit("rooms"),
            processor.submit("help"),
        )

        assert [o.command for o in outcomes] == ["is skagen free", "rooms", "help"]
        assert all(o.success for o in outcomes)
        assert started == ["is skagen free", "rooms", "help"]
        assert queued_seen == [2]
        milestones = [r.event for r in processor.history if r.event in (PROCESS_COMMAND, EXECUTION_SUCCESS)]
        assert milestones == [PROCESS_COMMAND, EXECUTION_SUCCESS] * 3
        assert not processor.busy

    @pytest.mark.asyncio
    async def test_indicator(self, mock_client):
        indicator = Mock()
        processor, _, _ = await make_processor(mock_client, indicator=indicator)
        indicator.reset_mock()

        await processor.submit("rooms")

        assert [c.args[0] for c in indicator.call_args_list] == ["thinking", "thinking", "idle"]

    @pytest.mark.asyncio
    async def test_indicator_error(self, mock_client):
        indicator = Mock()
        processor, _, _ = await make_processor(
            mock_client, settings=LLM_ONLY, responses=ConnectionError("down"), indicator=indicator,
        )
        await processor.submit("is skagen free")
        assert indicator.call_args_list[-1].args[0] == "error"

    @pytest.mark.asyncio
    async def test_failing_indicator_is_ignored(self, mock_client):
        processor, _, _ = await make_processor(mock_client, indicator=Mock(side_effect=OSError("tty gone")))
        outcome = await processor.submit("rooms")
        assert outcome.success

    @pytest.mark.asyncio
    async def test_listener_removal(self, mock_client):
        processor, _, _ = await make_processor(mock_client)
        seen = []
        remove = processor.add_listener(lambda record: seen.append(record.target))
        await processor.submit("rooms")
        remove()
        await processor.submit("rooms")
        assert seen == ["parsing", "routing", "executing_direct", "idle"]


class TestSettingsAndHealth:
    """Test settings validation and health tracking."""

    @pytest.mark.asyncio
    async def test_invalid_settings_refused(self, mock_client):
        processor, _, _ = await make_processor(mock_client)
        with pytest.raises(SettingsInvariantError):
            processor.update_settings(ResolverSettings(use_simple_nlp=False, use_llm=False))
        assert processor.settings == BOTH

    def test_invalid_initial_settings(self, mock_client):
        with pytest.raises(SettingsInvariantError):
            CommandProcessor(
                user_id="user-1",
                executor=IntentExecutor(mock_client),
                context=ConversationContextStore().for_user("user-1"),
                settings=ResolverSettings(use_simple_nlp=False, use_llm=False),
            )

    @pytest.mark.asyncio
    async def test_health_changes_reach_processor(self, mock_client):
        processor, _, monitor = await make_processor(mock_client)
        assert processor.health.connected
        assert processor.ctx.llm_connected

        monitor.probe.return_value = {"status": "down"}
        await monitor.check()

        assert not processor.health.connected
        assert not processor.ctx.llm_connected

    @pytest.mark.asyncio
    async def test_close_detaches_from_health(self, mock_client):
        processor, _, monitor = await make_processor(mock_client)
        processor.close()

        monitor.probe.return_value = {"status": "down"}
        await monitor.check()

        assert processor.ctx.llm_connected

    @pytest.mark.asyncio
    async def test_describe(self, mock_client):
        processor, _, _ = await make_processor(mock_client)
        await processor.submit("rooms")
        info = processor.describe()
        assert info == {
            "user": "user-1",
            "state": "idle",
            "simple_nlp": True,
            "llm": True,
            "llm_status": "connected",
            "context_entries": 1,
            "timezone": "UTC",
        }
