"""Tests for the remote intent resolver."""

import pytest
import asyncio
from unittest.mock import AsyncMock, Mock

from iris_agent.errors import ResolverUnavailableError
from iris_agent.models import IntentAction, ResolverSource
from iris_agent.resolvers import RemoteResolver
from iris_agent.services import ConversationContextStore


def _backend(**kwargs):
    backend = Mock()
    backend.parse = AsyncMock(**kwargs)
    return backend


class TestRemoteResolver:
    """Test remote resolution and failure normalisation."""

    @pytest.mark.asyncio
    async def test_resolves_payload(self):
        backend = _backend(return_value={
            "action": "checkAvailability",
            "params": {"roomName": "skagen", "startTime": "2025-01-02T08:00:00Z", "endTime": None},
        })
        resolver = RemoteResolver(backend)

        intent = await resolver.resolve("is skagen free tomorrow at 8", "user-1", "Europe/Copenhagen")

        assert intent.action == IntentAction.CHECK_AVAILABILITY
        assert intent.source_resolver == ResolverSource.REMOTE
        assert intent.params == {"roomName": "skagen", "startTime": "2025-01-02T08:00:00Z"}
        backend.parse.assert_awaited_once_with(
            "is skagen free tomorrow at 8", "user-1", "Europe/Copenhagen", []
        )

    @pytest.mark.asyncio
    async def test_sends_recent_history(self, manual_clock):
        """Test that only the configured window of history is sent, oldest first."""
        store = ConversationContextStore(clock=manual_clock)
        context = store.for_user("user-1")
        for i in range(5):
            context.record(f"cmd {i}", IntentAction.UNKNOWN)
        backend = _backend(return_value={"action": "unknown"})
        resolver = RemoteResolver(backend, history_window=3)

        await resolver.resolve("book it", "user-1", "UTC", context)

        history = backend.parse.call_args.args[3]
        assert [e.command for e in history] == ["cmd 2", "cmd 3", "cmd 4"]

    @pytest.mark.asyncio
    async def test_find_rooms_alias(self):
        backend = _backend(return_value={"action": "findRooms", "params": {"capacity": 10}})
        intent = await RemoteResolver(backend).resolve("rooms for 10", "u", "UTC")
        assert intent.action == IntentAction.GET_ROOMS
        assert intent.params == {"capacity": 10}

    @pytest.mark.asyncio
    async def test_unknown_action_becomes_unknown(self):
        backend = _backend(return_value={"action": "orderPizza", "response": "I can only book rooms."})
        intent = await RemoteResolver(backend).resolve("pizza", "u", "UTC")
        assert intent.action == IntentAction.UNKNOWN
        assert intent.response_text == "I can only book rooms."

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test that a slow backend becomes ResolverUnavailableError."""
        async def slow(*args):
            await asyncio.sleep(1)
            return {"action": "getRooms"}

        backend = Mock()
        backend.parse = slow
        resolver = RemoteResolver(backend, timeout=0.01)

        with pytest.raises(ResolverUnavailableError, match="did not answer") as exc_info:
            await resolver.resolve("rooms please", "u", "UTC")
        assert exc_info.value.recoverable

    @pytest.mark.asyncio
    async def test_transport_error(self):
        backend = _backend(side_effect=ConnectionError("connection refused"))
        with pytest.raises(ResolverUnavailableError, match="connection refused"):
            await RemoteResolver(backend).resolve("rooms please", "u", "UTC")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [None, "getRooms", ["getRooms"], {"params": {}}, {"action": 7}])
    async def test_malformed_payload(self, payload):
        backend = _backend(return_value=payload)
        with pytest.raises(ResolverUnavailableError):
            await RemoteResolver(backend).resolve("rooms please", "u", "UTC")
