"""Pytest configuration and shared fixtures."""

import pytest
import os
import logging
from unittest.mock import AsyncMock, Mock

from iris_agent.async_api_client import AsyncBookingClient
from iris_agent.services import ManualClock

# Disable logging during tests to reduce noise
logging.disable(logging.CRITICAL)


@pytest.fixture(autouse=True)
def clean_env():
    """Clean environment variables before each test."""
    env_vars_to_clean = [
        "IRIS_API_URL",
        "IRIS_INTENT_URL",
        "IRIS_INTENT_BACKEND",
        "IRIS_INTENT_TIMEOUT",
        "IRIS_CONFIDENCE_THRESHOLD",
        "IRIS_CONTEXTUAL_PHRASES",
        "IRIS_HEALTH_POLL_INTERVAL",
        "IRIS_STATE_FILE",
        "IRIS_HISTORY_FILE",
        "IRIS_TIMEZONE",
        "OPENAI_API_KEY",
        "ANTHROPIC_API_KEY",
        "DEFAULT_MODEL",
        "LOG_LEVEL",
        "MAX_RETRIES",
        "REQUEST_TIMEOUT",
    ]

    # Store original values
    original_values = {}
    for var in env_vars_to_clean:
        original_values[var] = os.environ.get(var)
        if var in os.environ:
            del os.environ[var]

    yield

    # Restore original values
    for var, value in original_values.items():
        if value is not None:
            os.environ[var] = value
        elif var in os.environ:
            del os.environ[var]


@pytest.fixture
def manual_clock():
    """Clock starting at 2025-01-01 09:00 UTC that only moves on advance()."""
    return ManualClock()


@pytest.fixture
def sample_rooms():
    """Sample room data for testing."""
    return [
        {
            "id": "room-1",
            "name": "Skagen",
            "capacity": 8,
            "location": {"name": "Copenhagen"},
            "amenities": ["projector", "whiteboard"],
        },
        {
            "id": "room-2",
            "name": "Aarhus Hall",
            "capacity": 20,
            "location": {"name": "Aarhus"},
            "amenities": ["video", "projector"],
        },
        {
            "id": "room-3",
            "name": "Skagen Annex",
            "capacity": 4,
            "location": {"name": "Copenhagen"},
            "amenities": [],
        },
    ]


@pytest.fixture
def sample_bookings():
    """Sample booking data for testing."""
    return [
        {
            "id": "b-1",
            "roomId": "room-1",
            "room": {"name": "Skagen"},
            "title": "Standup",
            "startTime": "2025-01-01T10:00:00Z",
            "endTime": "2025-01-01T10:30:00Z",
            "status": "CONFIRMED",
        },
        {
            "id": "b-2",
            "roomId": "room-2",
            "room": {"name": "Aarhus Hall"},
            "title": "Planning",
            "startTime": "2025-01-02T13:00:00Z",
            "endTime": "2025-01-02T14:00:00Z",
            "status": "CONFIRMED",
        },
        {
            "id": "b-3",
            "roomId": "room-1",
            "room": {"name": "Skagen"},
            "title": "Old",
            "startTime": "2025-01-01T15:00:00Z",
            "endTime": "2025-01-01T16:00:00Z",
            "status": "CANCELLED",
        },
    ]


@pytest.fixture
def mock_client(sample_rooms, sample_bookings):
    """Async booking client with every API call mocked."""
    client = Mock(spec=AsyncBookingClient)
    client.health = AsyncMock(return_value={"status": "ok", "timestamp": None})
    client.login = AsyncMock()
    client.list_rooms = AsyncMock(return_value=sample_rooms)
    client.list_bookings = AsyncMock(return_value=sample_bookings)
    client.get_room_availability = AsyncMock(return_value=[])
    client.create_booking = AsyncMock(return_value={"id": "b-new", "status": "CONFIRMED"})
    client.cancel_booking = AsyncMock(return_value={"message": "Booking cancelled successfully"})
    client.parse_intent = AsyncMock()
    client.set_auth_token = Mock()

    async def find_room(name):
        needle = name.strip().lower()
        for room in sample_rooms:
            if room["name"].lower() == needle:
                return room
        for room in sample_rooms:
            if needle in room["name"].lower():
                return room
        return None

    client.find_room = AsyncMock(side_effect=find_room)
    return client
