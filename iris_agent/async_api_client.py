"""Async wrapper for the booking API client used by the engine."""

import asyncio
import logging
from typing import Dict, List, Optional, Any
from functools import wraps

from .api_client import BookingClient


def async_wrapper(method_name):
    """Decorator to convert synchronous methods to async."""
    def decorator(func):
        @wraps(func)
        async def async_method(self, *args, **kwargs):
            sync_method = getattr(self.sync_client, method_name)
            # Run the sync method in a thread pool to avoid blocking the loop
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, lambda: sync_method(*args, **kwargs))
        return async_method
    return decorator


class AsyncBookingClient:
    """Async wrapper for BookingClient."""

    def __init__(self, sync_client: BookingClient):
        self.sync_client = sync_client
        self.logger = logging.getLogger(__name__)

    @property
    def auth_token(self) -> Optional[str]:
        return self.sync_client.auth_token

    def set_auth_token(self, token: Optional[str]) -> None:
        self.sync_client.set_auth_token(token)

    @async_wrapper("health")
    def health(self) -> Dict[str, Any]:
        """Probe the API health endpoint."""
        pass

    @async_wrapper("login")
    def login(self, email: str, password: str) -> Dict[str, Any]:
        """Authenticate and return token and user."""
        pass

    @async_wrapper("list_rooms")
    def list_rooms(self, **filters) -> List[Dict[str, Any]]:
        """List rooms."""
        pass

    @async_wrapper("get_room_availability")
    def get_room_availability(self, room_id: str, start: str, end: str) -> List[Dict[str, Any]]:
        """Bookings occupying a room in a window."""
        pass

    @async_wrapper("list_bookings")
    def list_bookings(self, **filters) -> List[Dict[str, Any]]:
        """List the current user's bookings."""
        pass

    @async_wrapper("create_booking")
    def create_booking(self, room_id: str, start_time: str, end_time: str,
                       title: str = "Meeting") -> Dict[str, Any]:
        """Create a booking."""
        pass

    @async_wrapper("cancel_booking")
    def cancel_booking(self, booking_id: str) -> Dict[str, Any]:
        """Cancel a booking."""
        pass

    @async_wrapper("parse_intent")
    def parse_intent(self, payload: Dict[str, Any], timeout: Optional[float] = None) -> Dict[str, Any]:
        """Send a command to the intent-parsing endpoint."""
        pass

    async def find_room(self, name: str) -> Optional[Dict[str, Any]]:
        """Look a room up by name: exact (case-insensitive) match first, then substring."""
        rooms = await self.list_rooms()
        needle = name.strip().lower()
        for room in rooms:
            if str(room.get("name", "")).lower() == needle:
                return room
        for room in rooms:
            if needle in str(room.get("name", "")).lower():
                return room
        return None
