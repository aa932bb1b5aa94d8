"""Base formatter class for data presentation."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List
from datetime import datetime

from ..models import CommandOutcome
from ..utils.helpers import parse_iso_datetime


class BaseFormatter(ABC):
    """Base class for all data formatters."""

    def __init__(self):
        self.timestamp_format = "%Y-%m-%d %H:%M"

    @abstractmethod
    def format_room_list(self, rooms: List[Dict[str, Any]]) -> str:
        """Format room list data."""
        pass

    @abstractmethod
    def format_booking_list(self, bookings: List[Dict[str, Any]]) -> str:
        """Format booking list data."""
        pass

    @abstractmethod
    def format_availability(self, data: Dict[str, Any]) -> str:
        """Format a room availability check."""
        pass

    @abstractmethod
    def format_outcome(self, outcome: CommandOutcome) -> str:
        """Format the outcome of a submitted command."""
        pass

    @abstractmethod
    def format_error(self, error: str, context: str = "") -> str:
        """Format error message."""
        pass

    def format_timestamp(self, timestamp: Any) -> str:
        """Format timestamp consistently."""
        if isinstance(timestamp, str):
            timestamp = parse_iso_datetime(timestamp) or timestamp
        if isinstance(timestamp, datetime):
            return timestamp.strftime(self.timestamp_format)
        return str(timestamp)

    def truncate_text(self, text: str, max_length: int, suffix: str = "...") -> str:
        """Truncate text to maximum length."""
        if len(text) <= max_length:
            return text
        return text[:max_length - len(suffix)] + suffix

    def format_list_summary(self, items: List[Any], item_name: str = "item") -> str:
        """Format a summary of list items."""
        count = len(items)
        if count == 0:
            return f"No {item_name}s found"
        elif count == 1:
            return f"Found 1 {item_name}"
        else:
            return f"Found {count} {item_name}s"
