"""CLI formatter for terminal output."""

import sys
from enum import Enum
from typing import Any, Dict, List, Optional

from ..models import CommandOutcome, IntentAction, ProcessingState
from .base_formatter import BaseFormatter


class MessageType(Enum):
    """Types of messages for formatting."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    HELP = "help"
    PROMPT = "prompt"


COLORS = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "dim": "\033[2m",
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "blue": "\033[34m",
    "magenta": "\033[35m",
    "cyan": "\033[36m",
    "gray": "\033[90m",
}

MESSAGE_STYLES = {
    MessageType.INFO: ("blue", "ℹ️"),
    MessageType.SUCCESS: ("green", "✅"),
    MessageType.WARNING: ("yellow", "⚠️"),
    MessageType.ERROR: ("red", "❌"),
    MessageType.HELP: ("cyan", "💡"),
    MessageType.PROMPT: ("magenta", "🏢"),
}


class CLIFormatter(BaseFormatter):
    """Formats command outcomes and booking data for the terminal."""

    def __init__(self, use_colors: Optional[bool] = None):
        super().__init__()
        self.use_colors = use_colors if use_colors is not None else sys.stdout.isatty()

    def colorize(self, text: str, color: str) -> str:
        if not self.use_colors or color not in COLORS:
            return text
        return f"{COLORS[color]}{text}{COLORS['reset']}"

    def format_message(self, message: str, msg_type: MessageType = MessageType.INFO) -> str:
        color, icon = MESSAGE_STYLES[msg_type]
        return f"{icon} {self.colorize(message, color)}"

    def format_prompt(self, user: str = "iris", demo: bool = False) -> str:
        color, icon = MESSAGE_STYLES[MessageType.PROMPT]
        label = f"{user} (demo)" if demo else user
        return f"{icon} {self.colorize(label, color)}> "

    def format_room_list(self, rooms: List[Dict[str, Any]]) -> str:
        if not rooms:
            return self.format_message("No rooms found", MessageType.WARNING)

        lines = [self.format_message(self.format_list_summary(rooms, "room") + ":"), ""]
        for room in rooms:
            name = self.colorize(str(room.get("name", room.get("id", "?"))), "bold")
            details = []
            if room.get("capacity"):
                details.append(f"{room['capacity']} seats")
            location = room.get("location")
            if isinstance(location, dict):
                location = location.get("name")
            if location:
                details.append(str(location))
            amenities = room.get("amenities")
            if isinstance(amenities, (list, tuple)):
                amenities = ", ".join(str(a) for a in amenities)
            if amenities:
                details.append(self.truncate_text(str(amenities), 40))
            suffix = f" ({' | '.join(details)})" if details else ""
            lines.append(f"  🚪 {name}{suffix}")
        return "\n".join(lines)

    def format_booking_list(self, bookings: List[Dict[str, Any]]) -> str:
        if not bookings:
            return self.format_message("No active bookings found", MessageType.WARNING)

        lines = [self.format_message(self.format_list_summary(bookings, "booking") + ":"), ""]
        for booking in bookings:
            lines.append(f"  📅 {self._booking_line(booking)}")
        return "\n".join(lines)

    def format_availability(self, data: Dict[str, Any]) -> str:
        room = data.get("room") or {}
        name = room.get("name", room.get("id", "Room"))
        window = f"{self.format_timestamp(data.get('start'))} - {self.format_timestamp(data.get('end'))}"
        if data.get("available"):
            return self.format_message(f"{name} is free {window}", MessageType.SUCCESS)

        lines = [self.format_message(f"{name} is booked during {window}:", MessageType.WARNING)]
        for booking in data.get("bookings", []):
            lines.append(f"  ⛔ {self._booking_line(booking)}")
        return "\n".join(lines)

    def format_bulk_cancel(self, data: Dict[str, Any], message: str) -> str:
        lines = [self.format_message(message, MessageType.SUCCESS if not data.get("failed") else MessageType.WARNING)]
        for failure in data.get("failed", []):
            lines.append(f"  ❌ {failure.get('id')}: {failure.get('error')}")
        return "\n".join(lines)

    def format_error(self, error: str, context: str = "") -> str:
        text = f"{context}: {error}" if context else error
        return self.format_message(text, MessageType.ERROR)

    def format_outcome(self, outcome: CommandOutcome) -> str:
        """Render what a submitted command produced."""
        if outcome.state == ProcessingState.ERROR:
            text = self.format_error(outcome.message or outcome.error or "Command failed")
            if outcome.can_retry:
                text += "\n" + self.format_message("Type 'retry' to try again.", MessageType.HELP)
            return text

        if outcome.clarification:
            text = self.format_message(outcome.message, MessageType.HELP)
            if outcome.data and isinstance(outcome.data, list):
                text += "\n" + self.format_room_list(outcome.data)
            return text

        if not outcome.success:
            return self.format_error(outcome.message or outcome.error or "Command failed")

        action = outcome.intent.action if outcome.intent is not None else None
        data = outcome.data
        if action == IntentAction.GET_ROOMS and isinstance(data, list):
            return self.format_room_list(data)
        if action == IntentAction.GET_BOOKINGS and isinstance(data, list):
            return self.format_booking_list(data)
        if action == IntentAction.CHECK_AVAILABILITY and isinstance(data, dict):
            return self.format_availability(data)
        if action == IntentAction.BULK_CANCEL and isinstance(data, dict):
            return self.format_bulk_cancel(data, outcome.message)
        if action in (IntentAction.CREATE_BOOKING, IntentAction.CANCEL_BOOKING):
            return self.format_message(outcome.message, MessageType.SUCCESS)
        return outcome.message

    def _booking_line(self, booking: Dict[str, Any]) -> str:
        room = booking.get("room")
        room_name = room.get("name") if isinstance(room, dict) else booking.get("roomId", "?")
        start = self.format_timestamp(booking.get("startTime"))
        end = self.format_timestamp(booking.get("endTime"))
        title = booking.get("title") or "Booking"
        booking_id = self.colorize(str(booking.get("id", "")), "gray")
        return f"{title} - {room_name}, {start} to {end} {booking_id}".rstrip()
