"""Intent dispatch onto the booking domain API.

:class:`IntentExecutor` maps every action of the closed intent vocabulary
onto booking API calls. Missing or unusable parameters raise
:class:`~iris_agent.errors.ValidationError`, which is turned into a
clarification result. Failed API calls surface as
:class:`~iris_agent.errors.ExecutionError` and are never retried here.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..async_api_client import AsyncBookingClient
from ..errors import BookingAPIError, ExecutionError, ValidationError
from ..models import Intent, IntentAction
from ..utils.helpers import (
    extract_error_message,
    format_iso_datetime,
    parse_iso_datetime,
    resolve_timezone,
)
from .base import CommandContext, CommandResult

DEFAULT_DURATION_MINUTES = 60
BULK_CANCEL_FILTERS = ("all", "today", "tomorrow", "week")
NOT_RECOGNIZED = 'Command not recognized. Type "help" for available commands.'


def _active(bookings: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [b for b in bookings if str(b.get("status", "")).upper() != "CANCELLED"]


def _local_midnight(now: datetime, tz_name: str) -> datetime:
    local = now.astimezone(resolve_timezone(tz_name))
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def bulk_cancel_window(filter_name: str, now: datetime,
                       tz_name: str = "UTC") -> Tuple[Optional[datetime], Optional[datetime]]:
    """Start/end bounds for a bulk-cancel filter; ``(None, None)`` for ``all``."""
    today = _local_midnight(now, tz_name)
    if filter_name == "today":
        return today, today + timedelta(days=1)
    if filter_name == "tomorrow":
        return today + timedelta(days=1), today + timedelta(days=2)
    if filter_name == "week":
        return today, today + timedelta(days=7)
    return None, None


def filter_rooms(rooms: List[Dict[str, Any]], capacity: Any = None,
                 location: Any = None, amenities: Any = None) -> List[Dict[str, Any]]:
    """Filter rooms by minimum capacity, location substring and any of the amenities."""
    try:
        min_capacity = int(capacity) if capacity not in (None, "") else 0
    except (TypeError, ValueError):
        min_capacity = 0
    location_filter = str(location).strip().lower() if location else ""
    if isinstance(amenities, (list, tuple)):
        wanted = [str(a).strip().lower() for a in amenities if str(a).strip()]
    elif amenities:
        wanted = [a.strip().lower() for a in str(amenities).split(",") if a.strip()]
    else:
        wanted = []

    result = []
    for room in rooms:
        if location_filter:
            room_location = room.get("location")
            if isinstance(room_location, dict):
                room_location = room_location.get("name")
            haystack = f"{room.get('locationId') or ''} {room_location or ''}".lower()
            if location_filter not in haystack:
                continue
        if min_capacity and int(room.get("capacity") or 0) < min_capacity:
            continue
        if wanted:
            room_amenities = room.get("amenities") or ""
            if isinstance(room_amenities, (list, tuple)):
                room_amenities = " ".join(str(a) for a in room_amenities)
            room_amenities = str(room_amenities).lower()
            if not any(a in room_amenities for a in wanted):
                continue
        result.append(room)
    return result


class IntentExecutor:
    """Executes resolved intents against the booking API."""

    def __init__(self, client: AsyncBookingClient):
        self.client = client
        self.logger = logging.getLogger(__name__)
        self._handlers: Dict[IntentAction, Callable[[Intent, CommandContext], Awaitable[CommandResult]]] = {
            IntentAction.GET_ROOMS: self._get_rooms,
            IntentAction.GET_BOOKINGS: self._get_bookings,
            IntentAction.CHECK_AVAILABILITY: self._check_availability,
            IntentAction.CREATE_BOOKING: self._create_booking,
            IntentAction.CANCEL_BOOKING: self._cancel_booking,
            IntentAction.BULK_CANCEL: self._bulk_cancel,
            IntentAction.NEEDS_MORE_INFO: self._needs_more_info,
            IntentAction.UNKNOWN: self._unknown,
        }

    async def execute(self, intent: Intent, context: CommandContext) -> CommandResult:
        """Dispatch ``intent``.

        Raises:
            ExecutionError: if a booking API call fails.
        """
        context.parsed_parameters = dict(intent.params)
        handler = self._handlers[intent.action]
        self.logger.debug(f"Executing {intent.action.value} with {intent.params}")
        try:
            result = await handler(intent, context)
        except ValidationError as e:
            self.logger.info(f"{intent.action.value} needs more information: {e.missing_fields}")
            return CommandResult.clarification_result(e.message, e.missing_fields).with_metadata(
                action=IntentAction.NEEDS_MORE_INFO.value, requested_action=intent.action.value
            )
        except BookingAPIError as e:
            message = extract_error_message(e.response_data) if e.response_data else str(e)
            raise ExecutionError(
                f"{intent.action.value} failed: {message}",
                status_code=e.status_code,
                context=intent.params,
            ) from e
        return result.with_metadata(action=intent.action.value)

    async def _resolve_room(self, context: CommandContext) -> Dict[str, Any]:
        room_id = context.get_parameter("roomId")
        if room_id:
            return {"id": room_id, "name": context.get_parameter("roomName", room_id)}
        room_name = str(context.get_parameter("roomName"))
        room = await self.client.find_room(room_name)
        if room is None:
            raise ValidationError(
                f'Room not found: "{room_name}". Use "rooms" to see available rooms.',
                missing_fields=["roomName"],
            )
        return room

    async def _get_rooms(self, intent: Intent, context: CommandContext) -> CommandResult:
        rooms = await self.client.list_rooms()
        filters = {k: context.get_parameter(k) for k in ("capacity", "location", "amenities")}
        if any(v is not None for v in filters.values()):
            rooms = filter_rooms(rooms, **filters)
            if not rooms:
                return CommandResult.success_result(
                    data=[], message="No rooms match your criteria. Try adjusting your requirements."
                ).with_metadata(filters=filters)
            return CommandResult.success_result(
                data=rooms, message=f"Found {len(rooms)} matching rooms"
            ).with_metadata(filters=filters)
        if not rooms:
            return CommandResult.success_result(data=[], message="No rooms found in system")
        return CommandResult.success_result(data=rooms, message=f"Found {len(rooms)} rooms")

    async def _get_bookings(self, intent: Intent, context: CommandContext) -> CommandResult:
        bookings = _active(await self.client.list_bookings())
        if not bookings:
            return CommandResult.success_result(data=[], message="No active bookings found")
        return CommandResult.success_result(data=bookings, message=f"Found {len(bookings)} bookings")

    async def _check_availability(self, intent: Intent, context: CommandContext) -> CommandResult:
        if not (context.has_parameter("roomId") or context.has_parameter("roomName")):
            raise ValidationError("Please specify a room name for availability check.",
                                  missing_fields=["roomName"])
        room = await self._resolve_room(context)

        start = parse_iso_datetime(context.get_parameter("startTime")) or context.now
        end = parse_iso_datetime(context.get_parameter("endTime")) or start + timedelta(hours=24)
        if end <= start:
            raise ValidationError("End time must be after start time", missing_fields=["endTime"])

        bookings = _active(await self.client.get_room_availability(
            room["id"], format_iso_datetime(start), format_iso_datetime(end)
        ))
        name = room.get("name", room["id"])
        data = {
            "room": room,
            "start": format_iso_datetime(start),
            "end": format_iso_datetime(end),
            "bookings": bookings,
            "available": not bookings,
        }
        if bookings:
            message = f"{name} has {len(bookings)} booking(s) in the requested window"
        else:
            message = f"{name} is available for the entire requested window"
        return CommandResult.success_result(data=data, message=message)

    async def _create_booking(self, intent: Intent, context: CommandContext) -> CommandResult:
        has_room = context.has_parameter("roomId") or context.has_parameter("roomName")
        location = context.get_parameter("location")
        if location and not has_room:
            rooms = filter_rooms(await self.client.list_rooms(), location=location)
            return CommandResult(
                success=True,
                data=rooms,
                message=f"Multiple rooms available in {location}. Specify a room: book <room-name> <date> at <time>",
                clarification=True,
                missing_fields=["roomName"],
            )

        missing = []
        if not has_room:
            missing.append("roomName")
        if not context.has_parameter("startTime"):
            missing.append("startTime")
        if missing:
            raise ValidationError(
                f"Missing required information: {', '.join(missing)}. Use: book <room-name> <date> at <time>",
                missing_fields=missing,
            )

        start = parse_iso_datetime(context.get_parameter("startTime"))
        if start is None:
            raise ValidationError("Invalid date format for startTime", missing_fields=["startTime"])
        end = parse_iso_datetime(context.get_parameter("endTime"))
        if end is None:
            try:
                duration = int(context.get_parameter("duration", DEFAULT_DURATION_MINUTES))
            except (TypeError, ValueError):
                duration = DEFAULT_DURATION_MINUTES
            end = start + timedelta(minutes=duration)
        if end <= start:
            raise ValidationError("End time must be after start time", missing_fields=["endTime"])

        room = await self._resolve_room(context)
        start_iso, end_iso = format_iso_datetime(start), format_iso_datetime(end)

        existing = _active(await self.client.get_room_availability(room["id"], start_iso, end_iso))
        for booking in existing:
            b_start = parse_iso_datetime(booking.get("startTime"))
            b_end = parse_iso_datetime(booking.get("endTime"))
            if b_start and b_end and b_start < end and b_end > start:
                return CommandResult.error_result(
                    "Room is not available for the selected time slot", data={"conflict": booking}
                )

        title = context.get_parameter("title", "Meeting")
        booking = await self.client.create_booking(room["id"], start_iso, end_iso, title)
        minutes = int((end - start).total_seconds() // 60)
        return CommandResult.success_result(
            data=booking,
            message=f"Booking confirmed: {room.get('name', room['id'])} for {minutes} minutes",
        )

    async def _cancel_booking(self, intent: Intent, context: CommandContext) -> CommandResult:
        context.require_parameters("bookingId", hint="Use: cancel <booking-id>")
        booking_id = str(context.get_parameter("bookingId"))
        response = await self.client.cancel_booking(booking_id)
        return CommandResult.success_result(
            data={"bookingId": booking_id},
            message=response.get("message") or f"Booking {booking_id} cancelled",
        )

    async def _bulk_cancel(self, intent: Intent, context: CommandContext) -> CommandResult:
        filter_name = str(context.get_parameter("filter", "all")).lower()
        if filter_name not in BULK_CANCEL_FILTERS:
            raise ValidationError(
                f"Unknown filter '{filter_name}'. Use one of: {', '.join(BULK_CANCEL_FILTERS)}",
                missing_fields=["filter"],
            )

        start, end = bulk_cancel_window(filter_name, context.now, context.timezone)
        targets = []
        for booking in _active(await self.client.list_bookings()):
            begins = parse_iso_datetime(booking.get("startTime"))
            if begins is None or not booking.get("id"):
                continue
            if start is not None and not (start <= begins < end):
                continue
            targets.append(booking)

        if not targets:
            return CommandResult.success_result(data={"cancelled": [], "failed": []},
                                                message=f"No bookings found for filter: {filter_name}")

        cancelled: List[Dict[str, Any]] = []
        failed: List[Dict[str, str]] = []
        # Each cancellation is independent; earlier ones are not rolled back
        for booking in targets:
            try:
                await self.client.cancel_booking(str(booking["id"]))
                cancelled.append(booking)
            except BookingAPIError as e:
                failed.append({"id": str(booking["id"]), "error": str(e)})

        data = {"filter": filter_name, "cancelled": cancelled, "failed": failed}
        message = f"Cancelled {len(cancelled)} of {len(targets)} bookings ({filter_name})"
        if failed:
            return CommandResult(
                success=bool(cancelled),
                data=data,
                message=message,
                error=f"Failed to cancel {len(failed)} bookings",
            )
        return CommandResult.success_result(data=data, message=message)

    async def _needs_more_info(self, intent: Intent, context: CommandContext) -> CommandResult:
        return CommandResult.clarification_result(
            intent.response_text or "Could you provide more details?"
        )

    async def _unknown(self, intent: Intent, context: CommandContext) -> CommandResult:
        return CommandResult.success_result(message=intent.response_text or NOT_RECOGNIZED)
