"""Booking domain REST API client."""

import requests
import logging
from typing import Dict, List, Optional, Any
from urllib.parse import urljoin
from pydantic import BaseModel, Field, field_validator

from .config import BookingApiConfig
from .errors import BookingAPIError
from .utils import retry_on_failure, extract_error_message


class LoginRequest(BaseModel):
    """Request model for logging in."""

    email: str = Field(..., description="Account email address")
    password: str = Field(..., min_length=1, description="Account password")


class CreateBookingRequest(BaseModel):
    """Request model for creating a booking."""

    roomId: str = Field(..., description="Identifier of the room to book")
    startTime: str = Field(..., description="Start time as ISO timestamp")
    endTime: str = Field(..., description="End time as ISO timestamp")
    title: str = Field(default="Meeting", description="Booking title")

    @field_validator('title')
    @classmethod
    def validate_title(cls, v: str) -> str:
        v = v.strip()
        return v or "Meeting"


class BookingClient:
    """Client for interacting with the booking REST API.

    Reads are retried on transient failures. Writes (create/cancel) and
    intent parsing are sent exactly once: re-issuing them could double-book
    or double-count a command.
    """

    def __init__(self, config: BookingApiConfig, auth_token: Optional[str] = None,
                 intent_url: Optional[str] = None):
        self.config = config
        self.base_url = config.base_url
        self.intent_url = intent_url or config.base_url
        self.retry_delay = 1.0
        self.session = requests.Session()
        self.logger = logging.getLogger(__name__)
        self.auth_token: Optional[str] = None

        self.session.headers.update({
            'Accept': 'application/json',
            'Content-Type': 'application/json'
        })
        if auth_token:
            self.set_auth_token(auth_token)

    def set_auth_token(self, token: Optional[str]) -> None:
        """Set or clear the Bearer token sent with every request."""
        self.auth_token = token
        if token:
            self.session.headers['Authorization'] = f'Bearer {token}'
            self.logger.debug("Authentication header set.")
        else:
            self.session.headers.pop('Authorization', None)
            self.logger.debug("Authentication header cleared.")

    def _make_request(self, method: str, endpoint: str, base_url: Optional[str] = None,
                      timeout: Optional[float] = None, **kwargs) -> Dict[str, Any]:
        """Make HTTP request with error handling."""
        if endpoint.startswith('/'):
            endpoint = endpoint[1:]
        url = urljoin((base_url or self.base_url) + '/', endpoint)
        self.logger.debug(f"{method} {url}")

        try:
            response = self.session.request(
                method=method,
                url=url,
                timeout=timeout or self.config.request_timeout,
                **kwargs
            )
            self.logger.debug(f"{method} {url} -> {response.status_code}")

            if response.status_code == 204:
                return {}

            if response.status_code >= 400:
                try:
                    error_data = response.json()
                except ValueError:
                    error_data = {"message": response.text}

                error_msg = extract_error_message(error_data)
                raise BookingAPIError(
                    f"API request failed: {error_msg}",
                    status_code=response.status_code,
                    response_data=error_data
                )

            try:
                return response.json()
            except ValueError:
                raise BookingAPIError(
                    "API returned a non-JSON response",
                    status_code=response.status_code,
                    response_data={"message": response.text}
                )

        except requests.exceptions.RequestException as e:
            self.logger.error(f"Request failed: {e}")
            raise BookingAPIError(f"Request failed: {e}")

    def _read(self, endpoint: str, params: Optional[Dict[str, Any]] = None,
              timeout: Optional[float] = None) -> Dict[str, Any]:
        """GET with retry and backoff."""
        request = retry_on_failure(max_retries=self.config.max_retries,
                                   delay=self.retry_delay)(self._make_request)
        return request('GET', endpoint, params=params, timeout=timeout)

    def health(self) -> Dict[str, Any]:
        """Probe the API health endpoint once. Returns ``{"status": ...}``."""
        response = self._make_request('GET', '/health', timeout=5)
        return {
            "status": response.get("status", "unknown"),
            "timestamp": response.get("timestamp"),
        }

    def login(self, email: str, password: str) -> Dict[str, Any]:
        """
        Authenticate and store the returned token on this client.

        Returns:
            Dict with ``token`` and ``user``
        """
        request_data = LoginRequest(email=email, password=password)
        response = self._make_request('POST', '/api/auth/login', json=request_data.model_dump())

        token = response.get("token")
        if not token:
            raise BookingAPIError("Login response did not contain a token", response_data=response)
        self.set_auth_token(token)
        self.logger.info(f"Logged in as {email}")
        return {"token": token, "user": response.get("user") or {}}

    def list_rooms(self, **filters) -> List[Dict[str, Any]]:
        """
        List rooms.

        Args:
            **filters: Optional query filters understood by the API
                (``locationId``, ``capacity``)

        Returns:
            List of room objects
        """
        params = {k: v for k, v in filters.items() if v is not None}
        response = self._read('/api/rooms', params=params or None)
        rooms = response.get('rooms', [])
        self.logger.info(f"Retrieved {len(rooms)} rooms")
        return rooms

    def get_room_availability(self, room_id: str, start: str, end: str) -> List[Dict[str, Any]]:
        """
        Bookings of a room that fall inside a time window.

        Args:
            room_id: Room identifier
            start: Window start as ISO timestamp
            end: Window end as ISO timestamp

        Returns:
            List of booking objects occupying the room in the window
        """
        response = self._read(
            f'/api/rooms/{room_id}/availability',
            params={"startDate": start, "endDate": end}
        )
        return response.get('bookings', [])

    def list_bookings(self, **filters) -> List[Dict[str, Any]]:
        """List the current user's bookings."""
        params = {k: v for k, v in filters.items() if v is not None}
        response = self._read('/api/bookings', params=params or None)
        bookings = response.get('bookings', [])
        self.logger.info(f"Retrieved {len(bookings)} bookings")
        return bookings

    def create_booking(self, room_id: str, start_time: str, end_time: str,
                       title: str = "Meeting") -> Dict[str, Any]:
        """
        Create a booking. Never retried.

        Returns:
            Created booking object
        """
        request_data = CreateBookingRequest(
            roomId=room_id,
            startTime=start_time,
            endTime=end_time,
            title=title
        )
        response = self._make_request('POST', '/api/bookings', json=request_data.model_dump())
        booking = response.get('booking') or response
        self.logger.info(f"Created booking for room {room_id} at {start_time}")
        return booking

    def cancel_booking(self, booking_id: str) -> Dict[str, Any]:
        """Cancel a booking. Never retried."""
        response = self._make_request('DELETE', f'/api/bookings/{booking_id}')
        self.logger.info(f"Cancelled booking: {booking_id}")
        return {"message": response.get("message") or "Booking cancelled successfully"}

    def parse_intent(self, payload: Dict[str, Any], timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Send a command to the AI intent-parsing endpoint. Never retried.

        Args:
            payload: ``{command, userId, timezone, recentHistory}``
            timeout: Request timeout override in seconds

        Returns:
            Raw ``{action, params, response}`` payload
        """
        return self._make_request('POST', '/api/intent', base_url=self.intent_url,
                                  timeout=timeout, json=payload)
