"""Common utilities for IRIS Agent."""

import logging
import time
from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from functools import wraps
from typing import Any, Callable, Dict, Optional

import requests


def retry_on_failure(max_retries: int = 3, delay: float = 1.0, backoff_multiplier: float = 2.0):
    """
    Decorator for retrying idempotent calls on transient failure.

    Only apply this to reads. Booking writes and intent parsing are not
    safely repeatable and must never be wrapped.

    Args:
        max_retries: Maximum number of retry attempts
        delay: Initial delay between retries in seconds
        backoff_multiplier: Multiplier for exponential backoff
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            logger = logging.getLogger(func.__module__)
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    if attempt > 0:
                        logger.info(f"Retry attempt {attempt}/{max_retries} for {func.__name__}")
                    return func(*args, **kwargs)

                except Exception as e:
                    last_exception = e

                    if not _should_retry_error(e):
                        logger.debug(f"Non-retriable error in {func.__name__}: {e}")
                        raise

                    if attempt < max_retries:
                        wait_time = delay * (backoff_multiplier ** attempt)
                        logger.warning(f"Attempt {attempt + 1} failed for {func.__name__}: {e}. Retrying in {wait_time:.1f}s...")
                        time.sleep(wait_time)
                        continue
                    else:
                        logger.error(f"All {max_retries + 1} attempts failed for {func.__name__}: {e}")
                        raise

            raise last_exception
        return wrapper
    return decorator


def _should_retry_error(error: Exception) -> bool:
    """
    Determine if an error should be retried.

    Args:
        error: The exception to check

    Returns:
        True if the error should be retried, False otherwise
    """
    if isinstance(error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return True

    status_code = getattr(error, 'status_code', None)
    if status_code:
        # Don't retry client errors (4xx) except for 429 (rate limit) and 408 (timeout)
        if 400 <= status_code < 500:
            return status_code in [408, 429]

        if 500 <= status_code < 600:
            return True

    if isinstance(error, (ValueError, KeyError, TypeError)):
        return False

    return True


def extract_error_message(error_response: Dict[str, Any]) -> str:
    """Extract meaningful error message from API response."""
    if isinstance(error_response, dict):
        if "error" in error_response:
            return str(error_response["error"])
        elif "message" in error_response:
            return str(error_response["message"])
        elif "detail" in error_response:
            return str(error_response["detail"])

    return str(error_response)


def parse_iso_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp into an aware datetime (UTC if naive).

    Accepts the trailing ``Z`` the booking API and intent parser emit.
    Returns None for empty or unparseable input.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_iso_datetime(value: datetime) -> str:
    """Format an aware datetime as UTC ISO 8601 with a ``Z`` suffix."""
    return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def resolve_timezone(tz_name: Optional[str]) -> tzinfo:
    """ZoneInfo for an IANA name, falling back to UTC for unknown names."""
    try:
        return ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc
