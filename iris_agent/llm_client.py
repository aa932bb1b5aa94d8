"""Intent backends for the remote resolver.

A backend turns one command plus a short conversation summary into a raw
``{action, params, response}`` payload. The default backend posts to the AI
intent-parsing endpoint; the OpenAI and Anthropic backends build the
extraction prompt themselves and call the provider directly.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

try:
    import openai
    OPENAI_AVAILABLE = True
except ImportError:
    OPENAI_AVAILABLE = False

try:
    import anthropic
    ANTHROPIC_AVAILABLE = True
except ImportError:
    ANTHROPIC_AVAILABLE = False

from .config import AppConfig, LLMConfig
from .models import ContextEntry, IntentAction
from .async_api_client import AsyncBookingClient
from .services.context_store import ConversationContextStore


class IntentBackendType(Enum):
    """Supported intent backends."""
    HTTP = "http"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


SYSTEM_PROMPT = "You are a precise intent parser for a room booking system. Return ONLY valid JSON."

ACTION_VOCABULARY = " | ".join(f'"{a.value}"' for a in IntentAction) + ' | "findRooms"'


def history_payload(history: Sequence[ContextEntry]) -> List[Dict[str, Any]]:
    return [
        {
            "timestamp": entry.timestamp.isoformat(),
            "command": entry.command,
            "action": entry.action.value,
            "params": entry.params,
            "response": entry.response,
        }
        for entry in history
    ]


def local_time_description(tz_name: str, now: Optional[datetime] = None) -> str:
    """Human-readable current time in the operator's timezone (UTC if unknown)."""
    now = now or datetime.now(timezone.utc)
    try:
        now = now.astimezone(ZoneInfo(tz_name))
    except (ZoneInfoNotFoundError, ValueError):
        now = now.astimezone(timezone.utc)
    return now.strftime("%A, %B %d, %Y %H:%M")


def build_intent_prompt(command: str, tz_name: str, history: Sequence[ContextEntry],
                        now: Optional[datetime] = None) -> str:
    """Build the intent extraction prompt."""
    context_summary = ""
    if history:
        context_summary = (
            "\n\nRECENT CONVERSATION HISTORY:\n"
            f"{ConversationContextStore.summarize(history)}\n"
            "\nUse this history to resolve contextual queries:\n"
            "- 'book it', 'that room', 'same time' take roomName, roomId and startTime "
            "from the most recent checkAvailability or getRooms action\n"
            "- 'any available?', 'what's free?' take location, startTime and endTime "
            "from the most recent command\n"
        )

    return f"""Extract structured intent from a user command for a room booking system.

Current date/time: {local_time_description(tz_name, now)}
User's timezone: {tz_name}{context_summary}

Extract the intent from this command: "{command}"

Respond with ONLY valid JSON in this exact format:
{{
  "action": {ACTION_VOCABULARY},
  "params": {{
    "roomId": "string (if applicable)",
    "roomName": "string (always extract if mentioned, even partial names)",
    "startTime": "ISO 8601 UTC datetime (if applicable)",
    "endTime": "ISO 8601 UTC datetime (if applicable)",
    "duration": "number of minutes (default 60 for bookings)",
    "title": "string (if applicable)",
    "bookingId": "string (if applicable)",
    "filter": "all|today|tomorrow|week (if applicable)",
    "capacity": "number (minimum capacity, if applicable)",
    "amenities": "comma-separated amenities (if applicable)",
    "location": "location name (if applicable)"
  }},
  "response": "short conversational reply (for needsMoreInfo or unknown)"
}}

Rules:
- User times are local to {tz_name}; convert them to UTC in timestamps
- "at 8" means 08:00 local time unless PM is stated
- Use getRooms with capacity/amenities/location params when the user filters rooms
- Only extract roomName for a specific room, never for a city or location
- Omit params that do not apply"""


def extract_json_payload(text: str) -> Dict[str, Any]:
    """Parse a model reply, tolerating markdown code fences.

    Raises:
        ValueError: if the reply is not a JSON object.
    """
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    cleaned = cleaned.strip()
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ValueError(f"Model reply is not valid JSON: {e}")
    if not isinstance(payload, dict):
        raise ValueError("Model reply is not a JSON object")
    return payload


class IntentBackend(ABC):
    """Abstract base class for intent backends."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    @abstractmethod
    async def parse(self, command: str, user_id: str, tz_name: str,
                    history: Sequence[ContextEntry]) -> Dict[str, Any]:
        """Return the raw intent payload for ``command``."""
        pass


class HttpIntentBackend(IntentBackend):
    """Posts commands to the AI intent-parsing endpoint."""

    def __init__(self, client: AsyncBookingClient, timeout: Optional[float] = None):
        super().__init__()
        self.client = client
        self.timeout = timeout

    async def parse(self, command: str, user_id: str, tz_name: str,
                    history: Sequence[ContextEntry]) -> Dict[str, Any]:
        payload = {
            "command": command,
            "userId": user_id,
            "timezone": tz_name,
            "recentHistory": history_payload(history),
        }
        return await self.client.parse_intent(payload, self.timeout)


class OpenAIIntentBackend(IntentBackend):
    """OpenAI-based intent extraction."""

    def __init__(self, config: LLMConfig):
        super().__init__()
        if not OPENAI_AVAILABLE:
            raise ImportError("OpenAI library not installed. Run: pip install openai")

        if not config.openai_api_key:
            raise ValueError("OpenAI API key not provided")

        self.client = openai.OpenAI(api_key=config.openai_api_key)
        self.model = config.default_model

    def _complete(self, prompt: str) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt}
            ],
            temperature=0.1,
            max_tokens=500
        )
        content = response.choices[0].message.content
        if not isinstance(content, str) or not content:
            raise ValueError("OpenAI response content is not a non-empty string.")
        return content

    async def parse(self, command: str, user_id: str, tz_name: str,
                    history: Sequence[ContextEntry]) -> Dict[str, Any]:
        prompt = build_intent_prompt(command, tz_name, history)
        loop = asyncio.get_running_loop()
        content = await loop.run_in_executor(None, self._complete, prompt)
        return extract_json_payload(content)


class AnthropicIntentBackend(IntentBackend):
    """Anthropic Claude-based intent extraction."""

    def __init__(self, config: LLMConfig):
        super().__init__()
        if not ANTHROPIC_AVAILABLE:
            raise ImportError("Anthropic library not installed. Run: pip install anthropic")

        if not config.anthropic_api_key:
            raise ValueError("Anthropic API key not provided")

        self.client = anthropic.Anthropic(api_key=config.anthropic_api_key)
        self.model = "claude-3-haiku-20240307"  # Fast model for parsing

    def _complete(self, prompt: str) -> str:
        response = self.client.messages.create(
            model=self.model,
            max_tokens=500,
            temperature=0.1,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}]
        )
        parts = [getattr(block, "text", "") for block in response.content]
        content = "".join(parts)
        if not content:
            raise ValueError("Anthropic response content is empty.")
        return content

    async def parse(self, command: str, user_id: str, tz_name: str,
                    history: Sequence[ContextEntry]) -> Dict[str, Any]:
        prompt = build_intent_prompt(command, tz_name, history)
        loop = asyncio.get_running_loop()
        content = await loop.run_in_executor(None, self._complete, prompt)
        return extract_json_payload(content)


def create_intent_backend(config: AppConfig, client: AsyncBookingClient) -> IntentBackend:
    """Factory function to create the configured intent backend."""
    backend = IntentBackendType(config.resolver.backend)

    if backend == IntentBackendType.HTTP:
        return HttpIntentBackend(client, timeout=config.resolver.request_timeout)
    elif backend == IntentBackendType.OPENAI:
        return OpenAIIntentBackend(config.llm)
    elif backend == IntentBackendType.ANTHROPIC:
        return AnthropicIntentBackend(config.llm)
    else:
        raise ValueError(f"Unsupported intent backend: {backend}")
