"""Core data model shared by resolvers, the command processor and sessions."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import SettingsInvariantError


class IntentAction(str, Enum):
    """Closed vocabulary of actions an intent can carry."""

    GET_ROOMS = "getRooms"
    GET_BOOKINGS = "getBookings"
    CHECK_AVAILABILITY = "checkAvailability"
    CREATE_BOOKING = "createBooking"
    CANCEL_BOOKING = "cancelBooking"
    BULK_CANCEL = "bulkCancel"
    NEEDS_MORE_INFO = "needsMoreInfo"
    UNKNOWN = "unknown"

    @classmethod
    def normalize(cls, value: Any) -> "IntentAction":
        """Map any incoming action name onto the closed set.

        ``findRooms`` is an alias of ``getRooms`` (filters travel in params);
        anything unrecognised becomes ``unknown``.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return cls.UNKNOWN
        if value == "findRooms":
            return cls.GET_ROOMS
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class ResolverSource(str, Enum):
    """Which strategy produced an intent."""

    BUILTIN = "builtin"
    DIRECT = "direct"
    PATTERN = "pattern"
    REMOTE = "remote"


class Intent(BaseModel):
    """Structured result of resolving free-form command text."""

    model_config = ConfigDict(frozen=True)

    action: IntentAction = Field(..., description="Action from the closed vocabulary")
    params: Dict[str, Any] = Field(default_factory=dict, description="Action parameters")
    confidence: Optional[float] = Field(None, description="Resolver-reported certainty")
    source_resolver: ResolverSource = Field(..., description="Resolver that produced this intent")
    response_text: Optional[str] = Field(None, description="Conversational text from the resolver")

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], source: ResolverSource) -> "Intent":
        """Build an intent from a wire payload ``{action, params, response}``."""
        params = payload.get("params")
        if params is None:
            params = payload.get("parameters")
        if not isinstance(params, dict):
            params = {}
        params = {k: v for k, v in params.items() if v is not None}
        response = payload.get("response")
        confidence = payload.get("confidence")
        return cls(
            action=IntentAction.normalize(payload.get("action")),
            params=params,
            confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
            source_resolver=source,
            response_text=response if isinstance(response, str) and response else None,
        )


class ContextEntry(BaseModel):
    """One remembered (command, intent, response) triple. Immutable."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    command: str
    action: IntentAction
    params: Dict[str, Any] = Field(default_factory=dict)
    response: Optional[str] = None


class ResolverSettings(BaseModel):
    """Which resolvers an operator has enabled. At least one must be on."""

    use_simple_nlp: bool = Field(default=False, alias="useSimpleNLP")
    use_llm: bool = Field(default=True, alias="useLLM")

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def with_changes(self, use_simple_nlp: Optional[bool] = None,
                     use_llm: Optional[bool] = None) -> "ResolverSettings":
        """Return validated settings with the given fields replaced.

        Raises:
            SettingsInvariantError: if both resolvers would end up disabled.
        """
        candidate = ResolverSettings(
            use_simple_nlp=self.use_simple_nlp if use_simple_nlp is None else use_simple_nlp,
            use_llm=self.use_llm if use_llm is None else use_llm,
        )
        candidate.ensure_valid()
        return candidate

    def ensure_valid(self) -> None:
        if not (self.use_simple_nlp or self.use_llm):
            raise SettingsInvariantError(
                "At least one of Simple NLP or LLM parsing must stay enabled"
            )

    def to_storage(self) -> Dict[str, bool]:
        return {"useSimpleNLP": self.use_simple_nlp, "useLLM": self.use_llm}


class HealthStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ResolverHealth(BaseModel):
    """Last known reachability of the remote resolver."""

    model_config = ConfigDict(frozen=True)

    status: HealthStatus = HealthStatus.DISCONNECTED
    last_checked: Optional[datetime] = None

    @property
    def connected(self) -> bool:
        return self.status == HealthStatus.CONNECTED


class ProcessingState(str, Enum):
    """States of the command processor."""

    IDLE = "idle"
    PARSING = "parsing"
    ROUTING = "routing"
    EXECUTING_BUILTIN = "executing_builtin"
    EXECUTING_DIRECT = "executing_direct"
    EXECUTING_NLP = "executing_nlp"
    EXECUTING_LLM = "executing_llm"
    FALLBACK = "fallback"
    ERROR = "error"

    @property
    def is_executing(self) -> bool:
        return self.value.startswith("executing_")


class User(BaseModel):
    """Authenticated operator profile as returned by the booking API."""

    id: str
    email: Optional[str] = None
    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    role: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or self.email or self.id


class CommandOutcome(BaseModel):
    """What ``submit`` reports back for one command."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    command: str
    command_id: Optional[str] = None
    state: ProcessingState
    success: bool
    intent: Optional[Intent] = None
    resolver: Optional[ResolverSource] = None
    message: str = ""
    data: Any = None
    error: Optional[str] = None
    clarification: bool = False
    missing_fields: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    attempts: int = 1
    can_retry: bool = False
