"""Base command interfaces and data structures."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from ..errors import ValidationError
from ..models import ResolverHealth, ResolverSettings


class CommandHost(Protocol):
    """What built-in commands may reach in the owning session."""

    def get_settings(self) -> ResolverSettings:
        ...

    def update_settings(self, use_simple_nlp: Optional[bool] = None,
                        use_llm: Optional[bool] = None) -> ResolverSettings:
        ...

    def get_health(self) -> ResolverHealth:
        ...

    def describe(self) -> Dict[str, Any]:
        ...

    def start_demo(self) -> None:
        ...

    def stop_demo(self) -> None:
        ...


@dataclass
class CommandContext:
    """Context information for command execution."""

    user_input: str
    parsed_parameters: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None
    timezone: str = "UTC"
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    host: Optional[CommandHost] = None

    @property
    def arguments(self) -> List[str]:
        """Whitespace-separated words after the command name."""
        return self.user_input.split()[1:]

    def get_parameter(self, key: str, default: Any = None) -> Any:
        """Get parameter value with optional default."""
        value = self.parsed_parameters.get(key)
        return default if value in (None, "") else value

    def has_parameter(self, key: str) -> bool:
        """Check if parameter exists and is not empty."""
        return self.parsed_parameters.get(key) not in (None, "")

    def require_parameters(self, *keys: str, hint: str = "") -> None:
        """Raise ValidationError naming every missing parameter."""
        missing = [k for k in keys if not self.has_parameter(k)]
        if missing:
            message = f"Missing required information: {', '.join(missing)}"
            if hint:
                message += f". {hint}"
            raise ValidationError(message, missing_fields=missing)


@dataclass
class CommandResult:
    """Result of command execution."""

    success: bool
    data: Any = None
    message: str = ""
    error: Optional[str] = None
    clarification: bool = False
    missing_fields: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success_result(cls, data: Any = None, message: str = "") -> "CommandResult":
        """Create a successful result."""
        return cls(success=True, data=data, message=message)

    @classmethod
    def error_result(cls, error: str, data: Any = None) -> "CommandResult":
        """Create an error result."""
        return cls(success=False, error=error, data=data, message=error)

    @classmethod
    def clarification_result(cls, message: str, missing_fields: Optional[List[str]] = None) -> "CommandResult":
        """A request for more input. Counts as handled, not as a failure."""
        return cls(success=True, message=message, clarification=True,
                   missing_fields=list(missing_fields or []))

    def with_metadata(self, **metadata) -> "CommandResult":
        """Add metadata to the result."""
        self.metadata.update(metadata)
        return self


class BaseCommand(ABC):
    """Abstract base class for built-in commands."""

    def __init__(self):
        self._aliases: List[str] = []

    @property
    @abstractmethod
    def name(self) -> str:
        """Command name identifier."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable command description."""
        pass

    @property
    def usage(self) -> str:
        return self.name

    @property
    def aliases(self) -> List[str]:
        """Alternative names for this command."""
        return self._aliases

    def add_alias(self, alias: str) -> "BaseCommand":
        """Add an alias for this command."""
        if alias not in self._aliases:
            self._aliases.append(alias)
        return self

    @abstractmethod
    async def execute(self, context: CommandContext) -> CommandResult:
        """Run the command."""
        pass

    def __str__(self) -> str:
        return f"{self.name}: {self.description}"
