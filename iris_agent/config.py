"""Configuration management for IRIS Agent."""

import os
import json
from pathlib import Path
from typing import Optional, Dict, Any, List, Union
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator
import logging
from urllib.parse import urlparse

try:
    import yaml
    YAML_AVAILABLE = True
except ImportError:
    YAML_AVAILABLE = False

try:
    import tomli
    TOML_AVAILABLE = True
except ImportError:
    TOML_AVAILABLE = False


DEFAULT_CONTEXTUAL_PHRASES = [
    r"\b(book it|reserve it|get it|take it)\b",
    r"\b(that room|this room|same room|the room)\b",
    r"\b(same time|that time|this time)\b",
    r"\b(book that|reserve that|book this|reserve this)\b",
    r"^(it|that|this)$",
]


def _validate_url(v: str) -> str:
    if not v:
        raise ValueError("URL cannot be empty")

    # Add http:// if no scheme provided
    if not v.startswith(('http://', 'https://')):
        v = f'http://{v}'

    parsed = urlparse(v)
    if not parsed.netloc:
        raise ValueError(f"Invalid URL format: {v}")

    return v.rstrip('/')


class BookingApiConfig(BaseModel):
    """Configuration for the booking domain API connection."""

    base_url: str = Field(default="http://localhost:3000", description="Booking API base URL")
    max_retries: int = Field(default=3, description="Maximum retry attempts for idempotent reads")
    request_timeout: int = Field(default=30, description="Request timeout in seconds")

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Validate that base_url is a properly formatted URL."""
        return _validate_url(v)

    @field_validator('max_retries')
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Validate max_retries is reasonable."""
        if v < 0:
            raise ValueError("max_retries cannot be negative")
        if v > 10:
            raise ValueError("max_retries should not exceed 10 (excessive retrying)")
        return v

    @field_validator('request_timeout')
    @classmethod
    def validate_request_timeout(cls, v: int) -> int:
        """Validate request_timeout is reasonable."""
        if v <= 0:
            raise ValueError("request_timeout must be positive")
        if v > 300:  # 5 minutes
            raise ValueError("request_timeout should not exceed 300 seconds")
        return v


class ResolverConfig(BaseModel):
    """Configuration for intent resolution and routing."""

    intent_url: Optional[str] = Field(None, description="AI intent-parsing service URL (defaults to booking API)")
    backend: str = Field(default="http", description="Intent backend: http, openai or anthropic")
    request_timeout: float = Field(default=12.0, description="Remote resolver timeout in seconds")
    confidence_threshold: float = Field(default=0.8, description="Minimum pattern confidence for local resolution")
    contextual_phrases: List[str] = Field(
        default_factory=lambda: list(DEFAULT_CONTEXTUAL_PHRASES),
        description="Regex phrases marking a command as a contextual reference"
    )
    history_window: int = Field(default=3, description="Context entries sent with each remote request")
    health_poll_interval: float = Field(default=5.0, description="Seconds between health probes")

    @field_validator('intent_url')
    @classmethod
    def validate_intent_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _validate_url(v)

    @field_validator('backend')
    @classmethod
    def validate_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ('http', 'openai', 'anthropic'):
            raise ValueError(f"Unknown intent backend: {v}")
        return v

    @field_validator('request_timeout')
    @classmethod
    def validate_request_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("request_timeout must be positive")
        if v > 60:
            raise ValueError("request_timeout should not exceed 60 seconds")
        return v

    @field_validator('confidence_threshold')
    @classmethod
    def validate_confidence_threshold(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("confidence_threshold must be between 0 and 1")
        return v

    @field_validator('history_window')
    @classmethod
    def validate_history_window(cls, v: int) -> int:
        if v < 0:
            raise ValueError("history_window cannot be negative")
        return v

    @field_validator('health_poll_interval')
    @classmethod
    def validate_health_poll_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("health_poll_interval must be positive")
        return v


class LLMConfig(BaseModel):
    """Configuration for direct LLM intent backends."""

    openai_api_key: Optional[str] = Field(None, description="OpenAI API key")
    anthropic_api_key: Optional[str] = Field(None, description="Anthropic API key")
    default_model: str = Field(default="gpt-4o-mini", description="Default LLM model")


class ContextConfig(BaseModel):
    """Configuration for the conversation context store."""

    max_entries: int = Field(default=10, description="Entries kept per user")
    ttl_minutes: float = Field(default=30.0, description="Entry lifetime in minutes")
    sweep_interval_minutes: float = Field(default=15.0, description="Minutes between expiry sweeps")

    @field_validator('max_entries')
    @classmethod
    def validate_max_entries(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_entries must be at least 1")
        return v

    @field_validator('ttl_minutes', 'sweep_interval_minutes')
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("value must be positive")
        return v


class ProcessorConfig(BaseModel):
    """Configuration for the command processor."""

    max_attempts: int = Field(default=3, description="Consecutive failed attempts before a command is abandoned")

    @field_validator('max_attempts')
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be at least 1")
        return v


class StorageConfig(BaseModel):
    """Configuration for durable client-side state."""

    state_file: str = Field(
        default_factory=lambda: str(Path.home() / ".config" / "iris-agent" / "state.json"),
        description="Path of the persisted auth/settings file"
    )
    history_file: str = Field(
        default_factory=lambda: str(Path.home() / ".config" / "iris-agent" / "history"),
        description="Path of the interactive mode command history"
    )


class AppConfig(BaseModel):
    """Main application configuration."""

    booking_api: BookingApiConfig = Field(default_factory=BookingApiConfig)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    processor: ProcessorConfig = Field(default_factory=ProcessorConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    timezone: str = Field(default="UTC", description="Operator timezone sent to the intent parser")
    log_level: str = Field(default="INFO", description="Logging level")


def load_config_file(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load configuration from a file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger = logging.getLogger(__name__)

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            if config_path.suffix.lower() in ['.yaml', '.yml']:
                if not YAML_AVAILABLE:
                    raise ImportError("PyYAML is required for YAML config files. Install with: pip install pyyaml")
                return yaml.safe_load(f) or {}

            elif config_path.suffix.lower() == '.toml':
                if not TOML_AVAILABLE:
                    raise ImportError("tomli is required for TOML config files. Install with: pip install tomli")
                return tomli.load(f.buffer)

            elif config_path.suffix.lower() == '.json':
                return json.load(f) or {}

            else:
                raise ValueError(f"Unsupported config file format: {config_path.suffix}")

    except Exception as e:
        logger.error(f"Failed to load config file {config_path}: {e}")
        raise


def find_config_file() -> Optional[Path]:
    """Find configuration file in standard locations."""
    search_paths = [
        Path.cwd() / "config.yaml",
        Path.cwd() / "config.yml",
        Path.cwd() / "config.toml",
        Path.cwd() / "config.json",
        Path.cwd() / ".iris-agent.yaml",
        Path.cwd() / ".iris-agent.yml",
        Path.cwd() / ".iris-agent.toml",
        Path.cwd() / ".iris-agent.json",
        Path.home() / ".config" / "iris-agent" / "config.yaml",
        Path.home() / ".config" / "iris-agent" / "config.yml",
        Path.home() / ".config" / "iris-agent" / "config.toml",
        Path.home() / ".config" / "iris-agent" / "config.json",
    ]

    for config_path in search_paths:
        if config_path.exists():
            return config_path

    return None


def merge_config(base_config: Dict[str, Any], override_config: Dict[str, Any]) -> Dict[str, Any]:
    """Merge configuration dictionaries with override taking precedence."""
    merged = base_config.copy()

    for key, value in override_config.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value

    return merged


def _split_phrases(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    return [p.strip() for p in value.split('|||') if p.strip()]


def load_config(config_file: Optional[Union[str, Path]] = None) -> AppConfig:
    """Load configuration from multiple sources with priority order.

    Priority (highest to lowest):
    1. Environment variables
    2. Specified config file (if provided)
    3. Auto-discovered config file
    4. Default values
    """
    logger = logging.getLogger(__name__)

    config_data = {}

    # 1. Load from config file (lowest priority)
    if config_file:
        config_path = Path(config_file)
        if config_path.exists():
            config_data = load_config_file(config_path)
            logger.info(f"Loaded configuration from: {config_path}")
        else:
            raise FileNotFoundError(f"Specified config file not found: {config_path}")
    else:
        config_path = find_config_file()
        if config_path:
            config_data = load_config_file(config_path)
            logger.info(f"Auto-discovered configuration file: {config_path}")

    # 2. Load .env file (medium priority)
    load_dotenv()

    # 3. Override with environment variables (highest priority)
    env_config = {
        "booking_api": {
            "base_url": os.getenv("IRIS_API_URL"),
            "max_retries": os.getenv("MAX_RETRIES"),
            "request_timeout": os.getenv("REQUEST_TIMEOUT"),
        },
        "resolver": {
            "intent_url": os.getenv("IRIS_INTENT_URL"),
            "backend": os.getenv("IRIS_INTENT_BACKEND"),
            "request_timeout": os.getenv("IRIS_INTENT_TIMEOUT"),
            "confidence_threshold": os.getenv("IRIS_CONFIDENCE_THRESHOLD"),
            "contextual_phrases": _split_phrases(os.getenv("IRIS_CONTEXTUAL_PHRASES")),
            "health_poll_interval": os.getenv("IRIS_HEALTH_POLL_INTERVAL"),
        },
        "llm": {
            "openai_api_key": os.getenv("OPENAI_API_KEY"),
            "anthropic_api_key": os.getenv("ANTHROPIC_API_KEY"),
            "default_model": os.getenv("DEFAULT_MODEL"),
        },
        "storage": {
            "state_file": os.getenv("IRIS_STATE_FILE"),
            "history_file": os.getenv("IRIS_HISTORY_FILE"),
        },
        "timezone": os.getenv("IRIS_TIMEZONE"),
        "log_level": os.getenv("LOG_LEVEL"),
    }

    # Remove None values from env config
    def remove_none_values(d):
        if isinstance(d, dict):
            return {k: remove_none_values(v) for k, v in d.items() if v is not None}
        return d

    env_config = remove_none_values(env_config)

    final_config = merge_config(config_data, env_config)

    # Pydantic coerces the string values coming from the environment
    return AppConfig(**final_config)
