"""Durable client-side state: auth token, user profile and resolver settings.

The whole state lives in one JSON file that is rewritten atomically (write a
sibling temp file, then ``os.replace``), so a crash mid-write leaves either
the old or the new content, never a mix.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from .errors import SettingsInvariantError
from .models import ResolverSettings, User


class PersistedState(BaseModel):
    """Everything that survives a restart."""

    token: Optional[str] = None
    user: Optional[User] = None
    settings: ResolverSettings = Field(default_factory=ResolverSettings)

    @property
    def authenticated(self) -> bool:
        return bool(self.token) and self.user is not None


class StateStore:
    """JSON file backed store for :class:`PersistedState`."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()
        self.logger = logging.getLogger(__name__)

    def load(self) -> PersistedState:
        """Read the persisted state. Missing or unreadable files yield defaults."""
        if not self.path.exists():
            return PersistedState()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            state = PersistedState.model_validate(data or {})
            state.settings.ensure_valid()
        except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
            self.logger.warning(f"Ignoring unreadable state file {self.path}: {e}")
            return PersistedState()
        except SettingsInvariantError:
            self.logger.warning(f"Stored settings in {self.path} disable every resolver, using defaults")
            state = state.model_copy(update={"settings": ResolverSettings()})
        return state

    def save(self, state: PersistedState) -> None:
        """Atomically replace the stored state.

        Raises:
            OSError: if the file cannot be written. The previous content is kept.
        """
        data = {
            "token": state.token,
            "user": state.user.model_dump(by_alias=True, exclude_none=True) if state.user else None,
            "settings": state.settings.to_storage(),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(str(tmp_path), str(self.path))
        except OSError as e:
            self.logger.error(f"Failed to save state to {self.path}: {e}")
            if tmp_path.exists():
                tmp_path.unlink()
            raise
        self.logger.debug(f"Saved state to {self.path}")

    def save_auth(self, token: str, user: User, settings: ResolverSettings) -> None:
        self.save(PersistedState(token=token, user=user, settings=settings))

    def save_settings(self, settings: ResolverSettings) -> None:
        """Persist new settings, keeping whatever auth is stored."""
        state = self.load()
        self.save(state.model_copy(update={"settings": settings}))

    def clear_auth(self) -> None:
        """Forget token and user. Settings are kept."""
        state = self.load()
        self.save(PersistedState(settings=state.settings))
