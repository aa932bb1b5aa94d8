"""Readline integration for command history and line editing."""

import logging
import os
from pathlib import Path
from typing import Callable, Optional

try:
    import readline
    HAS_READLINE = True
except ImportError:
    HAS_READLINE = False


class ReadlineHandler:
    """Handles readline integration for command history and completion."""

    def __init__(self, history_file: Optional[str] = None, history_size: int = 1000):
        """Initialize readline handler.

        Args:
            history_file: Path to history file. Defaults to ~/.config/iris-agent/history
            history_size: Maximum number of history entries to keep
        """
        self.has_readline = HAS_READLINE
        self.history_size = history_size
        self.history_file = history_file or str(Path.home() / ".config" / "iris-agent" / "history")
        self.completer_function: Optional[Callable] = None
        self.logger = logging.getLogger(__name__)

        if self.has_readline:
            self._setup_readline()

    def _setup_readline(self) -> None:
        readline.set_history_length(self.history_size)
        readline.parse_and_bind("tab: complete")

        if os.environ.get("EDITOR", "").endswith("vi"):
            readline.parse_and_bind("set editing-mode vi")
        else:
            readline.parse_and_bind("set editing-mode emacs")

        self._load_history()

    def _load_history(self) -> None:
        if not os.path.exists(self.history_file):
            return
        try:
            readline.read_history_file(self.history_file)
        except OSError as e:
            self.logger.debug(f"Could not load history from {self.history_file}: {e}")

    def save_history(self) -> None:
        """Save command history to file."""
        if not self.has_readline:
            return

        try:
            os.makedirs(os.path.dirname(self.history_file) or ".", exist_ok=True)
            readline.write_history_file(self.history_file)
        except OSError as e:
            self.logger.debug(f"Could not save history to {self.history_file}: {e}")

    def set_completer(self, completer_function: Callable) -> None:
        """Set the tab completion function.

        Args:
            completer_function: Function that takes (text, state) and returns completion
        """
        self.completer_function = completer_function
        if self.has_readline:
            readline.set_completer(completer_function)

    def line_buffer(self) -> str:
        """Full text of the line being edited."""
        return readline.get_line_buffer() if self.has_readline else ""

    def input_with_prompt(self, prompt: str) -> str:
        """Read a line, with editing and history when readline is available."""
        return input(prompt)
