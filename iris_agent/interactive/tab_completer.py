"""Tab completion for interactive mode."""

from typing import Callable, Iterable, List, Optional

from ..commands.builtin import CommandRegistry
from ..processor.routing import DIRECT_COMMANDS

REPL_COMMANDS = ("retry", "reset", "exit", "quit")

# Second words offered after a command
ARGUMENTS = {
    "settings": ["nlp", "llm"],
    "cancel": ["all"],
}
SWITCHES = ["on", "off"]


class TabCompleter:
    """Completes built-in, direct and interactive-mode command words.

    Args:
        registry: Built-in commands whose names and aliases are offered.
        get_line: Returns the whole line being edited. Without it only the
            word under the cursor is known and it is completed as a command.
        extra: Additional first words, such as ``retry`` and ``exit``.
    """

    def __init__(self, registry: CommandRegistry,
                 get_line: Optional[Callable[[], str]] = None,
                 extra: Iterable[str] = REPL_COMMANDS):
        self.registry = registry
        self.get_line = get_line
        names = set(DIRECT_COMMANDS) | {"cancel"} | set(extra)
        for command in registry.commands():
            names.add(command.name)
            names.update(command.aliases)
        self.commands = sorted(names)
        self._matches: List[str] = []

    def complete(self, text: str, state: int) -> Optional[str]:
        """Readline completer: the ``state``-th completion of ``text``."""
        if state == 0:
            line = self.get_line() if self.get_line is not None else ""
            self._matches = self.completions(line or text)
        return self._matches[state] if state < len(self._matches) else None

    def completions(self, line: str) -> List[str]:
        """Candidates for the last word of ``line``."""
        words = line.split()
        if not words or line[-1].isspace():
            words.append("")
        prefix = words[-1].lower()

        if len(words) == 1:
            candidates = self.commands
        else:
            command = self.registry.get(words[0])
            head = command.name if command is not None else words[0].lower()
            if len(words) == 2:
                candidates = ARGUMENTS.get(head, [])
            elif len(words) == 3 and head == "settings":
                candidates = SWITCHES
            else:
                candidates = []
        return [c for c in candidates if c.startswith(prefix)]
