"""Built-in terminal commands.

Built-ins are answered locally without any resolver and never create a
conversation context entry.
"""

import logging
from typing import Dict, List, Optional

from .. import __version__
from ..errors import CommandRejectedError, SettingsInvariantError
from .base import BaseCommand, CommandContext, CommandResult

ON_WORDS = ("on", "true", "enable", "enabled", "1")
OFF_WORDS = ("off", "false", "disable", "disabled", "0")


class HelpCommand(BaseCommand):
    def __init__(self, registry: "CommandRegistry"):
        super().__init__()
        self.registry = registry

    @property
    def name(self) -> str:
        return "help"

    @property
    def description(self) -> str:
        return "Show available commands"

    async def execute(self, context: CommandContext) -> CommandResult:
        lines = ["Built-in commands:"]
        for command in self.registry.commands():
            names = ", ".join([command.name] + command.aliases)
            lines.append(f"  {names:<18} {command.description}")
        lines.extend([
            "",
            "Direct commands:",
            "  rooms              List all rooms",
            "  bookings, list     List your active bookings",
            "  cancel <id>        Cancel a booking",
            "",
            "Anything else is interpreted as natural language, e.g.",
            '  "is skagen free tomorrow at 8?"  "book it"  "cancel all today"',
        ])
        return CommandResult.success_result(message="\n".join(lines))


class ClearCommand(BaseCommand):
    def __init__(self):
        super().__init__()
        self.add_alias("cls")

    @property
    def name(self) -> str:
        return "clear"

    @property
    def description(self) -> str:
        return "Clear the terminal"

    async def execute(self, context: CommandContext) -> CommandResult:
        return CommandResult.success_result().with_metadata(clear_screen=True)


class EchoCommand(BaseCommand):
    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Print the given text"

    @property
    def usage(self) -> str:
        return "echo <text>"

    async def execute(self, context: CommandContext) -> CommandResult:
        text = context.user_input.strip()[len(self.name):].strip()
        return CommandResult.success_result(message=text)


class StatusCommand(BaseCommand):
    @property
    def name(self) -> str:
        return "status"

    @property
    def description(self) -> str:
        return "Show session and resolver status"

    async def execute(self, context: CommandContext) -> CommandResult:
        if context.host is None:
            return CommandResult.error_result("Status is not available outside a session")
        info = context.host.describe()
        lines = [f"{key}: {value}" for key, value in info.items()]
        return CommandResult.success_result(data=info, message="\n".join(lines))


class AboutCommand(BaseCommand):
    def __init__(self):
        super().__init__()
        self.add_alias("info")

    @property
    def name(self) -> str:
        return "about"

    @property
    def description(self) -> str:
        return "About IRIS"

    async def execute(self, context: CommandContext) -> CommandResult:
        return CommandResult.success_result(
            message=(
                f"IRIS Agent {__version__}\n"
                "Intelligent Room Interface System. Resolves booking commands with "
                "fast pattern matching, a remote AI intent parser, or direct dispatch."
            )
        )


class SettingsCommand(BaseCommand):
    """``settings`` shows resolver settings; ``settings nlp|llm on|off`` changes them."""

    def __init__(self):
        super().__init__()
        self.add_alias("config")

    @property
    def name(self) -> str:
        return "settings"

    @property
    def description(self) -> str:
        return "Show or change resolver settings"

    @property
    def usage(self) -> str:
        return "settings [nlp|llm] [on|off]"

    async def execute(self, context: CommandContext) -> CommandResult:
        if context.host is None:
            return CommandResult.error_result("Settings are not available outside a session")

        args = [a.lower() for a in context.arguments]
        if not args:
            return self._show(context)

        if len(args) != 2 or args[0] not in ("nlp", "llm") or args[1] not in ON_WORDS + OFF_WORDS:
            return CommandResult.error_result(f"Usage: {self.usage}")

        enabled = args[1] in ON_WORDS
        try:
            if args[0] == "nlp":
                settings = context.host.update_settings(use_simple_nlp=enabled)
            else:
                settings = context.host.update_settings(use_llm=enabled)
        except SettingsInvariantError as e:
            return CommandResult.error_result(e.message, data=context.host.get_settings().to_storage())

        return CommandResult.success_result(
            data=settings.to_storage(),
            message=f"{args[0].upper()} parsing {'enabled' if enabled else 'disabled'}",
        )

    def _show(self, context: CommandContext) -> CommandResult:
        settings = context.host.get_settings()
        health = context.host.get_health()
        message = (
            f"Simple NLP: {'on' if settings.use_simple_nlp else 'off'}\n"
            f"LLM:        {'on' if settings.use_llm else 'off'} ({health.status.value})"
        )
        return CommandResult.success_result(data=settings.to_storage(), message=message)


class DemoCommand(BaseCommand):
    def __init__(self):
        super().__init__()
        self.add_alias("showtime")

    @property
    def name(self) -> str:
        return "demo"

    @property
    def description(self) -> str:
        return "Enter demo mode"

    async def execute(self, context: CommandContext) -> CommandResult:
        if context.host is None:
            return CommandResult.error_result("Demo mode needs a session")
        try:
            context.host.start_demo()
        except CommandRejectedError as e:
            return CommandResult.error_result(e.message)
        return CommandResult.success_result(message="Demo mode started. Type 'stop' to end it.")


class StopCommand(BaseCommand):
    @property
    def name(self) -> str:
        return "stop"

    @property
    def description(self) -> str:
        return "Leave demo mode"

    async def execute(self, context: CommandContext) -> CommandResult:
        if context.host is None:
            return CommandResult.error_result("Demo mode needs a session")
        try:
            context.host.stop_demo()
        except CommandRejectedError as e:
            return CommandResult.error_result(e.message)
        return CommandResult.success_result(message="Demo mode stopped.")


class CommandRegistry:
    """Lookup of built-in commands by name or alias."""

    def __init__(self):
        self._commands: Dict[str, BaseCommand] = {}
        self._aliases: Dict[str, str] = {}
        self.logger = logging.getLogger(__name__)

    def register(self, command: BaseCommand) -> "CommandRegistry":
        self._commands[command.name] = command
        for alias in command.aliases:
            self._aliases[alias] = command.name
        self.logger.debug(f"Registered built-in '{command.name}'")
        return self

    def get(self, name: str) -> Optional[BaseCommand]:
        name = name.lower()
        return self._commands.get(self._aliases.get(name, name))

    def match(self, text: str) -> Optional[BaseCommand]:
        """The built-in addressed by the first word of ``text``, if any."""
        words = text.strip().split()
        return self.get(words[0]) if words else None

    def commands(self) -> List[BaseCommand]:
        return list(self._commands.values())


def create_builtin_registry() -> CommandRegistry:
    registry = CommandRegistry()
    for command in (
        HelpCommand(registry),
        ClearCommand(),
        EchoCommand(),
        StatusCommand(),
        AboutCommand(),
        SettingsCommand(),
        DemoCommand(),
        StopCommand(),
    ):
        registry.register(command)
    return registry
