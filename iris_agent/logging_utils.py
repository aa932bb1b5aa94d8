import logging
from typing import Optional

from .utils.command_context import get_command_id, format_command_id


class CommandIDFormatter(logging.Formatter):
    """Log formatter that stamps the current command id on every record.

    Format: timestamp [command_id] level logger_name: message
    Example: 2025-10-19 14:30:15,123 [cmd_a1b2c3] INFO iris_agent.processor: Routing to remote resolver
    """

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None):
        if fmt is None:
            fmt = "%(asctime)s [%(command_id)s] %(levelname)s %(name)s: %(message)s"
        elif "[%(command_id)s]" not in fmt:
            fmt = fmt.replace("%(levelname)s", "[%(command_id)s] %(levelname)s")

        super().__init__(fmt, datefmt)

    def format(self, record: logging.LogRecord) -> str:
        record.command_id = format_command_id(get_command_id())
        return super().format(record)


def setup_logging(log_level: str = "INFO", include_command_id: bool = True):
    """
    Set up logging for the application.

    Args:
        log_level (str): Logging level as a string (e.g., 'DEBUG', 'INFO').
        include_command_id (bool): Whether to include command ids in log lines.
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    if include_command_id:
        formatter = CommandIDFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)

    root_logger.addHandler(console_handler)


def log_transition(logger: logging.Logger, machine_id: str, source: str, target: str, event: str):
    """Log a state machine transition at DEBUG level."""
    logger.debug(f"[{machine_id}] {source} --{event}--> {target}")
