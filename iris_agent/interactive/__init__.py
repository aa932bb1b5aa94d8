"""Interactive mode support: line editing, history and tab completion."""

from .readline_handler import ReadlineHandler
from .tab_completer import TabCompleter

__all__ = ["ReadlineHandler", "TabCompleter"]
