"""Background services shared by sessions - scheduling, memory and health."""

from .scheduler import Clock, SystemClock, ManualClock, ScheduledTask, Scheduler
from .context_store import ConversationContextStore, UserContext
from .health_monitor import HealthMonitor

__all__ = [
    "Clock",
    "SystemClock",
    "ManualClock",
    "ScheduledTask",
    "Scheduler",
    "ConversationContextStore",
    "UserContext",
    "HealthMonitor",
]
