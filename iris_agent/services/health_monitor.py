"""Remote resolver health monitoring.

Probes the booking API health endpoint on a fixed interval and keeps the last
known connectivity of the remote intent resolver. Subscribers are told about
the current status when they subscribe and afterwards only when it changes,
so routing guards can read a cached status instead of probing per command.
"""

import logging
from typing import Any, Awaitable, Callable, List, Optional

from ..models import HealthStatus, ResolverHealth
from .scheduler import Clock, ScheduledTask, Scheduler, SystemClock

HealthListener = Callable[[ResolverHealth], None]
HealthProbe = Callable[[], Awaitable[Any]]


def _is_healthy(response: Any) -> bool:
    if isinstance(response, bool):
        return response
    if isinstance(response, dict):
        return str(response.get("status", "")).lower() in ("ok", "healthy", "connected")
    return False


class HealthMonitor:
    """Tracks remote resolver reachability.

    Args:
        probe: Coroutine function hitting the health endpoint. It may return
            ``{"status": "ok"}`` or a bool; anything else, or an exception,
            counts as disconnected.
        poll_interval: Seconds between probes.
        clock: Time source for ``last_checked``.
    """

    def __init__(self, probe: HealthProbe, poll_interval: float = 5.0,
                 clock: Optional[Clock] = None):
        self.probe = probe
        self.poll_interval = poll_interval
        self.clock = clock or SystemClock()
        self.logger = logging.getLogger(__name__)
        self._health = ResolverHealth()
        self._listeners: List[HealthListener] = []
        self._task: Optional[ScheduledTask] = None

    @property
    def health(self) -> ResolverHealth:
        return self._health

    @property
    def status(self) -> HealthStatus:
        return self._health.status

    def is_connected(self) -> bool:
        return self._health.connected

    @property
    def polling(self) -> bool:
        return self._task is not None and not self._task.cancelled

    async def check(self) -> ResolverHealth:
        """Probe once and publish the result if the status changed."""
        try:
            response = await self.probe()
            status = HealthStatus.CONNECTED if _is_healthy(response) else HealthStatus.DISCONNECTED
        except Exception as e:
            self.logger.debug(f"Health probe failed: {e}")
            status = HealthStatus.DISCONNECTED
        self._update(status)
        return self._health

    def subscribe(self, listener: HealthListener) -> Callable[[], None]:
        """Register a listener; it is called at once with the current health."""
        self._listeners.append(listener)
        listener(self._health)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def start(self, scheduler: Scheduler) -> ScheduledTask:
        """Begin polling; the first probe is due immediately."""
        if self.polling:
            return self._task
        self._task = scheduler.call_every("health-poll", self.poll_interval, self.check, immediate=True)
        self.logger.info(f"Health polling started (every {self.poll_interval}s)")
        return self._task

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
            self.logger.info("Health polling stopped")

    def _update(self, status: HealthStatus) -> None:
        changed = status != self._health.status
        self._health = ResolverHealth(status=status, last_checked=self.clock.now())
        if not changed:
            return
        self.logger.info(f"Remote resolver is now {status.value}")
        for listener in list(self._listeners):
            try:
                listener(self._health)
            except Exception as e:
                self.logger.error(f"Health listener failed: {e}")
