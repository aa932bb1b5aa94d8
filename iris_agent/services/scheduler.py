"""
Scheduled task runner.

Periodic background work (health polling, context sweeping) is expressed as
explicit :class:`ScheduledTask` records with a deadline and a cancellation
flag, owned by a single :class:`Scheduler`. Time comes from an injected
:class:`Clock` so tests can drive the schedule with :class:`ManualClock`
instead of sleeping.

Usage:
    scheduler = Scheduler()
    task = scheduler.call_every("health-poll", 5.0, monitor.check, immediate=True)
    asyncio.create_task(scheduler.run_forever())
    ...
    task.cancel()
    scheduler.stop()
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union


TaskCallback = Callable[[], Union[None, Awaitable[Any]]]


class Clock(Protocol):
    """Source of wall-clock and monotonic time."""

    def now(self) -> datetime:
        ...

    def monotonic(self) -> float:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Real time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ManualClock:
    """Clock that only moves when told to. Used in tests."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)
        self._monotonic = 0.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")
        self._now += timedelta(seconds=seconds)
        self._monotonic += seconds

    async def sleep(self, seconds: float) -> None:
        self.advance(max(seconds, 0.0))
        await asyncio.sleep(0)


@dataclass
class ScheduledTask:
    """A unit of scheduled work.

    Attributes:
        task_id:   Unique, increasing identifier
        name:      Human-readable name used in logs
        callback:  Sync callable or coroutine function to run when due
        deadline:  Monotonic time at which the task is next due
        interval:  Seconds between runs for periodic tasks, None for one-shot
        cancelled: Set by :meth:`cancel`; a cancelled task never runs again
        run_count: How many times the task has run
    """

    task_id: int
    name: str
    callback: TaskCallback
    deadline: float
    interval: Optional[float] = None
    cancelled: bool = False
    run_count: int = 0
    last_error: Optional[str] = field(default=None, repr=False)

    @property
    def periodic(self) -> bool:
        return self.interval is not None

    def cancel(self) -> None:
        self.cancelled = True

    def is_due(self, now: float) -> bool:
        return not self.cancelled and now >= self.deadline


class Scheduler:
    """Runs due tasks; reschedules periodic ones."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()
        self.logger = logging.getLogger(__name__)
        self._tasks: Dict[int, ScheduledTask] = {}
        self._ids = itertools.count(1)
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def call_every(self, name: str, interval: float, callback: TaskCallback,
                   immediate: bool = False) -> ScheduledTask:
        """Schedule ``callback`` every ``interval`` seconds.

        With ``immediate`` the first run is due right away, otherwise after
        one interval.
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        now = self.clock.monotonic()
        task = ScheduledTask(
            task_id=next(self._ids),
            name=name,
            callback=callback,
            deadline=now if immediate else now + interval,
            interval=interval,
        )
        self._tasks[task.task_id] = task
        self.logger.debug(f"Scheduled {name} every {interval}s (task {task.task_id})")
        return task

    def call_later(self, name: str, delay: float, callback: TaskCallback) -> ScheduledTask:
        """Schedule a one-shot ``callback`` after ``delay`` seconds."""
        task = ScheduledTask(
            task_id=next(self._ids),
            name=name,
            callback=callback,
            deadline=self.clock.monotonic() + max(delay, 0.0),
        )
        self._tasks[task.task_id] = task
        self.logger.debug(f"Scheduled {name} in {delay}s (task {task.task_id})")
        return task

    def cancel(self, task: ScheduledTask) -> None:
        task.cancel()
        self._tasks.pop(task.task_id, None)

    def pending(self) -> List[ScheduledTask]:
        return sorted(
            (t for t in self._tasks.values() if not t.cancelled),
            key=lambda t: (t.deadline, t.task_id),
        )

    def seconds_until_next(self) -> Optional[float]:
        tasks = self.pending()
        if not tasks:
            return None
        return max(tasks[0].deadline - self.clock.monotonic(), 0.0)

    async def run_pending(self) -> int:
        """Run every task that is due now. Returns how many ran."""
        now = self.clock.monotonic()
        due = [t for t in self.pending() if t.is_due(now)]
        for task in due:
            if task.cancelled:
                continue
            await self._run_task(task)
            if task.periodic and not task.cancelled:
                # Skip missed ticks rather than bursting to catch up
                task.deadline += task.interval
                if task.deadline <= now:
                    task.deadline = now + task.interval
            else:
                self._tasks.pop(task.task_id, None)

        for task_id in [i for i, t in self._tasks.items() if t.cancelled]:
            del self._tasks[task_id]
        return len(due)

    async def run_forever(self, max_idle: float = 0.25) -> None:
        """Run due tasks until :meth:`stop` is called."""
        self._running = True
        self.logger.debug("Scheduler started")
        try:
            while self._running:
                await self.run_pending()
                delay = self.seconds_until_next()
                await self.clock.sleep(max_idle if delay is None else min(delay, max_idle))
        finally:
            self._running = False
            self.logger.debug("Scheduler stopped")

    def stop(self) -> None:
        self._running = False

    def shutdown(self) -> None:
        """Stop and cancel every task."""
        self.stop()
        for task in list(self._tasks.values()):
            task.cancel()
        self._tasks.clear()

    async def _run_task(self, task: ScheduledTask) -> None:
        task.run_count += 1
        try:
            result = task.callback()
            if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
                await result
            task.last_error = None
        except Exception as e:
            task.last_error = str(e)
            self.logger.error(f"Scheduled task {task.name} failed: {e}")
