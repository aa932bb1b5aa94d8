"""Tests for the scheduler and clocks."""

import pytest
from datetime import datetime, timezone

from iris_agent.services.scheduler import ManualClock, Scheduler, SystemClock


class TestManualClock:
    """Test the manually driven clock."""

    def test_defaults(self):
        clock = ManualClock()
        assert clock.now() == datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)
        assert clock.monotonic() == 0.0

    def test_advance_moves_both_clocks(self):
        clock = ManualClock()
        clock.advance(90)
        assert clock.now() == datetime(2025, 1, 1, 9, 1, 30, tzinfo=timezone.utc)
        assert clock.monotonic() == 90.0

    def test_cannot_go_backwards(self):
        with pytest.raises(ValueError):
            ManualClock().advance(-1)

    @pytest.mark.asyncio
    async def test_sleep_advances(self):
        clock = ManualClock()
        await clock.sleep(5)
        assert clock.monotonic() == 5.0


class TestSystemClock:
    """Test the real clock."""

    def test_now_is_aware(self):
        assert SystemClock().now().tzinfo is not None

    def test_monotonic_increases(self):
        clock = SystemClock()
        assert clock.monotonic() <= clock.monotonic()


class TestScheduler:
    """Test scheduling and running tasks."""

    def test_call_every_rejects_non_positive_interval(self, manual_clock):
        with pytest.raises(ValueError):
            Scheduler(manual_clock).call_every("bad", 0, lambda: None)

    def test_call_every_deadline(self, manual_clock):
        """Test first deadline with and without immediate."""
        scheduler = Scheduler(manual_clock)
        later = scheduler.call_every("later", 10, lambda: None)
        now = scheduler.call_every("now", 10, lambda: None, immediate=True)

        assert later.deadline == 10
        assert now.deadline == 0
        assert later.periodic
        assert [t.name for t in scheduler.pending()] == ["now", "later"]

    @pytest.mark.asyncio
    async def test_run_pending_runs_due_tasks(self, manual_clock):
        """Test that only due tasks run."""
        scheduler = Scheduler(manual_clock)
        calls = []
        scheduler.call_every("tick", 5, lambda: calls.append("tick"))
        scheduler.call_later("once", 1, lambda: calls.append("once"))

        assert await scheduler.run_pending() == 0

        manual_clock.advance(1)
        assert await scheduler.run_pending() == 1
        assert calls == ["once"]

        manual_clock.advance(4)
        await scheduler.run_pending()
        assert calls == ["once", "tick"]
        assert [t.name for t in scheduler.pending()] == ["tick"]

    @pytest.mark.asyncio
    async def test_periodic_task_rescheduled(self, manual_clock):
        scheduler = Scheduler(manual_clock)
        task = scheduler.call_every("tick", 5, lambda: None)

        manual_clock.advance(5)
        await scheduler.run_pending()
        assert task.run_count == 1
        assert task.deadline == 10

    @pytest.mark.asyncio
    async def test_missed_ticks_are_skipped(self, manual_clock):
        """Test that a late scheduler runs a periodic task once, not once per missed tick."""
        scheduler = Scheduler(manual_clock)
        task = scheduler.call_every("tick", 5, lambda: None)

        manual_clock.advance(23)
        await scheduler.run_pending()
        assert task.run_count == 1
        assert task.deadline == 28

    @pytest.mark.asyncio
    async def test_async_callbacks_awaited(self, manual_clock):
        scheduler = Scheduler(manual_clock)
        calls = []

        async def probe():
            calls.append("probe")

        scheduler.call_every("probe", 5, probe, immediate=True)
        await scheduler.run_pending()
        assert calls == ["probe"]

    @pytest.mark.asyncio
    async def test_cancelled_task_never_runs(self, manual_clock):
        scheduler = Scheduler(manual_clock)
        calls = []
        task = scheduler.call_every("tick", 5, lambda: calls.append(1), immediate=True)
        task.cancel()

        await scheduler.run_pending()
        assert calls == []
        assert scheduler.pending() == []

    def test_cancel_removes_task(self, manual_clock):
        scheduler = Scheduler(manual_clock)
        task = scheduler.call_later("once", 1, lambda: None)
        scheduler.cancel(task)
        assert task.cancelled
        assert scheduler.pending() == []

    @pytest.mark.asyncio
    async def test_failing_callback_recorded(self, manual_clock):
        """Test that callback errors are kept on the task and do not stop the scheduler."""
        scheduler = Scheduler(manual_clock)

        def broken():
            raise RuntimeError("probe exploded")

        task = scheduler.call_every("broken", 5, broken, immediate=True)
        await scheduler.run_pending()

        assert task.last_error == "probe exploded"
        assert task in scheduler.pending()

    def test_seconds_until_next(self, manual_clock):
        scheduler = Scheduler(manual_clock)
        assert scheduler.seconds_until_next() is None

        scheduler.call_later("once", 7, lambda: None)
        manual_clock.advance(2)
        assert scheduler.seconds_until_next() == 5

    @pytest.mark.asyncio
    async def test_run_forever_until_stopped(self, manual_clock):
        """Test the run loop with a task that stops the scheduler."""
        scheduler = Scheduler(manual_clock)
        calls = []

        def tick():
            calls.append(manual_clock.monotonic())
            if len(calls) == 3:
                scheduler.stop()

        scheduler.call_every("tick", 5, tick, immediate=True)
        await scheduler.run_forever(max_idle=1.0)

        assert calls == [0.0, 5.0, 10.0]
        assert not scheduler.running

    def test_shutdown_cancels_everything(self, manual_clock):
        scheduler = Scheduler(manual_clock)
        a = scheduler.call_every("a", 5, lambda: None)
        b = scheduler.call_later("b", 5, lambda: None)
        scheduler.shutdown()

        assert a.cancelled and b.cancelled
        assert scheduler.pending() == []
