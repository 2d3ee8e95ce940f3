"""Tests for clocks and schedulers."""

from __future__ import annotations

import asyncio

import pytest

from easyauth.scheduler import AsyncioScheduler, ManualScheduler, VirtualClock, system_clock


class TestVirtualClock:
    """Manually advanced time."""

    def test_advance(self):
        """advance() moves time forward and returns the new time."""
        clock = VirtualClock(start=100.0)
        assert clock() == 100.0
        assert clock.advance(5) == 105.0
        assert clock() == 105.0

    def test_cannot_go_backwards(self):
        """Negative advances are refused."""
        with pytest.raises(ValueError):
            VirtualClock().advance(-1)

    def test_system_clock_is_epoch_seconds(self):
        """The wall clock is a plausible epoch time."""
        assert system_clock() > 1_600_000_000


class TestManualScheduler:
    """Deterministic virtual-time scheduling."""

    def test_nothing_runs_until_due(self):
        """Callbacks wait for virtual time to reach their deadline."""

        async def _test():
            scheduler = ManualScheduler(VirtualClock(start=0.0))
            fired = []
            scheduler.call_later(10, lambda: fired.append("a"))
            assert await scheduler.advance(9.9) == 0
            assert fired == []
            assert await scheduler.advance(0.1) == 1
            assert fired == ["a"]

        asyncio.run(_test())

    def test_runs_in_deadline_order_at_deadline_time(self):
        """Due callbacks run in order, each seeing its own deadline as now."""

        async def _test():
            clock = VirtualClock(start=0.0)
            scheduler = ManualScheduler(clock)
            seen = []
            scheduler.call_later(30, lambda: seen.append(("late", clock())))
            scheduler.call_later(10, lambda: seen.append(("early", clock())))
            await scheduler.advance(60)
            assert seen == [("early", 10.0), ("late", 30.0)]
            assert clock() == 60.0

        asyncio.run(_test())

    def test_cancel(self):
        """Cancelled callbacks never run."""

        async def _test():
            scheduler = ManualScheduler()
            fired = []
            handle = scheduler.call_later(1, lambda: fired.append(1))
            handle.cancel()
            handle.cancel()
            assert handle.cancelled
            assert scheduler.pending == []
            assert await scheduler.advance(5) == 0
            assert fired == []

        asyncio.run(_test())

    def test_coroutine_callbacks_are_awaited(self):
        """Async callbacks complete before advance() returns."""

        async def _test():
            scheduler = ManualScheduler()
            done = []

            async def callback():
                await asyncio.sleep(0)
                done.append(True)

            scheduler.call_later(1, callback)
            await scheduler.advance(1)
            assert done == [True]

        asyncio.run(_test())

    def test_negative_delay_runs_immediately(self):
        """A negative delay is treated as zero."""

        async def _test():
            scheduler = ManualScheduler()
            fired = []
            scheduler.call_later(-5, lambda: fired.append(1))
            assert await scheduler.advance(0) == 1

        asyncio.run(_test())

    def test_close_cancels_everything(self):
        """close() drops all pending callbacks."""
        scheduler = ManualScheduler()
        handles = [scheduler.call_later(i, lambda: None) for i in range(3)]
        scheduler.close()
        assert all(h.cancelled for h in handles)
        assert scheduler.pending == []


class TestAsyncioScheduler:
    """Event-loop backed scheduling."""

    @pytest.mark.asyncio
    async def test_fires_callback(self):
        """Callbacks run on the loop after the delay."""
        scheduler = AsyncioScheduler()
        fired = asyncio.Event()
        scheduler.call_later(0.01, fired.set)
        await asyncio.wait_for(fired.wait(), timeout=2)

    @pytest.mark.asyncio
    async def test_runs_coroutines(self):
        """Coroutine callbacks are wrapped in tasks."""
        scheduler = AsyncioScheduler()
        fired = asyncio.Event()

        async def callback():
            fired.set()

        scheduler.call_later(0, callback)
        await asyncio.wait_for(fired.wait(), timeout=2)

    @pytest.mark.asyncio
    async def test_cancel_before_fire(self):
        """A cancelled handle never runs."""
        scheduler = AsyncioScheduler()
        fired = []
        handle = scheduler.call_later(0.01, lambda: fired.append(1))
        handle.cancel()
        await asyncio.sleep(0.05)
        assert fired == []

    @pytest.mark.asyncio
    async def test_close(self):
        """close() cancels pending callbacks."""
        scheduler = AsyncioScheduler()
        fired = []
        scheduler.call_later(0.01, lambda: fired.append(1))
        scheduler.close()
        await asyncio.sleep(0.05)
        assert fired == []

    @pytest.mark.asyncio
    async def test_failing_callback_is_logged(self, caplog):
        """Callback exceptions are logged, not raised into the loop."""
        scheduler = AsyncioScheduler()

        def boom():
            raise RuntimeError("boom")

        scheduler.call_later(0, boom)
        await asyncio.sleep(0.05)
        assert "Scheduled callback failed" in caplog.text
