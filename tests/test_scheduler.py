"""Tests for stop tokens and periodic timers."""
import asyncio

from goofish_monitor.jobs.scheduler import PeriodicTask, StopToken


def test_stop_token_wait_times_out():
    async def scenario():
        token = StopToken()
        assert await token.wait(0.01) is False
        assert token.stopped is False

    asyncio.run(scenario())


def test_stop_token_wakes_waiters():
    async def scenario():
        token = StopToken()
        waiter = asyncio.create_task(token.wait(10))
        await asyncio.sleep(0)
        token.stop()
        assert await asyncio.wait_for(waiter, 1) is True
        assert await token.wait(0) is True

    asyncio.run(scenario())


def test_periodic_task_ticks_and_survives_errors():
    async def scenario():
        calls = []

        async def action():
            calls.append(len(calls))
            if len(calls) == 1:
                raise RuntimeError("first tick fails")

        timer = PeriodicTask("test", 0.01, action, run_immediately=True)
        timer.start()
        assert timer.running
        await asyncio.sleep(0.1)
        await timer.stop()
        assert not timer.running
        assert len(calls) >= 3
        assert timer.ticks == len(calls)

    asyncio.run(scenario())


def test_periodic_task_stop_before_first_interval():
    async def scenario():
        calls = []

        async def action():
            calls.append(1)

        timer = PeriodicTask("idle", 60, action)
        timer.start()
        await asyncio.sleep(0)
        await timer.stop()
        assert calls == []

    asyncio.run(scenario())
