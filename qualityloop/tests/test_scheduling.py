"""
Tests for the schedulers
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from qualityloop.utils.scheduling import AsyncioScheduler, ManualScheduler


def test_manual_scheduler_orders_by_due_time():
    scheduler = ManualScheduler()
    order = []
    scheduler.call_later(30, lambda: order.append(("a", scheduler.now())))
    scheduler.call_later(10, lambda: order.append(("b", scheduler.now())))
    scheduler.call_when_idle(lambda: order.append(("c", scheduler.now())), timeout_ms=500)

    assert scheduler.advance(50) == 3
    assert order == [("c", 0), ("b", 10), ("a", 30)]
    assert scheduler.now() == 50


def test_manual_scheduler_runs_callbacks_scheduled_within_span():
    scheduler = ManualScheduler(start_ms=1000)
    fired = []

    def first():
        fired.append(scheduler.now())
        scheduler.call_later(5, lambda: fired.append(scheduler.now()))

    scheduler.call_later(10, first)
    scheduler.advance(20)
    assert fired == [1010, 1015]


def test_manual_scheduler_cancel():
    scheduler = ManualScheduler()
    fired = []
    handle = scheduler.call_later(10, lambda: fired.append(True))
    assert scheduler.pending_count == 1
    scheduler.cancel(handle)
    scheduler.cancel(handle)
    assert scheduler.pending_count == 0
    scheduler.advance(100)
    assert fired == []


def test_manual_scheduler_rejects_going_back():
    with pytest.raises(ValueError):
        ManualScheduler().advance(-1)


def test_run_pending_keeps_clock():
    scheduler = ManualScheduler(start_ms=5)
    fired = []
    scheduler.call_when_idle(lambda: fired.append(True))
    assert scheduler.run_pending() == 1
    assert scheduler.now() == 5


def test_inline_worker_delivers_result_and_error():
    scheduler = ManualScheduler()
    outcomes = []
    assert scheduler.run_in_worker(sum, ([1, 2, 3],), lambda r, e: outcomes.append((r, e))) is False

    def boom():
        raise RuntimeError("boom")

    scheduler.run_in_worker(boom, (), lambda r, e: outcomes.append((r, type(e))))
    assert outcomes == [(6, None), (None, RuntimeError)]


def test_asyncio_scheduler_timers_and_idle():
    async def scenario():
        scheduler = AsyncioScheduler()
        fired = []
        scheduler.call_later(20, lambda: fired.append("later"))
        scheduler.call_when_idle(lambda: fired.append("idle"), timeout_ms=5)
        cancelled = scheduler.call_later(10, lambda: fired.append("cancelled"))
        scheduler.cancel(cancelled)
        await asyncio.sleep(0.05)
        return fired

    assert asyncio.run(scenario()) == ["idle", "later"]


def test_asyncio_scheduler_clock_is_milliseconds():
    async def scenario():
        scheduler = AsyncioScheduler()
        before = scheduler.now()
        await asyncio.sleep(0.02)
        return scheduler.now() - before

    assert asyncio.run(scenario()) >= 15


def test_asyncio_worker_delivers_on_loop():
    async def scenario():
        scheduler = AsyncioScheduler()
        loop = asyncio.get_running_loop()
        done = loop.create_future()

        def on_done(result, error):
            done.set_result((result, error))

        with ThreadPoolExecutor(max_workers=1) as executor:
            offloaded = scheduler.run_in_worker(pow, (2, 10), on_done, executor)
            result = await asyncio.wait_for(done, timeout=5)
        return offloaded, result

    offloaded, (result, error) = asyncio.run(scenario())
    assert offloaded is True
    assert result == 1024
    assert error is None
