import asyncio

import pytest

from exchange_crm.sla.infrastructure import MonitorScheduler


async def _noop():
    return None


@pytest.mark.asyncio
async def test_start_schedules_interval_job():
    scheduler = MonitorScheduler(interval_seconds=300)
    await scheduler.start(_noop)
    try:
        assert scheduler.is_running
        assert scheduler.next_run_time is not None
    finally:
        await scheduler.stop()

    assert not scheduler.is_running
    assert scheduler.next_run_time is None


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent():
    scheduler = MonitorScheduler(interval_seconds=300)
    await scheduler.start(_noop)
    first = scheduler.next_run_time
    await scheduler.start(_noop)
    assert scheduler.next_run_time == first

    await scheduler.stop()
    await scheduler.stop()
    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_zero_interval_disables_scheduler():
    scheduler = MonitorScheduler(interval_seconds=0)
    await scheduler.start(_noop)
    assert not scheduler.is_running
    assert scheduler.next_run_time is None


@pytest.mark.asyncio
async def test_run_immediately_fires_job():
    fired = asyncio.Event()

    async def job():
        fired.set()

    scheduler = MonitorScheduler(interval_seconds=300, run_immediately=True)
    await scheduler.start(job)
    try:
        await asyncio.wait_for(fired.wait(), timeout=5)
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_manual_tick_leaves_schedule_alone(monitor):
    scheduler = MonitorScheduler(interval_seconds=300)
    await scheduler.start(monitor.run_scheduled_tick)
    try:
        before = scheduler.next_run_time
        await monitor.run_tick()
        assert scheduler.next_run_time == before
    finally:
        await scheduler.stop()
