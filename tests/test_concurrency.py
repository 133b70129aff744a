import asyncio
from datetime import timedelta

import pytest

from exchange_crm.core import TickAlreadyRunningException

from tests.conftest import T0, make_request


async def _wait_until_busy(monitor):
    for _ in range(100):
        if monitor.is_busy:
            return
        await asyncio.sleep(0)
    raise AssertionError("tick never started")


@pytest.mark.asyncio
async def test_manual_tick_rejected_while_scheduled_tick_runs(monitor, store, dispatcher, notifications):
    store.add(make_request("r1", T0 - timedelta(minutes=5)))
    store.fetch_gate = asyncio.Event()

    scheduled = asyncio.create_task(monitor.run_scheduled_tick())
    await _wait_until_busy(monitor)

    with pytest.raises(TickAlreadyRunningException):
        await monitor.run_tick()
    assert await monitor.run_scheduled_tick() is None

    store.fetch_gate.set()
    report = await scheduled
    await dispatcher.drain()

    assert report.became_overdue == 1
    assert store.fetch_calls == 1
    assert notifications.kinds() == ["BECAME_OVERDUE"]
    assert not monitor.is_busy


@pytest.mark.asyncio
async def test_ticks_run_back_to_back_after_lock_release(monitor, store, dispatcher, notifications):
    store.add(make_request("r1", T0 - timedelta(minutes=5)))

    first = await monitor.run_tick()
    second = await monitor.run_tick()
    await dispatcher.drain()

    assert first.became_overdue == 1
    assert second.became_overdue == 0
    assert store.fetch_calls == 2
    assert len(notifications.events) == 1


@pytest.mark.asyncio
async def test_extension_while_tick_waits_on_fetch(monitor, actions, store, dispatcher, clock):
    store.add(make_request("r1", T0 - timedelta(minutes=5)))
    store.fetch_gate = asyncio.Event()

    tick = asyncio.create_task(monitor.run_tick())
    await _wait_until_busy(monitor)

    extended = await actions.extend_deadline("r1", "admin-1", timedelta(minutes=30))
    store.fetch_gate.set()
    report = await tick
    await dispatcher.drain()

    assert extended.sla_deadline == T0 + timedelta(minutes=30)
    # Fetch completes after the extension and sees the new deadline
    assert report.became_overdue == 0
    assert store.requests["r1"].is_overdue is False
    assert store.requests["r1"].sla_deadline == T0 + timedelta(minutes=30)


@pytest.mark.asyncio
async def test_stale_overdue_write_is_reported_not_applied(monitor, store, dispatcher, notifications):
    store.add(make_request("r1", T0 - timedelta(minutes=5)))
    store.conflicts["r1"] = 1

    report = await monitor.run_tick()
    await dispatcher.drain()

    assert report.became_overdue == 0
    assert report.failures[0].error_type == "ConcurrentUpdateException"
    assert store.requests["r1"].is_overdue is False
    assert notifications.events == []

    # Next tick picks up the fresh version
    retry = await monitor.run_tick()
    assert retry.became_overdue == 1
