"""End-to-end walk through one request's SLA lifecycle."""
from datetime import timedelta

import pytest

from exchange_crm.config import AuditAction, ClientPriority, OperationDirection, RequestStatus, SLAState

from tests.conftest import T0, make_request


@pytest.mark.asyncio
async def test_request_lifecycle(calculator, monitor, actions, query, store, dispatcher, notifications, audits, clock):
    deadline = calculator.compute_deadline(
        OperationDirection.CASH_TO_CRYPTO, 10_000, "RUB", ClientPriority.NORMAL, T0
    )
    assert deadline == T0 + timedelta(minutes=45)
    store.add(make_request("req-1", deadline, status=RequestStatus.ASSIGNED))

    clock.advance(minutes=35)
    await monitor.run_tick()
    await dispatcher.drain()
    assert notifications.kinds() == ["APPROACHING_DEADLINE"]
    assert notifications.events[0].payload["minutes_left"] == 10

    upcoming = await query.list_requests("upcoming")
    assert [v.request.id for v in upcoming] == ["req-1"]

    clock.advance(minutes=11)
    await monitor.run_tick()
    await dispatcher.drain()
    assert notifications.kinds() == ["APPROACHING_DEADLINE", "BECAME_OVERDUE"]
    assert store.requests["req-1"].is_overdue is True
    assert [a.action for a in audits.records] == [AuditAction.SLA_OVERDUE]

    overdue = await query.list_requests("overdue")
    assert overdue[0].state == SLAState.OVERDUE

    clock.advance(minutes=4)
    updated = await actions.extend_deadline("req-1", "admin-1", timedelta(minutes=30))
    await dispatcher.drain()
    assert updated.sla_deadline == T0 + timedelta(minutes=80)
    assert updated.is_overdue is False
    assert notifications.kinds()[-1] == "EXTENDED"
    assert [a.action for a in audits.records] == [AuditAction.SLA_OVERDUE, AuditAction.SLA_EXTENDED]

    # Extended deadline is 30 minutes out: inside the window, warned afresh
    report = await monitor.run_tick()
    await dispatcher.drain()
    assert report.approaching == 1
    assert report.became_overdue == 0
    assert store.requests["req-1"].is_overdue is False

    store.requests["req-1"].status = RequestStatus.COMPLETED
    clock.advance(hours=5)
    report = await monitor.run_tick()
    assert report.candidates == 0
    assert await query.list_requests("all") == []
