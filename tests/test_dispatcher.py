import json

import httpx
import pytest

from exchange_crm.config import AuditAction, SLAEventKind
from exchange_crm.core import ExternalServiceException
from exchange_crm.sla.application import EventDispatcher
from exchange_crm.sla.domain import AuditRecord, SLAEvent
from exchange_crm.sla.infrastructure import CompositeNotificationSink, SlackNotificationSink

from tests.conftest import T0
from tests.fakes import RecordingAuditSink, RecordingNotificationSink


def _event(kind=SLAEventKind.BECAME_OVERDUE, request_id="r1"):
    return SLAEvent(
        kind=kind,
        request_id=request_id,
        occurred_at=T0,
        recipient_id="op-1",
        payload={"sla_deadline": T0.isoformat(), "overdue_minutes": 3},
    )


def _audit(request_id="r1"):
    return AuditRecord(entity_id=request_id, action=AuditAction.SLA_OVERDUE, created_at=T0)


@pytest.mark.asyncio
async def test_publish_does_not_wait_for_delivery():
    notifications = RecordingNotificationSink()
    dispatcher = EventDispatcher(notifications, RecordingAuditSink())

    dispatcher.publish([_event()], [_audit()])

    assert notifications.events == []
    assert dispatcher.pending == 1
    await dispatcher.drain()
    assert len(notifications.events) == 1
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_empty_batch_spawns_nothing():
    dispatcher = EventDispatcher(RecordingNotificationSink(), RecordingAuditSink())
    dispatcher.publish([], [])
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_failing_audit_sink_does_not_block_notifications():
    notifications = RecordingNotificationSink()
    dispatcher = EventDispatcher(notifications, RecordingAuditSink(fail=True))

    dispatcher.publish([_event()], [_audit()])
    await dispatcher.drain()

    assert notifications.kinds() == ["BECAME_OVERDUE"]


@pytest.mark.asyncio
async def test_failing_notification_sink_is_contained():
    audits = RecordingAuditSink()
    dispatcher = EventDispatcher(RecordingNotificationSink(fail=True), audits)

    dispatcher.publish([_event(), _event(request_id="r2")], [_audit()])
    await dispatcher.drain()

    assert len(audits.records) == 1


@pytest.mark.asyncio
async def test_composite_sink_isolates_failures():
    healthy = RecordingNotificationSink()
    composite = CompositeNotificationSink([RecordingNotificationSink(fail=True), healthy])

    await composite.notify(_event())

    assert healthy.kinds() == ["BECAME_OVERDUE"]


def _slack(handler, webhook_url="https://hooks.slack.test/T000/B000"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SlackNotificationSink(
        webhook_url=webhook_url,
        channel="#sla-alerts",
        timeout_seconds=1,
        max_retries=1,
        http_client=client,
    )


@pytest.mark.asyncio
async def test_slack_posts_block_message():
    captured = []

    def handler(request):
        captured.append(json.loads(request.content))
        return httpx.Response(200, text="ok")

    sink = _slack(handler)
    assert await sink.send(_event()) is True
    await sink.close()

    body = captured[0]
    assert body["channel"] == "#sla-alerts"
    assert body["text"] == "Request r1 is overdue"
    assert body["blocks"][0]["type"] == "header"
    assert "SLA overdue" in body["blocks"][0]["text"]["text"]


@pytest.mark.asyncio
async def test_slack_without_webhook_is_noop():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200)

    sink = _slack(handler, webhook_url="")
    assert sink.enabled is False
    assert await sink.send(_event()) is False
    assert calls == []


@pytest.mark.asyncio
async def test_slack_circuit_opens_after_repeated_failures():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    sink = _slack(handler)
    for _ in range(5):
        assert await sink.send(_event()) is False
    assert len(calls) == 5

    assert await sink.send(_event()) is False
    assert len(calls) == 5
    await sink.close()


@pytest.mark.asyncio
async def test_slack_transport_error_surfaces_from_notify():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    sink = _slack(handler)
    assert await sink.send(_event()) is False
    with pytest.raises(ExternalServiceException):
        await sink.notify(_event(kind=SLAEventKind.REMINDER_SENT))
    await sink.close()


@pytest.mark.asyncio
async def test_undelivered_slack_event_is_logged_by_dispatcher():
    sink = _slack(lambda request: httpx.Response(500))
    audits = RecordingAuditSink()
    dispatcher = EventDispatcher(sink, audits)

    dispatcher.publish([_event()], [_audit()])
    await dispatcher.drain()

    assert len(audits.records) == 1
    await sink.close()
