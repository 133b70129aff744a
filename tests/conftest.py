"""Shared fixtures for SLA tests."""
from datetime import datetime, timezone
from typing import Optional

import pytest

from exchange_crm.config import RequestStatus
from exchange_crm.sla.application import (
    EventDispatcher,
    SLAActionService,
    SLAMonitorService,
    SLAQueryService,
)
from exchange_crm.sla.domain import DeadlineCalculator, SLAConfig, SLARequest
from exchange_crm.sla.infrastructure import SLAConfigManager

from tests.fakes import (
    FixedClock,
    InMemoryRequestStore,
    InMemoryWarningLedger,
    RecordingAuditSink,
    RecordingNotificationSink,
)

T0 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


def make_request(
    request_id: str,
    sla_deadline: Optional[datetime],
    status: RequestStatus = RequestStatus.NEW,
    is_overdue: bool = False,
    assigned_user_id: Optional[str] = "op-1",
    office_id: Optional[str] = "office-1",
    version: int = 0,
) -> SLARequest:
    return SLARequest(
        id=request_id,
        status=status,
        sla_deadline=sla_deadline,
        is_overdue=is_overdue,
        assigned_user_id=assigned_user_id,
        office_id=office_id,
        created_at=T0,
        version=version,
    )


@pytest.fixture
def clock():
    return FixedClock(T0)


@pytest.fixture
def sla_config():
    return SLAConfig()


@pytest.fixture
def config_manager(sla_config):
    return SLAConfigManager(sla_config)


@pytest.fixture
def calculator(sla_config):
    return DeadlineCalculator(sla_config)


@pytest.fixture
def store():
    return InMemoryRequestStore()


@pytest.fixture
def ledger():
    return InMemoryWarningLedger()


@pytest.fixture
def notifications():
    return RecordingNotificationSink()


@pytest.fixture
def audits():
    return RecordingAuditSink()


@pytest.fixture
def dispatcher(notifications, audits):
    return EventDispatcher(notifications, audits)


@pytest.fixture
def monitor(store, ledger, dispatcher, config_manager, clock):
    return SLAMonitorService(
        store, ledger, dispatcher, config_manager, clock=clock, fetch_timeout_seconds=5
    )


@pytest.fixture
def actions(store, dispatcher, config_manager, clock):
    return SLAActionService(store, dispatcher, config_manager, clock=clock)


@pytest.fixture
def query(store, config_manager, clock):
    return SLAQueryService(store, config_manager, clock=clock)
