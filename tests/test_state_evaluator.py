from datetime import timedelta

import pytest

from exchange_crm.config import RequestStatus, SLAState
from exchange_crm.core import ConfigurationException
from exchange_crm.sla.domain import (
    SLAStateEvaluator,
    evaluate_sla_state,
    format_time_to_deadline,
    minutes_to_deadline,
    sla_criticality,
)

from tests.conftest import T0

evaluator = SLAStateEvaluator(timedelta(minutes=60))


@pytest.mark.parametrize("status", [RequestStatus.COMPLETED, RequestStatus.CANCELED, RequestStatus.REJECTED])
@pytest.mark.parametrize("offset", [-600, 0, 30, 600])
def test_terminal_status_is_exempt(status, offset):
    deadline = T0 + timedelta(minutes=offset)
    assert evaluator.evaluate(status, deadline, T0) == SLAState.EXEMPT


def test_missing_deadline_is_exempt():
    assert evaluator.evaluate(RequestStatus.IN_PROGRESS, None, T0) == SLAState.EXEMPT


def test_deadline_instant_is_overdue():
    assert evaluator.evaluate(RequestStatus.NEW, T0, T0) == SLAState.OVERDUE


def test_past_deadline_is_overdue():
    assert evaluator.evaluate(RequestStatus.ASSIGNED, T0, T0 + timedelta(seconds=1)) == SLAState.OVERDUE


def test_thirty_minutes_left_is_upcoming():
    assert evaluator.evaluate(RequestStatus.NEW, T0, T0 - timedelta(minutes=30)) == SLAState.UPCOMING


def test_window_boundary_is_upcoming():
    assert evaluator.evaluate(RequestStatus.NEW, T0, T0 - timedelta(minutes=60)) == SLAState.UPCOMING


def test_beyond_window_is_on_track():
    assert evaluator.evaluate(RequestStatus.NEW, T0, T0 - timedelta(minutes=61)) == SLAState.ON_TRACK


def test_custom_window():
    state = evaluate_sla_state("AWAITING_CLIENT", T0, T0 - timedelta(minutes=20), timedelta(minutes=15))
    assert state == SLAState.ON_TRACK


def test_unknown_status_is_configuration_error():
    with pytest.raises(ConfigurationException):
        evaluator.evaluate("ARCHIVED", T0, T0)


def test_minutes_to_deadline_floors_and_never_negative():
    assert minutes_to_deadline(T0 + timedelta(minutes=10, seconds=59), T0) == 10
    assert minutes_to_deadline(T0 - timedelta(minutes=5), T0) == 0
    assert minutes_to_deadline(None, T0) is None


@pytest.mark.parametrize("minutes,expected", [
    (None, "no SLA"),
    (0, "overdue"),
    (45, "45m"),
    (120, "2h"),
    (90, "1h 30m"),
])
def test_format_time_to_deadline(minutes, expected):
    assert format_time_to_deadline(minutes) == expected


@pytest.mark.parametrize("is_overdue,minutes,expected", [
    (True, 500, "critical"),
    (False, 10, "critical"),
    (False, 15, "critical"),
    (False, 30, "warning"),
    (False, 45, "normal"),
    (False, None, "normal"),
    (False, 61, "good"),
])
def test_sla_criticality(is_overdue, minutes, expected):
    assert sla_criticality(is_overdue, minutes) == expected
