from datetime import timedelta
from decimal import Decimal

import pytest

from exchange_crm.config import ClientPriority, OperationDirection
from exchange_crm.core import ConfigurationException, ValidationException
from exchange_crm.sla.domain import DeadlineCalculator, SLAConfig

from tests.conftest import T0


def test_cash_to_crypto_normal_lowest_tier_gets_base_window(calculator):
    deadline = calculator.compute_deadline(
        OperationDirection.CASH_TO_CRYPTO, 10_000, "RUB", ClientPriority.NORMAL, T0
    )
    assert deadline == T0 + timedelta(minutes=45)


@pytest.mark.parametrize("direction,minutes", [
    ("CRYPTO_TO_CASH", 60),
    ("CASH_TO_CRYPTO", 45),
    ("CARD_TO_CRYPTO", 120),
    ("CRYPTO_TO_CARD", 90),
    ("CARD_TO_CASH", 180),
    ("CASH_TO_CARD", 240),
])
def test_base_window_per_direction(calculator, direction, minutes):
    assert calculator.compute_duration_minutes(direction, 100, "RUB", "NORMAL") == minutes


def test_amount_tier_uses_reference_currency(calculator):
    # 2 000 USD = 180 000 RUB -> 1.25 tier; 45 * 1.25 = 56.25 floored
    assert calculator.compute_duration_minutes("CASH_TO_CRYPTO", 2_000, "usd", "NORMAL") == 56


def test_top_tier_and_low_priority_multiply(calculator):
    # 1 BTC = 5 000 000 RUB -> 2.0 tier; 60 * 2.0 * 1.5
    assert calculator.compute_duration_minutes("CRYPTO_TO_CASH", Decimal("1"), "BTC", "LOW") == 180


def test_vip_halves_window(calculator):
    assert calculator.compute_duration_minutes("CASH_TO_CRYPTO", 500, "RUB", "VIP") == 22


def test_floor_is_enforced():
    calculator = DeadlineCalculator(SLAConfig(min_minutes=30))
    assert calculator.compute_duration_minutes("CASH_TO_CRYPTO", 500, "RUB", "VIP") == 30


def test_ceiling_is_enforced():
    calculator = DeadlineCalculator(SLAConfig(max_minutes=600))
    # 240 * 2.0 * 1.5 = 720 before clamping
    assert calculator.compute_duration_minutes("CASH_TO_CARD", 2_000_000, "RUB", "LOW") == 600


def test_deadline_is_deterministic(calculator):
    first = calculator.compute_deadline("CARD_TO_CASH", 250_000, "RUB", "HIGH", T0)
    second = calculator.compute_deadline("CARD_TO_CASH", 250_000, "RUB", "HIGH", T0)
    assert first == second


@pytest.mark.parametrize("direction", list(OperationDirection))
@pytest.mark.parametrize("amount", [1, 99_999, 100_000, 750_000, 5_000_000])
def test_duration_within_bounds_and_monotone_in_priority(calculator, direction, amount):
    config = calculator.config
    durations = [
        calculator.compute_duration_minutes(direction, amount, "RUB", priority)
        for priority in (ClientPriority.LOW, ClientPriority.NORMAL, ClientPriority.HIGH, ClientPriority.VIP)
    ]
    assert all(config.min_minutes <= d <= config.max_minutes for d in durations)
    assert durations == sorted(durations, reverse=True)


def test_unknown_direction_is_configuration_error(calculator):
    with pytest.raises(ConfigurationException):
        calculator.compute_duration_minutes("CASH_TO_GOLD", 100, "RUB", "NORMAL")


def test_unknown_priority_is_configuration_error(calculator):
    with pytest.raises(ConfigurationException):
        calculator.compute_duration_minutes("CASH_TO_CRYPTO", 100, "RUB", "PLATINUM")


def test_unknown_currency_is_configuration_error(calculator):
    with pytest.raises(ConfigurationException) as exc_info:
        calculator.compute_duration_minutes("CASH_TO_CRYPTO", 100, "XAU", "NORMAL")
    assert exc_info.value.details["currency"] == "XAU"


@pytest.mark.parametrize("amount", [0, -5])
def test_non_positive_amount_rejected(calculator, amount):
    with pytest.raises(ValidationException):
        calculator.compute_duration_minutes("CASH_TO_CRYPTO", amount, "RUB", "NORMAL")
