from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from exchange_crm.config import ClientPriority, OperationDirection
from exchange_crm.core import ConfigurationException
from exchange_crm.sla.domain import SLAConfig
from exchange_crm.sla.domain.value_objects import (
    DEFAULT_DIRECTION_BASE_MINUTES,
    DEFAULT_PRIORITY_MULTIPLIERS,
)
from exchange_crm.sla.infrastructure import SLAConfigManager

REPO_CONFIG = Path(__file__).resolve().parent.parent / "sla_config.yaml"


def test_defaults_are_valid():
    config = SLAConfig()
    assert config.direction_base_minutes[OperationDirection.CASH_TO_CARD] == 240
    assert config.priority_multipliers[ClientPriority.VIP] == 0.5
    assert config.min_minutes == 15
    assert config.max_minutes == 72 * 60
    assert config.extension_limit.total_seconds() == 72 * 3600


def test_missing_direction_rejected():
    bases = {d: m for d, m in DEFAULT_DIRECTION_BASE_MINUTES.items() if d != OperationDirection.CARD_TO_CASH}
    with pytest.raises(ValidationError, match="CARD_TO_CASH"):
        SLAConfig(direction_base_minutes=bases)


def test_missing_priority_rejected():
    multipliers = {p: m for p, m in DEFAULT_PRIORITY_MULTIPLIERS.items() if p != ClientPriority.VIP}
    with pytest.raises(ValidationError):
        SLAConfig(priority_multipliers=multipliers)


def test_priority_multipliers_must_be_monotone():
    multipliers = dict(DEFAULT_PRIORITY_MULTIPLIERS)
    multipliers[ClientPriority.VIP] = 1.2
    with pytest.raises(ValidationError, match="must not increase"):
        SLAConfig(priority_multipliers=multipliers)


def test_amount_tiers_must_start_at_zero():
    with pytest.raises(ValidationError):
        SLAConfig(amount_tiers=[{"min_amount": 10, "multiplier": 1.0}])


def test_amount_tiers_must_increase():
    with pytest.raises(ValidationError):
        SLAConfig(amount_tiers=[
            {"min_amount": 0, "multiplier": 1.0},
            {"min_amount": 500, "multiplier": 1.5},
            {"min_amount": 500, "multiplier": 2.0},
        ])


def test_min_must_not_exceed_max():
    with pytest.raises(ValidationError):
        SLAConfig(min_minutes=100, max_minutes=60)


def test_reference_currency_needs_rate():
    with pytest.raises(ValidationError):
        SLAConfig(reference_currency="KZT")


def test_currency_codes_are_normalised():
    config = SLAConfig(currency_rates={"rub": 1, "usd": 90})
    assert set(config.currency_rates) == {"RUB", "USD"}


def test_config_is_frozen():
    config = SLAConfig()
    with pytest.raises(ValidationError):
        config.min_minutes = 1


def test_manager_loads_repository_rule_file():
    manager = SLAConfigManager()
    config = manager.load(REPO_CONFIG)
    assert config.direction_base_minutes[OperationDirection.CASH_TO_CRYPTO] == 45
    assert config.max_extension_minutes is None
    assert config.extension_limit == timedelta(hours=72)
    assert manager.get_config() is config


def test_manager_uses_defaults_when_file_missing(tmp_path):
    config = SLAConfigManager().load(tmp_path / "absent.yaml")
    assert config == SLAConfig()


def test_manager_rejects_invalid_rules(tmp_path):
    path = tmp_path / "sla.yaml"
    path.write_text("min_minutes: 500\nmax_minutes: 100\n")
    with pytest.raises(ConfigurationException):
        SLAConfigManager().load(path)


def test_manager_rejects_malformed_yaml(tmp_path):
    path = tmp_path / "sla.yaml"
    path.write_text("direction_base_minutes: [unclosed\n")
    with pytest.raises(ConfigurationException):
        SLAConfigManager().load(path)


def test_manager_rejects_non_mapping(tmp_path):
    path = tmp_path / "sla.yaml"
    path.write_text("- 1\n- 2\n")
    with pytest.raises(ConfigurationException):
        SLAConfigManager().load(path)


def test_manager_requires_load_before_use():
    with pytest.raises(RuntimeError):
        SLAConfigManager().get_config()
