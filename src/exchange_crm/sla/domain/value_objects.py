"""
SLA Value Objects
==================

Immutable value objects and pure calculators for the SLA domain.

Deadline rule:

    duration = floor(base[direction] * amount_tier_multiplier * priority_multiplier)
    duration = clamp(duration, min_minutes, max_minutes)
    deadline = created_at + duration

Nothing in this module reads the clock; every "now" is passed in.
"""

import math
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_FLOOR
from typing import Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from exchange_crm.config import (
    ClientPriority, OperationDirection, RequestStatus, SLAState,
    TERMINAL_STATUSES, VALID_DIRECTIONS, VALID_PRIORITIES
)
from exchange_crm.core import ConfigurationException, ValidationException


E = TypeVar("E")


DEFAULT_DIRECTION_BASE_MINUTES: Dict[OperationDirection, int] = {
    OperationDirection.CRYPTO_TO_CASH: 60,
    OperationDirection.CASH_TO_CRYPTO: 45,
    OperationDirection.CARD_TO_CRYPTO: 120,   # extra card checks
    OperationDirection.CRYPTO_TO_CARD: 90,
    OperationDirection.CARD_TO_CASH: 180,     # bank settlement
    OperationDirection.CASH_TO_CARD: 240,
}

DEFAULT_PRIORITY_MULTIPLIERS: Dict[ClientPriority, float] = {
    ClientPriority.VIP: 0.5,
    ClientPriority.HIGH: 0.75,
    ClientPriority.NORMAL: 1.0,
    ClientPriority.LOW: 1.5,
}

# Units of the reference currency (RUB) per unit of source currency
DEFAULT_CURRENCY_RATES: Dict[str, float] = {
    "RUB": 1.0,
    "USD": 90.0,
    "USDT": 90.0,
    "EUR": 98.0,
    "BTC": 5_000_000.0,
    "ETH": 250_000.0,
}

# Ascending order of urgency, used to validate multiplier monotonicity
PRIORITY_ORDER = [
    ClientPriority.LOW, ClientPriority.NORMAL, ClientPriority.HIGH, ClientPriority.VIP
]


def coerce_enum(enum_type: Type[E], value: Union[E, str], field_name: str) -> E:
    """Convert a raw value to enum_type or fail with ConfigurationException."""
    if isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError:
        raise ConfigurationException(
            f"Unknown {field_name}: {value!r}",
            {"field": field_name, "value": str(value)}
        ) from None


class AmountTier(BaseModel):
    """Amount tier: applies `multiplier` from `min_amount` (reference currency) upwards."""
    model_config = ConfigDict(frozen=True)

    min_amount: float = Field(ge=0, description="Lower bound in reference currency")
    multiplier: float = Field(gt=0, description="Duration multiplier for the tier")


def _default_amount_tiers() -> List[AmountTier]:
    return [
        AmountTier(min_amount=0, multiplier=1.0),
        AmountTier(min_amount=100_000, multiplier=1.25),
        AmountTier(min_amount=500_000, multiplier=1.5),
        AmountTier(min_amount=1_000_000, multiplier=2.0),
    ]


class SLAConfig(BaseModel):
    """
    SLA rule set loaded once at startup.

    Frozen for the process lifetime; a missing direction, priority or
    currency is an error rather than a silent default.
    """
    model_config = ConfigDict(frozen=True)

    direction_base_minutes: Dict[OperationDirection, int] = Field(
        default_factory=lambda: dict(DEFAULT_DIRECTION_BASE_MINUTES),
        description="Base SLA window in minutes per transfer direction"
    )
    amount_tiers: List[AmountTier] = Field(
        default_factory=_default_amount_tiers,
        description="Amount tiers in reference currency, ascending"
    )
    reference_currency: str = Field(default="RUB", min_length=1)
    currency_rates: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_CURRENCY_RATES),
        description="Reference-currency units per unit of source currency"
    )
    priority_multipliers: Dict[ClientPriority, float] = Field(
        default_factory=lambda: dict(DEFAULT_PRIORITY_MULTIPLIERS),
        description="Duration multiplier per client priority"
    )
    min_minutes: int = Field(default=15, ge=1, description="Deadline floor")
    max_minutes: int = Field(default=72 * 60, ge=1, description="Deadline ceiling")
    upcoming_window_minutes: int = Field(
        default=60, ge=0,
        description="Remaining time at or below which a request is 'upcoming'"
    )
    max_extension_minutes: Optional[int] = Field(
        default=None, ge=1,
        description="Upper bound for one operator extension (defaults to max_minutes)"
    )

    @field_validator("direction_base_minutes")
    @classmethod
    def validate_directions(cls, v: Dict[OperationDirection, int]) -> Dict[OperationDirection, int]:
        """Every direction needs an explicit positive base window."""
        missing = [d.value for d in VALID_DIRECTIONS if d not in v]
        if missing:
            raise ValueError(f"missing base minutes for directions: {missing}")
        for direction, minutes in v.items():
            if minutes <= 0:
                raise ValueError(f"base minutes for {direction.value} must be positive")
        return v

    @field_validator("amount_tiers")
    @classmethod
    def validate_amount_tiers(cls, v: List[AmountTier]) -> List[AmountTier]:
        """Tiers start at zero and strictly increase."""
        if not v:
            raise ValueError("at least one amount tier is required")
        if v[0].min_amount != 0:
            raise ValueError("the first amount tier must start at 0")
        for lower, upper in zip(v, v[1:]):
            if upper.min_amount <= lower.min_amount:
                raise ValueError("amount tier thresholds must be strictly increasing")
        return v

    @field_validator("currency_rates")
    @classmethod
    def validate_currency_rates(cls, v: Dict[str, float]) -> Dict[str, float]:
        normalised = {}
        for currency, rate in v.items():
            if rate <= 0:
                raise ValueError(f"rate for {currency} must be positive")
            normalised[currency.upper()] = rate
        return normalised

    @field_validator("priority_multipliers")
    @classmethod
    def validate_priority_multipliers(
        cls, v: Dict[ClientPriority, float]
    ) -> Dict[ClientPriority, float]:
        """All tiers present, positive, and higher priority never gets more time."""
        missing = [p.value for p in VALID_PRIORITIES if p not in v]
        if missing:
            raise ValueError(f"missing multipliers for priorities: {missing}")
        for priority, multiplier in v.items():
            if multiplier <= 0:
                raise ValueError(f"multiplier for {priority.value} must be positive")
        ordered = [v[p] for p in PRIORITY_ORDER]
        if any(later > earlier for earlier, later in zip(ordered, ordered[1:])):
            raise ValueError("priority multipliers must not increase with priority (LOW >= NORMAL >= HIGH >= VIP)")
        return v

    @model_validator(mode="after")
    def validate_bounds(self) -> "SLAConfig":
        if self.min_minutes > self.max_minutes:
            raise ValueError("min_minutes must not exceed max_minutes")
        if self.reference_currency.upper() not in self.currency_rates:
            raise ValueError(f"reference currency {self.reference_currency} has no rate")
        return self

    @property
    def upcoming_window(self) -> timedelta:
        return timedelta(minutes=self.upcoming_window_minutes)

    @property
    def extension_limit(self) -> timedelta:
        return timedelta(minutes=self.max_extension_minutes or self.max_minutes)

    def to_reference_amount(self, amount: Union[float, Decimal], currency: str) -> Decimal:
        """Convert an amount to the reference currency using the static rate table."""
        rate = self.currency_rates.get(currency.upper()) if currency else None
        if rate is None:
            raise ConfigurationException(
                f"No rate configured for currency {currency!r}",
                {"currency": currency}
            )
        return Decimal(str(amount)) * Decimal(str(rate))

    def amount_multiplier(self, reference_amount: Decimal) -> float:
        """Multiplier of the highest tier whose threshold the amount reaches."""
        multiplier = self.amount_tiers[0].multiplier
        for tier in self.amount_tiers:
            if reference_amount >= Decimal(str(tier.min_amount)):
                multiplier = tier.multiplier
            else:
                break
        return multiplier


class DeadlineCalculator:
    """
    Pure deadline calculator.

    Deterministic and side-effect free: identical inputs (including
    created_at) always yield the identical deadline.
    """

    def __init__(self, config: SLAConfig):
        self._config = config

    @property
    def config(self) -> SLAConfig:
        return self._config

    def compute_duration_minutes(
        self,
        direction: Union[OperationDirection, str],
        from_amount: Union[float, Decimal],
        from_currency: str,
        priority: Union[ClientPriority, str] = ClientPriority.NORMAL,
    ) -> int:
        """Whole minutes granted to a request, clamped to the configured bounds."""
        direction = coerce_enum(OperationDirection, direction, "direction")
        priority = coerce_enum(ClientPriority, priority, "priority")
        if from_amount is None or Decimal(str(from_amount)) <= 0:
            raise ValidationException(
                "from_amount must be positive",
                {"from_amount": str(from_amount)}
            )

        config = self._config
        base = Decimal(config.direction_base_minutes[direction])
        amount_multiplier = Decimal(str(
            config.amount_multiplier(config.to_reference_amount(from_amount, from_currency))
        ))
        priority_multiplier = Decimal(str(config.priority_multipliers[priority]))

        raw = (base * amount_multiplier * priority_multiplier).to_integral_value(rounding=ROUND_FLOOR)
        return max(config.min_minutes, min(config.max_minutes, int(raw)))

    def compute_duration(
        self,
        direction: Union[OperationDirection, str],
        from_amount: Union[float, Decimal],
        from_currency: str,
        priority: Union[ClientPriority, str] = ClientPriority.NORMAL,
    ) -> timedelta:
        return timedelta(minutes=self.compute_duration_minutes(
            direction, from_amount, from_currency, priority
        ))

    def compute_deadline(
        self,
        direction: Union[OperationDirection, str],
        from_amount: Union[float, Decimal],
        from_currency: str,
        priority: Union[ClientPriority, str],
        created_at: datetime,
    ) -> datetime:
        """
        Calculate the SLA deadline for a new request.

        Args:
            direction: Transfer direction
            from_amount: Amount in from_currency, must be positive
            from_currency: Source currency code
            priority: Client priority tier
            created_at: Request creation instant

        Returns:
            created_at + duration

        Raises:
            ConfigurationException: unknown direction, priority or currency
            ValidationException: non-positive amount
        """
        return created_at + self.compute_duration(direction, from_amount, from_currency, priority)


class SLAStateEvaluator:
    """
    Classifies a request against its deadline.

    Pure: never reads the clock and never touches the cached overdue flag.
    """

    def __init__(self, upcoming_window: timedelta = timedelta(minutes=60)):
        self._upcoming_window = upcoming_window

    @property
    def upcoming_window(self) -> timedelta:
        return self._upcoming_window

    def evaluate(
        self,
        status: Union[RequestStatus, str],
        sla_deadline: Optional[datetime],
        now: datetime,
    ) -> SLAState:
        status = coerce_enum(RequestStatus, status, "status")
        if status in TERMINAL_STATUSES or sla_deadline is None:
            return SLAState.EXEMPT
        # At the deadline the request is already late
        if now >= sla_deadline:
            return SLAState.OVERDUE
        if sla_deadline - now <= self._upcoming_window:
            return SLAState.UPCOMING
        return SLAState.ON_TRACK


def evaluate_sla_state(
    status: Union[RequestStatus, str],
    sla_deadline: Optional[datetime],
    now: datetime,
    upcoming_window: timedelta = timedelta(minutes=60),
) -> SLAState:
    """Functional shortcut for SLAStateEvaluator(upcoming_window).evaluate(...)."""
    return SLAStateEvaluator(upcoming_window).evaluate(status, sla_deadline, now)


# ========== Presentation helpers ==========

def minutes_to_deadline(sla_deadline: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole minutes left before the deadline (0 once passed, None without SLA)."""
    if sla_deadline is None:
        return None
    remaining = (sla_deadline - now).total_seconds() / 60
    return max(0, math.floor(remaining))


def format_time_to_deadline(minutes: Optional[int]) -> str:
    """Human readable remaining time: 'overdue', '45m', '2h', '1h 30m'."""
    if minutes is None:
        return "no SLA"
    if minutes <= 0:
        return "overdue"

    hours, mins = divmod(minutes, 60)
    if hours == 0:
        return f"{mins}m"
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}m"


def sla_criticality(is_overdue: bool, minutes_left: Optional[int]) -> str:
    """Dashboard criticality bucket: critical, warning, normal or good."""
    if is_overdue:
        return "critical"
    if minutes_left is None:
        return "normal"
    if minutes_left <= 15:
        return "critical"
    if minutes_left <= 30:
        return "warning"
    if minutes_left <= 60:
        return "normal"
    return "good"
