"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="exchange-crm", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/exchange_crm",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Monitoring ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA rule YAML file"
    )
    sla_monitor_interval_seconds: int = Field(
        default=300,
        description="Seconds between monitor ticks (0 disables the scheduler)",
        ge=0
    )
    sla_store_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for fetching tick candidates from the request store",
        gt=0
    )
    sla_default_extension_minutes: int = Field(
        default=30,
        description="Extension applied by the extend_sla action when none is given",
        ge=1
    )
    sla_max_concurrency: int = Field(
        default=20,
        description="Max requests reconciled concurrently within one tick",
        ge=1
    )

    # ========== Slack Integration ==========
    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL for SLA notifications"
    )
    slack_channel: str = Field(
        default="#sla-alerts",
        description="Slack channel for SLA notifications"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    # ========== Grafana OTLP Metrics ==========
    grafana_host: Optional[str] = Field(
        default=None,
        description="Grafana OTLP gateway URL"
    )
    grafana_api_key: Optional[str] = Field(
        default=None,
        description="Grafana API key for OTLP authentication"
    )
    grafana_instance_id: Optional[str] = Field(
        default=None,
        description="Grafana instance ID for OTLP authentication"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class OperationDirection(str, Enum):
    """Exchange request transfer directions."""
    CRYPTO_TO_CASH = "CRYPTO_TO_CASH"
    CASH_TO_CRYPTO = "CASH_TO_CRYPTO"
    CARD_TO_CRYPTO = "CARD_TO_CRYPTO"
    CRYPTO_TO_CARD = "CRYPTO_TO_CARD"
    CARD_TO_CASH = "CARD_TO_CASH"
    CASH_TO_CARD = "CASH_TO_CARD"


class RequestStatus(str, Enum):
    """Exchange request lifecycle statuses."""
    NEW = "NEW"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    AWAITING_CLIENT = "AWAITING_CLIENT"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"
    REJECTED = "REJECTED"


class ClientPriority(str, Enum):
    """Client priority tiers (scale the SLA window)."""
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    VIP = "VIP"


class SLAState(str, Enum):
    """SLA status states."""
    ON_TRACK = "on_track"
    UPCOMING = "upcoming"
    OVERDUE = "overdue"
    EXEMPT = "exempt"


class SLAEventKind(str, Enum):
    """SLA event types emitted to notification and audit sinks."""
    BECAME_OVERDUE = "BECAME_OVERDUE"
    APPROACHING_DEADLINE = "APPROACHING_DEADLINE"
    EXTENDED = "EXTENDED"
    REMINDER_SENT = "REMINDER_SENT"


class UserRole(str, Enum):
    """Operator roles forwarded by the API gateway."""
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    CASHIER = "CASHIER"


class AuditAction(str, Enum):
    """Audit log actions written for deadline mutations."""
    SLA_OVERDUE = "sla_overdue"
    SLA_EXTENDED = "sla_extended"


# ========== Lists for validation ==========

TERMINAL_STATUSES = frozenset({
    RequestStatus.COMPLETED, RequestStatus.CANCELED, RequestStatus.REJECTED
})

VALID_DIRECTIONS = list(OperationDirection)
VALID_PRIORITIES = list(ClientPriority)
