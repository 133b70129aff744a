"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from exchange_crm.config import ClientPriority, OperationDirection, RequestStatus, UserRole
from exchange_crm.infrastructure.database import Base, UTCDateTime


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class RequestModel(Base):
    """
    Database model for exchange requests (SLA-relevant columns).

    Maps to the 'requests' table. `version` is bumped on every SLA
    field update and guards conditional writes.
    """
    __tablename__ = "requests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    status: Mapped[RequestStatus] = mapped_column(
        String(50), nullable=False, default=RequestStatus.NEW, index=True
    )

    # Classification used to compute the deadline at creation
    direction: Mapped[Optional[OperationDirection]] = mapped_column(String(50), nullable=True)
    from_currency: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    from_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(24, 8), nullable=True)
    client_priority: Mapped[ClientPriority] = mapped_column(
        String(20), nullable=False, default=ClientPriority.NORMAL
    )

    # SLA tracking
    sla_deadline: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)
    is_overdue: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Routing
    assigned_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    office_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utc_now)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class UserModel(Base):
    """
    Operator account (routing columns only).

    Maps to the 'users' table. Active administrators receive a copy of
    every overdue notification.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    role: Mapped[UserRole] = mapped_column(String(20), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class SLAWarningModel(Base):
    """
    One row per APPROACHING_DEADLINE warning.

    Maps to the 'sla_warnings' table. The unique key on
    (request_id, sla_deadline) makes the insert the idempotency check.
    """
    __tablename__ = "sla_warnings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    request_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    sla_deadline: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utc_now)

    __table_args__ = (
        UniqueConstraint("request_id", "sla_deadline", name="uq_sla_warnings_request_deadline"),
    )


class NotificationModel(Base):
    """
    In-app notification addressed to one operator.

    Maps to the 'notifications' table.
    """
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    request_id: Mapped[str] = mapped_column(String(64), nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utc_now)


class AuditLogModel(Base):
    """
    Append-only audit trail entry.

    Maps to the 'audit_logs' table.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    old_values: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    new_values: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utc_now)
