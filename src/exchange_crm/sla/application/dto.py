"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from exchange_crm.config import ClientPriority, OperationDirection, SLAState
from exchange_crm.sla.domain import (
    SLAEvent,
    SLARequest,
    TickReport,
    format_time_to_deadline,
    sla_criticality,
)


# ========== Type Aliases for Literals ==========
SLAViewStr = Literal["overdue", "upcoming", "all"]
SLAActionStr = Literal["extend_sla", "send_reminder"]


# ========== Request DTOs ==========

class DeadlineRequest(BaseModel):
    """Inputs for computing the deadline of a new exchange request."""
    direction: OperationDirection = Field(..., description="Transfer direction")
    from_amount: Decimal = Field(..., gt=0, description="Amount in source currency")
    from_currency: str = Field(..., min_length=1, max_length=16, description="Source currency code")
    priority: ClientPriority = Field(default=ClientPriority.NORMAL, description="Client priority tier")
    created_at: Optional[datetime] = Field(
        None, description="Request creation instant (defaults to now)"
    )

    @field_validator("from_currency")
    @classmethod
    def normalise_currency(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("created_at")
    @classmethod
    def require_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            raise ValueError("created_at must carry a timezone offset")
        return v


class SLAActionRequest(BaseModel):
    """Operator action on a single request."""
    action: SLAActionStr = Field(..., description="extend_sla or send_reminder")
    request_id: str = Field(..., min_length=1, description="Exchange request ID")
    extension_minutes: Optional[int] = Field(
        None, ge=1, description="Extension length for extend_sla (server default when omitted)"
    )


# ========== Response DTOs ==========

class DeadlineResponse(BaseModel):
    """Computed deadline."""
    sla_deadline: datetime
    duration_minutes: int
    time_to_deadline: str


class RequestSLAResponse(BaseModel):
    """SLA status of one exchange request."""
    id: str
    status: str
    sla_deadline: Optional[datetime] = None
    is_overdue: bool
    sla_state: str
    minutes_left: Optional[int] = None
    time_to_deadline: str
    criticality: str
    assigned_user_id: Optional[str] = None
    office_id: Optional[str] = None
    version: int

    @classmethod
    def build(
        cls,
        request: SLARequest,
        state: SLAState,
        minutes_left: Optional[int]
    ) -> "RequestSLAResponse":
        overdue_now = state == SLAState.OVERDUE
        return cls(
            id=request.id,
            status=request.status.value,
            sla_deadline=request.sla_deadline,
            is_overdue=request.is_overdue,
            sla_state=state.value,
            minutes_left=minutes_left,
            time_to_deadline=format_time_to_deadline(minutes_left),
            criticality=sla_criticality(overdue_now, minutes_left),
            assigned_user_id=request.assigned_user_id,
            office_id=request.office_id,
            version=request.version,
        )


class RequestListResponse(BaseModel):
    """Filtered request listing."""
    view: SLAViewStr
    count: int
    requests: List[RequestSLAResponse]


class SLAEventResponse(BaseModel):
    """Emitted SLA event."""
    id: str
    kind: str
    request_id: str
    title: str
    message: str
    actor_id: Optional[str] = None
    recipient_id: Optional[str] = None
    occurred_at: datetime

    @classmethod
    def from_event(cls, event: SLAEvent) -> "SLAEventResponse":
        return cls(
            id=event.id,
            kind=event.kind.value,
            request_id=event.request_id,
            title=event.title,
            message=event.summary(),
            actor_id=event.actor_id,
            recipient_id=event.recipient_id,
            occurred_at=event.occurred_at,
        )


class ActionResponse(BaseModel):
    """Result of an operator action."""
    action: SLAActionStr
    request: Optional[RequestSLAResponse] = None
    event: Optional[SLAEventResponse] = None


class TickFailureResponse(BaseModel):
    request_id: str
    error_type: str
    message: str


class TickReportResponse(BaseModel):
    """Summary of one monitor tick."""
    tick_id: str
    trigger: str
    now: datetime
    candidates: int
    became_overdue: int
    approaching: int
    failed: int
    latency_ms: float
    failures: List[TickFailureResponse] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: TickReport) -> "TickReportResponse":
        return cls(
            tick_id=report.tick_id,
            trigger=report.trigger,
            now=report.now,
            candidates=report.candidates,
            became_overdue=report.became_overdue,
            approaching=report.approaching,
            failed=report.failed,
            latency_ms=report.latency_ms,
            failures=[
                TickFailureResponse(
                    request_id=f.request_id, error_type=f.error_type, message=f.message
                )
                for f in report.failures
            ],
        )
