"""
SLA Domain Entities
====================

Pure Python domain entities for SLA monitoring.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from exchange_crm.config import (
    AuditAction, RequestStatus, SLAEventKind, TERMINAL_STATUSES
)


@dataclass
class SLARequest:
    """
    Snapshot of the SLA-relevant fields of an exchange request.

    The request itself is owned by the CRM store; the SLA core only reads
    these fields and patches `sla_deadline` / `is_overdue`. `version` is the
    optimistic concurrency counter used for conditional updates.
    """

    id: str
    status: RequestStatus
    sla_deadline: Optional[datetime]
    is_overdue: bool = False
    assigned_user_id: Optional[str] = None
    office_id: Optional[str] = None
    created_at: Optional[datetime] = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        """Terminal requests leave SLA tracking permanently."""
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class SLAFieldChanges:
    """Patch for the two SLA fields; None means 'leave unchanged'."""

    sla_deadline: Optional[datetime] = None
    is_overdue: Optional[bool] = None

    def as_dict(self) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        if self.sla_deadline is not None:
            values["sla_deadline"] = self.sla_deadline
        if self.is_overdue is not None:
            values["is_overdue"] = self.is_overdue
        return values

    @property
    def is_empty(self) -> bool:
        return not self.as_dict()


EVENT_TITLES = {
    SLAEventKind.BECAME_OVERDUE: "SLA overdue",
    SLAEventKind.APPROACHING_DEADLINE: "SLA deadline approaching",
    SLAEventKind.EXTENDED: "SLA extended",
    SLAEventKind.REMINDER_SENT: "Reminder sent",
}


@dataclass(frozen=True)
class SLAEvent:
    """
    Ephemeral SLA event handed to notification sinks.

    `actor_id` is None for scheduler-originated events. `recipient_id` is
    the operator the notification is routed to (the assigned user).
    """

    kind: SLAEventKind
    request_id: str
    occurred_at: datetime
    actor_id: Optional[str] = None
    recipient_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def title(self) -> str:
        return EVENT_TITLES[self.kind]

    def summary(self) -> str:
        """One-line operator-facing description."""
        if self.kind == SLAEventKind.BECAME_OVERDUE:
            return f"Request {self.request_id} is overdue"
        if self.kind == SLAEventKind.APPROACHING_DEADLINE:
            minutes = self.payload.get("minutes_left")
            return f"Request {self.request_id} is due in {minutes} min"
        if self.kind == SLAEventKind.EXTENDED:
            minutes = self.payload.get("extension_minutes")
            return f"SLA for request {self.request_id} extended by {minutes} min"
        return f"Reminder sent for request {self.request_id}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "request_id": self.request_id,
            "actor_id": self.actor_id,
            "recipient_id": self.recipient_id,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": dict(self.payload),
        }


@dataclass(frozen=True)
class AuditRecord:
    """Immutable audit entry for a deadline mutation."""

    entity_id: str
    action: AuditAction
    created_at: datetime
    actor_id: Optional[str] = None
    entity_type: str = "request"
    new_values: Dict[str, Any] = field(default_factory=dict)
    old_values: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TickFailure:
    """Per-request failure collected during a tick."""

    request_id: str
    error_type: str
    message: str


@dataclass
class TickReport:
    """Outcome of one monitor tick."""

    tick_id: str
    trigger: str
    now: datetime
    candidates: int = 0
    became_overdue: int = 0
    approaching: int = 0
    failures: List[TickFailure] = field(default_factory=list)
    events: List[SLAEvent] = field(default_factory=list)
    finished_at: Optional[datetime] = None
    latency_ms: float = 0.0

    @property
    def failed(self) -> int:
        return len(self.failures)

    def to_dict(self) -> dict:
        return {
            "tick_id": self.tick_id,
            "trigger": self.trigger,
            "now": self.now.isoformat(),
            "candidates": self.candidates,
            "became_overdue": self.became_overdue,
            "approaching": self.approaching,
            "failed": self.failed,
            "latency_ms": self.latency_ms,
        }
