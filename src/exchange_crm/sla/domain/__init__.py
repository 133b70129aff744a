"""
SLA Domain Layer
================

Domain layer for SLA monitoring module.

Contains:
- Entities: SLARequest snapshot, SLAEvent, AuditRecord, TickReport
- Value Objects: SLAConfig rule set
- Domain Services: DeadlineCalculator, SLAStateEvaluator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from exchange_crm.sla.domain.entities import (
    SLARequest,
    SLAFieldChanges,
    SLAEvent,
    AuditRecord,
    TickFailure,
    TickReport,
)
from exchange_crm.sla.domain.value_objects import (
    AmountTier,
    SLAConfig,
    DeadlineCalculator,
    SLAStateEvaluator,
    evaluate_sla_state,
    minutes_to_deadline,
    format_time_to_deadline,
    sla_criticality,
)

__all__ = [
    # Entities
    "SLARequest",
    "SLAFieldChanges",
    "SLAEvent",
    "AuditRecord",
    "TickFailure",
    "TickReport",
    # Value Objects & Services
    "AmountTier",
    "SLAConfig",
    "DeadlineCalculator",
    "SLAStateEvaluator",
    "evaluate_sla_state",
    "minutes_to_deadline",
    "format_time_to_deadline",
    "sla_criticality",
]
