"""
SLA Application Layer
======================

Application layer for SLA monitoring module.

Contains:
- Services: Monitor tick, operator actions, queries and event dispatch
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and store/sink interfaces,
but not on concrete infrastructure implementations.
"""

from exchange_crm.sla.application.dto import (
    ActionResponse,
    DeadlineRequest,
    DeadlineResponse,
    RequestListResponse,
    RequestSLAResponse,
    SLAActionRequest,
    SLAEventResponse,
    TickReportResponse,
)
from exchange_crm.sla.application.services import (
    Clock,
    EventDispatcher,
    IAuditSink,
    INotificationSink,
    IRequestStore,
    ISLAConfigProvider,
    ITickMetricsExporter,
    IWarningLedger,
    RequestSLAView,
    SLAActionService,
    SLAMonitorService,
    SLAQueryService,
    utc_now,
)

__all__ = [
    # DTOs
    "ActionResponse",
    "DeadlineRequest",
    "DeadlineResponse",
    "RequestListResponse",
    "RequestSLAResponse",
    "SLAActionRequest",
    "SLAEventResponse",
    "TickReportResponse",
    # Services
    "EventDispatcher",
    "SLAMonitorService",
    "SLAActionService",
    "SLAQueryService",
    "RequestSLAView",
    "utc_now",
    "Clock",
    # Store / sink interfaces
    "IRequestStore",
    "IWarningLedger",
    "INotificationSink",
    "IAuditSink",
    "ISLAConfigProvider",
    "ITickMetricsExporter",
]
