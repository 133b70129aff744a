"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA monitoring:
- Models: SQLAlchemy ORM models
- Repositories: Request store, warning ledger, notification and audit sinks
- External: External service integrations (rule set loader, Slack, scheduler)
"""

from exchange_crm.sla.infrastructure.models import (
    AuditLogModel,
    NotificationModel,
    RequestModel,
    SLAWarningModel,
    UserModel,
)
from exchange_crm.sla.infrastructure.repositories import (
    SQLAlchemyAuditSink,
    SQLAlchemyNotificationSink,
    SQLAlchemyRequestStore,
    SQLAlchemyWarningLedger,
)
from exchange_crm.sla.infrastructure.external import (
    CircuitBreaker,
    CompositeNotificationSink,
    GrafanaTickMetricsExporter,
    MonitorScheduler,
    SLAConfigManager,
    SlackNotificationSink,
)

__all__ = [
    "AuditLogModel",
    "NotificationModel",
    "RequestModel",
    "SLAWarningModel",
    "UserModel",
    "SQLAlchemyAuditSink",
    "SQLAlchemyNotificationSink",
    "SQLAlchemyRequestStore",
    "SQLAlchemyWarningLedger",
    "CircuitBreaker",
    "CompositeNotificationSink",
    "GrafanaTickMetricsExporter",
    "MonitorScheduler",
    "SLAConfigManager",
    "SlackNotificationSink",
]
