"""
SLA Infrastructure Repositories
=================================

Concrete implementations of the store and sink interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. Each call runs in its own short session.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exchange_crm.config import RequestStatus, SLAEventKind, TERMINAL_STATUSES, UserRole
from exchange_crm.core import (
    ConcurrentUpdateException,
    InvalidStateException,
    ResourceNotFoundException,
    StoreUnavailableException,
    ValidationException,
)
from exchange_crm.shared.infrastructure.logging import get_logger, log_latency
from exchange_crm.sla.application import (
    IAuditSink,
    INotificationSink,
    IRequestStore,
    IWarningLedger,
)
from exchange_crm.sla.domain import AuditRecord, SLAEvent, SLAFieldChanges, SLARequest
from exchange_crm.sla.infrastructure.models import (
    AuditLogModel,
    NotificationModel,
    RequestModel,
    SLAWarningModel,
    UserModel,
)

logger = get_logger(__name__)

_TERMINAL_VALUES = [s.value for s in TERMINAL_STATUSES]


@asynccontextmanager
async def _translate_errors(operation: str) -> AsyncIterator[None]:
    """Surface driver/connection errors as StoreUnavailableException."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(
            "Database operation failed",
            extra={"operation": operation, "error": str(e)}
        )
        raise StoreUnavailableException(
            f"Database error during {operation}",
            {"error_type": type(e).__name__}
        ) from e


def _to_entity(model: RequestModel) -> SLARequest:
    return SLARequest(
        id=model.id,
        status=RequestStatus(model.status),
        sla_deadline=model.sla_deadline,
        is_overdue=model.is_overdue,
        assigned_user_id=model.assigned_user_id,
        office_id=model.office_id,
        created_at=model.created_at,
        version=model.version,
    )


class SQLAlchemyRequestStore(IRequestStore):
    """
    SQLAlchemy implementation of the request store.

    SLA updates are a single conditional UPDATE guarded by version and
    status; the write either applies atomically or not at all.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def fetch_non_terminal_requests(self) -> List[SLARequest]:
        """All open requests, oldest deadline first."""
        stmt = (
            select(RequestModel)
            .where(RequestModel.status.not_in(_TERMINAL_VALUES))
            .order_by(RequestModel.sla_deadline.asc())
        )
        async with _translate_errors("fetch_non_terminal_requests"):
            with log_latency(logger, "fetch_non_terminal_requests"):
                async with self._session_factory() as session:
                    result = await session.execute(stmt)
                    return [_to_entity(model) for model in result.scalars().all()]

    async def get(self, request_id: str) -> Optional[SLARequest]:
        async with _translate_errors("get_request"):
            async with self._session_factory() as session:
                model = await session.get(RequestModel, request_id)
                return _to_entity(model) if model is not None else None

    async def update_sla_fields(
        self,
        request_id: str,
        changes: SLAFieldChanges,
        expected_version: int
    ) -> SLARequest:
        """Conditional update; on a miss, re-read to report why."""
        if changes.is_empty:
            raise ValidationException("No SLA fields to update", {"request_id": request_id})

        stmt = (
            update(RequestModel)
            .where(
                RequestModel.id == request_id,
                RequestModel.version == expected_version,
                RequestModel.status.not_in(_TERMINAL_VALUES),
            )
            .values(
                **changes.as_dict(),
                version=RequestModel.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )

        async with _translate_errors("update_sla_fields"):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                if result.rowcount == 1:
                    await session.commit()
                    model = await session.get(RequestModel, request_id, populate_existing=True)
                    return _to_entity(model)

                await session.rollback()
                current = await session.get(RequestModel, request_id)

        if current is None:
            raise ResourceNotFoundException("Request", request_id)
        if RequestStatus(current.status) in TERMINAL_STATUSES:
            raise InvalidStateException(
                f"Request {request_id} is {current.status}; SLA no longer tracked",
                {"request_id": request_id, "status": str(current.status)}
            )
        raise ConcurrentUpdateException(request_id, expected_version)


class SQLAlchemyWarningLedger(IWarningLedger):
    """Warning idempotency backed by a unique constraint."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record_warning(self, request_id: str, sla_deadline: datetime) -> bool:
        async with _translate_errors("record_warning"):
            async with self._session_factory() as session:
                session.add(SLAWarningModel(request_id=request_id, sla_deadline=sla_deadline))
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    return False
                return True


class SQLAlchemyNotificationSink(INotificationSink):
    """
    Persists in-app notifications.

    The event recipient gets one row. BECAME_OVERDUE is also copied to
    every active administrator, so an unassigned overdue request still
    reaches someone.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def notify(self, event: SLAEvent) -> None:
        async with _translate_errors("notify"):
            async with self._session_factory() as session:
                recipients = []
                if event.recipient_id is not None:
                    recipients.append(event.recipient_id)
                if event.kind == SLAEventKind.BECAME_OVERDUE:
                    admins = await session.scalars(
                        select(UserModel.id)
                        .where(UserModel.role == UserRole.ADMIN.value)
                        .where(UserModel.is_active.is_(True))
                        .order_by(UserModel.id)
                    )
                    recipients.extend(a for a in admins if a not in recipients)

                if not recipients:
                    logger.debug(
                        "SLA event has no recipient, skipping in-app notification",
                        extra={"request_id": event.request_id, "event_kind": event.kind.value}
                    )
                    return

                for user_id in recipients:
                    session.add(NotificationModel(
                        user_id=user_id,
                        request_id=event.request_id,
                        kind=event.kind.value,
                        title=event.title,
                        message=event.summary(),
                        payload=dict(event.payload),
                        created_at=event.occurred_at,
                    ))
                await session.commit()


class SQLAlchemyAuditSink(IAuditSink):
    """Appends audit records to the audit_logs table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(self, entry: AuditRecord) -> None:
        async with _translate_errors("record_audit"):
            async with self._session_factory() as session:
                session.add(AuditLogModel(
                    entity_type=entry.entity_type,
                    entity_id=entry.entity_id,
                    action=entry.action.value,
                    actor_id=entry.actor_id,
                    old_values=dict(entry.old_values) or None,
                    new_values=dict(entry.new_values) or None,
                    created_at=entry.created_at,
                ))
                await session.commit()
