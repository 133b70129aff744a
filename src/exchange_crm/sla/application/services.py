"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain objects and the external collaborators (request store, sinks).

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (store/sink interfaces), not concrete implementations
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Iterable, List, NamedTuple, Optional, Sequence, Set
from uuid import uuid4

from exchange_crm.config import AuditAction, SLAEventKind, SLAState
from exchange_crm.core import (
    ConcurrentUpdateException,
    InvalidStateException,
    ResourceNotFoundException,
    StoreUnavailableException,
    TickAlreadyRunningException,
    ValidationException,
)
from exchange_crm.sla.domain import (
    AuditRecord,
    SLAConfig,
    SLAEvent,
    SLAFieldChanges,
    SLARequest,
    SLAStateEvaluator,
    TickFailure,
    TickReport,
    minutes_to_deadline,
)
from exchange_crm.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ========== Collaborator Interfaces (Dependency Inversion) ==========

class IRequestStore(ABC):
    """Source of truth for exchange requests (SLA fields only)."""

    @abstractmethod
    async def fetch_non_terminal_requests(self) -> List[SLARequest]:
        """All requests whose status is not terminal."""

    @abstractmethod
    async def get(self, request_id: str) -> Optional[SLARequest]:
        """Single request by id, None when missing."""

    @abstractmethod
    async def update_sla_fields(
        self,
        request_id: str,
        changes: SLAFieldChanges,
        expected_version: int
    ) -> SLARequest:
        """
        Conditionally patch SLA fields.

        Applied only if the stored version still equals `expected_version`
        and the request is not terminal.

        Raises:
            ConcurrentUpdateException: version moved on
            ResourceNotFoundException: request disappeared
            InvalidStateException: request became terminal
        """


class IWarningLedger(ABC):
    """Idempotency record for APPROACHING_DEADLINE warnings."""

    @abstractmethod
    async def record_warning(self, request_id: str, sla_deadline: datetime) -> bool:
        """Record a warning for (request, deadline); False if it was already recorded."""


class INotificationSink(ABC):
    """Delivers SLA events to operators."""

    @abstractmethod
    async def notify(self, event: SLAEvent) -> None:
        """Deliver one event to event.recipient_id (may be None)."""


class IAuditSink(ABC):
    """Append-only audit trail for deadline mutations."""

    @abstractmethod
    async def record(self, entry: AuditRecord) -> None:
        """Persist one immutable audit record."""


class ISLAConfigProvider(ABC):
    """Interface for SLA configuration access."""

    @abstractmethod
    def get_config(self) -> SLAConfig:
        """Get the SLA rule set."""


class ITickMetricsExporter(ABC):
    """Exports per-tick gauges to a metrics backend."""

    @abstractmethod
    async def export_tick_metrics(self, report: TickReport) -> bool:
        """Push tick counters; returns False when not exported."""


# ========== Event Dispatch ==========

class EventDispatcher:
    """
    Fire-and-forget delivery of SLA events and audit records.

    Deliveries run as background tasks after the SLA state is persisted.
    Sink failures are logged and dropped; they never reach the caller.
    """

    def __init__(
        self,
        notification_sink: INotificationSink,
        audit_sink: IAuditSink
    ):
        self._notification_sink = notification_sink
        self._audit_sink = audit_sink
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def publish(
        self,
        events: Sequence[SLAEvent],
        audit_records: Sequence[AuditRecord] = ()
    ) -> None:
        """Schedule delivery of a batch; returns immediately."""
        if not events and not audit_records:
            return
        self.spawn(
            self._deliver(list(events), list(audit_records)),
            name="sla-event-delivery"
        )

    def spawn(self, coro: Awaitable, name: str) -> asyncio.Task:
        """Run a background coroutine tracked for drain()."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Background SLA task failed",
                extra={"task": task.get_name(), "error": str(error)}
            )

    async def _deliver(
        self,
        events: List[SLAEvent],
        audit_records: List[AuditRecord]
    ) -> None:
        for entry in audit_records:
            try:
                await self._audit_sink.record(entry)
            except Exception as e:
                logger.error(
                    "Audit sink delivery failed",
                    extra={
                        "request_id": entry.entity_id,
                        "action": entry.action.value,
                        "error": str(e)
                    }
                )

        for event in events:
            try:
                await self._notification_sink.notify(event)
            except Exception as e:
                logger.error(
                    "Notification sink delivery failed",
                    extra={
                        "request_id": event.request_id,
                        "event_kind": event.kind.value,
                        "error": str(e)
                    }
                )

    async def drain(self) -> None:
        """Wait for all outstanding deliveries (shutdown, tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# ========== Monitoring ==========

@dataclass
class _ReconcileOutcome:
    events: List[SLAEvent] = field(default_factory=list)
    audit_records: List[AuditRecord] = field(default_factory=list)
    became_overdue: bool = False
    approaching: bool = False


class SLAMonitorService:
    """
    Reconciles stored overdue flags with the live SLA state.

    One tick:
    1. Capture `now` once
    2. Fetch all non-terminal requests (fetch failure aborts the tick)
    3. Evaluate each request and apply transitions concurrently
    4. Publish the collected events and audit records

    Ticks never overlap: the scheduled job and the manual trigger share
    one in-process lock. Per-request failures are collected, not raised.
    """

    def __init__(
        self,
        request_store: IRequestStore,
        warning_ledger: IWarningLedger,
        dispatcher: EventDispatcher,
        config_provider: ISLAConfigProvider,
        clock: Clock = utc_now,
        fetch_timeout_seconds: Optional[float] = None,
        max_concurrency: int = 20,
        metrics_exporter: Optional[ITickMetricsExporter] = None
    ):
        self._store = request_store
        self._ledger = warning_ledger
        self._dispatcher = dispatcher
        self._config_provider = config_provider
        self._clock = clock
        self._fetch_timeout = fetch_timeout_seconds
        self._max_concurrency = max_concurrency
        self._metrics_exporter = metrics_exporter
        self._lock = asyncio.Lock()
        self._last_report: Optional[TickReport] = None

    @property
    def is_busy(self) -> bool:
        """True while a tick is running."""
        return self._lock.locked()

    @property
    def last_report(self) -> Optional[TickReport]:
        return self._last_report

    async def run_tick(self, trigger: str = "manual") -> TickReport:
        """
        Run one tick now.

        Raises:
            TickAlreadyRunningException: another tick holds the lock
            StoreUnavailableException: candidates could not be fetched
        """
        # No await between the check and the acquire, so this is atomic on the loop
        if self._lock.locked():
            raise TickAlreadyRunningException({"trigger": trigger})

        async with self._lock:
            return await self._execute_tick(trigger)

    async def run_scheduled_tick(self) -> Optional[TickReport]:
        """Scheduler entry point: skips when busy, never raises on store outages."""
        try:
            return await self.run_tick(trigger="scheduled")
        except TickAlreadyRunningException:
            logger.warning("SLA monitor tick skipped: previous tick still running")
            return None
        except StoreUnavailableException:
            # Already logged; the next interval is the retry
            return None

    async def _execute_tick(self, trigger: str) -> TickReport:
        tick_id = str(uuid4())
        now = self._clock()
        started = time.perf_counter()
        evaluator = SLAStateEvaluator(self._config_provider.get_config().upcoming_window)

        logger.info(
            "SLA monitor tick started",
            extra={"tick_id": tick_id, "trigger": trigger, "now": now.isoformat()}
        )

        candidates = await self._fetch_candidates(tick_id)
        report = TickReport(tick_id=tick_id, trigger=trigger, now=now, candidates=len(candidates))

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def reconcile_guarded(request: SLARequest) -> _ReconcileOutcome:
            async with semaphore:
                return await self._reconcile(request, evaluator, now)

        outcomes = await asyncio.gather(
            *(reconcile_guarded(request) for request in candidates),
            return_exceptions=True
        )

        audit_records: List[AuditRecord] = []
        for request, outcome in zip(candidates, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                report.failures.append(TickFailure(
                    request_id=request.id,
                    error_type=type(outcome).__name__,
                    message=str(outcome)
                ))
                logger.error(
                    "SLA reconcile failed for request",
                    extra={
                        "tick_id": tick_id,
                        "request_id": request.id,
                        "error_type": type(outcome).__name__,
                        "error": str(outcome)
                    }
                )
                continue

            report.events.extend(outcome.events)
            audit_records.extend(outcome.audit_records)
            report.became_overdue += int(outcome.became_overdue)
            report.approaching += int(outcome.approaching)

        self._dispatcher.publish(report.events, audit_records)

        report.finished_at = self._clock()
        report.latency_ms = round((time.perf_counter() - started) * 1000, 2)
        self._last_report = report

        logger.info(
            "SLA monitor tick completed",
            extra={
                "tick_id": tick_id,
                "trigger": trigger,
                "candidates": report.candidates,
                "became_overdue": report.became_overdue,
                "approaching": report.approaching,
                "failed": report.failed,
                "latency_ms": report.latency_ms
            }
        )

        if self._metrics_exporter is not None:
            self._dispatcher.spawn(
                self._metrics_exporter.export_tick_metrics(report),
                name="sla-tick-metrics"
            )

        return report

    async def _fetch_candidates(self, tick_id: str) -> List[SLARequest]:
        try:
            fetch = self._store.fetch_non_terminal_requests()
            if self._fetch_timeout:
                return list(await asyncio.wait_for(fetch, timeout=self._fetch_timeout))
            return list(await fetch)
        except asyncio.TimeoutError as e:
            logger.error(
                "SLA monitor tick aborted: request store fetch timed out",
                extra={"tick_id": tick_id, "timeout_seconds": self._fetch_timeout}
            )
            raise StoreUnavailableException(
                "Request store fetch timed out",
                {"timeout_seconds": self._fetch_timeout}
            ) from e
        except Exception as e:
            logger.error(
                "SLA monitor tick aborted: request store unavailable",
                extra={"tick_id": tick_id, "error": str(e)}
            )
            raise StoreUnavailableException(
                f"Request store unavailable: {e}",
                {"error_type": type(e).__name__}
            ) from e

    async def _reconcile(
        self,
        request: SLARequest,
        evaluator: SLAStateEvaluator,
        now: datetime
    ) -> _ReconcileOutcome:
        """Apply at most one transition for a single request."""
        outcome = _ReconcileOutcome()
        state = evaluator.evaluate(request.status, request.sla_deadline, now)

        if state == SLAState.OVERDUE and not request.is_overdue:
            await self._store.update_sla_fields(
                request.id,
                SLAFieldChanges(is_overdue=True),
                expected_version=request.version
            )
            deadline_iso = request.sla_deadline.isoformat()
            overdue_minutes = int((now - request.sla_deadline).total_seconds() // 60)
            outcome.became_overdue = True
            outcome.events.append(SLAEvent(
                kind=SLAEventKind.BECAME_OVERDUE,
                request_id=request.id,
                occurred_at=now,
                recipient_id=request.assigned_user_id,
                payload={
                    "sla_deadline": deadline_iso,
                    "overdue_minutes": overdue_minutes,
                    "office_id": request.office_id,
                }
            ))
            outcome.audit_records.append(AuditRecord(
                entity_id=request.id,
                action=AuditAction.SLA_OVERDUE,
                created_at=now,
                old_values={"sla_deadline": deadline_iso, "is_overdue": False},
                new_values={"sla_deadline": deadline_iso, "is_overdue": True},
            ))

        elif state == SLAState.UPCOMING:
            # Keyed on (request, deadline): an extension re-arms the warning
            if await self._ledger.record_warning(request.id, request.sla_deadline):
                outcome.approaching = True
                outcome.events.append(SLAEvent(
                    kind=SLAEventKind.APPROACHING_DEADLINE,
                    request_id=request.id,
                    occurred_at=now,
                    recipient_id=request.assigned_user_id,
                    payload={
                        "sla_deadline": request.sla_deadline.isoformat(),
                        "minutes_left": minutes_to_deadline(request.sla_deadline, now),
                    }
                ))

        return outcome


# ========== Operator Actions ==========

class SLAActionService:
    """
    Operator-invoked SLA actions on a single request.

    Authorization is the caller's job: only administrators may extend
    deadlines. This service trusts its caller on that point.
    """

    def __init__(
        self,
        request_store: IRequestStore,
        dispatcher: EventDispatcher,
        config_provider: ISLAConfigProvider,
        clock: Clock = utc_now,
        max_attempts: int = 3
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._store = request_store
        self._dispatcher = dispatcher
        self._config_provider = config_provider
        self._clock = clock
        self._max_attempts = max_attempts

    async def _load_open_request(self, request_id: str) -> SLARequest:
        request = await self._store.get(request_id)
        if request is None:
            raise ResourceNotFoundException("Request", request_id)
        if request.is_terminal:
            raise InvalidStateException(
                f"Request {request_id} is {request.status.value}; SLA no longer tracked",
                {"request_id": request_id, "status": request.status.value}
            )
        return request

    async def extend_deadline(
        self,
        request_id: str,
        actor_id: str,
        extension: timedelta
    ) -> SLARequest:
        """
        Reset the deadline to now + extension and clear the overdue flag.

        The new deadline is relative to the moment the extension is
        granted, not to the previous deadline.

        Raises:
            ValidationException: non-positive or too large extension
            ResourceNotFoundException: unknown request
            InvalidStateException: terminal request
            ConcurrentUpdateException: lost the race on every attempt
        """
        config = self._config_provider.get_config()
        if extension <= timedelta(0):
            raise ValidationException(
                "Extension must be positive",
                {"extension_seconds": extension.total_seconds()}
            )
        if extension > config.extension_limit:
            raise ValidationException(
                f"Extension exceeds the limit of {config.extension_limit}",
                {"extension_seconds": extension.total_seconds()}
            )

        for attempt in range(1, self._max_attempts + 1):
            request = await self._load_open_request(request_id)
            now = self._clock()
            new_deadline = now + extension

            try:
                updated = await self._store.update_sla_fields(
                    request_id,
                    SLAFieldChanges(sla_deadline=new_deadline, is_overdue=False),
                    expected_version=request.version
                )
            except ConcurrentUpdateException:
                logger.warning(
                    "Concurrent update while extending SLA, retrying",
                    extra={"request_id": request_id, "attempt": attempt}
                )
                continue

            previous = request.sla_deadline.isoformat() if request.sla_deadline else None
            extension_minutes = int(extension.total_seconds() // 60)
            event = SLAEvent(
                kind=SLAEventKind.EXTENDED,
                request_id=request_id,
                occurred_at=now,
                actor_id=actor_id,
                recipient_id=request.assigned_user_id,
                payload={
                    "previous_deadline": previous,
                    "new_deadline": new_deadline.isoformat(),
                    "extension_minutes": extension_minutes,
                }
            )
            audit = AuditRecord(
                entity_id=request_id,
                action=AuditAction.SLA_EXTENDED,
                created_at=now,
                actor_id=actor_id,
                old_values={"sla_deadline": previous, "is_overdue": request.is_overdue},
                new_values={"sla_deadline": new_deadline.isoformat(), "is_overdue": False},
            )
            self._dispatcher.publish([event], [audit])

            logger.info(
                "SLA deadline extended",
                extra={
                    "request_id": request_id,
                    "actor_id": actor_id,
                    "extension_minutes": extension_minutes,
                    "new_deadline": new_deadline.isoformat()
                }
            )
            return updated

        raise ConcurrentUpdateException(request_id, request.version)

    async def send_reminder(self, request_id: str, actor_id: str) -> SLAEvent:
        """
        Emit REMINDER_SENT for the assigned operator.

        Does not touch the deadline or the overdue flag.

        Raises:
            ResourceNotFoundException: unknown request
            InvalidStateException: terminal request or nobody assigned
        """
        request = await self._load_open_request(request_id)
        if request.assigned_user_id is None:
            raise InvalidStateException(
                f"Request {request_id} has no assigned operator",
                {"request_id": request_id}
            )

        event = SLAEvent(
            kind=SLAEventKind.REMINDER_SENT,
            request_id=request_id,
            occurred_at=self._clock(),
            actor_id=actor_id,
            recipient_id=request.assigned_user_id,
            payload={
                "sla_deadline": request.sla_deadline.isoformat() if request.sla_deadline else None,
            }
        )
        self._dispatcher.publish([event])

        logger.info(
            "SLA reminder sent",
            extra={"request_id": request_id, "actor_id": actor_id,
                   "recipient_id": request.assigned_user_id}
        )
        return event


# ========== Queries ==========

class RequestSLAView(NamedTuple):
    request: SLARequest
    state: SLAState
    minutes_left: Optional[int]


class SLAQueryService:
    """Read-only listing of open requests with their live SLA state."""

    VIEWS = ("overdue", "upcoming", "all")

    def __init__(
        self,
        request_store: IRequestStore,
        config_provider: ISLAConfigProvider,
        clock: Clock = utc_now
    ):
        self._store = request_store
        self._config_provider = config_provider
        self._clock = clock

    async def list_requests(
        self,
        view: str = "overdue",
        office_ids: Optional[Iterable[str]] = None
    ) -> List[RequestSLAView]:
        """
        Non-terminal requests filtered by live state.

        Args:
            view: overdue, upcoming or all
            office_ids: restrict to these offices (None = no restriction)
        """
        if view not in self.VIEWS:
            raise ValidationException(f"Unknown view {view!r}", {"allowed": list(self.VIEWS)})

        now = self._clock()
        evaluator = SLAStateEvaluator(self._config_provider.get_config().upcoming_window)
        offices = set(office_ids) if office_ids is not None else None

        views = []
        for request in await self._store.fetch_non_terminal_requests():
            if offices is not None and request.office_id not in offices:
                continue
            state = evaluator.evaluate(request.status, request.sla_deadline, now)
            if view == "overdue" and state != SLAState.OVERDUE:
                continue
            if view == "upcoming" and state != SLAState.UPCOMING:
                continue
            views.append(RequestSLAView(request, state, minutes_to_deadline(request.sla_deadline, now)))

        max_time = datetime.max.replace(tzinfo=timezone.utc)
        views.sort(key=lambda v: v.request.sla_deadline or max_time)
        return views
