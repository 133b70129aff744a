"""In-memory collaborators for SLA service tests."""
import asyncio
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set, Tuple

from exchange_crm.core import (
    ConcurrentUpdateException,
    InvalidStateException,
    RepositoryException,
    ResourceNotFoundException,
)
from exchange_crm.sla.application import (
    IAuditSink,
    INotificationSink,
    IRequestStore,
    ITickMetricsExporter,
    IWarningLedger,
)
from exchange_crm.sla.domain import AuditRecord, SLAEvent, SLAFieldChanges, SLARequest, TickReport


class FixedClock:
    """Clock returning a controllable instant."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class InMemoryRequestStore(IRequestStore):
    def __init__(self, requests=()):
        self.requests: Dict[str, SLARequest] = {}
        for request in requests:
            self.add(request)
        self.fail_updates_for: Set[str] = set()
        self.fail_fetch: Optional[Exception] = None
        self.fetch_gate: Optional[asyncio.Event] = None
        # request_id -> number of updates to lose to a simulated concurrent writer
        self.conflicts: Dict[str, int] = {}
        self.fetch_calls = 0
        self.update_calls: List[Tuple[str, SLAFieldChanges, int]] = []

    def add(self, request: SLARequest) -> SLARequest:
        self.requests[request.id] = request
        return request

    async def fetch_non_terminal_requests(self) -> List[SLARequest]:
        self.fetch_calls += 1
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if self.fail_fetch is not None:
            raise self.fail_fetch
        return [replace(r) for r in self.requests.values() if not r.is_terminal]

    async def get(self, request_id: str) -> Optional[SLARequest]:
        request = self.requests.get(request_id)
        return replace(request) if request is not None else None

    async def update_sla_fields(
        self,
        request_id: str,
        changes: SLAFieldChanges,
        expected_version: int
    ) -> SLARequest:
        self.update_calls.append((request_id, changes, expected_version))
        if request_id in self.fail_updates_for:
            raise RepositoryException(f"write failed for {request_id}")

        current = self.requests.get(request_id)
        if current is None:
            raise ResourceNotFoundException("Request", request_id)
        if current.is_terminal:
            raise InvalidStateException(f"Request {request_id} is terminal")

        if self.conflicts.get(request_id, 0) > 0:
            self.conflicts[request_id] -= 1
            self.requests[request_id] = replace(current, version=current.version + 1)
            raise ConcurrentUpdateException(request_id, expected_version)

        if current.version != expected_version:
            raise ConcurrentUpdateException(request_id, expected_version)

        updated = replace(current, **changes.as_dict(), version=current.version + 1)
        self.requests[request_id] = updated
        return replace(updated)


class InMemoryWarningLedger(IWarningLedger):
    def __init__(self):
        self.warnings: Set[Tuple[str, datetime]] = set()

    async def record_warning(self, request_id: str, sla_deadline: datetime) -> bool:
        key = (request_id, sla_deadline)
        if key in self.warnings:
            return False
        self.warnings.add(key)
        return True


class RecordingNotificationSink(INotificationSink):
    def __init__(self, fail: bool = False):
        self.events: List[SLAEvent] = []
        self.fail = fail

    async def notify(self, event: SLAEvent) -> None:
        if self.fail:
            raise RuntimeError("notification backend down")
        self.events.append(event)

    def kinds(self) -> List[str]:
        return [e.kind.value for e in self.events]


class RecordingAuditSink(IAuditSink):
    def __init__(self, fail: bool = False):
        self.records: List[AuditRecord] = []
        self.fail = fail

    async def record(self, entry: AuditRecord) -> None:
        if self.fail:
            raise RuntimeError("audit backend down")
        self.records.append(entry)


class RecordingMetricsExporter(ITickMetricsExporter):
    def __init__(self):
        self.reports: List[TickReport] = []

    async def export_tick_metrics(self, report: TickReport) -> bool:
        self.reports.append(report)
        return True
