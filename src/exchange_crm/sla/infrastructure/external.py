"""
SLA External Service Integrations
==================================

External services for SLA monitoring:
- YAML rule set loader
- Slack webhook notifications
- APScheduler for the periodic monitor tick
- Grafana gauges for tick outcomes
"""

import asyncio
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError

from exchange_crm.config import SLAEventKind, settings
from exchange_crm.core import ConfigurationException, ExternalServiceException
from exchange_crm.shared.infrastructure.grafana import GrafanaOTLPExporter, get_grafana_exporter
from exchange_crm.shared.infrastructure.logging import get_logger
from exchange_crm.sla.application import (
    INotificationSink,
    ISLAConfigProvider,
    ITickMetricsExporter,
    utc_now,
)
from exchange_crm.sla.domain import SLAConfig, SLAEvent, TickReport

logger = get_logger(__name__)


class SLAConfigManager(ISLAConfigProvider):
    """
    Loads the SLA rule set once at startup.

    The rule set is immutable for the process lifetime; changing it
    requires a restart.
    """

    def __init__(self, config: Optional[SLAConfig] = None):
        self._config = config
        self._path: Optional[Path] = None

    def load(self, path: Path) -> SLAConfig:
        """Initial configuration load."""
        self._path = Path(path)
        self._config = self._load_from_file(self._path)
        logger.info(
            "SLA configuration loaded",
            extra={
                "path": str(self._path),
                "min_minutes": self._config.min_minutes,
                "max_minutes": self._config.max_minutes,
                "upcoming_window_minutes": self._config.upcoming_window_minutes,
            }
        )
        return self._config

    def _load_from_file(self, path: Path) -> SLAConfig:
        """Load and validate the YAML rule set."""
        if not path.exists():
            logger.warning(f"SLA config file not found: {path}, using defaults")
            return SLAConfig()

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationException(
                f"SLA config {path} is not valid YAML",
                {"path": str(path), "error": str(e)}
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationException(
                f"SLA config {path} must be a mapping",
                {"path": str(path)}
            )

        try:
            return SLAConfig(**data)
        except ValidationError as e:
            raise ConfigurationException(
                f"Invalid SLA config in {path}",
                {"path": str(path), "error": str(e)}
            ) from e

    def get_config(self) -> SLAConfig:
        """Get current configuration."""
        if self._config is None:
            raise RuntimeError("SLA configuration not loaded")
        return self._config


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


_EVENT_EMOJI = {
    SLAEventKind.BECAME_OVERDUE: ":rotating_light:",
    SLAEventKind.APPROACHING_DEADLINE: ":warning:",
    SLAEventKind.EXTENDED: ":hourglass_flowing_sand:",
    SLAEventKind.REMINDER_SENT: ":bell:",
}


class SlackNotificationSink(INotificationSink):
    """
    Slack webhook sink with circuit breaker and retry logic.

    Handles sending SLA events to a Slack channel with:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling

    `send` returns False on failure; `notify` raises ExternalServiceException.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        channel: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: int = 3,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url if webhook_url is not None else settings.slack_webhook_url
        self._channel = channel or settings.slack_channel
        self._timeout = timeout_seconds or settings.slack_timeout_seconds
        self._max_retries = max_retries
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client = http_client

    @property
    def enabled(self) -> bool:
        return bool(self._webhook_url)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def _build_message(self, event: SLAEvent) -> Dict[str, Any]:
        """Build Slack Block Kit message."""
        fields = [
            {"type": "mrkdwn", "text": f"*Request:*\n{event.request_id}"},
            {"type": "mrkdwn", "text": f"*Assignee:*\n{event.recipient_id or 'unassigned'}"},
        ]
        deadline = event.payload.get("sla_deadline") or event.payload.get("new_deadline")
        if deadline:
            fields.append({"type": "mrkdwn", "text": f"*Deadline:*\n{deadline}"})
        if event.actor_id:
            fields.append({"type": "mrkdwn", "text": f"*By:*\n{event.actor_id}"})

        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"{_EVENT_EMOJI[event.kind]} {event.title}",
                    "emoji": True
                }
            },
            {"type": "section", "text": {"type": "mrkdwn", "text": event.summary()}},
            {"type": "section", "fields": fields},
            {
                "type": "context",
                "elements": [
                    {"type": "mrkdwn", "text": f"{event.kind.value} | {event.occurred_at.isoformat()}"}
                ]
            }
        ]

        return {"channel": self._channel, "text": event.summary(), "blocks": blocks}

    async def notify(self, event: SLAEvent) -> None:
        if self.enabled and not await self.send(event):
            raise ExternalServiceException(
                "Slack",
                "notification not delivered",
                {"request_id": event.request_id, "event_kind": event.kind.value}
            )

    async def send(self, event: SLAEvent) -> bool:
        """
        Post one event to the webhook.

        Returns:
            True if sent successfully, False otherwise
        """
        if not self._webhook_url:
            logger.debug("Slack webhook URL not configured, skipping notification")
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping Slack notification",
                extra={"request_id": event.request_id}
            )
            return False

        message = self._build_message(event)

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=message)

                if response.status_code == 200:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Slack notification sent",
                        extra={"request_id": event.request_id, "event_kind": event.kind.value}
                    )
                    return True

                logger.warning(
                    "Slack webhook returned non-200",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )

            except httpx.HTTPError as e:
                logger.error(
                    "Slack notification failed",
                    extra={"error": str(e), "attempt": attempt + 1, "request_id": event.request_id}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class CompositeNotificationSink(INotificationSink):
    """Fans one event out to several sinks; one failing sink does not stop the others."""

    def __init__(self, sinks: Sequence[INotificationSink]):
        self._sinks = list(sinks)

    async def notify(self, event: SLAEvent) -> None:
        results = await asyncio.gather(
            *(sink.notify(event) for sink in self._sinks),
            return_exceptions=True
        )
        for sink, result in zip(self._sinks, results):
            if isinstance(result, Exception):
                logger.error(
                    "Notification sink failed",
                    extra={
                        "sink": type(sink).__name__,
                        "request_id": event.request_id,
                        "error": str(result)
                    }
                )


class MonitorScheduler:
    """
    Wrapper for APScheduler running the periodic SLA monitor tick.

    Manages the lifecycle of the scheduler and the single interval job.
    """

    JOB_ID = "sla_monitor_tick"

    def __init__(self, interval_seconds: int = 300, run_immediately: bool = False):
        self.interval_seconds = interval_seconds
        self.run_immediately = run_immediately
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[Any]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("SLA monitor scheduler already running")
            return

        if self.interval_seconds <= 0:
            logger.info("SLA monitor scheduler disabled (interval is 0)")
            return

        self._scheduler = AsyncIOScheduler()

        job_options: Dict[str, Any] = {}
        if self.run_immediately:
            job_options["next_run_time"] = utc_now()

        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id=self.JOB_ID,
            name="SLA Monitor Tick",
            misfire_grace_time=60,
            coalesce=True,
            max_instances=1,
            replace_existing=True,
            **job_options
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA monitor scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the scheduler; an in-flight tick is left to finish on its own."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("SLA monitor scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def next_run_time(self) -> Optional[datetime]:
        """Next scheduled tick, None when stopped or disabled."""
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(self.JOB_ID)
        return job.next_run_time if job is not None else None


class GrafanaTickMetricsExporter(ITickMetricsExporter):
    """Publishes per-tick monitor counters as Grafana gauges."""

    def __init__(self, exporter: Optional[GrafanaOTLPExporter] = None):
        self._exporter = exporter or get_grafana_exporter()

    @property
    def enabled(self) -> bool:
        return self._exporter.is_enabled()

    async def export_tick_metrics(self, report: TickReport) -> bool:
        gauges = {
            "sla_tick_candidates": (report.candidates, "1", "Requests evaluated in the tick"),
            "sla_tick_became_overdue": (report.became_overdue, "1", "Requests flagged overdue in the tick"),
            "sla_tick_approaching": (report.approaching, "1", "Approaching-deadline warnings emitted"),
            "sla_tick_failures": (report.failed, "1", "Requests whose reconcile failed"),
            "sla_tick_latency_ms": (report.latency_ms, "ms", "Tick duration in milliseconds"),
        }
        return await self._exporter.export_gauges(gauges, {"trigger": report.trigger})
