"""
Exchange CRM SLA Service - Main Application
============================================

SLA compliance engine for currency-exchange requests.

Modules:
- SLA: Deadline assignment, overdue monitoring, operator actions

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, Slack, scheduler, metrics
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from exchange_crm.config import settings
from exchange_crm.core import ApplicationException

# Infrastructure
from exchange_crm.infrastructure.database import (
    close_database,
    create_tables,
    get_session_maker,
    init_database,
)

# SLA Module
from exchange_crm.sla.application import (
    Clock,
    EventDispatcher,
    IAuditSink,
    INotificationSink,
    IRequestStore,
    ITickMetricsExporter,
    IWarningLedger,
    SLAActionService,
    SLAMonitorService,
    SLAQueryService,
    utc_now,
)
from exchange_crm.sla.domain import DeadlineCalculator
from exchange_crm.sla.infrastructure import (
    CompositeNotificationSink,
    GrafanaTickMetricsExporter,
    MonitorScheduler,
    SLAConfigManager,
    SlackNotificationSink,
    SQLAlchemyAuditSink,
    SQLAlchemyNotificationSink,
    SQLAlchemyRequestStore,
    SQLAlchemyWarningLedger,
)
from exchange_crm.sla.interfaces import sla_router

# Shared
from exchange_crm.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from exchange_crm.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


def wire_sla_services(
    app: FastAPI,
    *,
    config_manager: SLAConfigManager,
    request_store: IRequestStore,
    warning_ledger: IWarningLedger,
    notification_sink: INotificationSink,
    audit_sink: IAuditSink,
    clock: Clock = utc_now,
    metrics_exporter: Optional[ITickMetricsExporter] = None
) -> None:
    """Build the SLA services and store them in app state for dependency injection."""
    config = config_manager.get_config()
    dispatcher = EventDispatcher(notification_sink, audit_sink)

    app.state.sla_config = config
    app.state.sla_clock = clock
    app.state.sla_calculator = DeadlineCalculator(config)
    app.state.sla_dispatcher = dispatcher
    app.state.sla_monitor = SLAMonitorService(
        request_store,
        warning_ledger,
        dispatcher,
        config_manager,
        clock=clock,
        fetch_timeout_seconds=settings.sla_store_timeout_seconds,
        max_concurrency=settings.sla_max_concurrency,
        metrics_exporter=metrics_exporter,
    )
    app.state.sla_actions = SLAActionService(request_store, dispatcher, config_manager, clock=clock)
    app.state.sla_query = SLAQueryService(request_store, config_manager, clock=clock)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA rule set (invalid rules abort startup)
    4. Wire SLA services and sinks
    5. Start the monitor scheduler

    SHUTDOWN:
    1. Stop the monitor scheduler
    2. Drain pending event deliveries
    3. Close Slack client and database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Exchange CRM SLA service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use Alembic in production)
    try:
        await create_tables()
    except Exception as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    logger.info("Loading SLA configuration")
    config_manager = SLAConfigManager()
    config_manager.load(settings.sla_config_path)

    session_factory = get_session_maker()
    slack_sink = SlackNotificationSink()
    notification_sink: INotificationSink = SQLAlchemyNotificationSink(session_factory)
    if slack_sink.enabled:
        notification_sink = CompositeNotificationSink([notification_sink, slack_sink])

    metrics_exporter = GrafanaTickMetricsExporter()

    wire_sla_services(
        app,
        config_manager=config_manager,
        request_store=SQLAlchemyRequestStore(session_factory),
        warning_ledger=SQLAlchemyWarningLedger(session_factory),
        notification_sink=notification_sink,
        audit_sink=SQLAlchemyAuditSink(session_factory),
        metrics_exporter=metrics_exporter if metrics_exporter.enabled else None,
    )

    scheduler = MonitorScheduler(interval_seconds=settings.sla_monitor_interval_seconds)
    await scheduler.start(app.state.sla_monitor.run_scheduled_tick)
    app.state.sla_scheduler = scheduler

    logger.info("Exchange CRM SLA service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Exchange CRM SLA service")

    await scheduler.stop()
    await app.state.sla_dispatcher.drain()
    await slack_sink.close()
    await close_database()

    logger.info("Exchange CRM SLA service shutdown complete")


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Create the FastAPI application (tests wire services themselves)."""
    app = FastAPI(
        title="Exchange CRM SLA API",
        description="""
    ## SLA Compliance Engine for Currency-Exchange Requests

    **Endpoints:**
    - `GET /sla/requests?view=overdue|upcoming|all` - Open requests by SLA state
    - `POST /sla/deadline` - Compute the deadline of a new request
    - `POST /sla/check` - Run one monitor tick now (administrators)
    - `POST /sla/actions` - Extend a deadline (administrators) or send a reminder

    **Features:**
    - Deadline = base window per direction x amount tier x client priority, clamped
    - Background monitor flags overdue requests and warns before deadlines
    - In-app, Slack and audit delivery of SLA events
    """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan if use_lifespan else None
    )
    app.state.settings = settings

    # === CORS Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Custom Middleware (from shared) ===
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # === Include Module Routers ===
    app.include_router(sla_router)

    @app.get("/health", tags=["Health"], responses={
        200: {
            "description": "Service is healthy",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "version": "1.0.0",
                        "environment": "development",
                        "checks": {
                            "sla_config": "loaded",
                            "sla_scheduler": "running",
                            "sla_monitor": "idle",
                            "next_tick": "2024-01-15T10:05:00+00:00",
                            "last_tick": None
                        }
                    }
                }
            }
        }
    })
    async def health_check(request: Request):
        """
        Health check endpoint for load balancers and orchestrators.

        Returns service health status including:
        - SLA configuration status
        - Scheduler state and next run
        - Monitor state and last tick summary
        """
        state = request.app.state
        scheduler: Optional[MonitorScheduler] = getattr(state, "sla_scheduler", None)
        monitor: Optional[SLAMonitorService] = getattr(state, "sla_monitor", None)

        next_run = scheduler.next_run_time if scheduler else None
        last_report = monitor.last_report if monitor else None

        checks = {
            "sla_config": "loaded" if getattr(state, "sla_config", None) else "not_loaded",
            "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
            "sla_monitor": ("busy" if monitor.is_busy else "idle") if monitor else "not_configured",
            "next_tick": next_run.isoformat() if next_run else None,
            "last_tick": last_report.to_dict() if last_report else None,
        }

        return {
            "status": "healthy" if monitor else "degraded",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": checks
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": "Exchange CRM SLA Service",
            "version": settings.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health",
            "modules": {
                "sla": {
                    "prefix": "/sla",
                    "endpoints": [
                        "GET /sla/requests - List requests by SLA state",
                        "POST /sla/deadline - Compute deadline",
                        "POST /sla/check - Run monitor tick (admin)",
                        "POST /sla/actions - Extend SLA / send reminder"
                    ]
                }
            }
        }

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "exchange_crm.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
