"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA monitoring endpoints.

Controllers are thin - they resolve the caller, enforce role checks and
delegate to application services. Authentication happens upstream; the
gateway forwards the caller identity in X-User-Id / X-User-Role /
X-Office-Ids headers.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from exchange_crm.config import UserRole, settings
from exchange_crm.shared.infrastructure.logging import get_logger
from exchange_crm.sla.application import (
    ActionResponse,
    Clock,
    DeadlineRequest,
    DeadlineResponse,
    RequestListResponse,
    RequestSLAResponse,
    SLAActionRequest,
    SLAActionService,
    SLAEventResponse,
    SLAMonitorService,
    SLAQueryService,
    TickReportResponse,
)
from exchange_crm.sla.domain import (
    DeadlineCalculator,
    SLAStateEvaluator,
    format_time_to_deadline,
    minutes_to_deadline,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Monitoring"])


# ========== Example payloads for Swagger ==========

DEADLINE_REQUEST_EXAMPLE = {
    "direction": "CASH_TO_CRYPTO",
    "from_amount": "15000",
    "from_currency": "RUB",
    "priority": "NORMAL",
    "created_at": "2024-01-15T10:00:00Z"
}

TICK_REPORT_EXAMPLE = {
    "tick_id": "0b6c2f8e-3a38-4c55-9d1c-7f0b4e0b9a11",
    "trigger": "manual",
    "now": "2024-01-15T10:46:00Z",
    "candidates": 12,
    "became_overdue": 1,
    "approaching": 2,
    "failed": 0,
    "latency_ms": 18.4,
    "failures": []
}


# ========== Caller identity ==========

@dataclass(frozen=True)
class Actor:
    """Authenticated operator forwarded by the gateway."""
    user_id: str
    role: UserRole
    office_ids: Optional[List[str]] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def visible_offices(self) -> Optional[List[str]]:
        """Office scope for listings; None means every office."""
        if self.role == UserRole.CASHIER:
            return self.office_ids or []
        return None


async def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    x_office_ids: Optional[str] = Header(None)
) -> Actor:
    """Resolve the caller from gateway headers."""
    if not x_user_id or not x_user_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id or X-User-Role header"
        )
    try:
        role = UserRole(x_user_role.strip().upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown role {x_user_role!r}"
        ) from None

    office_ids = None
    if x_office_ids:
        office_ids = [o.strip() for o in x_office_ids.split(",") if o.strip()]

    return Actor(user_id=x_user_id, role=role, office_ids=office_ids)


async def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator role required"
        )
    return actor


# ========== Service dependencies (wired in the application lifespan) ==========

def get_clock(request: Request) -> Clock:
    return request.app.state.sla_clock


def get_calculator(request: Request) -> DeadlineCalculator:
    return request.app.state.sla_calculator


def get_monitor(request: Request) -> SLAMonitorService:
    return request.app.state.sla_monitor


def get_action_service(request: Request) -> SLAActionService:
    return request.app.state.sla_actions


def get_query_service(request: Request) -> SLAQueryService:
    return request.app.state.sla_query


# ========== Route Handlers ==========

@router.get(
    "/requests",
    response_model=RequestListResponse,
    summary="List requests by SLA state",
    description="""
    Open exchange requests with their live SLA state.

    **Views**: `overdue` (deadline passed), `upcoming` (due within the
    configured window), `all` (every non-terminal request).

    Cashiers only see requests of the offices listed in `X-Office-Ids`.
    Results are ordered by deadline, soonest first.
    """
)
async def list_requests(
    view: str = Query("overdue", pattern="^(overdue|upcoming|all)$"),
    actor: Actor = Depends(get_actor),
    query_service: SLAQueryService = Depends(get_query_service)
):
    views = await query_service.list_requests(view=view, office_ids=actor.visible_offices())
    return RequestListResponse(
        view=view,
        count=len(views),
        requests=[RequestSLAResponse.build(v.request, v.state, v.minutes_left) for v in views]
    )


@router.post(
    "/deadline",
    response_model=DeadlineResponse,
    summary="Compute the SLA deadline for a new request",
    description="""
    Deterministic deadline for a request classification:

    `base[direction] * amount_tier_multiplier * priority_multiplier`,
    floored to whole minutes and clamped to the configured bounds,
    added to `created_at` (now when omitted).
    """,
    responses={
        200: {"description": "Computed deadline"},
        422: {"description": "Unknown direction/priority or non-positive amount"}
    },
    openapi_extra={"requestBody": {"content": {"application/json": {"example": DEADLINE_REQUEST_EXAMPLE}}}}
)
async def compute_deadline(
    body: DeadlineRequest,
    actor: Actor = Depends(get_actor),
    calculator: DeadlineCalculator = Depends(get_calculator),
    clock: Clock = Depends(get_clock)
):
    now = clock()
    created_at = body.created_at or now
    minutes = calculator.compute_duration_minutes(
        body.direction, body.from_amount, body.from_currency, body.priority
    )
    deadline = created_at + timedelta(minutes=minutes)

    return DeadlineResponse(
        sla_deadline=deadline,
        duration_minutes=minutes,
        time_to_deadline=format_time_to_deadline(minutes_to_deadline(deadline, now))
    )


@router.post(
    "/check",
    response_model=TickReportResponse,
    summary="Run one SLA monitor tick now",
    description="""
    Administrator-only manual trigger. Runs the same tick as the
    background scheduler without shifting its next run.

    Returns 409 while another tick is running.
    """,
    responses={
        200: {
            "description": "Tick report",
            "content": {"application/json": {"example": TICK_REPORT_EXAMPLE}}
        },
        403: {"description": "Caller is not an administrator"},
        409: {"description": "A tick is already running"},
        503: {"description": "Request store unavailable"}
    }
)
async def run_check(
    actor: Actor = Depends(require_admin),
    monitor: SLAMonitorService = Depends(get_monitor)
):
    logger.info("Manual SLA check requested", extra={"actor_id": actor.user_id})
    report = await monitor.run_tick(trigger="manual")
    return TickReportResponse.from_report(report)


@router.post(
    "/actions",
    response_model=ActionResponse,
    summary="Extend a deadline or send a reminder",
    description="""
    **extend_sla** (administrators only): resets the deadline to
    now + `extension_minutes` (server default when omitted) and clears
    the overdue flag.

    **send_reminder** (any operator): notifies the assigned operator.
    """,
    responses={
        403: {"description": "extend_sla requested by a non-administrator"},
        404: {"description": "Request not found"},
        409: {"description": "Request is terminal, unassigned, or was modified concurrently"}
    }
)
async def run_action(
    body: SLAActionRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
    action_service: SLAActionService = Depends(get_action_service),
    clock: Clock = Depends(get_clock)
):
    if body.action == "extend_sla":
        if not actor.is_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Administrator role required to extend SLA"
            )
        minutes = body.extension_minutes or settings.sla_default_extension_minutes
        updated = await action_service.extend_deadline(
            body.request_id, actor.user_id, timedelta(minutes=minutes)
        )
        now = clock()
        evaluator = SLAStateEvaluator(request.app.state.sla_config.upcoming_window)
        state = evaluator.evaluate(updated.status, updated.sla_deadline, now)
        return ActionResponse(
            action=body.action,
            request=RequestSLAResponse.build(
                updated, state, minutes_to_deadline(updated.sla_deadline, now)
            )
        )

    event = await action_service.send_reminder(body.request_id, actor.user_id)
    return ActionResponse(action=body.action, event=SLAEventResponse.from_event(event))


# Export router with descriptive name
sla_router = router
