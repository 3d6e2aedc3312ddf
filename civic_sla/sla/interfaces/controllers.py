"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA lifecycle endpoints.

Controllers are thin - they delegate to application services. Domain
errors propagate to the application exception handler, which maps them to
status codes.
"""

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from civic_sla.config import settings
from civic_sla.infrastructure.database import get_session
from civic_sla.sla.application import (
    SLAService,
    EscalationSweepService,
    SLAReportingService,
    IEscalationNotifier,
    ISLAConfigProvider,
    IssueCreateDTO,
    PriorityUpdateRequest,
    ManualEscalationRequest,
    StatusUpdateRequest,
    IssueResponse,
    SLAProgressResponse,
    SLAStatisticsResponse,
    OverdueIssueResponse,
    SweepResultResponse,
    PriorityUpdateResponse,
    ManualEscalationResponse,
)
from civic_sla.sla.domain import ProgressView
from civic_sla.sla.infrastructure import SQLAlchemyIssueRepository, StaticConfigProvider

router = APIRouter(prefix="/sla", tags=["SLA Lifecycle"])


# ========== Example payloads for Swagger ==========

ISSUE_CREATE_EXAMPLE = {
    "title": "Burst water main on MG Road",
    "category": "water",
    "priority": "urgent",
    "city": "Bengaluru",
    "assigned_to": "Water Department",
    "created_at": "2024-01-15T10:00:00Z"
}

PROGRESS_RESPONSE_EXAMPLE = {
    "issue_id": "123e4567-e89b-12d3-a456-426614174000",
    "priority": "urgent",
    "sla_deadline": "2024-01-16T10:00:00Z",
    "progress": 54.2,
    "escalation_level": 1,
    "time_remaining_seconds": 39600.0,
    "time_remaining_formatted": "11h 0m",
    "sla_breached": False,
    "escalation_history": [
        {
            "level": 1,
            "escalated_at": "2024-01-15T23:00:00Z",
            "escalated_by": None,
            "reason": "Auto-escalated to level 1",
            "action": "Automatic escalation"
        }
    ]
}

STATISTICS_RESPONSE_EXAMPLE = {
    "total": 12,
    "on_time": 7,
    "at_risk": 3,
    "breached": 2,
    "avg_progress": 48.6,
    "escalation_levels": {"0": 7, "1": 2, "2": 1, "3": 2}
}

SWEEP_RESPONSE_EXAMPLE = {
    "total_checked": 5,
    "escalated": 2,
    "breached": 1,
    "warnings": 1,
    "failed": 0,
    "truncated": False,
    "details": [
        {
            "issue_id": "123e4567-e89b-12d3-a456-426614174000",
            "title": "Burst water main on MG Road",
            "old_level": 2,
            "new_level": 3,
            "progress": 100.0,
            "time_remaining": "SLA Breached"
        }
    ],
    "failures": []
}


# ========== Dependencies ==========

def get_config_provider(request: Request) -> ISLAConfigProvider:
    """Policy provider loaded at startup, or built-in defaults."""
    provider = getattr(request.app.state, "sla_config", None)
    if provider is None:
        provider = StaticConfigProvider()
    return provider


def get_notifier(request: Request) -> Optional[IEscalationNotifier]:
    return getattr(request.app.state, "escalation_notifier", None)


async def get_sla_service(
    session: AsyncSession = Depends(get_session),
    config_provider: ISLAConfigProvider = Depends(get_config_provider)
) -> SLAService:
    """Get SLA service instance."""
    return SLAService(
        SQLAlchemyIssueRepository(session),
        config_provider,
        strict_priority=settings.sla_strict_priority,
        conflict_retries=settings.sla_conflict_retries
    )


async def get_sweep_service(
    session: AsyncSession = Depends(get_session),
    config_provider: ISLAConfigProvider = Depends(get_config_provider),
    notifier: Optional[IEscalationNotifier] = Depends(get_notifier)
) -> EscalationSweepService:
    """Get escalation sweep service instance."""
    return EscalationSweepService(
        SQLAlchemyIssueRepository(session),
        config_provider,
        notifier=notifier,
        batch_size=settings.sla_sweep_batch_size,
        time_budget_seconds=settings.sla_sweep_time_budget_seconds,
        conflict_retries=settings.sla_conflict_retries
    )


async def get_reporting_service(
    session: AsyncSession = Depends(get_session),
    config_provider: ISLAConfigProvider = Depends(get_config_provider)
) -> SLAReportingService:
    """Get SLA reporting service instance."""
    return SLAReportingService(SQLAlchemyIssueRepository(session), config_provider)


def _progress_response(view: ProgressView) -> SLAProgressResponse:
    return SLAProgressResponse(
        issue_id=view.issue_id,
        priority=view.priority,
        sla_deadline=view.sla_deadline,
        progress=view.progress,
        escalation_level=view.escalation_level,
        time_remaining_seconds=view.time_remaining_seconds,
        time_remaining_formatted=view.time_remaining_formatted,
        sla_breached=view.sla_breached,
        escalation_history=[event.to_dict() for event in view.escalation_history]
    )


# ========== Route Handlers ==========

@router.post(
    "/issues",
    response_model=IssueResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register an issue for SLA tracking",
    description="""
    Register a civic issue and compute its SLA deadline from its priority.

    **Priority Levels** (default durations): `urgent` (24h), `high` (72h),
    `medium` (7 days), `low` (14 days)

    **Categories**: `roads`, `water`, `electricity`, `sanitation`,
    `public_safety`, `public_transport`, `pollution`, `others`

    `assigned_to` is the department the issue is routed to; it is the scope
    used by the statistics, overdue and sweep endpoints.
    """,
    responses={
        201: {"description": "Issue registered"},
        422: {"description": "Invalid payload"}
    }
)
async def register_issue(
    issue: IssueCreateDTO = Body(..., examples=[ISSUE_CREATE_EXAMPLE]),
    sla_service: SLAService = Depends(get_sla_service)
):
    created = await sla_service.register_issue(issue)
    return IssueResponse.model_validate(created)


@router.get(
    "/statistics",
    response_model=SLAStatisticsResponse,
    summary="Get SLA statistics",
    description="""
    SLA health of active (reported or in-progress) issues.

    Levels are recomputed from the timestamps at request time, so the counts
    are current even between sweeps.

    - `on_time`: below the warning threshold
    - `at_risk`: warning or urgent
    - `breached`: deadline reached
    """,
    responses={
        200: {
            "description": "SLA statistics",
            "content": {"application/json": {"example": STATISTICS_RESPONSE_EXAMPLE}}
        }
    }
)
async def get_statistics(
    department: Optional[str] = Query(None, description="Restrict to issues assigned to this department"),
    reporting: SLAReportingService = Depends(get_reporting_service)
):
    stats = await reporting.statistics(scope=department)
    return SLAStatisticsResponse(
        total=stats.total,
        on_time=stats.on_time,
        at_risk=stats.at_risk,
        breached=stats.breached,
        avg_progress=round(stats.avg_progress, 2),
        escalation_levels=dict(stats.escalation_levels)
    )


@router.get(
    "/overdue",
    response_model=List[OverdueIssueResponse],
    summary="List overdue issues",
    description="Active issues past their SLA deadline, most overdue first."
)
async def get_overdue_issues(
    department: Optional[str] = Query(None, description="Restrict to issues assigned to this department"),
    reporting: SLAReportingService = Depends(get_reporting_service)
):
    overdue = await reporting.overdue_issues(scope=department)
    return [
        OverdueIssueResponse(
            issue=IssueResponse.model_validate(item.issue),
            sla_progress=item.sla_progress,
            time_overdue_seconds=item.time_overdue_seconds,
            escalation_level=item.escalation_level
        )
        for item in overdue
    ]


@router.post(
    "/escalate",
    response_model=SweepResultResponse,
    summary="Run an escalation sweep",
    description="""
    Re-evaluate every active issue not checked within the re-check interval
    and persist any escalations.

    Escalation is monotonic: an issue's level only rises, and one history
    entry is appended per transition. Issues that fail to write back are
    listed under `failures`; `truncated` is true when the sweep hit its time
    budget before finishing the batch.
    """,
    responses={
        200: {
            "description": "Sweep summary",
            "content": {"application/json": {"example": SWEEP_RESPONSE_EXAMPLE}}
        },
        503: {"description": "Issue store unavailable"}
    }
)
async def run_escalation_sweep(
    department: Optional[str] = Query(None, description="Restrict to issues assigned to this department"),
    sweep_service: EscalationSweepService = Depends(get_sweep_service)
):
    result = await sweep_service.run(scope=department)
    return SweepResultResponse.model_validate(result)


@router.get(
    "/issues/{issue_id}",
    response_model=SLAProgressResponse,
    summary="Get issue SLA progress",
    description="""
    Live SLA progress of one issue: percentage of the window elapsed, the
    level that percentage maps to, time remaining and escalation history.

    `escalation_level` here is computed at request time; the stored level
    only moves when a sweep or manual escalation runs.
    """,
    responses={
        200: {
            "description": "Issue SLA progress",
            "content": {"application/json": {"example": PROGRESS_RESPONSE_EXAMPLE}}
        },
        404: {"description": "Issue not found"}
    }
)
async def get_issue_progress(
    issue_id: str,
    sla_service: SLAService = Depends(get_sla_service)
):
    view = await sla_service.get_progress(issue_id)
    return _progress_response(view)


@router.put(
    "/issues/{issue_id}/priority",
    response_model=PriorityUpdateResponse,
    summary="Change issue priority",
    description="""
    Set a new priority and recompute the deadline from the original report
    time. The escalation level and breach flag are reset; history is kept.

    Setting the current priority again is a no-op (`changed: false`).
    """,
    responses={
        404: {"description": "Issue not found"},
        409: {"description": "Concurrent update, retry"},
        422: {"description": "Unknown priority"}
    }
)
async def set_issue_priority(
    issue_id: str,
    body: PriorityUpdateRequest,
    sla_service: SLAService = Depends(get_sla_service)
):
    updated, changed = await sla_service.set_priority(issue_id, body.priority, actor=body.actor)
    return PriorityUpdateResponse(
        issue_id=updated.id,
        priority=updated.priority,
        sla_deadline=updated.sla_deadline,
        changed=changed
    )


@router.post(
    "/issues/{issue_id}/escalate",
    response_model=ManualEscalationResponse,
    summary="Escalate one issue",
    description="""
    Evaluate one issue immediately. If its level has risen, the history entry
    records `actor` as the escalating user. Levels never go down.
    """,
    responses={
        404: {"description": "Issue not found"},
        409: {"description": "Concurrent update, retry"}
    }
)
async def escalate_issue(
    issue_id: str,
    body: ManualEscalationRequest,
    sla_service: SLAService = Depends(get_sla_service)
):
    outcome = await sla_service.escalate_issue(
        issue_id, actor=body.actor, reason=body.reason, action=body.action
    )
    return ManualEscalationResponse(
        issue_id=outcome.issue_id,
        escalated=outcome.escalated,
        old_level=outcome.old_level,
        new_level=outcome.new_level,
        progress=round(outcome.progress, 1),
        time_remaining_formatted=outcome.time_remaining_formatted
    )


@router.patch(
    "/issues/{issue_id}/status",
    response_model=IssueResponse,
    summary="Change issue status",
    description="Resolved and closed issues leave SLA tracking; their SLA fields are frozen.",
    responses={
        404: {"description": "Issue not found"},
        409: {"description": "Concurrent update, retry"}
    }
)
async def update_issue_status(
    issue_id: str,
    body: StatusUpdateRequest,
    sla_service: SLAService = Depends(get_sla_service)
):
    updated = await sla_service.update_status(issue_id, body.status)
    return IssueResponse.model_validate(updated)


# Export router for inclusion in main app
sla_router = router
