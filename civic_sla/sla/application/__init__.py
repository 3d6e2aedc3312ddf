"""
SLA Application Layer
======================

Application layer for SLA tracking.

Contains:
- Services: Orchestrate domain logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from civic_sla.sla.application.dto import (
    IssueCreateDTO,
    PriorityUpdateRequest,
    ManualEscalationRequest,
    StatusUpdateRequest,
    EscalationEventResponse,
    IssueResponse,
    SLAProgressResponse,
    SLAStatisticsResponse,
    OverdueIssueResponse,
    SweepResultResponse,
    PriorityUpdateResponse,
    ManualEscalationResponse,
)
from civic_sla.sla.application.services import (
    SLAService,
    EscalationSweepService,
    SLAReportingService,
    IIssueRepository,
    ISLAConfigProvider,
    IEscalationNotifier,
    apply_with_retry,
    build_progress_view,
    utc_now,
)

__all__ = [
    # DTOs
    "IssueCreateDTO",
    "PriorityUpdateRequest",
    "ManualEscalationRequest",
    "StatusUpdateRequest",
    "EscalationEventResponse",
    "IssueResponse",
    "SLAProgressResponse",
    "SLAStatisticsResponse",
    "OverdueIssueResponse",
    "SweepResultResponse",
    "PriorityUpdateResponse",
    "ManualEscalationResponse",
    # Services
    "SLAService",
    "EscalationSweepService",
    "SLAReportingService",
    "apply_with_retry",
    "build_progress_view",
    "utc_now",
    # Interfaces
    "IIssueRepository",
    "ISLAConfigProvider",
    "IEscalationNotifier",
]
