"""
SLA Domain Layer
================

Domain layer for SLA tracking.

Contains:
- Entities: IssueSnapshot, EscalationEvent, IssueChanges and report values
- Value Objects & Services: SLAPolicyConfig, SLAPolicy, SLACalculator
- Escalation Engine: per-issue escalation state machine

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from civic_sla.sla.domain.entities import (
    EscalationEvent,
    IssueChanges,
    IssueSnapshot,
    OverdueIssue,
    ProgressView,
    SLAStatistics,
    SweepDetail,
    SweepFailure,
    SweepResult,
)
from civic_sla.sla.domain.value_objects import (
    BREACHED_LABEL,
    SLACalculator,
    SLAPolicy,
    SLAPolicyConfig,
)
from civic_sla.sla.domain.escalation import EscalationEngine, EscalationOutcome

__all__ = [
    # Entities
    "EscalationEvent",
    "IssueChanges",
    "IssueSnapshot",
    "OverdueIssue",
    "ProgressView",
    "SLAStatistics",
    "SweepDetail",
    "SweepFailure",
    "SweepResult",
    # Value Objects & Services
    "BREACHED_LABEL",
    "SLACalculator",
    "SLAPolicy",
    "SLAPolicyConfig",
    # Escalation
    "EscalationEngine",
    "EscalationOutcome",
]
