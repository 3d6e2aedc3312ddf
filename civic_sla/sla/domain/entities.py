"""
SLA Domain Entities
====================

Pure Python domain entities for SLA tracking.

Issues are handled as immutable snapshots. Anything that would modify an
issue produces an IssueChanges value instead, which the store applies with
an atomic conditional update.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from civic_sla.config import ESCALATION_LEVELS, SLA_ACTIVE_STATUSES


@dataclass(frozen=True)
class EscalationEvent:
    """One entry of an issue's append-only escalation history."""

    level: int
    escalated_at: datetime
    escalated_by: Optional[str] = None  # None means system/automatic
    reason: Optional[str] = None
    action: Optional[str] = None

    @property
    def is_automatic(self) -> bool:
        return self.escalated_by is None

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "level": self.level,
            "escalated_at": self.escalated_at.isoformat(),
            "escalated_by": self.escalated_by,
            "reason": self.reason,
            "action": self.action,
        }


@dataclass(frozen=True)
class IssueChanges:
    """
    Field updates to apply to one issue.

    ``None`` means "leave unchanged". ``new_events`` are appended to the
    history in order; existing entries are never touched.
    """

    last_escalation_check: datetime
    escalation_level: Optional[int] = None
    sla_breached: Optional[bool] = None
    sla_deadline: Optional[datetime] = None
    priority: Optional[str] = None
    new_events: Tuple[EscalationEvent, ...] = ()


@dataclass(frozen=True)
class IssueSnapshot:
    """
    Read-only view of an issue as stored.

    ``version`` is the optimistic-concurrency token; a write carrying a stale
    version is rejected by the store.
    """

    id: str
    title: str
    priority: str
    status: str
    created_at: Optional[datetime]
    sla_deadline: Optional[datetime]
    category: Optional[str] = None
    city: Optional[str] = None
    assigned_to: Optional[str] = None
    sla_breached: bool = False
    escalation_level: int = 0
    escalation_history: Tuple[EscalationEvent, ...] = field(default_factory=tuple)
    last_escalation_check: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 1

    @property
    def is_sla_active(self) -> bool:
        """Only reported/in-progress issues are swept and reported on."""
        return self.status in SLA_ACTIVE_STATUSES

    def is_due_for_check(self, now: datetime, interval) -> bool:
        """Whether enough time passed since the last sweep evaluation."""
        if self.last_escalation_check is None:
            return True
        return now - self.last_escalation_check >= interval

    def with_changes(self, changes: IssueChanges) -> "IssueSnapshot":
        """Return the snapshot as it will look after ``changes`` are applied."""
        updates = {
            "last_escalation_check": changes.last_escalation_check,
            "escalation_history": self.escalation_history + tuple(changes.new_events),
        }
        if changes.escalation_level is not None:
            updates["escalation_level"] = changes.escalation_level
        if changes.sla_breached is not None:
            updates["sla_breached"] = changes.sla_breached
        if changes.sla_deadline is not None:
            updates["sla_deadline"] = changes.sla_deadline
        if changes.priority is not None:
            updates["priority"] = changes.priority
        return replace(self, **updates)


@dataclass(frozen=True)
class ProgressView:
    """Live SLA snapshot of a single issue, recomputed on every read."""

    issue_id: str
    priority: str
    sla_deadline: Optional[datetime]
    progress: float
    escalation_level: int
    time_remaining: Optional[timedelta]
    time_remaining_formatted: str
    sla_breached: bool
    escalation_history: Tuple[EscalationEvent, ...] = ()

    @property
    def time_remaining_seconds(self) -> Optional[float]:
        if self.time_remaining is None:
            return None
        return self.time_remaining.total_seconds()


@dataclass
class SLAStatistics:
    """Aggregate SLA health over active issues."""

    total: int = 0
    on_time: int = 0
    at_risk: int = 0
    breached: int = 0
    avg_progress: float = 0.0
    escalation_levels: Dict[int, int] = field(
        default_factory=lambda: {level: 0 for level in ESCALATION_LEVELS}
    )


@dataclass(frozen=True)
class OverdueIssue:
    """An issue past its deadline, annotated with live SLA figures."""

    issue: IssueSnapshot
    sla_progress: float
    time_overdue: timedelta
    escalation_level: int

    @property
    def time_overdue_seconds(self) -> float:
        return self.time_overdue.total_seconds()


@dataclass(frozen=True)
class SweepDetail:
    """One escalation transition recorded by a sweep."""

    issue_id: str
    title: str
    old_level: int
    new_level: int
    progress: float
    time_remaining: str


@dataclass(frozen=True)
class SweepFailure:
    """An issue the sweep could not write back."""

    issue_id: str
    error: str
    retryable: bool


@dataclass
class SweepResult:
    """Aggregate outcome of one escalation sweep."""

    total_checked: int = 0
    escalated: int = 0
    breached: int = 0
    warnings: int = 0
    truncated: bool = False
    details: List[SweepDetail] = field(default_factory=list)
    failures: List[SweepFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)
