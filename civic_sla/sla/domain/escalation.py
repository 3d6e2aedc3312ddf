"""
Escalation Engine
=================

Per-issue escalation state machine.

Levels only move up within one deadline epoch: 0 (normal) -> 1 (warning)
-> 2 (urgent) -> 3 (breached). A priority change starts a new epoch and is
the only transition back to level 0.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from civic_sla.config import EscalationLevel
from civic_sla.sla.domain.entities import EscalationEvent, IssueChanges, IssueSnapshot
from civic_sla.sla.domain.value_objects import SLACalculator, SLAPolicy, SLAPolicyConfig

AUTO_ESCALATION_ACTION = "Automatic escalation"


@dataclass(frozen=True)
class EscalationOutcome:
    """Result of evaluating one issue."""

    issue_id: str
    escalated: bool
    old_level: int
    new_level: int
    progress: float
    time_remaining_formatted: str
    changes: IssueChanges

    @property
    def breached(self) -> bool:
        return self.escalated and self.new_level == EscalationLevel.BREACHED

    @property
    def warning(self) -> bool:
        return self.escalated and self.new_level == EscalationLevel.WARNING


class EscalationEngine:
    """
    Decides escalation transitions for a single issue.

    The engine never touches the store: it reads an IssueSnapshot and returns
    the IssueChanges to persist.
    """

    def __init__(self, config: Optional[SLAPolicyConfig] = None):
        config = config or SLAPolicyConfig()
        self.policy = SLAPolicy(config)
        self.calculator = SLACalculator(config)

    def evaluate(
        self,
        issue: IssueSnapshot,
        now: datetime,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
        action: Optional[str] = None
    ) -> EscalationOutcome:
        """
        Evaluate an issue's SLA progress and escalate if its level rose.

        Args:
            issue: Current issue snapshot
            now: Evaluation time
            actor: Who escalates; None for the automatic sweep
            reason: History reason (defaults to "Auto-escalated to level N")
            action: History action (defaults to "Automatic escalation")

        Returns:
            EscalationOutcome; its changes always advance last_escalation_check
        """
        progress = self.calculator.progress(issue.created_at, issue.sla_deadline, now)
        new_level = self.calculator.escalation_level_for(progress)
        old_level = issue.escalation_level or EscalationLevel.NORMAL
        remaining = self.calculator.format_duration(
            self.calculator.time_remaining(issue.sla_deadline, now)
        )

        if new_level <= old_level:
            return EscalationOutcome(
                issue_id=issue.id,
                escalated=False,
                old_level=old_level,
                new_level=old_level,
                progress=progress,
                time_remaining_formatted=remaining,
                changes=IssueChanges(last_escalation_check=now),
            )

        event = EscalationEvent(
            level=new_level,
            escalated_at=now,
            escalated_by=actor,
            reason=reason or f"Auto-escalated to level {new_level}",
            action=action or AUTO_ESCALATION_ACTION,
        )
        changes = IssueChanges(
            last_escalation_check=now,
            escalation_level=new_level,
            sla_breached=True if new_level == EscalationLevel.BREACHED else None,
            new_events=(event,),
        )

        return EscalationOutcome(
            issue_id=issue.id,
            escalated=True,
            old_level=old_level,
            new_level=new_level,
            progress=progress,
            time_remaining_formatted=remaining,
            changes=changes,
        )

    def recompute_on_priority_change(
        self,
        issue: IssueSnapshot,
        new_priority: str,
        now: datetime
    ) -> Optional[IssueChanges]:
        """
        Start a new deadline epoch after a priority change.

        The deadline is measured from the original created_at, not from now.
        History is kept.

        Returns:
            IssueChanges, or None when the priority is unchanged
        """
        if new_priority == issue.priority:
            return None

        created_at = issue.created_at or now
        return IssueChanges(
            last_escalation_check=now,
            escalation_level=EscalationLevel.NORMAL,
            sla_breached=False,
            sla_deadline=self.policy.compute_deadline(new_priority, created_at),
            priority=new_priority,
        )
