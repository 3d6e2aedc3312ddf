"""
SLA Application Services
=========================

Application services orchestrate the SLA domain and coordinate with the
issue store.

- SLAService: single-issue operations (register, progress, priority,
  manual escalation, status)
- EscalationSweepService: batch escalation sweep
- SLAReportingService: statistics and overdue listing

Services depend on the repository and config provider abstractions defined
here, not on concrete infrastructure.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from civic_sla.config import EscalationLevel, SLA_ACTIVE_STATUSES, VALID_PRIORITIES
from civic_sla.core import (
    ConcurrentUpdateException,
    RepositoryException,
    ResourceNotFoundException,
    ValidationException,
)
from civic_sla.shared.infrastructure.logging import get_logger, log_latency
from civic_sla.sla.domain import (
    EscalationEngine,
    EscalationOutcome,
    IssueChanges,
    IssueSnapshot,
    OverdueIssue,
    ProgressView,
    SLACalculator,
    SLAPolicy,
    SLAPolicyConfig,
    SLAStatistics,
    SweepDetail,
    SweepFailure,
    SweepResult,
)
from civic_sla.sla.application.dto import IssueCreateDTO

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ========== Repository Interfaces (Dependency Inversion) ==========

class IIssueRepository(ABC):
    """Interface for the issue store."""

    @abstractmethod
    async def create(self, issue_dto: IssueCreateDTO, sla_deadline: datetime, now: datetime) -> IssueSnapshot:
        """Create a new issue with its initial SLA fields."""

    @abstractmethod
    async def get_by_id(self, issue_id: str) -> Optional[IssueSnapshot]:
        """Get issue by ID."""

    @abstractmethod
    async def list_active(self, scope: Optional[str] = None) -> List[IssueSnapshot]:
        """List reported/in-progress issues, optionally for one department."""

    @abstractmethod
    async def list_due_for_check(
        self,
        checked_before: datetime,
        scope: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[IssueSnapshot]:
        """
        List active issues not evaluated since ``checked_before``.

        Stalest first, so a bounded sweep always makes progress.
        """

    @abstractmethod
    async def list_overdue(self, now: datetime, scope: Optional[str] = None) -> List[IssueSnapshot]:
        """List active issues whose deadline is before ``now``, earliest first."""

    @abstractmethod
    async def apply_changes(
        self,
        issue_id: str,
        expected_version: int,
        changes: IssueChanges
    ) -> IssueSnapshot:
        """
        Atomically apply ``changes`` if the stored version still matches.

        Raises:
            ConcurrentUpdateException: when another writer got there first
            RepositoryException: on any other store failure
        """

    @abstractmethod
    async def update_status(
        self,
        issue_id: str,
        expected_version: int,
        status: str,
        now: datetime
    ) -> IssueSnapshot:
        """Atomically change an issue's status."""

    @abstractmethod
    async def commit(self) -> None:
        """Make pending writes durable."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard pending writes."""


class ISLAConfigProvider(ABC):
    """Interface for SLA configuration access."""

    @abstractmethod
    def get_config(self) -> SLAPolicyConfig:
        """Get current SLA configuration."""


class IEscalationNotifier(ABC):
    """Interface for escalation notifications."""

    @abstractmethod
    async def notify(self, issue: IssueSnapshot, outcome: EscalationOutcome) -> bool:
        """Send a notification; returns False instead of raising on failure."""


# ========== Helpers ==========

def build_progress_view(
    issue: IssueSnapshot,
    calculator: SLACalculator,
    now: datetime
) -> ProgressView:
    """Live progress projection of one issue."""
    progress = calculator.progress(issue.created_at, issue.sla_deadline, now)
    remaining = calculator.time_remaining(issue.sla_deadline, now)
    return ProgressView(
        issue_id=issue.id,
        priority=issue.priority,
        sla_deadline=issue.sla_deadline,
        progress=progress,
        escalation_level=calculator.escalation_level_for(progress),
        time_remaining=remaining,
        time_remaining_formatted=calculator.format_duration(remaining),
        sla_breached=issue.sla_breached,
        escalation_history=issue.escalation_history,
    )


async def apply_with_retry(
    repository: IIssueRepository,
    issue: IssueSnapshot,
    decide: Callable[[IssueSnapshot], Optional[IssueChanges]],
    retries: int
) -> Tuple[IssueSnapshot, Optional[IssueChanges]]:
    """
    Read-decide-write one issue under optimistic concurrency.

    ``decide`` is re-run against a fresh snapshot after each conflict. It may
    return None to signal that nothing needs writing any more.

    Returns:
        (stored snapshot, applied changes or None)

    Raises:
        ConcurrentUpdateException: when every attempt lost the race
    """
    snapshot = issue
    for attempt in range(retries + 1):
        changes = decide(snapshot)
        if changes is None:
            return snapshot, None

        try:
            updated = await repository.apply_changes(snapshot.id, snapshot.version, changes)
            await repository.commit()
            return updated, changes
        except ConcurrentUpdateException:
            await repository.rollback()
            logger.info(
                "Concurrent update conflict, re-reading issue",
                extra={"issue_id": snapshot.id, "attempt": attempt + 1}
            )
            fresh = await repository.get_by_id(snapshot.id)
            if fresh is None:
                raise ResourceNotFoundException("Issue", snapshot.id)
            snapshot = fresh

    raise ConcurrentUpdateException(snapshot.id, snapshot.version)


# ========== Application Services ==========

class SLAService:
    """
    Single-issue SLA operations.

    Every write goes through the store's compare-and-set and is retried on
    conflict before a ConcurrentUpdateException reaches the caller.
    """

    def __init__(
        self,
        issue_repository: IIssueRepository,
        config_provider: ISLAConfigProvider,
        clock: Clock = utc_now,
        strict_priority: bool = True,
        conflict_retries: int = 2
    ):
        self._issue_repo = issue_repository
        self._config_provider = config_provider
        self._clock = clock
        self._strict_priority = strict_priority
        self._conflict_retries = conflict_retries

    async def _get_issue(self, issue_id: str) -> IssueSnapshot:
        issue = await self._issue_repo.get_by_id(issue_id)
        if issue is None:
            raise ResourceNotFoundException("Issue", issue_id)
        return issue

    async def register_issue(self, issue_dto: IssueCreateDTO) -> IssueSnapshot:
        """Store a new issue with its deadline derived from its priority."""
        now = self._clock()
        created_at = issue_dto.created_at or now
        policy = SLAPolicy(self._config_provider.get_config())
        deadline = policy.compute_deadline(issue_dto.priority, created_at)

        issue = await self._issue_repo.create(
            issue_dto.model_copy(update={"created_at": created_at}),
            sla_deadline=deadline,
            now=now
        )
        await self._issue_repo.commit()

        logger.info(
            "Issue registered",
            extra={
                "issue_id": issue.id,
                "priority": issue.priority,
                "assigned_to": issue.assigned_to,
                "sla_deadline": deadline.isoformat()
            }
        )
        return issue

    async def get_progress(self, issue_id: str) -> ProgressView:
        """Live SLA progress for one issue."""
        issue = await self._get_issue(issue_id)
        calculator = SLACalculator(self._config_provider.get_config())
        return build_progress_view(issue, calculator, self._clock())

    async def set_priority(
        self,
        issue_id: str,
        new_priority: str,
        actor: Optional[str] = None
    ) -> Tuple[IssueSnapshot, bool]:
        """
        Change an issue's priority and recompute its deadline.

        Resets the escalation level and breach flag; the history is kept.
        With strict priority off, an unknown priority is stored as the
        configured default priority.

        Returns:
            (issue after the call, whether anything changed)

        Raises:
            ValidationException: unknown priority while strict priority is on
        """
        config = self._config_provider.get_config()
        priority = (new_priority or "").strip().lower()

        if not config.is_known_priority(priority):
            if self._strict_priority:
                raise ValidationException(
                    f"Unknown priority '{new_priority}'",
                    {"allowed": VALID_PRIORITIES}
                )
            logger.warning(
                "Unknown priority, applying default priority",
                extra={
                    "issue_id": issue_id,
                    "priority": new_priority,
                    "default_priority": config.default_priority
                }
            )
            priority = config.default_priority

        issue = await self._get_issue(issue_id)
        engine = EscalationEngine(config)
        now = self._clock()

        updated, changes = await apply_with_retry(
            self._issue_repo,
            issue,
            lambda snapshot: engine.recompute_on_priority_change(snapshot, priority, now),
            self._conflict_retries
        )

        if changes is not None:
            logger.info(
                "Issue priority changed, SLA deadline recomputed",
                extra={
                    "issue_id": issue_id,
                    "priority": priority,
                    "actor": actor,
                    "sla_deadline": updated.sla_deadline.isoformat() if updated.sla_deadline else None
                }
            )
        return updated, changes is not None

    async def escalate_issue(
        self,
        issue_id: str,
        actor: str,
        reason: Optional[str] = None,
        action: Optional[str] = None
    ) -> EscalationOutcome:
        """
        Evaluate one issue on demand, recording the caller in the history.

        Follows the same monotonic rules as the sweep: nothing is appended
        unless the computed level is above the stored one.
        """
        issue = await self._get_issue(issue_id)
        engine = EscalationEngine(self._config_provider.get_config())
        now = self._clock()
        outcomes: List[EscalationOutcome] = []

        def decide(snapshot: IssueSnapshot) -> IssueChanges:
            outcome = engine.evaluate(snapshot, now, actor=actor, reason=reason, action=action)
            outcomes.append(outcome)
            return outcome.changes

        await apply_with_retry(self._issue_repo, issue, decide, self._conflict_retries)
        outcome = outcomes[-1]

        if outcome.escalated:
            logger.info(
                "Issue escalated manually",
                extra={
                    "issue_id": issue_id,
                    "actor": actor,
                    "old_level": outcome.old_level,
                    "new_level": outcome.new_level
                }
            )
        return outcome

    async def update_status(self, issue_id: str, status: str) -> IssueSnapshot:
        """
        Change an issue's status.

        Resolved and closed issues drop out of future sweeps; their SLA fields
        and history stay as they are.
        """
        issue = await self._get_issue(issue_id)
        if issue.status == status:
            return issue

        now = self._clock()
        for attempt in range(self._conflict_retries + 1):
            try:
                updated = await self._issue_repo.update_status(issue.id, issue.version, status, now)
                await self._issue_repo.commit()
                break
            except ConcurrentUpdateException:
                await self._issue_repo.rollback()
                if attempt == self._conflict_retries:
                    raise
                issue = await self._get_issue(issue_id)

        logger.info(
            "Issue status changed",
            extra={"issue_id": issue_id, "from_status": issue.status, "to_status": status}
        )
        return updated


class EscalationSweepService:
    """
    Re-evaluates every eligible issue and aggregates the escalations.

    Run on demand from the API or periodically from the scheduler.

    Eligible: reported/in-progress and not evaluated within the re-check
    interval. A sweep is bounded by ``batch_size`` candidates and a
    wall-clock ``time_budget_seconds``; issues it does not reach keep their
    old check time and stay eligible.

    Escalation notifications go out after the last candidate is written,
    so webhook latency never shortens the batch.
    """

    def __init__(
        self,
        issue_repository: IIssueRepository,
        config_provider: ISLAConfigProvider,
        notifier: Optional[IEscalationNotifier] = None,
        clock: Clock = utc_now,
        batch_size: int = 500,
        time_budget_seconds: float = 30.0,
        conflict_retries: int = 2
    ):
        self._issue_repo = issue_repository
        self._config_provider = config_provider
        self._notifier = notifier
        self._clock = clock
        self._batch_size = batch_size
        self._time_budget_seconds = time_budget_seconds
        self._conflict_retries = conflict_retries

    async def run(self, scope: Optional[str] = None) -> SweepResult:
        """
        Run one escalation sweep.

        Args:
            scope: Restrict to issues assigned to this department

        Returns:
            SweepResult with counts, per-issue transitions and failures

        Raises:
            RepositoryException: if the candidate set cannot be fetched
        """
        config = self._config_provider.get_config()
        engine = EscalationEngine(config)
        now = self._clock()
        started = time.monotonic()

        with log_latency(logger, "escalation_sweep", scope=scope):
            candidates = await self._issue_repo.list_due_for_check(
                now - config.recheck_interval,
                scope=scope,
                limit=self._batch_size
            )

            result = SweepResult()
            escalations: List[Tuple[IssueSnapshot, EscalationOutcome]] = []
            for candidate in candidates:
                if time.monotonic() - started >= self._time_budget_seconds:
                    result.truncated = True
                    logger.warning(
                        "Escalation sweep stopped on time budget",
                        extra={
                            "processed": result.total_checked,
                            "candidates": len(candidates),
                            "time_budget_seconds": self._time_budget_seconds
                        }
                    )
                    break

                await self._process(candidate, engine, config, now, result, escalations)

            # Delivery time must not eat into the evaluation budget
            await self._notify(escalations)

        logger.info(
            "Escalation sweep finished",
            extra={
                "scope": scope,
                "total_checked": result.total_checked,
                "escalated": result.escalated,
                "breached": result.breached,
                "warnings": result.warnings,
                "failed": result.failed,
                "truncated": result.truncated
            }
        )
        return result

    async def _process(
        self,
        candidate: IssueSnapshot,
        engine: EscalationEngine,
        config: SLAPolicyConfig,
        now: datetime,
        result: SweepResult,
        escalations: List[Tuple[IssueSnapshot, EscalationOutcome]]
    ) -> None:
        """Evaluate and write back one candidate, recording the outcome."""
        outcomes: List[EscalationOutcome] = []

        def decide(snapshot: IssueSnapshot) -> Optional[IssueChanges]:
            # After a conflict the other writer may already have handled it
            if not snapshot.is_sla_active or not snapshot.is_due_for_check(now, config.recheck_interval):
                return None
            outcome = engine.evaluate(snapshot, now)
            outcomes.append(outcome)
            return outcome.changes

        try:
            updated, changes = await apply_with_retry(
                self._issue_repo, candidate, decide, self._conflict_retries
            )
        except ConcurrentUpdateException as e:
            result.failures.append(SweepFailure(issue_id=candidate.id, error=e.message, retryable=True))
            logger.warning(
                "Escalation write lost repeated conflicts",
                extra={"issue_id": candidate.id, "attempts": self._conflict_retries + 1}
            )
            return
        except (RepositoryException, ResourceNotFoundException) as e:
            await self._issue_repo.rollback()
            result.failures.append(SweepFailure(issue_id=candidate.id, error=e.message, retryable=False))
            logger.error(
                "Escalation write failed",
                extra={"issue_id": candidate.id, "error": e.message}
            )
            return

        if changes is None:
            logger.debug("Issue no longer eligible, skipped", extra={"issue_id": candidate.id})
            return

        outcome = outcomes[-1]
        result.total_checked += 1
        if not outcome.escalated:
            return

        result.escalated += 1
        if outcome.new_level == EscalationLevel.BREACHED:
            result.breached += 1
        elif outcome.new_level == EscalationLevel.WARNING:
            result.warnings += 1

        result.details.append(SweepDetail(
            issue_id=updated.id,
            title=updated.title,
            old_level=outcome.old_level,
            new_level=outcome.new_level,
            progress=round(outcome.progress, 1),
            time_remaining=outcome.time_remaining_formatted,
        ))

        logger.info(
            "Issue escalated",
            extra={
                "issue_id": updated.id,
                "old_level": outcome.old_level,
                "new_level": outcome.new_level,
                "progress": round(outcome.progress, 1),
                "assigned_to": updated.assigned_to
            }
        )
        escalations.append((updated, outcome))

    async def _notify(self, escalations: List[Tuple[IssueSnapshot, EscalationOutcome]]) -> None:
        """Send escalation notifications once every candidate is written."""
        if self._notifier is None:
            return
        for issue, outcome in escalations:
            await self._notifier.notify(issue, outcome)


class SLAReportingService:
    """
    Read-only SLA reporting.

    Levels shown here are recomputed from the timestamps at read time, not
    taken from the cached escalation level.
    """

    def __init__(
        self,
        issue_repository: IIssueRepository,
        config_provider: ISLAConfigProvider,
        clock: Clock = utc_now
    ):
        self._issue_repo = issue_repository
        self._config_provider = config_provider
        self._clock = clock

    async def statistics(self, scope: Optional[str] = None) -> SLAStatistics:
        """SLA health counts over active issues in scope."""
        calculator = SLACalculator(self._config_provider.get_config())
        now = self._clock()
        issues = await self._issue_repo.list_active(scope)

        stats = SLAStatistics(total=len(issues))
        total_progress = 0.0

        for issue in issues:
            progress = calculator.progress(issue.created_at, issue.sla_deadline, now)
            level = calculator.escalation_level_for(progress)

            total_progress += progress
            stats.escalation_levels[level] += 1

            if level == EscalationLevel.BREACHED:
                stats.breached += 1
            elif level >= EscalationLevel.WARNING:
                stats.at_risk += 1
            else:
                stats.on_time += 1

        stats.avg_progress = total_progress / len(issues) if issues else 0.0
        return stats

    async def overdue_issues(self, scope: Optional[str] = None) -> List[OverdueIssue]:
        """Active issues past their deadline, most overdue first."""
        calculator = SLACalculator(self._config_provider.get_config())
        now = self._clock()
        issues = await self._issue_repo.list_overdue(now, scope)

        overdue = []
        for issue in issues:
            if issue.sla_deadline is None or issue.status not in SLA_ACTIVE_STATUSES:
                continue
            progress = calculator.progress(issue.created_at, issue.sla_deadline, now)
            overdue.append(OverdueIssue(
                issue=issue,
                sla_progress=progress,
                time_overdue=now - issue.sla_deadline,
                escalation_level=calculator.escalation_level_for(progress),
            ))

        overdue.sort(key=lambda item: item.issue.sla_deadline)
        return overdue

    def progress_view(self, issue: IssueSnapshot) -> ProgressView:
        """Live progress projection of an already loaded issue."""
        calculator = SLACalculator(self._config_provider.get_config())
        return build_progress_view(issue, calculator, self._clock())
