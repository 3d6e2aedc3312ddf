"""Tests for single-issue SLA operations."""

from datetime import timedelta

import pytest

from civic_sla.core import ConcurrentUpdateException, ResourceNotFoundException, ValidationException
from civic_sla.sla.application import EscalationSweepService, IssueCreateDTO, SLAService
from civic_sla.sla.infrastructure import SQLAlchemyIssueRepository
from tests.conftest import T0


class ConflictingRepository(SQLAlchemyIssueRepository):
    """Repository where another writer bumps the version before every write."""

    def __init__(self, session, conflicts: int):
        super().__init__(session)
        self.conflicts = conflicts

    async def apply_changes(self, issue_id, expected_version, changes):
        if self.conflicts > 0:
            self.conflicts -= 1
            raise ConcurrentUpdateException(issue_id, expected_version)
        return await super().apply_changes(issue_id, expected_version, changes)


@pytest.fixture
def service(repo, config_provider, clock):
    return SLAService(repo, config_provider, clock=clock)


class TestRegisterAndProgress:
    async def test_register_computes_deadline(self, service, clock):
        issue = await service.register_issue(
            IssueCreateDTO(title="Streetlight out", category="electricity", priority="high")
        )
        assert issue.created_at == clock.now
        assert issue.sla_deadline == clock.now + timedelta(hours=72)

    async def test_progress_view(self, service, make_issue, clock):
        issue = await make_issue(priority="urgent")
        clock.advance(hours=20)

        view = await service.get_progress(issue.id)
        assert view.progress == pytest.approx(83.33, abs=0.01)
        assert view.escalation_level == 2
        assert view.time_remaining == timedelta(hours=4)
        assert view.time_remaining_formatted == "4h 0m"
        assert view.sla_breached is False

    async def test_progress_of_unknown_issue(self, service):
        with pytest.raises(ResourceNotFoundException):
            await service.get_progress("00000000-0000-0000-0000-000000000000")


class TestSetPriority:
    async def test_priority_change_recomputes_from_creation(self, service, make_issue, clock, repo):
        issue = await make_issue(priority="medium")
        clock.advance(hours=100.8)
        await service.escalate_issue(issue.id, actor="officer-1")

        updated, changed = await service.set_priority(issue.id, "low", actor="officer-1")

        assert changed
        assert updated.sla_deadline == T0 + timedelta(hours=336)
        stored = await repo.get_by_id(issue.id)
        assert stored.priority == "low"
        assert stored.escalation_level == 0
        assert stored.sla_breached is False
        assert len(stored.escalation_history) == 1

    async def test_same_priority_is_a_no_op(self, service, make_issue, repo):
        issue = await make_issue(priority="urgent")

        updated, changed = await service.set_priority(issue.id, "URGENT")

        assert not changed
        assert updated.sla_deadline == issue.sla_deadline
        assert (await repo.get_by_id(issue.id)).version == issue.version

    async def test_unknown_priority_rejected_when_strict(self, service, make_issue):
        issue = await make_issue()
        with pytest.raises(ValidationException):
            await service.set_priority(issue.id, "critical")

    async def test_unknown_priority_uses_default_when_lenient(self, repo, config_provider, clock, make_issue):
        service = SLAService(repo, config_provider, clock=clock, strict_priority=False)
        issue = await make_issue(priority="urgent")

        updated, changed = await service.set_priority(issue.id, "critical")

        assert changed
        assert updated.sla_deadline == T0 + timedelta(hours=168)
        stored = await repo.get_by_id(issue.id)
        assert stored.priority == "medium"
        assert stored.sla_deadline == T0 + timedelta(hours=168)

    async def test_blank_priority_stored_as_default_when_lenient(self, repo, config_provider, clock, make_issue):
        service = SLAService(repo, config_provider, clock=clock, strict_priority=False)
        issue = await make_issue(priority="low")

        updated, changed = await service.set_priority(issue.id, "   ")

        assert changed
        assert updated.priority == "medium"
        assert (await repo.get_by_id(issue.id)).priority == "medium"

    async def test_blank_priority_rejected_when_strict(self, service, make_issue):
        issue = await make_issue()
        with pytest.raises(ValidationException):
            await service.set_priority(issue.id, "   ")

    async def test_upgrade_into_past_deadline_breaches_on_next_sweep(
        self, service, repo, config_provider, clock, make_issue
    ):
        issue = await make_issue(priority="low")
        clock.advance(hours=30)

        updated, changed = await service.set_priority(issue.id, "urgent")
        assert changed
        # New deadline is measured from the report time, so it has already passed
        assert updated.sla_deadline == T0 + timedelta(hours=24)
        assert updated.escalation_level == 0
        assert updated.sla_breached is False

        clock.advance(hours=1)
        result = await EscalationSweepService(repo, config_provider, clock=clock).run()

        assert result.breached == 1
        stored = await repo.get_by_id(issue.id)
        assert stored.escalation_level == 3
        assert stored.sla_breached is True
        assert [event.level for event in stored.escalation_history] == [3]

    async def test_conflict_is_retried(self, db, config_provider, clock, make_issue):
        issue = await make_issue(priority="urgent")
        service = SLAService(ConflictingRepository(db, conflicts=1), config_provider, clock=clock)

        updated, changed = await service.set_priority(issue.id, "low")

        assert changed
        assert updated.sla_deadline == T0 + timedelta(hours=336)

    async def test_conflict_surfaces_after_retries(self, db, config_provider, clock, make_issue):
        issue = await make_issue(priority="urgent")
        service = SLAService(
            ConflictingRepository(db, conflicts=5), config_provider, clock=clock, conflict_retries=2
        )

        with pytest.raises(ConcurrentUpdateException):
            await service.set_priority(issue.id, "low")


class TestManualEscalation:
    async def test_records_actor(self, service, make_issue, clock, repo):
        issue = await make_issue(priority="urgent")
        clock.advance(hours=13)

        outcome = await service.escalate_issue(issue.id, actor="officer-7", reason="Follow-up")

        assert outcome.escalated
        assert outcome.new_level == 1
        stored = await repo.get_by_id(issue.id)
        assert stored.escalation_history[0].escalated_by == "officer-7"
        assert stored.escalation_history[0].reason == "Follow-up"

    async def test_no_escalation_before_warning(self, service, make_issue, clock, repo):
        issue = await make_issue(priority="urgent")
        clock.advance(hours=1)

        outcome = await service.escalate_issue(issue.id, actor="officer-7")

        assert not outcome.escalated
        stored = await repo.get_by_id(issue.id)
        assert stored.escalation_history == ()
        assert stored.last_escalation_check == clock.now


class TestUpdateStatus:
    async def test_resolved_issue_keeps_sla_fields(self, service, make_issue, clock):
        issue = await make_issue(priority="urgent")
        clock.advance(hours=25)
        await service.escalate_issue(issue.id, actor="officer-1")

        updated = await service.update_status(issue.id, "resolved")

        assert updated.status == "resolved"
        assert updated.sla_breached is True
        assert updated.escalation_level == 3

    async def test_same_status_is_a_no_op(self, service, make_issue):
        issue = await make_issue()
        updated = await service.update_status(issue.id, "reported")
        assert updated.version == issue.version
