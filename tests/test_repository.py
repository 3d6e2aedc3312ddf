"""Tests for the SQLAlchemy issue store."""

from datetime import timedelta

import pytest

from civic_sla.core import ConcurrentUpdateException, ResourceNotFoundException
from civic_sla.sla.domain import EscalationEngine, IssueChanges, SLAPolicyConfig
from tests.conftest import T0


class TestIssueStore:
    async def test_create_sets_initial_sla_fields(self, make_issue, repo):
        issue = await make_issue(priority="high")

        stored = await repo.get_by_id(issue.id)
        assert stored.sla_deadline == T0 + timedelta(hours=72)
        assert stored.created_at == T0
        assert stored.escalation_level == 0
        assert stored.sla_breached is False
        assert stored.escalation_history == ()
        assert stored.version == 1

    async def test_unknown_or_malformed_id(self, repo):
        assert await repo.get_by_id("00000000-0000-0000-0000-000000000000") is None
        assert await repo.get_by_id("not-a-uuid") is None

    async def test_apply_changes_appends_history_in_order(self, make_issue, repo):
        issue = await make_issue()
        engine = EscalationEngine(SLAPolicyConfig())

        for hours in (13, 20, 25):
            outcome = engine.evaluate(issue, T0 + timedelta(hours=hours))
            issue = await repo.apply_changes(issue.id, issue.version, outcome.changes)
            await repo.commit()

        assert issue.escalation_level == 3
        assert issue.sla_breached is True
        assert [event.level for event in issue.escalation_history] == [1, 2, 3]
        assert issue.escalation_history[0].escalated_at == T0 + timedelta(hours=13)
        assert issue.version == 4

    async def test_stale_version_is_rejected_without_history(self, make_issue, repo):
        issue = await make_issue()
        engine = EscalationEngine(SLAPolicyConfig())
        outcome = engine.evaluate(issue, T0 + timedelta(hours=13))

        await repo.apply_changes(issue.id, issue.version, outcome.changes)
        await repo.commit()

        # Second writer still holds version 1
        with pytest.raises(ConcurrentUpdateException) as exc_info:
            await repo.apply_changes(issue.id, issue.version, outcome.changes)
        assert exc_info.value.retryable
        await repo.rollback()

        stored = await repo.get_by_id(issue.id)
        assert len(stored.escalation_history) == 1
        assert stored.version == 2

    async def test_apply_changes_on_missing_issue(self, repo):
        changes = IssueChanges(last_escalation_check=T0)
        with pytest.raises(ResourceNotFoundException):
            await repo.apply_changes("00000000-0000-0000-0000-000000000000", 1, changes)

    async def test_update_status(self, make_issue, repo):
        issue = await make_issue()
        updated = await repo.update_status(issue.id, issue.version, "resolved", T0 + timedelta(hours=2))
        await repo.commit()

        assert updated.status == "resolved"
        assert updated.version == 2
        assert updated.updated_at == T0 + timedelta(hours=2)

    async def test_list_due_for_check(self, make_issue, repo):
        stale = await make_issue(title="stale", checked_at=T0)
        await make_issue(title="fresh", checked_at=T0 + timedelta(hours=5, minutes=30))
        await make_issue(title="closed", status="closed", checked_at=T0)

        due = await repo.list_due_for_check(T0 + timedelta(hours=5))
        assert [issue.id for issue in due] == [stale.id]

    async def test_list_due_for_check_is_stalest_first_and_limited(self, make_issue, repo):
        newer = await make_issue(title="newer", checked_at=T0 + timedelta(hours=2))
        older = await make_issue(title="older", checked_at=T0)

        due = await repo.list_due_for_check(T0 + timedelta(hours=3))
        assert [issue.id for issue in due] == [older.id, newer.id]

        limited = await repo.list_due_for_check(T0 + timedelta(hours=3), limit=1)
        assert [issue.id for issue in limited] == [older.id]

    async def test_scope_filters_by_department(self, make_issue, repo):
        await make_issue(assigned_to="Water Department")
        roads = await make_issue(assigned_to="Roads Department")

        active = await repo.list_active(scope="Roads Department")
        assert [issue.id for issue in active] == [roads.id]

    async def test_list_overdue(self, make_issue, repo):
        urgent = await make_issue(priority="urgent")
        await make_issue(priority="low")

        overdue = await repo.list_overdue(T0 + timedelta(hours=30))
        assert [issue.id for issue in overdue] == [urgent.id]
