"""Tests for the per-issue escalation state machine."""

from datetime import timedelta

from civic_sla.sla.domain import (
    EscalationEngine,
    IssueSnapshot,
    SLAPolicyConfig,
)
from tests.conftest import T0


def _issue(priority="urgent", level=0, breached=False, history=(), created_at=T0, deadline=None):
    if deadline is None and created_at is not None:
        deadline = created_at + timedelta(hours=24)
    return IssueSnapshot(
        id="issue-1",
        title="Pothole on Ring Road",
        priority=priority,
        status="reported",
        created_at=created_at,
        sla_deadline=deadline,
        sla_breached=breached,
        escalation_level=level,
        escalation_history=history,
    )


class TestEvaluate:
    def setup_method(self):
        self.engine = EscalationEngine(SLAPolicyConfig())

    def test_urgent_issue_walks_through_levels(self):
        issue = _issue()

        outcome = self.engine.evaluate(issue, T0 + timedelta(hours=13))
        assert outcome.escalated
        assert (outcome.old_level, outcome.new_level) == (0, 1)
        assert outcome.warning
        issue = issue.with_changes(outcome.changes)

        outcome = self.engine.evaluate(issue, T0 + timedelta(hours=20))
        assert (outcome.old_level, outcome.new_level) == (1, 2)
        assert outcome.time_remaining_formatted == "4h 0m"
        issue = issue.with_changes(outcome.changes)

        outcome = self.engine.evaluate(issue, T0 + timedelta(hours=25))
        assert outcome.breached
        assert outcome.time_remaining_formatted == "SLA Breached"
        issue = issue.with_changes(outcome.changes)

        assert issue.escalation_level == 3
        assert issue.sla_breached is True
        assert [event.level for event in issue.escalation_history] == [1, 2, 3]
        assert all(event.escalated_by is None for event in issue.escalation_history)
        assert issue.escalation_history[0].reason == "Auto-escalated to level 1"
        assert issue.escalation_history[0].action == "Automatic escalation"

    def test_skipped_levels_append_one_event(self):
        outcome = self.engine.evaluate(_issue(), T0 + timedelta(hours=30))
        assert (outcome.old_level, outcome.new_level) == (0, 3)
        assert len(outcome.changes.new_events) == 1
        assert outcome.changes.sla_breached is True

    def test_no_escalation_only_advances_check_time(self):
        now = T0 + timedelta(hours=1)
        outcome = self.engine.evaluate(_issue(), now)

        assert not outcome.escalated
        assert outcome.changes.last_escalation_check == now
        assert outcome.changes.escalation_level is None
        assert outcome.changes.new_events == ()

    def test_re_evaluation_is_a_no_op(self):
        now = T0 + timedelta(hours=13)
        issue = _issue().with_changes(self.engine.evaluate(_issue(), now).changes)

        again = self.engine.evaluate(issue, now)
        assert not again.escalated
        assert len(issue.with_changes(again.changes).escalation_history) == 1

    def test_level_never_decreases(self):
        # Level 3 stored, but progress has only reached the warning band
        issue = _issue(level=3, breached=True)
        outcome = self.engine.evaluate(issue, T0 + timedelta(hours=13))

        assert not outcome.escalated
        assert outcome.new_level == 3
        assert issue.with_changes(outcome.changes).sla_breached is True

    def test_actor_reason_and_action_are_recorded(self):
        outcome = self.engine.evaluate(
            _issue(),
            T0 + timedelta(hours=21),
            actor="officer-7",
            reason="Citizen follow-up",
            action="Sent crew",
        )
        event = outcome.changes.new_events[0]
        assert event.escalated_by == "officer-7"
        assert event.reason == "Citizen follow-up"
        assert event.action == "Sent crew"
        assert not event.is_automatic

    def test_missing_timestamps_fail_open(self):
        outcome = self.engine.evaluate(_issue(created_at=None, deadline=None), T0)
        assert not outcome.escalated
        assert outcome.progress == 0.0


class TestPriorityChange:
    def setup_method(self):
        self.engine = EscalationEngine(SLAPolicyConfig())

    def test_unchanged_priority_returns_none(self):
        assert self.engine.recompute_on_priority_change(_issue(), "urgent", T0) is None

    def test_recompute_resets_level_and_keeps_history(self):
        # Medium issue at 60% of its window, already at warning
        deadline = T0 + timedelta(hours=168)
        issue = _issue(priority="medium", deadline=deadline)
        now = T0 + timedelta(hours=100.8)
        issue = issue.with_changes(self.engine.evaluate(issue, now).changes)
        assert issue.escalation_level == 1

        changes = self.engine.recompute_on_priority_change(issue, "low", now)
        updated = issue.with_changes(changes)

        assert updated.priority == "low"
        assert updated.sla_deadline == T0 + timedelta(hours=336)
        assert updated.escalation_level == 0
        assert updated.sla_breached is False
        assert len(updated.escalation_history) == 1

    def test_breach_is_cleared_by_priority_change(self):
        issue = _issue(level=3, breached=True)
        changes = self.engine.recompute_on_priority_change(issue, "low", T0 + timedelta(hours=30))
        updated = issue.with_changes(changes)

        assert updated.sla_breached is False
        assert updated.escalation_level == 0

    def test_deadline_measured_from_creation_not_now(self):
        now = T0 + timedelta(days=3)
        changes = self.engine.recompute_on_priority_change(_issue(), "high", now)
        assert changes.sla_deadline == T0 + timedelta(hours=72)
