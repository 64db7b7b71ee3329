from __future__ import annotations

from chronoflow.records import GhostRef, RecurringActivity, TimerSession
from chronoflow.workspace import Workspace


def test_upcoming_plans_are_announced_once(workspace: Workspace, at):
    workspace.planner.add_plan(at(9, 4), 30, quick_title="Sync")
    workspace.planner.add_plan(at(9, 10), 30, quick_title="Later")

    first = workspace.poll_notifications()
    second = workspace.poll_notifications()

    assert [item.message for item in first] == ["Sync starts in 4 minutes"]
    assert first[0].kind == "plan_upcoming"
    assert first[0].payload["minutes"] == 4
    assert second == []


def test_logged_and_past_plans_are_not_announced(workspace: Workspace, at):
    logged = workspace.planner.add_plan(at(9, 2), 30, quick_title="Done already")
    workspace.planner.toggle_log(logged.ref)
    workspace.planner.add_plan(at(8, 58), 30, quick_title="Started")

    assert workspace.poll_notifications() == []


def test_promoted_ghost_is_not_announced_twice(workspace: Workspace, clock, at, sample_day):
    rule = workspace.planner.add_rule(
        RecurringActivity(frequency="daily", start_time_str="09:03", quick_title="Huddle")
    )
    assert [item.message for item in workspace.poll_notifications()] == ["Huddle starts in 3 minutes"]

    workspace.planner.promote_ghost(GhostRef(rule.id, sample_day))
    clock.advance(minutes=1)

    assert workspace.poll_notifications() == []


def test_day_summary_counts_sessions_timer_and_plans(workspace: Workspace, clock, at, sample_day):
    workspace.ledger.add(TimerSession(start_time=at(7), end_time=at(8)))
    workspace.planner.add_plan(at(14), 30, quick_title="Review")
    workspace.timer.start()
    clock.advance(minutes=30)

    summary = workspace.day_summary(sample_day)

    assert summary["worked_seconds"] == 3600 + 1800
    assert summary["planned_seconds"] == 1800
    assert summary["goal_seconds"] == 27360
    assert summary["remaining_seconds"] == 27360 - 5400
    assert summary["progress_percent"] == 19.7


def test_day_summary_caps_progress(workspace: Workspace, at, sample_day):
    workspace.ledger.add(TimerSession(start_time=at(6), end_time=at(17)))
    summary = workspace.day_summary(sample_day)
    assert summary["progress_percent"] == 100.0
    assert summary["remaining_seconds"] == 0
