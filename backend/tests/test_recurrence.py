from __future__ import annotations

import datetime as dt

import pytest
from pydantic import ValidationError

from chronoflow.records import GhostActivity, PlannedActivity, RecurringActivity
from chronoflow.recurrence import evaluate, fires


def _rule(**fields) -> RecurringActivity:
    fields.setdefault("start_time_str", "09:30")
    fields.setdefault("quick_title", "Standup")
    return RecurringActivity(**fields)


def test_daily_rules_fire_on_weekdays_only():
    rule = _rule(frequency="daily")
    monday = dt.date(2024, 1, 8)
    week = [monday + dt.timedelta(days=offset) for offset in range(7)]
    assert [fires(rule, day) for day in week] == [True] * 5 + [False] * 2


def test_weekly_rules_use_selected_weekdays():
    rule = _rule(frequency="weekly", week_days=[3, 0, 0])
    assert rule.week_days == [0, 3]
    assert fires(rule, dt.date(2024, 1, 8))
    assert fires(rule, dt.date(2024, 1, 11))
    assert not fires(rule, dt.date(2024, 1, 9))


def test_fortnightly_rules_count_from_start_date():
    rule = _rule(frequency="fortnightly", start_date=dt.date(2024, 1, 1))
    assert fires(rule, dt.date(2024, 1, 1))
    assert fires(rule, dt.date(2024, 1, 15))
    assert not fires(rule, dt.date(2024, 1, 8))
    assert not fires(rule, dt.date(2023, 12, 18))


def test_fortnightly_rule_without_start_date_never_fires():
    rule = _rule(frequency="fortnightly")
    assert not fires(rule, dt.date(2024, 1, 1))


def test_monthly_rule_skips_months_without_that_day():
    rule = _rule(frequency="monthly", month_day=31)
    assert fires(rule, dt.date(2024, 1, 31))
    february = [dt.date(2024, 2, day) for day in range(1, 30)]
    assert not any(fires(rule, day) for day in february)


def test_monthly_nth_rule_second_tuesday():
    rule = _rule(frequency="monthly-nth", nth_week=2, nth_week_day=1)
    assert fires(rule, dt.date(2024, 1, 9))
    assert not fires(rule, dt.date(2024, 1, 2))
    assert not fires(rule, dt.date(2024, 1, 16))


def test_monthly_nth_rule_last_friday():
    rule = _rule(frequency="monthly-nth", nth_week=5, nth_week_day=4)
    assert fires(rule, dt.date(2024, 1, 26))
    assert not fires(rule, dt.date(2024, 1, 19))
    assert fires(rule, dt.date(2024, 2, 23))


def test_evaluate_builds_ghost_for_the_day():
    rule = _rule(frequency="daily", start_time_str="9:30", duration_minutes=45)
    ghost = evaluate(rule, dt.date(2024, 1, 8))
    assert isinstance(ghost, GhostActivity)
    assert ghost.recurring_id == rule.id
    assert ghost.start_time.hour == 9 and ghost.start_time.minute == 30
    assert ghost.end_time - ghost.start_time == dt.timedelta(minutes=45)
    assert ghost.quick_title == "Standup"
    assert ghost.is_logged is False


def test_evaluate_skips_days_with_an_override():
    rule = _rule(frequency="daily")
    day = dt.date(2024, 1, 8)
    ghost = evaluate(rule, day)
    override = PlannedActivity(
        date=day,
        start_time=ghost.start_time + dt.timedelta(hours=2),
        recurring_id=rule.id,
    )
    assert evaluate(rule, day, [override]) is None
    assert evaluate(rule, day + dt.timedelta(days=1), [override]) is not None


def test_rule_validation_rejects_bad_values():
    with pytest.raises(ValidationError):
        _rule(frequency="daily", start_time_str="9.30")
    with pytest.raises(ValidationError):
        _rule(frequency="weekly", week_days=[7])
    with pytest.raises(ValidationError):
        _rule(frequency="monthly", month_day=32)


def test_weekly_monday_wednesday_friday():
    rule = _rule(frequency="weekly", week_days=[0, 2, 4])
    monday = dt.date(2024, 1, 8)
    fired = [monday + dt.timedelta(days=offset) for offset in range(14) if fires(rule, monday + dt.timedelta(days=offset))]
    assert [day.weekday() for day in fired] == [0, 2, 4, 0, 2, 4]
