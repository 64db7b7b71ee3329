"""Recurring rule evaluation.

Evaluation is stateless on purpose: nothing remembers which occurrences have
already been produced, so an edited rule applies to every past and future
day on the next query.
"""

from __future__ import annotations

import datetime as dt
from typing import Iterable, Optional

from .records import GhostActivity, PLAN_ATTRIBUTION_FIELDS, PlannedActivity, RecurringActivity
from .utils import combine_local

WEEKDAYS = range(0, 5)


def nth_weekday_of_month(day: dt.date) -> int:
    """1 for the first Monday/Tuesday/... of the month, 2 for the second, and so on."""
    return (day.day - 1) // 7 + 1


def is_last_weekday_of_month(day: dt.date) -> bool:
    return (day + dt.timedelta(days=7)).month != day.month


def fires(rule: RecurringActivity, day: dt.date) -> bool:
    weekday = day.weekday()
    if rule.frequency == "daily":
        return weekday in WEEKDAYS
    if rule.frequency == "weekly":
        return weekday in rule.week_days
    if rule.frequency == "fortnightly":
        if rule.start_date is None or day < rule.start_date:
            return False
        return (day - rule.start_date).days % 14 == 0
    if rule.frequency == "monthly":
        return rule.month_day is not None and day.day == rule.month_day
    if rule.frequency == "monthly-nth":
        if rule.nth_week is None or rule.nth_week_day != weekday:
            return False
        if rule.nth_week == 5:
            return is_last_weekday_of_month(day)
        return nth_weekday_of_month(day) == rule.nth_week
    return False


def has_override(rule: RecurringActivity, day: dt.date, persisted: Iterable[PlannedActivity]) -> bool:
    return any(plan.recurring_id == rule.id and plan.date == day for plan in persisted)


def occurrence(rule: RecurringActivity, day: dt.date) -> GhostActivity:
    return GhostActivity(
        recurring_id=rule.id,
        date=day,
        start_time=combine_local(day, rule.start_time_str),
        duration_minutes=rule.duration_minutes,
        **{field: getattr(rule, field) for field in PLAN_ATTRIBUTION_FIELDS},
    )


def evaluate(
    rule: RecurringActivity,
    day: dt.date,
    persisted: Iterable[PlannedActivity] = (),
) -> Optional[GhostActivity]:
    """Return the ghost occurrence of ``rule`` on ``day``, if it fires and is not overridden."""
    if not fires(rule, day):
        return None
    if has_override(rule, day, persisted):
        return None
    return occurrence(rule, day)
