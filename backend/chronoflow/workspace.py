from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Callable, Dict, List

from .catalog import Catalog
from .config import settings
from .ledger import SessionLedger
from .notifications import NotificationCenter, ReminderScanner
from .planner import PlanStore
from .records import Notification, Snapshot
from .scheduler import GapScheduler, busy_intervals
from .state import ImportStrategy, WorkspaceState
from .store import KeyValueStore
from .timer import TimerMachine
from .utils import date_key, now, working_bounds

logger = logging.getLogger(__name__)


class Workspace:
    """Everything one user works with, wired around a single state object."""

    def __init__(self, store: KeyValueStore, clock: Callable[[], dt.datetime] = now) -> None:
        self.clock = clock
        self.state = WorkspaceState(store)
        self.notifications = NotificationCenter()
        self.catalog = Catalog(self.state)
        self.ledger = SessionLedger(self.state, self.notifications, clock)
        self.timer = TimerMachine(self.state, self.ledger, clock)
        self.planner = PlanStore(self.state, self.ledger, self.notifications, clock)
        self.reminders = ReminderScanner(
            self.notifications, dt.timedelta(minutes=settings.reminder_lead_minutes)
        )

    def load(self) -> None:
        self.state.load_from_store()
        self.planner.rollover_stale(self.clock().date())

    def schedule_for_day(self, day: dt.date) -> GapScheduler:
        busy = busy_intervals(self.ledger.list_for_day(day), self.planner.list_for_day(day), self.clock())
        day_start, day_end = working_bounds(day)
        return GapScheduler(busy, day_start, day_end)

    def day_summary(self, day: dt.date) -> Dict[str, Any]:
        current_time = self.clock()
        with self.state.lock:
            worked = 0
            for session in self.ledger.list_for_day(day):
                end = session.end_time or current_time
                worked += max(0, int((end - session.start_time).total_seconds()))
            timer = self.timer.active
            if timer is not None and date_key(timer.start_time) == day:
                worked += self.timer.elapsed(current_time)[0]
            planned = sum(plan.duration_minutes * 60 for plan in self.planner.list_for_day(day))

        goal = round(settings.daily_goal_hours * 3600)
        progress = min(100.0, round(worked / goal * 100, 1)) if goal else 100.0
        return {
            "day": day,
            "worked_seconds": worked,
            "planned_seconds": planned,
            "goal_seconds": goal,
            "remaining_seconds": max(0, goal - worked),
            "progress_percent": progress,
        }

    def poll_notifications(self) -> List[Notification]:
        current_time = self.clock()
        self.reminders.scan(self.planner.list_for_day(current_time.date()), current_time, self.planner.describe)
        return self.notifications.drain()

    def export_snapshot(self) -> Snapshot:
        return self.state.snapshot()

    def import_snapshot(self, payload: Any, strategy: ImportStrategy) -> List[str]:
        return self.state.import_snapshot(payload, strategy)
