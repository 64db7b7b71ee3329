from __future__ import annotations

import datetime as dt
import logging
import math
from collections import deque
from threading import Lock
from typing import Any, Callable, Deque, Hashable, Iterable, List, Set, Union

from .records import GhostActivity, Notification, NotificationKind, PlannedActivity

logger = logging.getLogger(__name__)


class NotificationCenter:
    """Queue of advisory events waiting to be picked up by a client."""

    def __init__(self, limit: int = 200) -> None:
        self._lock = Lock()
        self._pending: Deque[Notification] = deque(maxlen=limit)

    def emit(self, kind: NotificationKind, message: str, **payload: Any) -> Notification:
        notification = Notification(kind=kind, message=message, payload=payload)
        with self._lock:
            self._pending.append(notification)
        logger.debug("Notification %s: %s", kind, message)
        return notification

    def drain(self) -> List[Notification]:
        with self._lock:
            items = list(self._pending)
            self._pending.clear()
        return items


def _reminder_key(plan: Union[PlannedActivity, GhostActivity]) -> Hashable:
    # a ghost and its promoted copy must share one key
    if plan.recurring_id:
        return ("rule", plan.recurring_id, plan.date)
    return ("plan", plan.id)


class ReminderScanner:
    """Announces plans that start soon, once per plan until the process restarts."""

    def __init__(self, center: NotificationCenter, lead: dt.timedelta) -> None:
        self.center = center
        self.lead = lead
        self._reminded: Set[Hashable] = set()

    def scan(
        self,
        plans: Iterable[Union[PlannedActivity, GhostActivity]],
        now: dt.datetime,
        describe: Callable[[Union[PlannedActivity, GhostActivity]], str],
    ) -> List[Notification]:
        emitted: List[Notification] = []
        for plan in plans:
            if plan.is_logged:
                continue
            key = _reminder_key(plan)
            if key in self._reminded:
                continue
            until = plan.start_time - now
            if until < dt.timedelta(0) or until > self.lead:
                continue
            minutes = math.ceil(until.total_seconds() / 60)
            self._reminded.add(key)
            emitted.append(
                self.center.emit(
                    "plan_upcoming",
                    f"{describe(plan)} starts in {minutes} minutes",
                    plan=plan.model_dump(mode="json"),
                    minutes=minutes,
                )
            )
        return emitted
