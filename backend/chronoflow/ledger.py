from __future__ import annotations

import datetime as dt
import logging
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import ValidationError

from .config import settings
from .errors import ChronoFlowError, InvalidAttribution, InvalidRange, NotFound
from .notifications import NotificationCenter
from .records import TimerSession, TotalsTarget
from .state import WorkspaceState
from .utils import day_bounds, now

logger = logging.getLogger(__name__)

# deleted sessions kept for undo, oldest dropped first
UNDO_LIMIT = 50


class SessionLedger:
    """Finalized work intervals and the running totals they feed.

    Task and subtask ``total_time`` values are only ever changed here, by
    applying or reversing a session's elapsed seconds.
    """

    def __init__(
        self,
        state: WorkspaceState,
        notifications: NotificationCenter,
        clock: Callable[[], dt.datetime] = now,
    ) -> None:
        self.state = state
        self.notifications = notifications
        self.clock = clock
        self._recently_deleted: OrderedDict[str, TimerSession] = OrderedDict()

    # ------------------------------------------------------------------
    # Totals
    # ------------------------------------------------------------------
    def _adjust_total(self, target: Optional[TotalsTarget], delta: int) -> Set[str]:
        if target is None or delta == 0:
            return set()
        name = "subtasks" if target.kind == "subtask" else "tasks"
        collection = self.state.collection(name)
        entity = collection.get(target.id)
        if entity is None:
            return set()
        collection[target.id] = entity.model_copy(update={"total_time": max(0, entity.total_time + delta)})
        return {name}

    @staticmethod
    def _validate(session: TimerSession) -> None:
        if session.end_time is not None and session.end_time < session.start_time:
            raise InvalidRange("End time cannot be before start time")
        if session.has_attribution_conflict():
            raise InvalidAttribution("A session is charged to a task, a project or a quick entry, not several")

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def add(self, session: TimerSession) -> TimerSession:
        self._validate(session)
        with self.state.lock:
            self.state.sessions[session.id] = session
            touched = self._adjust_total(session.totals_target(), session.duration_seconds)
            self.state.persist("sessions", *sorted(touched))
        return session

    def update(self, session_id: str, changes: Dict[str, Any]) -> TimerSession:
        with self.state.lock:
            current = self.state.sessions.get(session_id)
            if current is None:
                raise NotFound("Session not found")
            changes = {key: value for key, value in changes.items() if key != "id"}
            if "task_id" in changes and changes["task_id"] != current.task_id and "subtask_id" not in changes:
                changes["subtask_id"] = None
            try:
                updated = TimerSession.model_validate({**current.model_dump(), **changes})
            except ValidationError as exc:
                raise ChronoFlowError(f"Invalid session data: {exc.error_count()} errors") from exc
            self._validate(updated)

            old_target, new_target = current.totals_target(), updated.totals_target()
            old_seconds, new_seconds = current.duration_seconds, updated.duration_seconds
            if old_target == new_target:
                touched = self._adjust_total(new_target, new_seconds - old_seconds)
            else:
                touched = self._adjust_total(old_target, -old_seconds)
                touched |= self._adjust_total(new_target, new_seconds)

            self.state.sessions[session_id] = updated
            self.state.persist("sessions", *sorted(touched))
        return updated

    def _release_plans(self, start_time: dt.datetime) -> int:
        # Sessions logged from a plan carry no plan id, so a start time match
        # within the tolerance is the only link back to the plan.
        tolerance = dt.timedelta(milliseconds=settings.plan_log_tolerance_ms)
        released = 0
        plans = self.state.planned_activities
        for plan_id, plan in list(plans.items()):
            if plan.is_logged and abs(plan.start_time - start_time) < tolerance:
                plans[plan_id] = plan.model_copy(update={"is_logged": False})
                released += 1
        return released

    def delete(self, session_id: str) -> TimerSession:
        with self.state.lock:
            session = self.state.sessions.pop(session_id, None)
            if session is None:
                raise NotFound("Session not found")
            touched = self._adjust_total(session.totals_target(), -session.duration_seconds)
            if self._release_plans(session.start_time):
                touched.add("planned_activities")
            self._recently_deleted[session.id] = session
            while len(self._recently_deleted) > UNDO_LIMIT:
                self._recently_deleted.popitem(last=False)
            self.state.persist("sessions", *sorted(touched))
        self.notifications.emit(
            "session_deleted",
            "Session deleted.",
            session=session.model_dump(mode="json"),
            undo=True,
        )
        return session

    def undo_delete(self, session_id: str) -> TimerSession:
        with self.state.lock:
            session = self._recently_deleted.pop(session_id, None)
            if session is None:
                raise NotFound("Nothing to restore for this session")
            return self.add(session)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get(self, session_id: str) -> TimerSession:
        session = self.state.sessions.get(session_id)
        if session is None:
            raise NotFound("Session not found")
        return session

    def list_for_day(self, day: dt.date) -> List[TimerSession]:
        start, end = day_bounds(day)
        sessions = [session for session in self.state.sessions.values() if start <= session.start_time < end]
        return sorted(sessions, key=lambda session: session.start_time)

    def latest_end(self) -> Optional[dt.datetime]:
        ends = [session.end_time for session in self.state.sessions.values() if session.end_time is not None]
        return max(ends, default=None)
