from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from .errors import ChronoFlowError, InvalidAttribution, NotFound
from .ledger import SessionLedger
from .records import ATTRIBUTION_FIELDS, ActiveTimer, TimerSession, TimerTarget
from .state import ACTIVE_TIMER_KEY, WorkspaceState
from .utils import ensure_local, now, round_to_block

logger = logging.getLogger(__name__)


class TimerMachine:
    """Idle/Running state machine around the single active timer.

    The workspace holds at most one ``ActiveTimer`` and only this class
    assigns it.
    """

    def __init__(
        self,
        state: WorkspaceState,
        ledger: SessionLedger,
        clock: Callable[[], dt.datetime] = now,
    ) -> None:
        self.state = state
        self.ledger = ledger
        self.clock = clock
        self._queued: Optional[TimerTarget] = None

    @property
    def active(self) -> Optional[ActiveTimer]:
        return self.state.active_timer

    def elapsed(self, at: Optional[dt.datetime] = None) -> Tuple[int, bool]:
        """Return ``(seconds, pending)``; a chained timer may start in the future."""
        timer = self.state.active_timer
        if timer is None:
            return 0, False
        diff = int(((at or self.clock()) - timer.start_time).total_seconds())
        return max(0, diff), diff < 0

    def _begin(self, target: TimerTarget, start_time: Optional[dt.datetime] = None) -> ActiveTimer:
        if start_time is None:
            current_time = self.clock()
            latest_end = self.ledger.latest_end()
            start_time = max(current_time, latest_end) if latest_end else current_time
        timer = ActiveTimer(task_id=target.task_id, subtask_id=target.subtask_id, start_time=start_time)
        self.state.active_timer = timer
        self.state.persist(ACTIVE_TIMER_KEY)
        logger.info("Timer started for %s at %s", target, timer.start_time.isoformat())
        return timer

    def _default_notes(self, timer: ActiveTimer) -> str:
        if timer.subtask_id:
            subtask = self.state.subtasks.get(timer.subtask_id)
            if subtask is not None:
                return subtask.title
        return ""

    def start(
        self,
        task_id: Optional[str] = None,
        subtask_id: Optional[str] = None,
        start_override: Optional[dt.datetime] = None,
        notes: Optional[str] = None,
    ) -> ActiveTimer:
        """Start timing ``task_id``/``subtask_id``; no ids means unallocated time.

        While another target is running, the new target is queued, the
        running timer is finalized and the queued one starts where the
        finalized session ends.
        """
        target = TimerTarget(task_id, subtask_id)
        with self.state.lock:
            self._check_target(target)
            current = self.state.active_timer
            if current is None:
                return self._begin(target, ensure_local(start_override) if start_override else None)
            if current.target == target:
                return current
            self._queued = target
            try:
                self.finalize(notes if notes is not None else self._default_notes(current))
            except ChronoFlowError:
                self._queued = None
                raise
            return self.state.active_timer

    def _check_target(self, target: TimerTarget) -> None:
        if not target.subtask_id:
            return
        if not target.task_id:
            raise InvalidAttribution("A subtask can only be timed together with its task")
        subtask = self.state.subtasks.get(target.subtask_id)
        if subtask is not None and subtask.task_id != target.task_id:
            raise InvalidAttribution("Subtask does not belong to the given task")

    def cancel(self) -> ActiveTimer:
        with self.state.lock:
            timer = self.state.active_timer
            if timer is None:
                raise NotFound("No active timer")
            self.state.active_timer = None
            self._queued = None
            self.state.persist(ACTIVE_TIMER_KEY)
        logger.info("Timer for %s cancelled", timer.target)
        return timer

    def finalize(
        self,
        notes: str = "",
        raw_end: Optional[dt.datetime] = None,
        attribution: Optional[Dict[str, Any]] = None,
    ) -> TimerSession:
        with self.state.lock:
            timer = self.state.active_timer
            if timer is None:
                raise NotFound("No active timer")
            end = ensure_local(raw_end) if raw_end else self.clock()
            rounded = round_to_block(end - timer.start_time)
            if attribution is not None:
                fields = {field: attribution.get(field) for field in ATTRIBUTION_FIELDS}
            else:
                fields = {"task_id": timer.task_id, "subtask_id": timer.subtask_id}
            session = TimerSession(
                start_time=timer.start_time,
                end_time=timer.start_time + rounded,
                notes=notes,
                is_manual_log=False,
                **fields,
            )
            # the ledger validates before anything changes
            self.ledger.add(session)
            self.state.active_timer = None
            queued, self._queued = self._queued, None
            if queued is not None:
                self._begin(queued, session.end_time)
            else:
                self.state.persist(ACTIVE_TIMER_KEY)
        logger.info(
            "Timer finalized: %s to %s (%d s)",
            session.start_time.isoformat(),
            session.end_time.isoformat(),
            session.duration_seconds,
        )
        return session
