from __future__ import annotations

import datetime as dt
from typing import Iterable, List, NamedTuple, Optional, Tuple, Union

from .config import settings
from .records import GhostActivity, PlannedActivity, TimerSession


class BusyInterval(NamedTuple):
    start: dt.datetime
    end: dt.datetime


def busy_intervals(
    sessions: Iterable[TimerSession],
    plans: Iterable[Union[PlannedActivity, GhostActivity]],
    now: dt.datetime,
) -> List[BusyInterval]:
    intervals = [BusyInterval(session.start_time, session.end_time or now) for session in sessions]
    intervals.extend(BusyInterval(plan.start_time, plan.end_time) for plan in plans)
    return sorted(intervals, key=lambda interval: interval.start)


def _whole_minutes(delta: dt.timedelta) -> int:
    return int(delta.total_seconds() // 60)


class GapScheduler:
    """Suggests how much can be slotted in next to a point of the day.

    Suggestions are advisory: nothing here rejects an overlapping entry.
    """

    def __init__(
        self,
        busy: Iterable[BusyInterval],
        day_start: dt.datetime,
        day_end: dt.datetime,
        *,
        minimum_minutes: Optional[int] = None,
        buffer: Optional[dt.timedelta] = None,
    ) -> None:
        self.busy = sorted(busy, key=lambda interval: interval.start)
        self.day_start = day_start
        self.day_end = day_end
        self.minimum_minutes = minimum_minutes if minimum_minutes is not None else settings.minimum_gap_minutes
        self.buffer = buffer if buffer is not None else dt.timedelta(seconds=settings.gap_buffer_seconds)

    def _clamp(self, available_minutes: int, desired_minutes: int) -> int:
        return max(self.minimum_minutes, min(desired_minutes, available_minutes))

    def safe_duration_forward(self, from_time: dt.datetime, desired_minutes: int) -> int:
        next_busy = next(
            (interval for interval in self.busy if interval.start > from_time + self.buffer),
            None,
        )
        limit = next_busy.start if next_busy else self.day_end
        return self._clamp(_whole_minutes(limit - from_time), desired_minutes)

    def safe_window_backward(self, to_time: dt.datetime, desired_minutes: int) -> Tuple[dt.datetime, int]:
        earlier = [interval for interval in self.busy if interval.end <= to_time - self.buffer]
        previous = max(earlier, key=lambda interval: interval.end, default=None)
        limit = previous.end if previous else self.day_start
        duration = self._clamp(_whole_minutes(to_time - limit), desired_minutes)
        return to_time - dt.timedelta(minutes=duration), duration

    def clamp_manual_range(
        self, start: dt.datetime, end: dt.datetime
    ) -> Optional[Tuple[dt.datetime, dt.datetime]]:
        clamped_start = max(start, self.day_start)
        clamped_end = min(end, self.day_end)
        if clamped_end <= clamped_start:
            return None
        return clamped_start, clamped_end
