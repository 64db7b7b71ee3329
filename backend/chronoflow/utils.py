from __future__ import annotations

import datetime as dt
import re
import uuid
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from .config import settings

LOCAL_TZ = ZoneInfo(settings.timezone)

_TIME_OF_DAY = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def new_id() -> str:
    return uuid.uuid4().hex


def now() -> dt.datetime:
    return dt.datetime.now(LOCAL_TZ)


def ensure_local(value: dt.datetime) -> dt.datetime:
    """Interpret naive values as local wall-clock time and convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=LOCAL_TZ)
    return value.astimezone(LOCAL_TZ)


def date_key(value: dt.datetime) -> dt.date:
    return ensure_local(value).date()


def block_size() -> dt.timedelta:
    return dt.timedelta(minutes=settings.block_minutes)


def round_to_block(duration: dt.timedelta, block: Optional[dt.timedelta] = None) -> dt.timedelta:
    """Round ``duration`` up to whole blocks, never below one block.

    Zero and negative durations (clock skew, double clicks) still bill one
    block.
    """
    block = block or block_size()
    blocks = -((-duration) // block)
    return block * max(1, blocks)


def day_bounds(day: dt.date) -> Tuple[dt.datetime, dt.datetime]:
    start_local = dt.datetime.combine(day, dt.time.min, tzinfo=LOCAL_TZ)
    end_local = dt.datetime.combine(day + dt.timedelta(days=1), dt.time.min, tzinfo=LOCAL_TZ)
    return start_local, end_local


def working_bounds(day: dt.date) -> Tuple[dt.datetime, dt.datetime]:
    start = dt.datetime.combine(day, dt.time(hour=settings.day_start_hour), tzinfo=LOCAL_TZ)
    end = dt.datetime.combine(day, dt.time(hour=settings.day_end_hour), tzinfo=LOCAL_TZ)
    return start, end


def parse_time_of_day(value: str) -> dt.time:
    match = _TIME_OF_DAY.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time of day: {value!r}")
    return dt.time(hour=int(match.group(1)), minute=int(match.group(2)))


def combine_local(day: dt.date, time_of_day: str) -> dt.datetime:
    return dt.datetime.combine(day, parse_time_of_day(time_of_day), tzinfo=LOCAL_TZ)
