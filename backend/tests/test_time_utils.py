from __future__ import annotations

import datetime as dt

import pytest

from chronoflow.utils import (
    LOCAL_TZ,
    combine_local,
    day_bounds,
    ensure_local,
    parse_time_of_day,
    round_to_block,
)

BLOCK = dt.timedelta(minutes=6)


@pytest.mark.parametrize(
    "duration, expected",
    [
        (dt.timedelta(0), BLOCK),
        (dt.timedelta(seconds=1), BLOCK),
        (dt.timedelta(minutes=6), BLOCK),
        (dt.timedelta(minutes=6, seconds=1), 2 * BLOCK),
        (dt.timedelta(minutes=45), 8 * BLOCK),
        (dt.timedelta(seconds=-30), BLOCK),
    ],
)
def test_round_to_block_bills_whole_blocks(duration: dt.timedelta, expected: dt.timedelta):
    assert round_to_block(duration) == expected


def test_round_to_block_accepts_custom_block():
    assert round_to_block(dt.timedelta(minutes=16), dt.timedelta(minutes=15)) == dt.timedelta(minutes=30)


def test_ensure_local_treats_naive_values_as_local():
    naive = dt.datetime(2024, 1, 8, 9, 0)
    assert ensure_local(naive) == naive.replace(tzinfo=LOCAL_TZ)

    utc_value = dt.datetime(2024, 1, 8, 8, 0, tzinfo=dt.timezone.utc)
    converted = ensure_local(utc_value)
    assert converted == utc_value
    assert converted.tzinfo == LOCAL_TZ


def test_day_bounds_cover_one_local_day(sample_day: dt.date):
    start, end = day_bounds(sample_day)
    assert start.date() == sample_day
    assert start.hour == 0
    assert end.date() == sample_day + dt.timedelta(days=1)


def test_parse_time_of_day():
    assert parse_time_of_day("9:05") == dt.time(9, 5)
    assert combine_local(dt.date(2024, 1, 8), "17:30").hour == 17
    with pytest.raises(ValueError):
        parse_time_of_day("25:00")
    with pytest.raises(ValueError):
        parse_time_of_day("noon")
