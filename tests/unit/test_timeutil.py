"""Tests for millisecond-epoch helpers."""

from __future__ import annotations

import pytest

from tabitha.timeutil import MS_PER_DAY, format_age, ms_to_iso, now_ms, parse_time_ms


def test_now_ms_rounds_clock_seconds():
    assert now_ms(lambda: 1.2345) == 1235


def test_ms_to_iso_utc():
    assert ms_to_iso(0) == "1970-01-01T00:00:00.000Z"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (1_700_000_000_000, 1_700_000_000_000),
        (1.5e12, 1_500_000_000_000),
        ("1700000000000", 1_700_000_000_000),
        ("1970-01-02", MS_PER_DAY),
        ("1970-01-01T00:00:01Z", 1000),
        ("1970-01-01T01:00:00+01:00", 0),
        (None, None),
        (True, None),
        ("", None),
        ("yesterday-ish", None),
    ],
)
def test_parse_time_ms(value, expected):
    assert parse_time_ms(value) == expected


@pytest.mark.parametrize(
    ("days", "label"),
    [(0, "today"), (1, "1d"), (6, "6d"), (7, "1w"), (27, "3w"), (28, "1mo"), (65, "2mo"), (400, "1y+")],
)
def test_format_age(days, label):
    assert format_age(days * MS_PER_DAY) == label
