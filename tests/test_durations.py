from datetime import datetime, timedelta, timezone

import pytest

from jobdispatch.durations import due_after, parse_duration, to_delay, to_instant
from jobdispatch.errors import InvalidTimingError


@pytest.mark.parametrize(
    "text,expected",
    [
        ("PT3H", timedelta(hours=3)),
        ("PT20S", timedelta(seconds=20)),
        ("PT15M", timedelta(minutes=15)),
        ("P2D", timedelta(days=2)),
        ("P2DT3H4M", timedelta(days=2, hours=3, minutes=4)),
        ("PT0.5S", timedelta(milliseconds=500)),
        ("PT1,25S", timedelta(seconds=1.25)),
        ("pt1h", timedelta(hours=1)),
        ("PT0S", timedelta(0)),
        ("-PT6H", timedelta(hours=-6)),
        ("PT-1.5S", timedelta(seconds=-1.5)),
        ("PT-6H3M", timedelta(hours=-6, minutes=3)),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "   ", "P", "PT", "3H", "PT3X", "P1Y", "P1M", "PT1.5H", "later"])
def test_parse_duration_rejects_garbage(text):
    with pytest.raises(InvalidTimingError):
        parse_duration(text)


def test_parse_duration_rejects_non_strings():
    with pytest.raises(InvalidTimingError):
        parse_duration(3600)


def test_overflowing_duration():
    with pytest.raises(InvalidTimingError):
        parse_duration("P9999999999D")
    with pytest.raises(InvalidTimingError):
        parse_duration("PT" + "9" * 400 + "S")


def test_invalid_timing_is_a_value_error():
    # callers that only know about ValueError still catch it
    with pytest.raises(ValueError):
        parse_duration("nope")


def test_negative_delay_rejected():
    with pytest.raises(InvalidTimingError):
        to_delay("-PT1S")
    with pytest.raises(InvalidTimingError):
        to_delay(timedelta(seconds=-1))


def test_delay_type_checked():
    with pytest.raises(InvalidTimingError):
        to_delay(5)


def test_due_after_resolves_once_against_now():
    now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert due_after("PT3H", now) == datetime(2024, 1, 1, 15, 0, tzinfo=timezone.utc)
    assert due_after(timedelta(0), now) == now


def test_due_after_overflowing_the_calendar():
    now = datetime(9999, 12, 31, tzinfo=timezone.utc)
    with pytest.raises(InvalidTimingError):
        due_after("P2D", now)


def test_to_instant():
    assert to_instant("2024-05-01T10:00:00Z") == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
    # naive values are UTC
    assert to_instant(datetime(2024, 5, 1, 10)) == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
    plus_two = timezone(timedelta(hours=2))
    assert to_instant(datetime(2024, 5, 1, 12, tzinfo=plus_two)) == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)


@pytest.mark.parametrize("value", ["tomorrow", "2024-13-01T00:00:00", 12345, None])
def test_to_instant_rejects_unparseable(value):
    with pytest.raises(InvalidTimingError):
        to_instant(value)
