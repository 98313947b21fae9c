from datetime import datetime, time

import pytest

from lock_in.utils.time import format_clock_ms, format_duration_seconds, parse_time_string


def test_parse_time_string():
    # Test various formats
    assert parse_time_string("8pm") == time(20, 0)
    assert parse_time_string("8:30pm") == time(20, 30)
    assert parse_time_string("8:30 PM") == time(20, 30)
    assert parse_time_string("20:00") == time(20, 0)
    assert parse_time_string("08:00") == time(8, 0)

    with pytest.raises(ValueError):
        parse_time_string("invalid")


@pytest.mark.parametrize(
    "seconds, expected",
    [
        (30, "<1m"),
        (0, "0m"),
        (45 * 60, "45m"),
        (120 * 60, "2h"),
        (150 * 60, "2h 30m"),
    ],
)
def test_format_duration_seconds(seconds, expected):
    assert format_duration_seconds(seconds) == expected


def test_format_clock_ms():
    epoch_ms = int(datetime(2024, 1, 1, 9, 5).timestamp() * 1000)
    assert format_clock_ms(epoch_ms) == "9:05AM"
