from datetime import timedelta

import pytest

from journey_engine.services.durations import parse_delay


@pytest.mark.parametrize("text, expected", [
    ("30s", timedelta(seconds=30)),
    ("15m", timedelta(minutes=15)),
    ("3h", timedelta(hours=3)),
    ("2d", timedelta(days=2)),
    (" 2D ", timedelta(days=2)),
])
def test_parse_delay_units(text, expected):
    assert parse_delay(text) == expected


@pytest.mark.parametrize("empty", [None, "", "  ", "0"])
def test_empty_delay_is_zero(empty):
    assert parse_delay(empty) == timedelta(0)


@pytest.mark.parametrize("bad", ["2 weeks", "d2", "-1d", "1.5h", "tomorrow"])
def test_invalid_delay_raises(bad):
    with pytest.raises(ValueError):
        parse_delay(bad)
