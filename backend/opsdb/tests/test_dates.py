from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from opsdb.utils.dates import LOCAL_TZ, local_date, to_local_datetime


def test_bare_date_is_local_midnight():
    value = to_local_datetime("2030-01-02")
    assert value == datetime(2030, 1, 2, tzinfo=LOCAL_TZ)
    assert to_local_datetime(date(2030, 1, 2)) == value


def test_naive_datetime_is_local_wall_time():
    value = to_local_datetime(datetime(2030, 1, 2, 8, 15))
    assert value.tzinfo is LOCAL_TZ
    assert (value.hour, value.minute) == (8, 15)
    assert to_local_datetime("2030-01-02T08:15:00") == value


def test_utc_suffix_is_converted():
    value = to_local_datetime("2030-01-02T21:00:00Z")
    assert value == datetime(2030, 1, 2, 21, 0, tzinfo=timezone.utc)
    # Doha is UTC+3, so this is already the next local day.
    assert local_date(value) == date(2030, 1, 3)


def test_aware_value_keeps_instant():
    aware = datetime(2030, 6, 1, 12, 0, tzinfo=timezone.utc)
    assert to_local_datetime(aware) == aware
    assert to_local_datetime(aware).utcoffset() == LOCAL_TZ.utcoffset(aware.replace(tzinfo=None))


@pytest.mark.parametrize("value", [None, "", "   "])
def test_empty_values_are_none(value):
    assert to_local_datetime(value) is None
    assert local_date(value) is None


@pytest.mark.parametrize("value", ["02/01/2030", "2030-13-01", "tomorrow", 20300101])
def test_invalid_input_raises(value):
    with pytest.raises(ValueError):
        to_local_datetime(value)
