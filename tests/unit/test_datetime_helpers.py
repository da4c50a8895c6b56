"""Unit tests for datetime helpers"""
from datetime import datetime, timezone

from healthquest.utils.datetime_helpers import (
    ensure_utc,
    is_same_local_day,
    local_date,
    utc_day_bounds,
)


def test_ensure_utc_treats_naive_as_utc():
    naive = datetime(2024, 6, 15, 8, 30)
    assert ensure_utc(naive) == datetime(2024, 6, 15, 8, 30, tzinfo=timezone.utc)
    assert ensure_utc(None) is None


def test_utc_day_bounds_half_open():
    start, end = utc_day_bounds(datetime(2024, 6, 15, 23, 59, 59, tzinfo=timezone.utc))
    assert start == datetime(2024, 6, 15, tzinfo=timezone.utc)
    assert end == datetime(2024, 6, 16, tzinfo=timezone.utc)


def test_local_date_uses_zone():
    moment = datetime(2024, 6, 15, 23, 30, tzinfo=timezone.utc)
    assert local_date(moment, "UTC").day == 15
    assert local_date(moment, "Asia/Tokyo").day == 16


def test_same_local_day_differs_from_utc_day():
    """Two instants on the same UTC day can fall on different Tokyo days"""
    a = datetime(2024, 6, 15, 14, 0, tzinfo=timezone.utc)   # 23:00 Tokyo, 15th
    b = datetime(2024, 6, 15, 16, 0, tzinfo=timezone.utc)   # 01:00 Tokyo, 16th
    assert is_same_local_day(a, b, "UTC") is True
    assert is_same_local_day(a, b, "Asia/Tokyo") is False


def test_invalid_zone_falls_back_to_local():
    moment = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
    assert local_date(moment, "Not/AZone") == moment.astimezone().date()
