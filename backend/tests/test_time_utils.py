from datetime import date, datetime

import pytest

from repairdesk.time_utils import end_of_day, folio_period, local_day_bounds, parse_iso_date, to_utc_z


def test_folio_period():
    assert folio_period(datetime(2025, 1, 31, 23, 59)) == '202501'


def test_local_day_bounds_utc():
    start, end = local_day_bounds(date(2025, 1, 31))
    assert start == datetime(2025, 1, 31, 0, 0)
    assert end == datetime(2025, 1, 31, 23, 59, 59, 999000)


def test_local_day_bounds_shift_to_utc():
    start, end = local_day_bounds(date(2025, 1, 31), 'America/Monterrey')
    assert start == datetime(2025, 1, 31, 6, 0)
    assert end == datetime(2025, 2, 1, 5, 59, 59, 999000)


def test_parse_iso_date():
    assert parse_iso_date('2025-01-31') == date(2025, 1, 31)
    assert parse_iso_date(datetime(2025, 1, 31, 8)) == date(2025, 1, 31)
    with pytest.raises(ValueError):
        parse_iso_date('')


def test_end_of_day_and_serialization():
    assert end_of_day(datetime(2025, 1, 31, 8, 15)) == datetime(2025, 1, 31, 23, 59, 59, 999000)
    assert to_utc_z(datetime(2025, 1, 31, 8, 15, 30, 123)) == '2025-01-31T08:15:30Z'
    assert to_utc_z(None) is None
