from datetime import datetime, timedelta, timezone

from tests.conftest import utc
from utils import ceil_days_between, format_sek, parse_pipedrive_time


def test_format_sek():
    assert format_sek(0) == "0 kr"
    assert format_sek(1234) == "1 234 kr"
    assert format_sek(-300) == "-300 kr"


def test_ceil_days_between():
    start = utc(2024, 1, 1)
    assert ceil_days_between(start, start) == 0
    assert ceil_days_between(start, start + timedelta(seconds=1)) == 1
    assert ceil_days_between(start, start + timedelta(days=2)) == 2
    assert ceil_days_between(start + timedelta(hours=12), start) == 0
    assert ceil_days_between(start + timedelta(days=1), start) == -1


def test_ceil_days_between_mixed_offsets():
    stockholm = timezone(timedelta(hours=1))
    assert ceil_days_between(datetime(2024, 1, 1, 1, tzinfo=stockholm), utc(2024, 1, 2)) == 1


def test_parse_pipedrive_time():
    assert parse_pipedrive_time("2024-01-03 09:15:00") == utc(2024, 1, 3, 9, 15)
    assert parse_pipedrive_time("2024-01-03T09:15:00Z") == utc(2024, 1, 3, 9, 15)
    assert parse_pipedrive_time(None) is None
