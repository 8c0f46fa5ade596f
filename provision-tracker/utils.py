from datetime import datetime, timedelta, timezone

ONE_DAY = timedelta(days=1)


def ensure_timezone_aware(dt: datetime) -> datetime:
    """Ensures a datetime object is timezone-aware, assuming UTC if naive."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def to_utc(dt: datetime) -> datetime:
    return ensure_timezone_aware(dt).astimezone(timezone.utc)


def parse_pipedrive_time(value: str | None) -> datetime | None:
    """Parses Pipedrive's 'YYYY-MM-DD HH:MM:SS' (UTC) or ISO-8601 timestamps."""
    if not value:
        return None
    return to_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def ceil_days_between(start: datetime, end: datetime) -> int:
    """Whole days from start to end, rounded up. Negative when end precedes start.

    Works on UTC-normalised timedeltas with integer divmod, so DST shifts and
    float rounding cannot move the result.
    """
    days, rest = divmod(to_utc(end) - to_utc(start), ONE_DAY)
    return days + 1 if rest else days


def format_sek(amount: int) -> str:
    """Formats whole kronor as '1 234 kr'."""
    return f"{amount:,} kr".replace(",", " ")
