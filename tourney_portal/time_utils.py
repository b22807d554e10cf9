from datetime import UTC, datetime, time


def utcnow_naive():
    """Return current UTC timestamp as naive datetime for DB timestamp columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_iso(value):
    return value.isoformat() if value else None


def parse_iso_datetime(raw_value):
    """Parse an ISO-8601 string into a naive UTC datetime, or None."""
    raw = str(raw_value or '').strip()
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        return parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed


def combine_date_and_time(day, time_of_day):
    """Anchor an optional time-of-day column onto a date column.

    Tournaments store the closing time separately from the end date; when it is
    missing the end date's own timestamp is used as-is.
    """
    if day is None:
        return None
    if time_of_day is None:
        return day
    if isinstance(time_of_day, datetime):
        time_of_day = time_of_day.time()
    if not isinstance(time_of_day, time):
        return day
    return datetime.combine(day.date(), time_of_day.replace(tzinfo=None))
