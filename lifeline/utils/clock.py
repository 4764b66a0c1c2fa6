import calendar
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every column in the database stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def subtract_months(value: datetime, months: int) -> datetime:
    """
    Move a timestamp back by calendar months.

    The day is clamped to the last day of the target month, so
    31 May minus 3 months is 28/29 February.
    """
    month_index = value.year * 12 + (value.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)
