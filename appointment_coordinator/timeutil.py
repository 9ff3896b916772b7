"""Date/time parsing for appointment schedules."""

from datetime import datetime, timezone

import pytz

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMATS = ("%H:%M", "%H:%M:%S")


def appointment_datetime(date: str, time: str, tz=pytz.utc) -> datetime:
    """Combine 'YYYY-MM-DD' and 'HH:MM' in the given zone into an aware UTC datetime.

    Raises ValueError when either part cannot be read.
    """
    if not date or not time:
        raise ValueError("Appointment date and time are both required")

    day = datetime.strptime(date.strip(), DATE_FORMAT).date()
    for fmt in TIME_FORMATS:
        try:
            clock_time = datetime.strptime(time.strip(), fmt).time()
            break
        except ValueError:
            continue
    else:
        raise ValueError(f"Unreadable appointment time: {time!r}")

    local = tz.localize(datetime.combine(day, clock_time))
    return local.astimezone(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
