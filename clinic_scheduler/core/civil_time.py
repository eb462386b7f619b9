"""Civil-time helpers.

Every wall-clock reading in the scheduler is interpreted in one fixed UTC
offset (UTC+08:00 by default), never in the host's local zone. Routes and
services hand date strings (``YYYY-MM-DD``) and time-of-day strings
(``HH:mm``) to this module and get absolute, timezone-aware instants back;
nothing else parses or formats those strings.
"""

import re
from datetime import date, datetime, time, timedelta, timezone

from clinic_scheduler.core import config
from clinic_scheduler.core.errors import InvalidInput

CIVIL_TZ = timezone(timedelta(hours=config.CIVIL_UTC_OFFSET_HOURS))

_DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
_TIME_PATTERN = re.compile(r'^\d{2}:\d{2}$')


def parse_civil_date(value: str) -> date:
    if not isinstance(value, str) or not _DATE_PATTERN.match(value.strip()):
        raise InvalidInput('Invalid date format (expected YYYY-MM-DD).')

    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise InvalidInput('Invalid date format (expected YYYY-MM-DD).') from exc


def parse_time_of_day(value: str) -> time:
    if not isinstance(value, str) or not _TIME_PATTERN.match(value.strip()):
        raise InvalidInput('Invalid time format (expected HH:mm).')

    hours, minutes = (int(part) for part in value.strip().split(':'))
    if hours > 23 or minutes > 59:
        raise InvalidInput('Invalid time format (expected HH:mm).')

    return time(hours, minutes)


def _as_civil_date(value: str | date) -> date:
    if isinstance(value, datetime):
        return to_civil_date(value)
    if isinstance(value, date):
        return value
    return parse_civil_date(value)


def civil_instant(civil_date: str | date, time_of_day: str | time | None = None) -> datetime:
    """Return the instant for a wall-clock reading on a civil date."""
    day = _as_civil_date(civil_date)

    if time_of_day is None:
        clock = time(0, 0)
    elif isinstance(time_of_day, time):
        clock = time_of_day
    else:
        clock = parse_time_of_day(time_of_day)

    return datetime.combine(day, clock, tzinfo=CIVIL_TZ)


def start_of_civil_day(civil_date: str | date) -> datetime:
    return civil_instant(civil_date)


def end_of_civil_day(civil_date: str | date) -> datetime:
    return datetime.combine(_as_civil_date(civil_date), time(23, 59, 59), tzinfo=CIVIL_TZ)


def civil_now() -> datetime:
    return datetime.now(CIVIL_TZ)


def to_civil(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        # Naive values coming back from the store are UTC.
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(CIVIL_TZ)


def to_civil_date(instant: datetime) -> date:
    return to_civil(instant).date()


def format_civil_date(instant: datetime) -> str:
    return to_civil_date(instant).isoformat()


def format_civil_time(instant: datetime) -> str:
    return to_civil(instant).strftime('%H:%M')


def civil_weekday(value: str | date | datetime) -> int:
    """Weekday of a civil date, 0=Sunday .. 6=Saturday."""
    if isinstance(value, datetime):
        day = to_civil_date(value)
    else:
        day = _as_civil_date(value)
    return day.isoweekday() % 7


def add_civil_days(value: datetime | date, days: int) -> datetime | date:
    return value + timedelta(days=days)


def civil_days_between(earlier: datetime, later: datetime) -> int:
    """Number of civil calendar days from ``earlier``'s date to ``later``'s date."""
    return (to_civil_date(later) - to_civil_date(earlier)).days


def upcoming_monday(now: datetime) -> date:
    weekday = civil_weekday(now)
    days_until_monday = (1 - weekday + 7) % 7
    return to_civil_date(now) + timedelta(days=days_until_monday)


def monday_of_week(civil_date: str | date) -> date:
    day = _as_civil_date(civil_date)
    return day - timedelta(days=(civil_weekday(day) + 6) % 7)
