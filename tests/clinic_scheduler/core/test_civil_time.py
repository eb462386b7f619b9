from datetime import date, datetime, time, timezone

import pytest

from clinic_scheduler.core.civil_time import (
    civil_days_between,
    civil_instant,
    civil_weekday,
    end_of_civil_day,
    format_civil_date,
    format_civil_time,
    monday_of_week,
    parse_civil_date,
    parse_time_of_day,
    start_of_civil_day,
    to_civil_date,
    upcoming_monday,
)
from clinic_scheduler.core.errors import InvalidInput, RejectionReason


def test_civil_instant_is_pinned_to_utc_plus_eight() -> None:
    instant = civil_instant('2025-03-03', '09:00')

    assert instant == datetime(2025, 3, 3, 1, 0, tzinfo=timezone.utc)


def test_civil_instant_early_morning_falls_on_previous_utc_day() -> None:
    instant = civil_instant('2025-03-03', '00:30')

    assert instant.astimezone(timezone.utc) == datetime(2025, 3, 2, 16, 30, tzinfo=timezone.utc)
    assert to_civil_date(instant) == date(2025, 3, 3)


def test_start_and_end_of_civil_day() -> None:
    assert start_of_civil_day('2025-03-03') == datetime(2025, 3, 2, 16, 0, tzinfo=timezone.utc)
    assert end_of_civil_day('2025-03-03') == datetime(2025, 3, 3, 15, 59, 59, tzinfo=timezone.utc)


def test_format_helpers_render_civil_wall_clock() -> None:
    instant = datetime(2025, 3, 2, 17, 45, tzinfo=timezone.utc)

    assert format_civil_time(instant) == '01:45'
    assert format_civil_date(instant) == '2025-03-03'


def test_naive_store_values_are_read_as_utc() -> None:
    assert format_civil_time(datetime(2025, 3, 3, 1, 15)) == '09:15'


@pytest.mark.parametrize(
    ('value', 'expected'),
    [
        ('2025-03-02', 0),
        ('2025-03-03', 1),
        ('2025-03-07', 5),
        ('2025-03-08', 6),
    ],
)
def test_civil_weekday_counts_from_sunday(value: str, expected: int) -> None:
    assert civil_weekday(value) == expected


def test_civil_weekday_of_instant_uses_civil_date_not_utc_date() -> None:
    # 16:30 UTC on Sunday is already Monday 00:30 in civil time.
    assert civil_weekday(datetime(2025, 3, 2, 16, 30, tzinfo=timezone.utc)) == 1


@pytest.mark.parametrize(
    ('now', 'expected'),
    [
        (civil_instant('2025-03-01', '10:00'), date(2025, 3, 3)),
        (civil_instant('2025-03-02', '23:30'), date(2025, 3, 3)),
        (civil_instant('2025-03-03', '08:00'), date(2025, 3, 3)),
        (civil_instant('2025-03-04', '08:00'), date(2025, 3, 10)),
    ],
)
def test_upcoming_monday(now: datetime, expected: date) -> None:
    assert upcoming_monday(now) == expected


def test_monday_of_week() -> None:
    assert monday_of_week('2025-03-06') == date(2025, 3, 3)
    assert monday_of_week('2025-03-09') == date(2025, 3, 3)
    assert monday_of_week('2025-03-03') == date(2025, 3, 3)


def test_civil_days_between_counts_calendar_days() -> None:
    now = civil_instant('2025-03-01', '23:00')

    assert civil_days_between(now, civil_instant('2025-03-02', '08:00')) == 1
    assert civil_days_between(now, civil_instant('2025-03-04', '08:00')) == 3


def test_parse_helpers_accept_well_formed_values() -> None:
    assert parse_civil_date(' 2025-03-03 ') == date(2025, 3, 3)
    assert parse_time_of_day('07:05') == time(7, 5)


@pytest.mark.parametrize('value', ['2025-3-3', '03/03/2025', '2025-02-30', '', 'tomorrow'])
def test_parse_civil_date_rejects_malformed_values(value: str) -> None:
    with pytest.raises(InvalidInput) as exception_info:
        parse_civil_date(value)

    assert exception_info.value.reason == RejectionReason.INVALID_INPUT


@pytest.mark.parametrize('value', ['9:00', '24:00', '12:60', '12:00:00', 'noon'])
def test_parse_time_of_day_rejects_malformed_values(value: str) -> None:
    with pytest.raises(InvalidInput):
        parse_time_of_day(value)
