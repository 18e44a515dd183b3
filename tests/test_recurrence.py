from datetime import date, timedelta

import pytest

from lms_scheduler.utils.recurrence import (
    WEEKDAY_NAMES, generate_session_dates, normalize_weekdays, weekday_name
)


def test_monday_wednesday_over_two_weeks():
    dates = generate_session_dates(date(2025, 1, 6), date(2025, 1, 20), ['Monday', 'Wednesday'])
    assert dates == [
        date(2025, 1, 6),
        date(2025, 1, 8),
        date(2025, 1, 13),
        date(2025, 1, 15),
        date(2025, 1, 20),
    ]


def test_weekday_names_are_case_insensitive():
    assert generate_session_dates(date(2025, 1, 6), date(2025, 1, 12), ['FRIDAY']) == [date(2025, 1, 10)]
    assert generate_session_dates(date(2025, 1, 6), date(2025, 1, 12), [' friday ']) == [date(2025, 1, 10)]


def test_single_day_range():
    monday = date(2025, 1, 6)
    assert generate_session_dates(monday, monday, ['monday']) == [monday]
    assert generate_session_dates(monday, monday, ['tuesday']) == []


def test_empty_weekday_set_yields_nothing():
    assert generate_session_dates(date(2025, 1, 1), date(2025, 3, 1), []) == []


def test_duplicates_collapse():
    dates = generate_session_dates(date(2025, 1, 6), date(2025, 1, 13), ['monday', 'Monday', 'MONDAY'])
    assert dates == [date(2025, 1, 6), date(2025, 1, 13)]


def test_every_day_matches_brute_force():
    start = date(2024, 12, 20)
    end = date(2025, 2, 10)
    weekdays = ['tuesday', 'saturday', 'sunday']
    expected = []
    current = start
    while current <= end:
        if current.strftime('%A').lower() in weekdays:
            expected.append(current)
        current += timedelta(days=1)

    dates = generate_session_dates(start, end, weekdays)
    assert dates == expected
    assert dates == sorted(set(dates))


def test_unknown_weekday_rejected():
    with pytest.raises(ValueError):
        normalize_weekdays(['Mon'])


def test_normalize_orders_by_calendar():
    assert normalize_weekdays(['Sunday', 'monday', 'Wednesday']) == ['monday', 'wednesday', 'sunday']


def test_weekday_name():
    assert weekday_name(date(2025, 1, 6)) == 'monday'
    assert len(WEEKDAY_NAMES) == 7
