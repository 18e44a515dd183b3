"""Expansion of weekly recurring schedules into concrete session dates."""
from datetime import timedelta

WEEKDAY_NAMES = ['monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday']


def normalize_weekdays(weekdays):
    """Lower-case, de-duplicated weekday names in calendar order.

    Raises ValueError for anything that is not a full English weekday name.
    """
    requested = set()
    for day in weekdays or []:
        name = str(day).strip().lower()
        if name not in WEEKDAY_NAMES:
            raise ValueError(f"Unknown weekday: {day}")
        requested.add(name)
    return [name for name in WEEKDAY_NAMES if name in requested]


def weekday_name(date_obj):
    return WEEKDAY_NAMES[date_obj.weekday()]


def generate_session_dates(start_date, end_date, weekdays):
    """Dates in [start_date, end_date] whose weekday is in `weekdays`, ascending."""
    requested = set(normalize_weekdays(weekdays))
    if not requested:
        return []

    dates = []
    current_date = start_date
    while current_date <= end_date:
        if weekday_name(current_date) in requested:
            dates.append(current_date)
        current_date += timedelta(days=1)
    return dates
