"""
Clock abstraction for consistent time handling across the application
"""
from datetime import datetime, timedelta
import pytz
from flask import current_app


class SystemClock:
    """Wall clock in the configured timezone.

    Returns naive datetimes for database compatibility.
    """

    def __init__(self, timezone_name='UTC'):
        self.timezone_name = timezone_name
        self.tz = pytz.timezone(timezone_name)

    def now(self):
        utc_time = datetime.now(pytz.UTC)
        return utc_time.astimezone(self.tz).replace(tzinfo=None)

    def today(self):
        return self.now().date()


class FixedClock:
    """Manually driven clock used by tests and scripted replays"""

    def __init__(self, current):
        self.current = current

    def now(self):
        return self.current

    def today(self):
        return self.current.date()

    def set(self, current):
        self.current = current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)
        return self.current


def get_clock():
    """Clock attached to the running app"""
    return current_app.clock


def minutes_between(start, end):
    """Whole minutes from start to end, rounding half up"""
    seconds = (end - start).total_seconds()
    whole, remainder = divmod(seconds, 60)
    if remainder >= 30:
        whole += 1
    return int(whole)


def format_time_remaining(minutes):
    """
    Format time remaining in a human-readable way
    """
    if minutes <= 0:
        return "Time reached"
    elif minutes < 60:
        return f"{minutes}m"
    elif minutes < 1440:  # Less than 24 hours
        hours = minutes // 60
        remaining_minutes = minutes % 60
        if remaining_minutes == 0:
            return f"{hours}h"
        else:
            return f"{hours}h {remaining_minutes}m"
    else:
        days = minutes // 1440
        return f"{days}d"
