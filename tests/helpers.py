"""Time and schedule builders shared by the tests"""

from datetime import date, datetime, timezone

from bustrips.config import Settings

TEST_SETTINGS = Settings()
LOCAL_TZ = TEST_SETTINGS.local_tz

# Fixed "now" for resolver tests: 2024-01-15 12:00 local (06:30 UTC)
FIXED_NOW = datetime(2024, 1, 15, 6, 30, tzinfo=timezone.utc)
FIXED_TODAY = date(2024, 1, 15)


def local_dt(day: date, hhmm: str) -> datetime:
    """Aware local datetime for a day and 'HH:MM'"""
    hour, minute = map(int, hhmm.split(":"))
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=LOCAL_TZ)


def stored(day: date, hhmm: str) -> datetime:
    """Naive UTC datetime (storage convention) for a local day and 'HH:MM'"""
    return local_dt(day, hhmm).astimezone(timezone.utc).replace(tzinfo=None)


def make_trip(name: str, departure: str, active: bool = True, **extra) -> dict:
    trip = {
        "trip_name": name,
        "direction": extra.pop("direction", "outbound"),
        "route": extra.pop("route", "Jaffna-Colombo"),
        "boarding_start_time": extra.pop("boarding_start_time", departure),
        "departure_time": departure,
        "estimated_arrival_time": extra.pop("estimated_arrival_time", None),
        "active": active,
    }
    trip.update(extra)
    return trip
