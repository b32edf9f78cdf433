"""
Decide whether a date is resolved from the live timetable or reconstructed.

The service runs in one fixed local offset. "Today" is computed by shifting
the current UTC instant by that offset, so the boundary does not depend on the
server's own time zone.
"""

import enum
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from bustrips.config import Settings, settings as default_settings
from bustrips.trip_ids import ALL_SENTINEL


class Regime(str, enum.Enum):
    SCHEDULED = "scheduled"  # today or future: live timetable
    HISTORICAL = "historical"  # strictly past: snapshot or derived


def local_now(now: Optional[datetime] = None, config: Settings = default_settings) -> datetime:
    """
    Current time in the fixed local offset

    Args:
        now: Override for the current instant. Naive values are taken as UTC.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(config.local_tz)


def local_today(now: Optional[datetime] = None, config: Settings = default_settings) -> date:
    return local_now(now, config).date()


def classify_date(
    target: date, now: Optional[datetime] = None, config: Settings = default_settings
) -> Regime:
    """
    Classify a local calendar day

    Only days strictly before today are HISTORICAL. Today is always SCHEDULED,
    even after every trip of the day has departed.
    """
    if target < local_today(now, config):
        return Regime.HISTORICAL
    return Regime.SCHEDULED


def parse_date_param(raw: Optional[str]) -> date:
    """
    Parse a `date` query parameter (only the first 10 characters are significant)

    Raises:
        ValueError: if the parameter is missing or not a YYYY-MM-DD date
    """
    if raw is None or not raw.strip():
        raise ValueError("Date parameter is required")
    try:
        return datetime.strptime(raw.strip()[:10], "%Y-%m-%d").date()
    except ValueError:
        raise ValueError(f"Invalid date '{raw}', expected YYYY-MM-DD") from None


def parse_bus_param(raw: Optional[str]) -> Optional[str]:
    """Return the bus filter, or None for 'all buses' (missing, blank or 'ALL')"""
    if raw is None:
        return None
    raw = raw.strip()
    if not raw or raw == ALL_SENTINEL:
        return None
    return raw


def local_day_bounds(day: date, config: Settings = default_settings) -> tuple[datetime, datetime]:
    """
    Local calendar day [00:00, 23:59:59.999] as timezone-aware datetimes
    """
    start = datetime.combine(day, time.min, tzinfo=config.local_tz)
    end = start + timedelta(days=1) - timedelta(milliseconds=1)
    return start, end


def local_datetime(day: date, hhmm: time, config: Settings = default_settings) -> datetime:
    """Combine a local calendar day and a local time of day into an aware datetime"""
    return datetime.combine(day, hhmm, tzinfo=config.local_tz)


def to_storage_time(value: datetime) -> datetime:
    """Convert an aware datetime to the store's naive-UTC convention"""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_storage_time(value: datetime, config: Settings = default_settings) -> datetime:
    """Interpret a stored naive-UTC timestamp as an aware local datetime"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(config.local_tz)
