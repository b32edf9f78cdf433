"""
Schedule writes and live trip status.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from bustrips.config import Settings, settings as default_settings
from bustrips.models import BusSchedule, utcnow
from bustrips.providers import ScheduleHistoryStore, parse_hhmm
from bustrips.regime import local_datetime, local_now, local_today
from bustrips.resolver import TripDescriptor

log = logging.getLogger(__name__)


def save_bus_schedule(
    db: Session,
    bus_id: str,
    route_name: Optional[str],
    trips: list[dict],
    now: Optional[datetime] = None,
    config: Settings = default_settings,
) -> BusSchedule:
    """
    Upsert a bus's live schedule and snapshot it as today's schedule history

    The history row for today's local date is overwritten on every save (last
    writer wins), so today's snapshot always matches the last saved timetable.

    Args:
        db: Database session (committed here)
        bus_id: Bus identifier
        route_name: Route label for the schedule
        trips: Ordered trip definitions (dicts); order defines trip indices
        now: Override for the current instant (tests)

    Returns:
        The saved BusSchedule row
    """
    trips = [dict(t) for t in trips]

    schedule = db.query(BusSchedule).filter(BusSchedule.bus_id == bus_id).first()
    if schedule is None:
        schedule = BusSchedule(bus_id=bus_id)
        db.add(schedule)
    schedule.route_name = route_name
    schedule.trips = trips
    schedule.updated_at = utcnow()

    today = local_today(now, config)
    ScheduleHistoryStore(db).upsert(bus_id, today, route_name, trips)

    db.commit()
    db.refresh(schedule)
    log.info("Saved schedule for %s (%d trips) and history for %s", bus_id, len(trips), today)
    return schedule


def trip_status(
    descriptor: TripDescriptor, now: Optional[datetime] = None, config: Settings = default_settings
) -> str:
    """
    Status of a trip relative to the local clock

    Past dates are always 'completed' and future dates 'upcoming'. For today,
    a trip is 'active' from boarding start to estimated arrival (an arrival
    earlier than boarding start is on the next day).

    Returns:
        'upcoming', 'active' or 'completed'
    """
    current = local_now(now, config)
    today = current.date()

    if descriptor.date < today:
        return "completed"
    if descriptor.date > today:
        return "upcoming"

    start_time = parse_hhmm(descriptor.boarding_start_time) or parse_hhmm(
        descriptor.departure_time
    )
    if start_time is None:
        return "upcoming"
    start = local_datetime(descriptor.date, start_time, config)

    end_time = parse_hhmm(descriptor.estimated_arrival_time)
    end = local_datetime(descriptor.date, end_time, config) if end_time else start
    if end < start:
        end += timedelta(days=1)

    if current < start:
        return "upcoming"
    if current <= end:
        return "active"
    return "completed"
