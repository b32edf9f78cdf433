"""
Query functions for the trip and passenger API

Every function that needs to know which trip an event belongs to goes through
TripResolver + WindowMatcher, so the trip list, the passenger list and the
unmatched list always agree on trip boundaries.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from bustrips.config import Settings, settings as default_settings
from bustrips.models import BusSchedule, Passenger, UnmatchedPassenger
from bustrips.providers import EventKind
from bustrips.regime import from_storage_time, local_today, parse_bus_param, parse_date_param
from bustrips.resolver import TripResolver
from bustrips.schedules import trip_status
from bustrips.trip_ids import parse_trip_ref
from bustrips.windows import WindowMatcher

MAX_PAGE_SIZE = 500


def format_timestamp(value: Optional[datetime], config: Settings = default_settings) -> Optional[str]:
    """Render a stored naive-UTC timestamp as ISO 8601 in the local offset"""
    if value is None:
        return None
    return from_storage_time(value, config).isoformat()


def passenger_to_dict(passenger: Passenger) -> dict:
    return {
        "id": passenger.id,
        "passenger_id": passenger.passenger_id,
        "bus_id": passenger.bus_id,
        "route_name": passenger.route_name,
        "trip_id": passenger.trip_id,
        "entry_location": {
            "latitude": passenger.entry_latitude,
            "longitude": passenger.entry_longitude,
        },
        "exit_location": {
            "latitude": passenger.exit_latitude,
            "longitude": passenger.exit_longitude,
        },
        "entry_timestamp": format_timestamp(passenger.entry_timestamp),
        "exit_timestamp": format_timestamp(passenger.exit_timestamp),
        "journey_duration_minutes": passenger.journey_duration_minutes,
        "similarity_score": passenger.similarity_score,
    }


def unmatched_to_dict(record: UnmatchedPassenger) -> dict:
    # face_embedding is omitted
    return {
        "id": record.id,
        "bus_id": record.bus_id,
        "route_name": record.route_name,
        "trip_id": record.trip_id,
        "type": record.type,
        "face_id": record.face_id,
        "best_similarity_found": record.best_similarity_found,
        "reason": record.reason,
        "location": {
            "latitude": record.latitude,
            "longitude": record.longitude,
            "location_name": record.location_name,
        },
        "timestamp": format_timestamp(record.timestamp),
    }


def get_trips_for_date(
    db: Session,
    date: Optional[str],
    bus_id: Optional[str] = None,
    trip_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Resolve the trips of a date

    Args:
        db: Database session
        date: Requested date (first 10 characters significant, required)
        bus_id: Bus filter ('ALL' or missing for every bus)
        trip_id: Optional trip reference narrowing to a single trip
        now: Override for the current instant (tests)

    Returns:
        Dictionary with the ordered trip descriptors, or {'error': ...} when
        the date is missing or invalid
    """
    try:
        day = parse_date_param(date)
    except ValueError as e:
        return {"error": str(e)}

    resolver = TripResolver.from_session(db, now=now)
    matcher = WindowMatcher(db)

    descriptors = resolver.resolve(day, parse_bus_param(bus_id), parse_trip_ref(trip_id))
    descriptors = matcher.attach_passenger_counts(descriptors)

    return {
        "status": "success",
        "date": day.isoformat(),
        "regime": resolver.regime(day).value,
        "count": len(descriptors),
        "degraded": any(d.degraded for d in descriptors),
        "trips": [d.to_dict() for d in descriptors],
    }


def get_scheduled_trips(
    db: Session,
    date: Optional[str] = None,
    bus_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Trips of a date with their upcoming/active/completed status

    Defaults to today (local) when no date is given.
    """
    resolver = TripResolver.from_session(db, now=now)

    if date:
        try:
            day = parse_date_param(date)
        except ValueError as e:
            return {"error": str(e)}
    else:
        day = local_today(now)

    descriptors = resolver.resolve(day, parse_bus_param(bus_id))

    trips = []
    for descriptor in descriptors:
        record = descriptor.to_dict()
        record["status"] = trip_status(descriptor, now)
        trips.append(record)

    return {
        "status": "success",
        "date": day.isoformat(),
        "regime": resolver.regime(day).value,
        "count": len(trips),
        "trips": trips,
    }


def _event_listing(
    db: Session,
    kind: EventKind,
    trip_id: Optional[str],
    bus_id: Optional[str],
    date: Optional[str],
    limit: int,
    skip: int,
    event_type: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    day = None
    if date:
        try:
            day = parse_date_param(date)
        except ValueError as e:
            return {"error": str(e)}

    limit = max(1, min(limit, MAX_PAGE_SIZE))
    skip = max(0, skip)

    resolver = TripResolver.from_session(db, now=now)
    matcher = WindowMatcher(db)
    query, descriptor = matcher.event_query(
        resolver,
        kind,
        trip_ref=parse_trip_ref(trip_id),
        bus_id=parse_bus_param(bus_id),
        day=day,
        event_type=event_type,
    )

    store = matcher.store(kind)
    total = query.count()
    rows = query.order_by(store.timestamp_column.desc()).offset(skip).limit(limit).all()

    return {
        "status": "success",
        "total": total,
        "count": len(rows),
        "limit": limit,
        "skip": skip,
        "trip": descriptor.to_dict() if descriptor else None,
        "rows": rows,
    }


def get_passengers(
    db: Session,
    trip_id: Optional[str] = None,
    bus_id: Optional[str] = None,
    date: Optional[str] = None,
    limit: int = 50,
    skip: int = 0,
    now: Optional[datetime] = None,
) -> dict:
    """
    Passenger journeys filtered by trip reference, bus and date, newest first
    """
    result = _event_listing(db, EventKind.PASSENGER, trip_id, bus_id, date, limit, skip, now=now)
    if result.get("error"):
        return result
    result["passengers"] = [passenger_to_dict(p) for p in result.pop("rows")]
    return result


def get_unmatched(
    db: Session,
    trip_id: Optional[str] = None,
    bus_id: Optional[str] = None,
    date: Optional[str] = None,
    type: Optional[str] = None,
    limit: int = 50,
    skip: int = 0,
    now: Optional[datetime] = None,
) -> dict:
    """
    Unmatched ENTRY/EXIT detections filtered like get_passengers, plus type
    """
    result = _event_listing(
        db, EventKind.UNMATCHED, trip_id, bus_id, date, limit, skip, event_type=type, now=now
    )
    if result.get("error"):
        return result
    result["unmatched"] = [unmatched_to_dict(u) for u in result.pop("rows")]
    return result


def get_bus_schedule(db: Session, bus_id: str) -> dict:
    """Current live schedule of a bus"""
    schedule = db.query(BusSchedule).filter(BusSchedule.bus_id == bus_id).first()
    if not schedule:
        return {"error": f"Schedule for bus {bus_id} not found"}
    return {"status": "success", "schedule": schedule_to_dict(schedule)}


def schedule_to_dict(schedule: BusSchedule) -> dict:
    return {
        "bus_id": schedule.bus_id,
        "route_name": schedule.route_name,
        "trips": schedule.trips or [],
        "updated_at": format_timestamp(schedule.updated_at),
    }
