"""
Storage adapters the trip resolver reads from.

- Schedule providers (live timetable), queried in priority order through a
  ScheduleChain: the bus_schedules table first, the legacy power_configs
  table only when a bus has no bus_schedules row.
- ScheduleHistoryStore: per (bus, date) frozen snapshots.
- EventStore: range queries over passenger and unmatched detections.

All window arguments are timezone-aware datetimes; they are converted to the
naive-UTC storage convention here and nowhere else.
"""

import enum
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Iterable, Optional

from sqlalchemy import distinct
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bustrips.models import (
    BusSchedule,
    Passenger,
    PowerConfig,
    ScheduleHistory,
    UnmatchedPassenger,
    utcnow,
)
from bustrips.regime import to_storage_time

log = logging.getLogger(__name__)

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2})?$")


def parse_hhmm(value: Any) -> Optional[time]:
    """
    Parse a local "HH:MM" (optionally "HH:MM:SS") time of day

    Returns None for missing or malformed values.
    """
    if not isinstance(value, str):
        return None
    match = _HHMM_RE.match(value.strip())
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return time(hour, minute)


class ScheduleLayout(str, enum.Enum):
    TRIP_ARRAY = "trips"  # ordered list of trip definitions
    SERVICE_SPAN = "span"  # legacy single trip_start/trip_end pair


@dataclass(frozen=True)
class TripDefinition:
    """One entry of a schedule's trips array, as stored (fields may be missing)"""

    trip_name: Optional[str] = None
    direction: Optional[str] = None
    route: Optional[str] = None
    boarding_start_time: Optional[str] = None
    departure_time: Optional[str] = None
    estimated_arrival_time: Optional[str] = None
    active: bool = True

    @classmethod
    def from_entry(cls, entry: Any) -> "TripDefinition":
        # Non-dict entries keep their slot so later indices stay stable
        if not isinstance(entry, dict):
            return cls(active=True)
        return cls(
            trip_name=entry.get("trip_name"),
            direction=entry.get("direction"),
            route=entry.get("route"),
            boarding_start_time=entry.get("boarding_start_time"),
            departure_time=entry.get("departure_time"),
            estimated_arrival_time=entry.get("estimated_arrival_time"),
            active=entry.get("active", True) is not False,
        )

    @property
    def departure(self) -> Optional[time]:
        """Departure time of day, falling back to boarding start when unset"""
        if self.departure_time:
            return parse_hhmm(self.departure_time)
        return parse_hhmm(self.boarding_start_time)

    def to_dict(self) -> dict:
        return {
            "trip_name": self.trip_name,
            "direction": self.direction,
            "route": self.route,
            "boarding_start_time": self.boarding_start_time,
            "departure_time": self.departure_time,
            "estimated_arrival_time": self.estimated_arrival_time,
            "active": self.active,
        }


@dataclass(frozen=True)
class Schedule:
    """
    A timetable snapshot for one bus

    `date` is set for schedule history snapshots and None for live schedules.
    Trip indices are positions in `trips` and only mean something relative to
    this snapshot.
    """

    bus_id: str
    route_name: Optional[str]
    trips: tuple = field(default_factory=tuple)
    layout: ScheduleLayout = ScheduleLayout.TRIP_ARRAY
    source: str = "bus_schedules"
    date: Optional[date] = None


def schedule_from_record(
    bus_id: str,
    route_name: Optional[str],
    trips: Optional[Iterable],
    source: str,
    trip_start: Optional[str] = None,
    trip_end: Optional[str] = None,
    bus_name: Optional[str] = None,
    snapshot_date: Optional[date] = None,
) -> Schedule:
    """
    Normalize a stored schedule row into a Schedule

    The window rule depends on the row's shape: a non-empty trips array wins,
    otherwise a trip_start/trip_end pair becomes a single span trip.
    """
    trips = list(trips or [])
    if not trips and trip_start:
        span_trip = TripDefinition(
            trip_name=bus_name or bus_id,
            direction="route",
            boarding_start_time=trip_start,
            departure_time=trip_start,
            estimated_arrival_time=trip_end,
        )
        return Schedule(
            bus_id=bus_id,
            route_name=route_name,
            trips=(span_trip,),
            layout=ScheduleLayout.SERVICE_SPAN,
            source=source,
            date=snapshot_date,
        )

    return Schedule(
        bus_id=bus_id,
        route_name=route_name,
        trips=tuple(TripDefinition.from_entry(t) for t in trips),
        layout=ScheduleLayout.TRIP_ARRAY,
        source=source,
        date=snapshot_date,
    )


class ScheduleProvider(ABC):
    """A source of live per-bus timetables"""

    name = "schedule"

    @abstractmethod
    def find_trips(self, bus_id: str) -> Optional[Schedule]:
        """Return the schedule for a bus, or None when this source has none"""
        raise NotImplementedError

    @abstractmethod
    def bus_ids(self) -> list[str]:
        """All bus ids this source holds a schedule for"""
        raise NotImplementedError


class BusScheduleProvider(ScheduleProvider):
    name = "bus_schedules"

    def __init__(self, db: Session):
        self.db = db

    def find_trips(self, bus_id: str) -> Optional[Schedule]:
        row = self.db.query(BusSchedule).filter(BusSchedule.bus_id == bus_id).first()
        if row is None:
            return None
        return schedule_from_record(row.bus_id, row.route_name, row.trips, source=self.name)

    def bus_ids(self) -> list[str]:
        return [bus_id for (bus_id,) in self.db.query(BusSchedule.bus_id).all()]


class PowerConfigProvider(ScheduleProvider):
    """Legacy power_configs table (single service span per bus)"""

    name = "power_configs"

    def __init__(self, db: Session):
        self.db = db

    def find_trips(self, bus_id: str) -> Optional[Schedule]:
        row = self.db.query(PowerConfig).filter(PowerConfig.bus_id == bus_id).first()
        if row is None:
            return None
        return schedule_from_record(
            row.bus_id,
            row.route_name,
            row.trips,
            source=self.name,
            trip_start=row.trip_start,
            trip_end=row.trip_end,
            bus_name=row.bus_name,
        )

    def bus_ids(self) -> list[str]:
        return [bus_id for (bus_id,) in self.db.query(PowerConfig.bus_id).all()]


class ScheduleChain:
    """
    Ordered list of schedule providers

    For each bus the first provider with at least one trip wins; later
    providers are never merged in.
    """

    def __init__(self, providers: list[ScheduleProvider]):
        self.providers = providers

    def find_trips(self, bus_id: str) -> Optional[Schedule]:
        for provider in self.providers:
            schedule = provider.find_trips(bus_id)
            # An empty trips array is a miss
            if schedule is not None and schedule.trips:
                log.debug("Schedule for %s found in %s", bus_id, provider.name)
                return schedule
        return None

    def bus_ids(self) -> list[str]:
        found = set()
        for provider in self.providers:
            found.update(provider.bus_ids())
        return sorted(found)

    def find_all(self) -> list[Schedule]:
        schedules = []
        for bus_id in self.bus_ids():
            schedule = self.find_trips(bus_id)
            if schedule is not None:
                schedules.append(schedule)
        return schedules


def default_schedule_chain(db: Session) -> ScheduleChain:
    return ScheduleChain([BusScheduleProvider(db), PowerConfigProvider(db)])


class ScheduleHistoryStore:
    """Per (bus, date) schedule snapshots"""

    def __init__(self, db: Session):
        self.db = db

    def _row(self, bus_id: str, day: date) -> Optional[ScheduleHistory]:
        return (
            self.db.query(ScheduleHistory)
            .filter(ScheduleHistory.bus_id == bus_id, ScheduleHistory.date == day.isoformat())
            .first()
        )

    def find(self, bus_id: str, day: date) -> Optional[Schedule]:
        row = self._row(bus_id, day)
        if row is None:
            return None
        return schedule_from_record(
            row.bus_id, row.route_name, row.trips, source="schedule_history", snapshot_date=day
        )

    def bus_ids_for_date(self, day: date) -> list[str]:
        rows = (
            self.db.query(ScheduleHistory.bus_id)
            .filter(ScheduleHistory.date == day.isoformat())
            .all()
        )
        return sorted(bus_id for (bus_id,) in rows)

    def upsert(
        self, bus_id: str, day: date, route_name: Optional[str], trips: list[dict]
    ) -> ScheduleHistory:
        """
        Write the snapshot for (bus, day), replacing any existing one

        Last writer wins, with no field-level merge. If a concurrent writer
        inserts the same key first, the unique index rejects our insert and we
        overwrite their row instead.
        """
        # Pending writes must fail here, not inside the savepoint below
        self.db.flush()
        row = self._row(bus_id, day)
        if row is None:
            try:
                with self.db.begin_nested():
                    row = ScheduleHistory(
                        bus_id=bus_id, date=day.isoformat(), route_name=route_name, trips=list(trips)
                    )
                    self.db.add(row)
                return row
            except IntegrityError:
                log.info("Concurrent history insert for %s on %s, updating instead", bus_id, day)
                row = self._row(bus_id, day)

        row.route_name = route_name
        row.trips = list(trips)
        row.created_at = utcnow()
        return row

    def insert_if_missing(
        self, bus_id: str, day: date, route_name: Optional[str], trips: list[dict]
    ) -> bool:
        """Write a snapshot only when none exists yet. Returns True if a row was added."""
        self.db.flush()
        if self._row(bus_id, day) is not None:
            return False
        try:
            with self.db.begin_nested():
                self.db.add(
                    ScheduleHistory(
                        bus_id=bus_id, date=day.isoformat(), route_name=route_name, trips=list(trips)
                    )
                )
        except IntegrityError:
            return False
        return True


class EventKind(str, enum.Enum):
    PASSENGER = "passenger"
    UNMATCHED = "unmatched"


class EventStore:
    """
    Range-queryable passenger or unmatched events

    Passenger journeys are attributed by entry time, unmatched detections by
    their own timestamp.
    """

    def __init__(self, db: Session, kind: EventKind = EventKind.PASSENGER):
        self.db = db
        self.kind = kind
        if kind == EventKind.PASSENGER:
            self.model = Passenger
            self.timestamp_column = Passenger.entry_timestamp
        else:
            self.model = UnmatchedPassenger
            self.timestamp_column = UnmatchedPassenger.timestamp

    def window_query(self, bus_id: Optional[str], start: datetime, end: datetime):
        """Base query: bus_id matches (when given) and timestamp within [start, end]"""
        query = self.db.query(self.model).filter(
            self.timestamp_column >= to_storage_time(start),
            self.timestamp_column <= to_storage_time(end),
        )
        if bus_id is not None:
            query = query.filter(self.model.bus_id == bus_id)
        return query

    def find_in_window(self, bus_id: Optional[str], start: datetime, end: datetime) -> list:
        return self.window_query(bus_id, start, end).order_by(self.timestamp_column.asc()).all()

    def count_in_window(self, bus_id: Optional[str], start: datetime, end: datetime) -> int:
        return self.window_query(bus_id, start, end).count()

    def bus_ids_in_window(self, start: datetime, end: datetime) -> list[str]:
        rows = (
            self.db.query(distinct(self.model.bus_id))
            .filter(
                self.timestamp_column >= to_storage_time(start),
                self.timestamp_column <= to_storage_time(end),
            )
            .all()
        )
        return sorted(bus_id for (bus_id,) in rows if bus_id)

    def event_time(self, event) -> datetime:
        """Stored (naive UTC) timestamp used for attribution"""
        if self.kind == EventKind.PASSENGER:
            return event.entry_timestamp
        return event.timestamp
