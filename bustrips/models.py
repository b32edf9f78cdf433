from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Float, Index, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention for every timestamp)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BusSchedule(Base):
    """
    Current, editable timetable for a bus.

    `trips` is an ordered JSON array of trip definitions:
    {trip_name, direction, route, boarding_start_time, departure_time,
    estimated_arrival_time, active}. Times are "HH:MM" local. The array
    position is the trip index used in SCHEDULED_ trip references.
    """

    __tablename__ = "bus_schedules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bus_id = Column(String, unique=True, nullable=False, index=True)
    route_name = Column(String)
    trips = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class PowerConfig(Base):
    """
    Legacy per-bus configuration, consulted only when a bus has no BusSchedule.

    Older buses were configured with a single service span (trip_start/trip_end)
    rather than a trip array. Some rows were later given a trips array too.
    """

    __tablename__ = "power_configs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bus_id = Column(String, unique=True, nullable=False, index=True)
    bus_name = Column(String)
    route_name = Column(String)
    trip_start = Column(String)  # HH:MM local
    trip_end = Column(String)  # HH:MM local
    trips = Column(JSON)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ScheduleHistory(Base):
    """Snapshot of a bus schedule as it stood on one local calendar day"""

    __tablename__ = "schedule_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bus_id = Column(String, nullable=False, index=True)
    date = Column(String, nullable=False, index=True)  # YYYY-MM-DD local
    route_name = Column(String)
    trips = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=utcnow)

    # One record per bus per date
    __table_args__ = (Index("idx_history_bus_date", "bus_id", "date", unique=True),)


class Passenger(Base):
    """Face-matched passenger journey (entry and exit), written by the detection service"""

    __tablename__ = "bus_passengers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    passenger_id = Column(String, index=True)
    bus_id = Column(String, nullable=False, index=True)
    route_name = Column(String)
    trip_id = Column(String, index=True)  # literal id assigned at ingestion, if any

    entry_latitude = Column(Float)
    entry_longitude = Column(Float)
    exit_latitude = Column(Float)
    exit_longitude = Column(Float)

    entry_timestamp = Column(DateTime, nullable=False, index=True)  # UTC
    exit_timestamp = Column(DateTime)  # UTC
    journey_duration_minutes = Column(Float)
    similarity_score = Column(Float)

    created_at = Column(DateTime, default=utcnow, index=True)

    __table_args__ = (
        Index("idx_passenger_bus_entry", "bus_id", "entry_timestamp"),
        Index("idx_passenger_trip_entry", "trip_id", "entry_timestamp"),
    )


class UnmatchedPassenger(Base):
    """Single ENTRY or EXIT detection that could not be paired with a passenger"""

    __tablename__ = "unmatched_passengers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bus_id = Column(String, nullable=False, index=True)
    route_name = Column(String)
    trip_id = Column(String, index=True)
    type = Column(String, nullable=False)  # ENTRY or EXIT

    face_id = Column(Integer)
    face_embedding = Column(JSON)
    best_similarity_found = Column(Float)
    reason = Column(String)

    latitude = Column(Float)
    longitude = Column(Float)
    location_name = Column(String)

    timestamp = Column(DateTime, nullable=False, index=True)  # UTC
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (Index("idx_unmatched_bus_timestamp", "bus_id", "timestamp"),)
