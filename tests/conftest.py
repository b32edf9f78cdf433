"""
Shared pytest fixtures for the bus trip service tests

Provides fixtures for:
- Database setup/teardown with in-memory SQLite
- FastAPI test client
- Sample schedules, history snapshots and passenger events
- Environment variable mocking
"""

from datetime import date, timedelta
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from api.main import app
from bustrips.database import get_db
from bustrips.models import Base, BusSchedule, Passenger, PowerConfig, ScheduleHistory, UnmatchedPassenger
from bustrips.regime import local_today
from tests.helpers import make_trip, stored


@pytest.fixture(scope="session")
def test_engine():
    """
    Create an in-memory SQLite engine for testing

    Session-scoped so it's created once for all tests. StaticPool shares the
    single in-memory connection with the TestClient's worker thread, and the
    BEGIN hooks make SAVEPOINT work under pysqlite.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """
    Create a new database session for a test with transaction rollback

    Function-scoped so each test gets a clean database state
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(bind=connection, autoflush=False)
    session = SessionLocal()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture(scope="function")
def client(db_session):
    """
    FastAPI TestClient with database dependency override

    All API requests will use the test database session
    """

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def today() -> date:
    """Real local today (for API tests, which use the wall clock)"""
    return local_today()


@pytest.fixture
def sample_schedule(db_session) -> BusSchedule:
    """Live schedule for BUS_JC_001 with two active trips and one inactive"""
    schedule = BusSchedule(
        bus_id="BUS_JC_001",
        route_name="Jaffna-Colombo",
        trips=[
            make_trip("Morning Run", "08:15", estimated_arrival_time="14:00"),
            make_trip("Cancelled Run", "12:00", active=False),
            make_trip("Evening Run", "16:15", direction="inbound", estimated_arrival_time="22:30"),
        ],
    )
    db_session.add(schedule)
    db_session.commit()
    db_session.refresh(schedule)
    return schedule


@pytest.fixture
def legacy_config(db_session) -> PowerConfig:
    """Legacy single-span config for a bus with no bus_schedules row"""
    config = PowerConfig(
        bus_id="BUS_OLD_7",
        bus_name="Old Seven",
        route_name="Kandy-Colombo",
        trip_start="06:00",
        trip_end="09:30",
    )
    db_session.add(config)
    db_session.commit()
    db_session.refresh(config)
    return config


@pytest.fixture
def sample_history(db_session) -> ScheduleHistory:
    """History snapshot for BUS_JC_001 on 2024-01-10 with one trip"""
    history = ScheduleHistory(
        bus_id="BUS_JC_001",
        date="2024-01-10",
        route_name="Jaffna-Colombo",
        trips=[make_trip("Old Morning Run", "07:00", estimated_arrival_time="13:00")],
    )
    db_session.add(history)
    db_session.commit()
    db_session.refresh(history)
    return history


@pytest.fixture
def add_passengers(db_session):
    """Factory: add passenger journeys for a bus at local 'HH:MM' times on a day"""

    def _add(bus_id: str, day: date, times: list[str], route_name: str = "Jaffna-Colombo", trip_id=None):
        passengers = [
            Passenger(
                passenger_id=f"P_{bus_id}_{day.isoformat()}_{i}",
                bus_id=bus_id,
                route_name=route_name,
                trip_id=trip_id,
                entry_latitude=9.6615,
                entry_longitude=80.0255,
                entry_timestamp=stored(day, hhmm),
                exit_timestamp=stored(day, hhmm) + timedelta(minutes=45),
                journey_duration_minutes=45.0,
                similarity_score=0.91,
            )
            for i, hhmm in enumerate(times)
        ]
        db_session.add_all(passengers)
        db_session.commit()
        return passengers

    return _add


@pytest.fixture
def add_unmatched(db_session):
    """Factory: add unmatched detections for a bus at local 'HH:MM' times on a day"""

    def _add(bus_id: str, day: date, times: list[str], type: str = "ENTRY", trip_id=None):
        records = [
            UnmatchedPassenger(
                bus_id=bus_id,
                route_name="Jaffna-Colombo",
                trip_id=trip_id,
                type=type,
                face_id=100 + i,
                face_embedding=[0.1, 0.2, 0.3],
                best_similarity_found=0.42,
                reason="No matching entry",
                latitude=9.6615,
                longitude=80.0255,
                timestamp=stored(day, hhmm),
            )
            for i, hhmm in enumerate(times)
        ]
        db_session.add_all(records)
        db_session.commit()
        return records

    return _add


@pytest.fixture(autouse=True)
def mock_env_vars(monkeypatch):
    """
    Mock environment variables for tests

    autouse=True means this runs for every test automatically
    """
    # Use in-memory SQLite for tests (overridden by db_session fixture)
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
    monkeypatch.setenv("LOCAL_UTC_OFFSET_MINUTES", "330")
