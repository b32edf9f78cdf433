"""
Tests for attributing passenger and unmatched events to trip windows

Run with: pytest tests/test_windows.py
"""

from datetime import date, timedelta

import pytest

from bustrips.models import BusSchedule
from bustrips.providers import EventKind
from bustrips.resolver import TripResolver, TripSource
from bustrips.trip_ids import LiteralTripRef, ScheduledTripRef
from bustrips.windows import WindowMatcher
from tests.helpers import FIXED_NOW, FIXED_TODAY, TEST_SETTINGS, make_trip, stored

TOMORROW = FIXED_TODAY + timedelta(days=1)
PAST_DAY = date(2024, 1, 10)


@pytest.fixture
def resolver(db_session):
    return TripResolver.from_session(db_session, config=TEST_SETTINGS, now=FIXED_NOW)


@pytest.fixture
def matcher(db_session):
    return WindowMatcher(db_session, config=TEST_SETTINGS)


class TestPassengerCounts:
    def test_count_is_events_inside_window(self, resolver, matcher, sample_schedule, add_passengers):
        add_passengers("BUS_JC_001", TOMORROW, ["05:15", "08:00", "11:15", "11:16", "13:00", "16:00"])
        add_passengers("BUS_OTHER", TOMORROW, ["08:00", "09:00"])

        trips = matcher.attach_passenger_counts(resolver.resolve(TOMORROW, "BUS_JC_001"))

        # Bounds are inclusive: 05:15 and 11:15 belong to the morning trip
        assert [t.passenger_count for t in trips] == [3, 1]
        for trip in trips:
            assert trip.passenger_count == len(matcher.find_events(trip))

    def test_overlapping_windows_count_shared_events(self, db_session, resolver, matcher, add_passengers):
        db_session.add(BusSchedule(bus_id="B1", trips=[make_trip("A", "08:00"), make_trip("B", "10:00")]))
        db_session.commit()
        add_passengers("B1", TOMORROW, ["09:00"])

        trips = matcher.attach_passenger_counts(resolver.resolve(TOMORROW, "B1"))

        assert [t.passenger_count for t in trips] == [1, 1]

    def test_derived_and_history_counts_untouched(
        self, resolver, matcher, sample_schedule, sample_history, add_passengers
    ):
        add_passengers("BUS_X", PAST_DAY, ["06:10", "06:50", "07:20"])
        trips = matcher.attach_passenger_counts(resolver.resolve(PAST_DAY))

        by_source = {t.source: t for t in trips}
        assert by_source[TripSource.DERIVED].passenger_count == 3
        assert by_source[TripSource.HISTORY].passenger_count is None

    def test_find_events_oldest_first(self, resolver, matcher, sample_schedule, add_passengers):
        add_passengers("BUS_JC_001", TOMORROW, ["10:00", "06:00", "08:00"])
        [morning, _] = resolver.resolve(TOMORROW, "BUS_JC_001")

        events = matcher.find_events(morning)

        assert [e.entry_timestamp for e in events] == [
            stored(TOMORROW, "06:00"),
            stored(TOMORROW, "08:00"),
            stored(TOMORROW, "10:00"),
        ]

    def test_unmatched_events_use_detection_time(self, resolver, matcher, sample_schedule, add_unmatched):
        add_unmatched("BUS_JC_001", TOMORROW, ["07:00", "12:00"])
        [morning, _] = resolver.resolve(TOMORROW, "BUS_JC_001")

        events = matcher.find_events(morning, EventKind.UNMATCHED)

        assert [e.timestamp for e in events] == [stored(TOMORROW, "07:00")]


class TestEventQuery:
    def test_scheduled_reference_restricts_to_window(
        self, resolver, matcher, sample_schedule, add_passengers
    ):
        add_passengers("BUS_JC_001", TOMORROW, ["08:00", "16:00"])
        add_passengers("BUS_OTHER", TOMORROW, ["08:00"])

        query, descriptor = matcher.event_query(
            resolver,
            EventKind.PASSENGER,
            trip_ref=ScheduledTripRef("BUS_JC_001", TOMORROW, 0),
            bus_id="BUS_OTHER",
            day=PAST_DAY,
        )

        rows = query.all()
        assert descriptor.name == "Morning Run"
        assert [(p.bus_id, p.entry_timestamp) for p in rows] == [("BUS_JC_001", stored(TOMORROW, "08:00"))]

    def test_unresolved_reference_matches_stored_trip_id(self, resolver, matcher, add_passengers):
        trip_id = f"SCHEDULED_NOPE_{TOMORROW.isoformat()}_0"
        add_passengers("NOPE", TOMORROW, ["08:00"], trip_id=trip_id)
        add_passengers("NOPE2", TOMORROW, ["08:00"])

        query, descriptor = matcher.event_query(
            resolver, EventKind.PASSENGER, trip_ref=ScheduledTripRef("NOPE", TOMORROW, 0)
        )

        assert descriptor is None
        assert [p.trip_id for p in query.all()] == [trip_id]

    def test_literal_reference_filters_trip_id(self, resolver, matcher, add_passengers):
        add_passengers("B1", TOMORROW, ["08:00"], trip_id="TRIP_42")
        add_passengers("B1", PAST_DAY, ["08:00"], trip_id="TRIP_43")

        query, descriptor = matcher.event_query(
            resolver, EventKind.PASSENGER, trip_ref=LiteralTripRef("TRIP_42"), bus_id="B1"
        )

        assert descriptor is None
        assert [p.trip_id for p in query.all()] == ["TRIP_42"]

    def test_date_filter_uses_local_day(self, resolver, matcher, add_passengers):
        add_passengers("B1", PAST_DAY, ["00:00", "23:59"])
        add_passengers("B2", PAST_DAY + timedelta(days=1), ["00:00"])

        query, _ = matcher.event_query(resolver, EventKind.PASSENGER, day=PAST_DAY)

        assert sorted(p.bus_id for p in query.all()) == ["B1", "B1"]

    def test_bus_filter_without_reference(self, resolver, matcher, add_passengers):
        add_passengers("B1", PAST_DAY, ["08:00"])
        add_passengers("B2", PAST_DAY, ["08:00"])

        query, _ = matcher.event_query(resolver, EventKind.PASSENGER, bus_id="B2")

        assert [p.bus_id for p in query.all()] == ["B2"]

    def test_type_filter_applies_to_unmatched(self, resolver, matcher, add_unmatched):
        add_unmatched("B1", PAST_DAY, ["08:00"], type="ENTRY")
        add_unmatched("B1", PAST_DAY, ["09:00"], type="EXIT")

        query, _ = matcher.event_query(resolver, EventKind.UNMATCHED, event_type="exit")

        assert [u.type for u in query.all()] == ["EXIT"]

    def test_type_filter_ignored_for_passengers(self, resolver, matcher, add_passengers):
        add_passengers("B1", PAST_DAY, ["08:00"])

        query, _ = matcher.event_query(resolver, EventKind.PASSENGER, event_type="EXIT")

        assert query.count() == 1
