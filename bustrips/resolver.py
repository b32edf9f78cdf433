"""
Trip resolver: the single answer to "what trips did this bus run on this date".

Resolution order:

    today / future  ->  live schedule (bus_schedules, then legacy power_configs)
    past dates      ->  schedule_history snapshot
                    ->  trips derived from passenger event clustering
                    ->  live schedule applied to the past date (degraded,
                        only for a specific trip reference, flagged and logged)

Every read path (trip listings, passenger and unmatched filters) goes through
TripResolver so a SCHEDULED_ reference always decodes to the same window.
"""

import enum
import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from bustrips.clustering import EventCluster, cluster_day
from bustrips.config import Settings, settings as default_settings
from bustrips.providers import (
    EventKind,
    EventStore,
    Schedule,
    ScheduleChain,
    ScheduleHistoryStore,
    ScheduleLayout,
    TripDefinition,
    default_schedule_chain,
    parse_hhmm,
)
from bustrips.regime import Regime, classify_date, local_datetime, local_day_bounds
from bustrips.trip_ids import LiteralTripRef, ScheduledTripRef, TripRef, encode_trip_id

log = logging.getLogger(__name__)

DEFAULT_TRIP_NAME = "Bus Trip"


class TripSource(str, enum.Enum):
    SCHEDULED = "scheduled"
    HISTORY = "history"
    DERIVED = "derived"


@dataclass(frozen=True)
class TripDescriptor:
    """
    A resolved trip and the window used to attribute events to it

    Window bounds are inclusive and timezone-aware (fixed local offset).
    `degraded` marks a past-date trip answered from today's live schedule.
    """

    trip_id: str
    name: str
    bus_id: str
    date: date
    trip_index: int
    window_start: datetime
    window_end: datetime
    source: TripSource
    departure: Optional[datetime] = None
    route_name: Optional[str] = None
    direction: Optional[str] = None
    route: Optional[str] = None
    boarding_start_time: Optional[str] = None
    departure_time: Optional[str] = None
    estimated_arrival_time: Optional[str] = None
    passenger_count: Optional[int] = None
    degraded: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        data["source"] = self.source.value
        data["window_start"] = self.window_start.isoformat()
        data["window_end"] = self.window_end.isoformat()
        data["departure"] = self.departure.isoformat() if self.departure else None
        return data


def trip_window(
    day: date, trip: TripDefinition, layout: ScheduleLayout, config: Settings = default_settings
) -> Optional[tuple[datetime, datetime, datetime]]:
    """
    Attribution window for one timetable entry on a local calendar day

    Trip arrays use departure ± scheduled_window. Legacy span configs use
    [trip_start - padding, trip_end + padding], with an end earlier than the
    start rolled to the next day.

    Returns:
        (window_start, window_end, departure) or None if the entry's times
        are missing or malformed
    """
    departure_time = trip.departure
    if departure_time is None:
        return None
    departure = local_datetime(day, departure_time, config)

    if layout == ScheduleLayout.SERVICE_SPAN:
        end_time = parse_hhmm(trip.estimated_arrival_time)
        if trip.estimated_arrival_time and end_time is None:
            return None
        span_end = local_datetime(day, end_time, config) if end_time else departure
        if span_end < departure:
            span_end += timedelta(days=1)
        return (
            departure - config.span_window_padding,
            span_end + config.span_window_padding,
            departure,
        )

    return (
        departure - config.scheduled_window,
        departure + config.scheduled_window,
        departure,
    )


def sort_descriptors(descriptors: list[TripDescriptor]) -> list[TripDescriptor]:
    """Order by departure ascending, ties by bus then index"""
    return sorted(
        descriptors,
        key=lambda d: (d.departure or d.window_start, d.bus_id, d.trip_index),
    )


class TripResolver:
    def __init__(
        self,
        schedules: ScheduleChain,
        history: ScheduleHistoryStore,
        events: EventStore,
        config: Settings = default_settings,
        now: Optional[datetime] = None,
    ):
        self.schedules = schedules
        self.history = history
        self.events = events
        self.config = config
        self.now = now

    @classmethod
    def from_session(
        cls, db: Session, config: Settings = default_settings, now: Optional[datetime] = None
    ) -> "TripResolver":
        return cls(
            schedules=default_schedule_chain(db),
            history=ScheduleHistoryStore(db),
            events=EventStore(db, EventKind.PASSENGER),
            config=config,
            now=now,
        )

    def regime(self, day: date) -> Regime:
        return classify_date(day, self.now, self.config)

    def resolve(
        self, day: date, bus_id: Optional[str] = None, trip_ref: Optional[TripRef] = None
    ) -> list[TripDescriptor]:
        """
        Resolve the trips of one bus (or all buses when bus_id is None) on a day

        A scheduled trip reference narrows the result to that single trip; its
        own bus and date take precedence over the other arguments. Literal
        references name no resolvable trip and yield an empty list.
        """
        if isinstance(trip_ref, ScheduledTripRef):
            return self.resolve_reference(trip_ref)
        if isinstance(trip_ref, LiteralTripRef):
            return []

        if self.regime(day) == Regime.SCHEDULED:
            descriptors = self._resolve_live(day, bus_id)
        else:
            descriptors = self._resolve_historical(day, bus_id)
        return sort_descriptors(descriptors)

    def resolve_reference(self, ref: ScheduledTripRef) -> list[TripDescriptor]:
        """
        Resolve one SCHEDULED_ reference to at most one descriptor
        """
        if self.regime(ref.date) == Regime.SCHEDULED:
            schedule = self.schedules.find_trips(ref.bus_id)
            descriptor = self._descriptor_at(schedule, ref, TripSource.SCHEDULED)
            return [descriptor] if descriptor else []

        snapshot = self.history.find(ref.bus_id, ref.date)
        descriptor = self._descriptor_at(snapshot, ref, TripSource.HISTORY)
        if descriptor:
            return [descriptor]

        derived = self._derived_trips(ref.bus_id, ref.date)
        if derived:
            if ref.index < len(derived):
                return [derived[ref.index]]
            return []

        if not self.config.enable_degraded_fallback:
            return []

        schedule = self.schedules.find_trips(ref.bus_id)
        descriptor = self._descriptor_at(schedule, ref, TripSource.SCHEDULED, degraded=True)
        if descriptor:
            log.warning(
                "Degraded resolution for %s: no history or events on %s, "
                "using today's live schedule window",
                ref.encode(),
                ref.date.isoformat(),
            )
            return [descriptor]
        return []

    def _resolve_live(self, day: date, bus_id: Optional[str]) -> list[TripDescriptor]:
        if bus_id is not None:
            schedule = self.schedules.find_trips(bus_id)
            schedules = [schedule] if schedule else []
        else:
            schedules = self.schedules.find_all()

        descriptors = []
        for schedule in schedules:
            descriptors.extend(self._descriptors_from_schedule(schedule, day, TripSource.SCHEDULED))
        return descriptors

    def _resolve_historical(self, day: date, bus_id: Optional[str]) -> list[TripDescriptor]:
        if bus_id is not None:
            bus_ids = [bus_id]
        else:
            start, end = local_day_bounds(day, self.config)
            bus_ids = sorted(
                set(self.history.bus_ids_for_date(day)) | set(self.events.bus_ids_in_window(start, end))
            )

        descriptors = []
        for bus in bus_ids:
            snapshot = self.history.find(bus, day)
            if snapshot is not None and snapshot.trips:
                log.debug("Resolving %s on %s from schedule history", bus, day)
                descriptors.extend(self._descriptors_from_schedule(snapshot, day, TripSource.HISTORY))
            else:
                log.debug("No schedule history for %s on %s, clustering events", bus, day)
                descriptors.extend(self._derived_trips(bus, day))
        return descriptors

    def _descriptors_from_schedule(
        self, schedule: Schedule, day: date, source: TripSource
    ) -> list[TripDescriptor]:
        descriptors = []
        for index, trip in enumerate(schedule.trips):
            if not trip.active:
                continue
            descriptor = self._build(schedule, day, index, trip, source)
            if descriptor is not None:
                descriptors.append(descriptor)
        return descriptors

    def _descriptor_at(
        self,
        schedule: Optional[Schedule],
        ref: ScheduledTripRef,
        source: TripSource,
        degraded: bool = False,
    ) -> Optional[TripDescriptor]:
        if schedule is None or ref.index >= len(schedule.trips):
            return None
        return self._build(
            schedule, ref.date, ref.index, schedule.trips[ref.index], source, degraded=degraded
        )

    def _build(
        self,
        schedule: Schedule,
        day: date,
        index: int,
        trip: TripDefinition,
        source: TripSource,
        degraded: bool = False,
    ) -> Optional[TripDescriptor]:
        window = trip_window(day, trip, schedule.layout, self.config)
        if window is None:
            log.warning(
                "Skipping trip %d of %s (%s): invalid times departure=%r boarding=%r arrival=%r",
                index,
                schedule.bus_id,
                schedule.source,
                trip.departure_time,
                trip.boarding_start_time,
                trip.estimated_arrival_time,
            )
            return None

        window_start, window_end, departure = window
        return TripDescriptor(
            trip_id=encode_trip_id(schedule.bus_id, day, index),
            name=trip.trip_name or DEFAULT_TRIP_NAME,
            bus_id=schedule.bus_id,
            date=day,
            trip_index=index,
            window_start=window_start,
            window_end=window_end,
            source=source,
            departure=departure,
            route_name=schedule.route_name,
            direction=trip.direction,
            route=trip.route,
            boarding_start_time=trip.boarding_start_time,
            departure_time=trip.departure_time or trip.boarding_start_time,
            estimated_arrival_time=trip.estimated_arrival_time,
            degraded=degraded,
        )

    def _derived_trips(self, bus_id: str, day: date) -> list[TripDescriptor]:
        clusters = cluster_day(self.events, bus_id, day, self.config)
        return [
            self._derived_descriptor(bus_id, day, ordinal, cluster)
            for ordinal, cluster in enumerate(clusters)
        ]

    def _derived_descriptor(
        self, bus_id: str, day: date, ordinal: int, cluster: EventCluster
    ) -> TripDescriptor:
        padding = self.config.derived_window_padding
        return TripDescriptor(
            trip_id=encode_trip_id(bus_id, day, ordinal),
            name=cluster.route_name or f"Trip {ordinal + 1}",
            bus_id=bus_id,
            date=day,
            trip_index=ordinal,
            window_start=cluster.first_event - padding,
            window_end=cluster.last_event + padding,
            source=TripSource.DERIVED,
            departure=cluster.first_event,
            route_name=cluster.route_name,
            passenger_count=cluster.event_count,
        )
