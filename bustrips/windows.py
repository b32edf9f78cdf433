"""
Attribute passenger and unmatched events to resolved trips by time window.
"""

import logging
from dataclasses import replace
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from bustrips.config import Settings, settings as default_settings
from bustrips.providers import EventKind, EventStore
from bustrips.regime import local_day_bounds, to_storage_time
from bustrips.resolver import TripDescriptor, TripResolver, TripSource
from bustrips.trip_ids import LiteralTripRef, ScheduledTripRef, TripRef

log = logging.getLogger(__name__)


class WindowMatcher:
    def __init__(self, db: Session, config: Settings = default_settings):
        self.config = config
        self.stores = {
            EventKind.PASSENGER: EventStore(db, EventKind.PASSENGER),
            EventKind.UNMATCHED: EventStore(db, EventKind.UNMATCHED),
        }

    def store(self, kind: EventKind) -> EventStore:
        return self.stores[kind]

    def find_events(
        self, descriptor: TripDescriptor, kind: EventKind = EventKind.PASSENGER
    ) -> list:
        """Events of the descriptor's bus inside its window, oldest first"""
        return self.store(kind).find_in_window(
            descriptor.bus_id, descriptor.window_start, descriptor.window_end
        )

    def count_passengers(self, descriptor: TripDescriptor) -> int:
        return self.store(EventKind.PASSENGER).count_in_window(
            descriptor.bus_id, descriptor.window_start, descriptor.window_end
        )

    def attach_passenger_counts(self, descriptors: list[TripDescriptor]) -> list[TripDescriptor]:
        """
        Fill passenger_count on scheduled descriptors

        Derived descriptors keep the count from clustering; history
        descriptors are returned unchanged.
        """
        counted = []
        for descriptor in descriptors:
            if descriptor.source == TripSource.SCHEDULED:
                descriptor = replace(descriptor, passenger_count=self.count_passengers(descriptor))
            counted.append(descriptor)
        return counted

    def event_query(
        self,
        resolver: TripResolver,
        kind: EventKind,
        trip_ref: Optional[TripRef] = None,
        bus_id: Optional[str] = None,
        day: Optional[date] = None,
        event_type: Optional[str] = None,
    ):
        """
        Build the filtered event query shared by the passenger and unmatched listings

        - A SCHEDULED_ reference that resolves restricts to that trip's bus and
          window. One that does not resolve is matched literally.
        - A literal reference filters on the stored trip_id.
        - bus_id applies unless the trip window already fixed the bus.
        - day applies (as a local calendar day) unless a trip window applied.

        Returns:
            (query, descriptor) where descriptor is the resolved trip or None
        """
        store = self.store(kind)
        model = store.model
        descriptor = None
        literal = None

        if isinstance(trip_ref, ScheduledTripRef):
            resolved = resolver.resolve_reference(trip_ref)
            if resolved:
                descriptor = resolved[0]
                log.info(
                    "Filtering %s events for %s: %s to %s (%s)",
                    kind.value,
                    descriptor.trip_id,
                    descriptor.window_start.isoformat(),
                    descriptor.window_end.isoformat(),
                    descriptor.source.value,
                )
            else:
                literal = trip_ref.encode()
        elif isinstance(trip_ref, LiteralTripRef):
            literal = trip_ref.value

        if descriptor is not None:
            query = store.window_query(
                descriptor.bus_id, descriptor.window_start, descriptor.window_end
            )
        else:
            query = store.db.query(model)
            if literal is not None:
                query = query.filter(model.trip_id == literal)
            if bus_id is not None:
                query = query.filter(model.bus_id == bus_id)
            if day is not None:
                start, end = local_day_bounds(day, self.config)
                query = query.filter(
                    store.timestamp_column >= to_storage_time(start),
                    store.timestamp_column <= to_storage_time(end),
                )

        if event_type and kind == EventKind.UNMATCHED:
            query = query.filter(model.type == event_type.upper())

        return query, descriptor
