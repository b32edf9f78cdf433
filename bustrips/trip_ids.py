"""
Trip reference encoding and decoding.

Trips are not stored as rows, so callers identify them with a derived string:

    SCHEDULED_<bus_id>_<YYYY-MM-DD>_<index>

Bus ids may themselves contain underscores, so decoding anchors on the last
two segments. Any string that does not decode is a literal trip id and is
used as a direct filter value.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

SCHEDULED_PREFIX = "SCHEDULED"
ALL_SENTINEL = "ALL"


@dataclass(frozen=True)
class ScheduledTripRef:
    """Trip number `index` of bus `bus_id` on local calendar day `date`"""

    bus_id: str
    date: date
    index: int

    def encode(self) -> str:
        return encode_trip_id(self.bus_id, self.date, self.index)


@dataclass(frozen=True)
class LiteralTripRef:
    """Externally supplied trip id matched verbatim against stored records"""

    value: str

    def encode(self) -> str:
        return self.value


TripRef = Union[ScheduledTripRef, LiteralTripRef]


def encode_trip_id(bus_id: str, trip_date: date, index: int) -> str:
    """
    Build the trip reference for trip `index` of a bus on a date

    Args:
        bus_id: Bus identifier (may contain underscores)
        trip_date: Local calendar day
        index: Position of the trip in the schedule snapshot (>= 0)

    Returns:
        Reference string, e.g. 'SCHEDULED_BUS_JC_001_2024-01-10_0'
    """
    if index < 0:
        raise ValueError(f"Trip index must be non-negative, got {index}")
    return f"{SCHEDULED_PREFIX}_{bus_id}_{trip_date.isoformat()}_{index}"


def decode_trip_id(ref: Optional[str]) -> Optional[ScheduledTripRef]:
    """
    Decode a SCHEDULED_ trip reference

    Returns None for anything that is not a well-formed reference; this is
    never an error, the caller falls back to treating the string as a literal.
    """
    if not ref:
        return None

    parts = ref.split("_")
    if len(parts) < 4 or parts[0] != SCHEDULED_PREFIX:
        return None

    index_part = parts[-1]
    if not (index_part.isascii() and index_part.isdigit()):
        return None

    try:
        trip_date = datetime.strptime(parts[-2], "%Y-%m-%d").date()
    except ValueError:
        return None

    bus_id = "_".join(parts[1:-2])
    if not bus_id:
        return None

    return ScheduledTripRef(bus_id=bus_id, date=trip_date, index=int(index_part))


def parse_trip_ref(raw: Optional[str]) -> Optional[TripRef]:
    """
    Validate a trip_id query parameter once at the boundary

    Returns None when no trip filter applies (missing, blank or 'ALL').
    """
    if raw is None:
        return None
    raw = raw.strip()
    if not raw or raw == ALL_SENTINEL:
        return None

    scheduled = decode_trip_id(raw)
    if scheduled is not None:
        return scheduled
    return LiteralTripRef(raw)
