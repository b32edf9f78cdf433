from typing import Optional

from pydantic import BaseModel, Field

HHMM_PATTERN = r"^([01]?\d|2[0-3]):[0-5]\d(:[0-5]\d)?$"


class TripDefinitionIn(BaseModel):
    trip_name: Optional[str] = None
    direction: Optional[str] = None
    route: Optional[str] = None
    boarding_start_time: Optional[str] = Field(None, pattern=HHMM_PATTERN, description="HH:MM local")
    departure_time: Optional[str] = Field(None, pattern=HHMM_PATTERN, description="HH:MM local")
    estimated_arrival_time: Optional[str] = Field(None, pattern=HHMM_PATTERN, description="HH:MM local")
    active: bool = True


class BusScheduleIn(BaseModel):
    bus_id: str = Field(..., min_length=1)
    route_name: Optional[str] = None
    trips: list[TripDefinitionIn] = Field(default_factory=list)
