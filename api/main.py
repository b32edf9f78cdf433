"""
FastAPI application for the bus passenger trip API

Endpoints resolve trips for a bus and date, and list passenger and unmatched
events attributed to those trips.
"""

import logging

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.schemas import BusScheduleIn
from api.trip_queries import (
    get_bus_schedule,
    get_passengers,
    get_scheduled_trips,
    get_trips_for_date,
    get_unmatched,
    schedule_to_dict,
)
from bustrips.config import LOG_LEVEL
from bustrips.database import get_db
from bustrips.schedules import save_bus_schedule

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
log = logging.getLogger("api")

# Create FastAPI app
app = FastAPI(
    title="Bus Passenger Trip API",
    description="Trip resolution and passenger attribution for tracked buses",
    version="1.0.0",
)

# Enable CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify your frontend domain
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    """Storage failures are server errors; the request is safe to retry"""
    log.error("Database error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"status": "error", "detail": "Database error"})


@app.get("/")
async def root():
    """API root - health check"""
    return {"status": "ok", "name": "Bus Passenger Trip API", "version": "1.0.0", "docs": "/docs"}


@app.get("/api/trips")
def get_trips(
    date: str = None, bus_id: str = None, trip_id: str = None, db: Session = Depends(get_db)
):
    """
    Get the trips a bus (or every bus) ran on a date

    Today and future dates come from the live schedule; past dates from the
    schedule history snapshot, or from passenger clustering when no snapshot
    exists.

    Args:
        date: Date to resolve (YYYY-MM-DD, required)
        bus_id: Bus identifier, or 'ALL'
        trip_id: Optional SCHEDULED_ trip reference

    Returns:
        Ordered trip descriptors with windows and passenger counts
    """
    result = get_trips_for_date(db, date, bus_id=bus_id, trip_id=trip_id)
    if result.get("error"):
        raise HTTPException(status_code=400, detail=result["error"])
    return result


@app.get("/api/scheduled-trips")
def get_scheduled_trips_endpoint(date: str = None, bus_id: str = None, db: Session = Depends(get_db)):
    """
    Get trips with their upcoming/active/completed status

    Args:
        date: Date to resolve (default: today, local)
        bus_id: Bus identifier, or 'ALL'
    """
    result = get_scheduled_trips(db, date=date, bus_id=bus_id)
    if result.get("error"):
        raise HTTPException(status_code=400, detail=result["error"])
    return result


@app.get("/api/passengers")
def get_passengers_endpoint(
    trip_id: str = None,
    bus_id: str = None,
    date: str = None,
    limit: int = 50,
    skip: int = 0,
    db: Session = Depends(get_db),
):
    """
    Get passenger journeys, newest first

    Args:
        trip_id: SCHEDULED_ reference (filtered by trip window), literal trip id, or 'ALL'
        bus_id: Bus identifier, or 'ALL'
        date: Local calendar day (ignored when a trip window applies)
        limit: Page size (max 500)
        skip: Offset
    """
    result = get_passengers(db, trip_id=trip_id, bus_id=bus_id, date=date, limit=limit, skip=skip)
    if result.get("error"):
        raise HTTPException(status_code=400, detail=result["error"])
    return result


@app.get("/api/unmatched")
def get_unmatched_endpoint(
    trip_id: str = None,
    bus_id: str = None,
    date: str = None,
    type: str = None,
    limit: int = 50,
    skip: int = 0,
    db: Session = Depends(get_db),
):
    """
    Get unmatched ENTRY/EXIT detections, newest first

    Same filters as /api/passengers, plus type (ENTRY or EXIT).
    """
    result = get_unmatched(
        db, trip_id=trip_id, bus_id=bus_id, date=date, type=type, limit=limit, skip=skip
    )
    if result.get("error"):
        raise HTTPException(status_code=400, detail=result["error"])
    return result


@app.get("/api/bus-schedule/{bus_id}")
def get_bus_schedule_endpoint(bus_id: str, db: Session = Depends(get_db)):
    """Get the live schedule of a bus"""
    result = get_bus_schedule(db, bus_id)
    if result.get("error"):
        raise HTTPException(status_code=404, detail=result["error"])
    return result


@app.post("/api/bus-schedule")
def save_bus_schedule_endpoint(payload: BusScheduleIn, db: Session = Depends(get_db)):
    """
    Save a bus schedule

    Also snapshots the schedule into schedule history for today's local date.
    """
    schedule = save_bus_schedule(
        db,
        payload.bus_id,
        payload.route_name,
        [trip.model_dump() for trip in payload.trips],
    )
    return {"status": "success", "schedule": schedule_to_dict(schedule)}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
