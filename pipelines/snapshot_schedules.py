"""
Schedule Snapshot Pipeline

Freezes the live schedule of every bus into schedule_history for a date, so
past days can later be resolved from the timetable that was actually in force
instead of being derived from passenger clustering.

Existing history rows are never touched: a snapshot written when the schedule
was saved is authoritative. Dates before today are rejected because the live
schedule may have changed since.

This script should be run daily shortly after midnight (local), e.g. via cron.

Usage:
    python -m pipelines.snapshot_schedules [--date YYYY-MM-DD] [--bus BUS_ID]

Options:
    --date YYYY-MM-DD  Date to snapshot (default: today, local)
    --bus BUS_ID       Snapshot a single bus only (default: all buses)
"""

import argparse
from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Session

from bustrips.config import Settings, settings as default_settings
from bustrips.database import get_session
from bustrips.providers import ScheduleHistoryStore, ScheduleLayout, default_schedule_chain
from bustrips.regime import local_today, parse_date_param


def snapshot_schedules(
    db: Session,
    day: Optional[date] = None,
    bus_filter: Optional[str] = None,
    now: Optional[datetime] = None,
    config: Settings = default_settings,
) -> dict:
    """
    Write missing schedule_history rows for a date

    Args:
        db: Database session (committed here)
        day: Local date to snapshot (default: today)
        bus_filter: Only this bus (default: every bus with a schedule)
        now: Override for the current instant (tests)

    Returns:
        Dictionary with 'created', 'existing', 'skipped' lists of bus ids
    """
    today = local_today(now, config)
    if day is None:
        day = today
    if day < today:
        raise ValueError(f"Cannot snapshot {day.isoformat()}: only today or later can be frozen")

    chain = default_schedule_chain(db)
    history = ScheduleHistoryStore(db)
    bus_ids = [bus_filter] if bus_filter else chain.bus_ids()

    result = {"created": [], "existing": [], "skipped": []}

    for bus_id in bus_ids:
        schedule = chain.find_trips(bus_id)
        if schedule is None:
            print(f"  - {bus_id}: no schedule, skipped")
            result["skipped"].append(bus_id)
            continue
        if schedule.layout == ScheduleLayout.SERVICE_SPAN:
            # History rows hold trip arrays; a span config would change window rules
            print(f"  - {bus_id}: legacy span config ({schedule.source}), skipped")
            result["skipped"].append(bus_id)
            continue

        trips = [trip.to_dict() for trip in schedule.trips]
        if history.insert_if_missing(bus_id, day, schedule.route_name, trips):
            print(f"  ✓ {bus_id}: {len(trips)} trips frozen for {day.isoformat()}")
            result["created"].append(bus_id)
        else:
            result["existing"].append(bus_id)

    db.commit()
    return result


def main():
    parser = argparse.ArgumentParser(
        description="Freeze live bus schedules into schedule history",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Snapshot every bus for today
  python -m pipelines.snapshot_schedules

  # Snapshot one bus for tomorrow
  python -m pipelines.snapshot_schedules --date 2025-01-11 --bus BUS_JC_001
        """,
    )
    parser.add_argument("--date", type=str, help="Date to snapshot in YYYY-MM-DD format (default: today)")
    parser.add_argument("--bus", type=str, help="Specific bus to snapshot (default: all)")
    args = parser.parse_args()

    day = None
    if args.date:
        try:
            day = parse_date_param(args.date)
        except ValueError as e:
            parser.error(str(e))

    print("=" * 70)
    print("Schedule Snapshot")
    print("=" * 70)

    db = get_session()
    try:
        result = snapshot_schedules(db, day=day, bus_filter=args.bus)
    except ValueError as e:
        parser.error(str(e))
    finally:
        db.close()

    print(
        f"\n✓ Created {len(result['created'])}, "
        f"already present {len(result['existing'])}, "
        f"skipped {len(result['skipped'])}"
    )


if __name__ == "__main__":
    main()
