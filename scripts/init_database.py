"""
One-time database initialization script
Run this once to create the trip service tables

Usage:
  python -m scripts.init_database              # Interactive mode (prompts for confirmation)
  python -m scripts.init_database --no-confirm # Non-interactive mode (for automation)
"""

import sys

from bustrips.database import init_db


def main():
    print("=" * 70)
    print("Bus Passenger Trip Service - Database Initialization")
    print("=" * 70)
    print("\nThis script will create the tables:")
    print("   - bus_schedules, power_configs, schedule_history")
    print("   - bus_passengers, unmatched_passengers")
    print("\nExisting tables are left as they are.")
    print("=" * 70)

    if "--no-confirm" not in sys.argv:
        response = input("\nContinue? (y/n): ")
        if response.lower() != "y":
            print("Aborted.")
            return
    else:
        print("\n[Running in non-interactive mode]")

    init_db()

    print("\n" + "=" * 70)
    print("✓ Database initialization complete!")
    print("=" * 70)
    print("\nYou can now run:")
    print("  - uvicorn api.main:app (API server)")
    print("  - python -m pipelines.snapshot_schedules (daily schedule snapshot)")


if __name__ == "__main__":
    main()
