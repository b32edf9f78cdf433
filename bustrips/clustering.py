"""
Derive trips for a past day from passenger event timestamps.

Used only when no schedule snapshot survives for that day. Events are
bucketed by local hour of day (4-hour buckets, so at most 6 per day) and each
non-empty bucket becomes one derived trip. This is a heuristic segmentation,
not a ground-truth schedule.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

import pandas as pd

from bustrips.config import Settings, settings as default_settings
from bustrips.providers import EventStore
from bustrips.regime import from_storage_time, local_day_bounds


@dataclass(frozen=True)
class EventCluster:
    """One bucket of a day's events for a single bus"""

    bucket: int
    first_event: datetime  # aware, local offset
    last_event: datetime
    event_count: int
    route_name: Optional[str]


def events_to_dataframe(events: list, store: EventStore, config: Settings = default_settings) -> pd.DataFrame:
    """
    Build a DataFrame of (timestamp, route_name) from event rows

    Timestamps are converted from naive UTC storage time to the local offset
    so bucketing follows the local hour of day.
    """
    records = [
        {
            "timestamp": from_storage_time(store.event_time(event), config),
            "route_name": event.route_name,
        }
        for event in events
    ]
    if not records:
        return pd.DataFrame(columns=["timestamp", "route_name"])
    return pd.DataFrame(records)


def cluster_events(df: pd.DataFrame, config: Settings = default_settings) -> list[EventCluster]:
    """
    Bucket events by floor(local_hour / bucket_hours)

    Args:
        df: DataFrame with 'timestamp' (aware datetimes) and 'route_name' columns

    Returns:
        Clusters ordered by their earliest event
    """
    if df.empty:
        return []

    df = df.assign(timestamp=pd.to_datetime(df["timestamp"]))
    df = df.sort_values("timestamp", kind="mergesort").reset_index(drop=True)
    df["bucket"] = df["timestamp"].dt.hour // config.cluster_bucket_hours

    clusters = []
    # Rows are time-ordered, so groups come out in order of their first event
    for bucket, group in df.groupby("bucket", sort=False):
        route_name = group["route_name"].iloc[0]
        clusters.append(
            EventCluster(
                bucket=int(bucket),
                first_event=group["timestamp"].iloc[0].to_pydatetime(),
                last_event=group["timestamp"].iloc[-1].to_pydatetime(),
                event_count=len(group),
                route_name=route_name if isinstance(route_name, str) and route_name else None,
            )
        )

    clusters.sort(key=lambda c: c.first_event)
    return clusters


def cluster_day(
    store: EventStore, bus_id: str, day: date, config: Settings = default_settings
) -> list[EventCluster]:
    """
    Cluster one bus's events for one local calendar day
    """
    start, end = local_day_bounds(day, config)
    events = store.find_in_window(bus_id, start, end)
    return cluster_events(events_to_dataframe(events, store, config), config)
