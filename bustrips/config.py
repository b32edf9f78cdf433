import os
from dataclasses import dataclass
from datetime import timedelta, timezone

from dotenv import load_dotenv

# Load environment variables before reading any settings
load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """
    Window sizing and clock policy for trip resolution

    Tests pass an explicit instance; the service uses `settings`.
    """

    local_utc_offset_minutes: int = 330  # Sri Lanka, +05:30
    scheduled_window_minutes: int = 180  # ± around departure
    span_window_padding_minutes: int = 30  # legacy trip_start/trip_end configs
    derived_window_padding_minutes: int = 30  # clustering
    cluster_bucket_hours: int = 4
    enable_degraded_fallback: bool = True

    @property
    def local_tz(self) -> timezone:
        return timezone(timedelta(minutes=self.local_utc_offset_minutes))

    @property
    def scheduled_window(self) -> timedelta:
        return timedelta(minutes=self.scheduled_window_minutes)

    @property
    def span_window_padding(self) -> timedelta:
        return timedelta(minutes=self.span_window_padding_minutes)

    @property
    def derived_window_padding(self) -> timedelta:
        return timedelta(minutes=self.derived_window_padding_minutes)


def load_settings() -> Settings:
    """Build Settings from environment variables (falling back to defaults)"""
    return Settings(
        local_utc_offset_minutes=_env_int("LOCAL_UTC_OFFSET_MINUTES", 330),
        scheduled_window_minutes=_env_int("SCHEDULED_WINDOW_MINUTES", 180),
        span_window_padding_minutes=_env_int("SPAN_WINDOW_PADDING_MINUTES", 30),
        derived_window_padding_minutes=_env_int("DERIVED_WINDOW_PADDING_MINUTES", 30),
        cluster_bucket_hours=_env_int("CLUSTER_BUCKET_HOURS", 4),
        enable_degraded_fallback=_env_bool("ENABLE_DEGRADED_FALLBACK", True),
    )


# Database configuration from environment variables
DATABASE_URL = os.getenv("DATABASE_URL")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

settings = load_settings()
