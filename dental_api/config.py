import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dental_api.errors import ConfigurationMissing

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./dental.db")

# Schedules and business hours are wall-clock values in this zone.
OFFICE_TIMEZONE = os.getenv("OFFICE_TIMEZONE", "America/New_York")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def get_office_timezone(name: str = None) -> ZoneInfo:
    """Return the office time zone, failing loudly on an unknown IANA name."""
    zone_name = name or OFFICE_TIMEZONE
    try:
        return ZoneInfo(zone_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationMissing(f"Unknown office time zone: {zone_name}") from exc
