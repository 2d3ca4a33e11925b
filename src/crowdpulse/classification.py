"""Crowd tier and device liveness classification.

Every consumer (device endpoints, owner API, dashboard stats, public crowd
check) goes through these functions so thresholds never drift apart.
"""

import enum
from datetime import UTC, datetime, timedelta

# A device is online while its last reading is younger than this.
ONLINE_WINDOW = timedelta(minutes=5)

# Upper bounds (inclusive) for each tier; anything above MEDIUM_MAX is High.
LOW_MAX = 10
MEDIUM_MAX = 25


class CrowdStatus(enum.StrEnum):
    low = "Low"
    medium = "Medium"
    high = "High"


class DeviceStatus(enum.StrEnum):
    online = "online"
    offline = "offline"


_ADVICE = {
    CrowdStatus.low: "Great time to visit! Very few people.",
    CrowdStatus.medium: "Moderate crowd. Plan accordingly.",
    CrowdStatus.high: "Very busy right now. Consider visiting later.",
}


def classify_crowd(count: int) -> CrowdStatus:
    """Map a people count to its crowd tier."""
    if count <= LOW_MAX:
        return CrowdStatus.low
    if count <= MEDIUM_MAX:
        return CrowdStatus.medium
    return CrowdStatus.high


def crowd_advice(count: int) -> str:
    """Short visitor-facing hint for a people count."""
    return _ADVICE[classify_crowd(count)]


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite strips tzinfo on read)."""
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt


def is_online(last_seen: datetime | None, now: datetime) -> bool:
    """True if the device reported within ONLINE_WINDOW of ``now``."""
    if last_seen is None:
        return False
    return as_utc(now) - as_utc(last_seen) < ONLINE_WINDOW


def device_status(last_seen: datetime | None, now: datetime) -> DeviceStatus:
    return DeviceStatus.online if is_online(last_seen, now) else DeviceStatus.offline
