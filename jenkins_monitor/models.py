"""
Shared vocabulary for the failure monitor: severity levels and timestamps.

All records cross the wire as JSON, so timestamps are kept at millisecond
precision and rendered as ISO-8601 UTC strings with a ``Z`` suffix.  That
keeps ``parse_iso(to_iso(ts)) == ts`` for every timestamp the monitor creates.
"""

from __future__ import annotations

import math
import time
import uuid
from datetime import datetime, timezone
from enum import Enum


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


def utcnow() -> datetime:
    """Current UTC time truncated to milliseconds."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def to_iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def generate_id(prefix: str) -> str:
    """Time and random based id, e.g. ``notif_1700000000000_3f9a1c2b7``."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
