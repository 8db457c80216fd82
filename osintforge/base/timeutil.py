"""UTC timestamp helpers shared by stores, events and webhook payloads."""

from __future__ import annotations

import time
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(dt: datetime) -> str:
    """
    Millisecond-precision ISO-8601 in UTC with a ``Z`` suffix.

    Every persisted timestamp goes through here so that string comparison in
    SQL orders them correctly.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_iso() -> str:
    return isoformat(utc_now())


def now_ms() -> int:
    return int(time.time() * 1000)
