import os
import time
from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def new_id() -> str:
    """Time-ordered id: 16 hex digits of nanoseconds + 8 random hex digits."""
    return f"{time.time_ns():016x}{os.urandom(4).hex()}"
