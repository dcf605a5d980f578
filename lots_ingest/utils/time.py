"""Time utilities (UTC now, next daily run)."""
from __future__ import annotations
from datetime import datetime, timezone, timedelta

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def seconds_until_hour(hour: int, now: datetime | None = None) -> float:
    """Seconds from ``now`` until the next occurrence of ``hour``:00 UTC."""
    current = now or utc_now()
    target = current.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= current:
        target += timedelta(days=1)
    return (target - current).total_seconds()

__all__ = ["utc_now", "seconds_until_hour"]
