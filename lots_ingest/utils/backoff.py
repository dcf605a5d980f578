"""Exponential backoff helpers with jitter."""
from __future__ import annotations

import random
from typing import Optional

from lots_ingest.config import BACKOFF_POLICY, SCRAPE_WORKER_SETTINGS


def compute_backoff_seconds(attempt: int, *, base: Optional[float] = None, factor: Optional[float] = None, max_seconds: Optional[float] = None, jitter_pct: Optional[float] = None) -> float:
    """Compute exponential backoff delay with jitter."""
    if attempt < 1:
        attempt = 1
    base = float(base if base is not None else BACKOFF_POLICY["base_seconds"])
    factor = float(factor if factor is not None else BACKOFF_POLICY["factor"])
    max_seconds = float(max_seconds if max_seconds is not None else BACKOFF_POLICY["max_seconds"])
    jitter_pct = float(jitter_pct if jitter_pct is not None else BACKOFF_POLICY["jitter_pct"])

    delay = base * (factor ** (attempt - 1))
    delay = min(delay, max_seconds)
    if jitter_pct > 0:
        jitter_amount = delay * jitter_pct
        delay = random.uniform(delay - jitter_amount, delay + jitter_amount)
    return max(delay, 0.0)


def scrape_retry_delay(attempt: int) -> float:
    """Backoff for a failed scrape work item, using the worker retry policy."""
    return compute_backoff_seconds(
        attempt,
        base=SCRAPE_WORKER_SETTINGS["retry_base_seconds"],
        factor=SCRAPE_WORKER_SETTINGS["retry_factor"],
        max_seconds=SCRAPE_WORKER_SETTINGS["retry_max_seconds"],
    )


__all__ = ["compute_backoff_seconds", "scrape_retry_delay"]
