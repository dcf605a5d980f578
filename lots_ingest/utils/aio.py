"""Small asyncio helpers shared by the background loops."""
from __future__ import annotations

import asyncio


async def sleep_or_stop(stop_event: asyncio.Event | None, seconds: float) -> bool:
    """Sleep up to ``seconds``; return True early if ``stop_event`` fires."""
    if seconds <= 0:
        return bool(stop_event and stop_event.is_set())
    if stop_event is None:
        await asyncio.sleep(seconds)
        return False
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        return True
    except asyncio.TimeoutError:
        return False


__all__ = ["sleep_or_stop"]
