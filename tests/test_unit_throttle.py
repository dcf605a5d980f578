import asyncio

import pytest

from lots_ingest.utils.throttle import RequestThrottle


def test_reservations_are_strictly_spaced():
    now = [100.0]
    throttle = RequestThrottle(3.0, clock=lambda: now[0])
    assert throttle.reserve() == 0
    assert throttle.reserve() == 3.0
    assert throttle.reserve() == 6.0
    # idle long enough: the watermark catches up with the clock
    now[0] = 120.0
    assert throttle.reserve() == 0
    assert throttle.snapshot()["next_allowed_in"] == 3.0


def test_zero_interval_never_waits():
    throttle = RequestThrottle(0)

    async def scenario():
        return [await throttle.acquire() for _ in range(5)]

    assert asyncio.run(scenario()) == [0, 0, 0, 0, 0]


def test_negative_interval_rejected():
    with pytest.raises(ValueError):
        RequestThrottle(-1)
