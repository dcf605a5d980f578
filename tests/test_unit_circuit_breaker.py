from datetime import datetime, timedelta, timezone

import pytest

from lots_ingest.utils.circuit_breaker import BreakerCause, CircuitBreaker, CircuitBreakerOpenError


def _clock(start):
    now = [start]
    return now, (lambda: now[0])


def test_breaker_opens_for_cause_cooldown_and_closes_after():
    now, clock = _clock(datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc))
    cb = CircuitBreaker(payment_cooldown_seconds=100, rate_limit_cooldown_seconds=10, clock=clock)
    cb.check()
    assert cb.snapshot()["state"] == "CLOSED"

    open_until = cb.trip(BreakerCause.RATE_LIMITED)
    assert open_until == now[0] + timedelta(seconds=10)
    with pytest.raises(CircuitBreakerOpenError) as exc:
        cb.check()
    assert exc.value.cause is BreakerCause.RATE_LIMITED
    assert exc.value.open_until == open_until

    now[0] += timedelta(seconds=11)
    assert cb.is_open() is False
    cb.check()
    assert cb.snapshot()["state"] == "CLOSED"


def test_breaker_never_shortens_open_window():
    now, clock = _clock(datetime(2025, 1, 1, tzinfo=timezone.utc))
    cb = CircuitBreaker(payment_cooldown_seconds=100, rate_limit_cooldown_seconds=10, clock=clock)
    long_until = cb.trip(BreakerCause.PAYMENT_REQUIRED)
    short_until = cb.trip(BreakerCause.RATE_LIMITED)
    assert short_until == long_until
    snap = cb.snapshot()
    assert snap["cause"] == "payment_required"
    assert snap["trips"] == 2


def test_retry_after_overrides_configured_cooldown():
    now, clock = _clock(datetime(2025, 1, 1, tzinfo=timezone.utc))
    cb = CircuitBreaker(payment_cooldown_seconds=100, rate_limit_cooldown_seconds=10, clock=clock)
    open_until = cb.trip(BreakerCause.RATE_LIMITED, retry_after=500)
    assert open_until == now[0] + timedelta(seconds=500)
    # a non-positive hint falls back to the configured cooldown
    cb.reset()
    assert cb.trip(BreakerCause.RATE_LIMITED, retry_after=0) == now[0] + timedelta(seconds=10)
