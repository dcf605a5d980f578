"""Process-wide circuit breaker for the classification provider.

One breaker guards every provider call (it is not keyed per lot): a payment
or rate-limit failure on any call stops all traffic until ``open_until``.
The instance is constructed once by the service container and injected into
the classifier; there is no module-level state.
"""
from __future__ import annotations

import enum
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from lots_ingest.config import CIRCUIT_BREAKER
from lots_ingest.utils.logger import get_logger
from lots_ingest.utils.time import utc_now

logger = get_logger(__name__)


class BreakerCause(str, enum.Enum):
    PAYMENT_REQUIRED = "payment_required"
    RATE_LIMITED = "rate_limited"


class CircuitBreakerOpenError(Exception):
    """Raised instead of calling the provider while the breaker is open."""

    def __init__(self, open_until: datetime, cause: BreakerCause | None = None):
        self.open_until = open_until
        self.cause = cause
        reason = cause.value if cause else "open"
        super().__init__(f"Circuit breaker {reason} until {open_until.isoformat()}")


@dataclass(slots=True)
class BreakerState:
    open_until: datetime | None = None
    cause: BreakerCause | None = None
    trips: int = 0


class CircuitBreaker:
    def __init__(
        self,
        *,
        payment_cooldown_seconds: float | None = None,
        rate_limit_cooldown_seconds: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._cooldowns = {
            BreakerCause.PAYMENT_REQUIRED: float(
                payment_cooldown_seconds if payment_cooldown_seconds is not None
                else CIRCUIT_BREAKER["payment_cooldown_seconds"]
            ),
            BreakerCause.RATE_LIMITED: float(
                rate_limit_cooldown_seconds if rate_limit_cooldown_seconds is not None
                else CIRCUIT_BREAKER["rate_limit_cooldown_seconds"]
            ),
        }
        self._clock = clock
        self._lock = threading.Lock()
        self._state = BreakerState()

    def is_open(self) -> bool:
        with self._lock:
            return self._state.open_until is not None and self._clock() < self._state.open_until

    def check(self) -> None:
        """Fail fast with ``CircuitBreakerOpenError`` while inside the cooldown window."""
        with self._lock:
            st = self._state
            if st.open_until is not None and self._clock() < st.open_until:
                raise CircuitBreakerOpenError(st.open_until, st.cause)

    def trip(self, cause: BreakerCause, retry_after: Optional[float] = None) -> datetime:
        """Open the breaker for the cause's cooldown.

        A provider-supplied ``retry_after`` (seconds) replaces the configured
        cooldown. An existing later ``open_until`` is never shortened.
        """
        cooldown = retry_after if retry_after is not None and retry_after > 0 else self._cooldowns[cause]
        with self._lock:
            candidate = self._clock() + timedelta(seconds=cooldown)
            st = self._state
            if st.open_until is None or candidate > st.open_until:
                st.open_until = candidate
                st.cause = cause
            st.trips += 1
            open_until = st.open_until
        logger.warning(
            "Circuit breaker opened",
            cause=cause.value,
            cooldown_seconds=cooldown,
            open_until=open_until.isoformat(),
        )
        return open_until

    def reset(self) -> None:
        with self._lock:
            self._state = BreakerState()

    def snapshot(self) -> dict:
        with self._lock:
            st = self._state
            is_open = st.open_until is not None and self._clock() < st.open_until
            return {
                "state": "OPEN" if is_open else "CLOSED",
                "open_until": st.open_until.isoformat() if st.open_until else None,
                "cause": st.cause.value if st.cause else None,
                "trips": st.trips,
            }


__all__ = ["BreakerCause", "BreakerState", "CircuitBreaker", "CircuitBreakerOpenError"]
