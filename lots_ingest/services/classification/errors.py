"""Classifier transport and payload errors.

The provider error surface is split three ways so the circuit breaker can
pick a cooldown: payment required (long), rate limited (short), anything
else (no trip, recorded as a plain failure).
"""
from __future__ import annotations

from typing import Optional


class ClassificationError(Exception):
    """Provider call failed for a reason the breaker does not care about."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class PaymentRequiredError(ClassificationError):
    def __init__(self, message: str = "Provider balance exhausted (402)"):
        super().__init__(message, status=402)


class RateLimitedError(ClassificationError):
    def __init__(self, message: str = "Provider rate limit hit (429)", retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message, status=429)


class ClassifierResponseError(ClassificationError):
    """Provider answered 200 but the payload is empty or not the expected JSON."""

    def __init__(self, message: str, content: Optional[str] = None):
        self.content = content
        super().__init__(message)


__all__ = [
    "ClassificationError",
    "PaymentRequiredError",
    "RateLimitedError",
    "ClassifierResponseError",
]
