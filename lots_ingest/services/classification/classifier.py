"""Lot classifier guarded by the shared throttle and circuit breaker.

Call path for every provider round-trip::

    breaker.check()          # open -> CircuitBreakerOpenError, no network
    await throttle.acquire() # fixed cadence across all callers
    breaker.check()          # may have opened while we waited
    client.complete(...)     # 402 / 429 trip the breaker and re-raise
                             # as CircuitBreakerOpenError

Categories in every result are cleaned against the whitelist before the
result leaves this module.
"""
from __future__ import annotations

import json
import time
from typing import Any, Mapping, Sequence

from pydantic import ValidationError

from lots_ingest.models.schemas.classification import LotClassificationResult
from lots_ingest.utils import get_logger, log_performance
from lots_ingest.utils.circuit_breaker import BreakerCause, CircuitBreaker, CircuitBreakerOpenError
from lots_ingest.utils.throttle import RequestThrottle

from .categories import clean_categories
from .client import ChatClient
from .errors import ClassifierResponseError, PaymentRequiredError, RateLimitedError
from .prompts import build_batch_messages, build_single_messages

logger = get_logger(__name__)


def strip_code_fences(content: str) -> str:
    return content.strip().replace("```json", "").strip().replace("```", "").strip()


def parse_result(payload: Any) -> LotClassificationResult:
    if not isinstance(payload, dict):
        raise ClassifierResponseError("Classification payload is not a JSON object", content=str(payload)[:500])
    try:
        result = LotClassificationResult.model_validate(payload)
    except ValidationError as e:
        raise ClassifierResponseError(f"Classification payload failed validation: {e.error_count()} errors") from e
    result.categories = clean_categories(result.categories)
    return result


class LotClassifier:
    def __init__(self, client: ChatClient, throttle: RequestThrottle, breaker: CircuitBreaker) -> None:
        self.client = client
        self.throttle = throttle
        self.breaker = breaker

    @property
    def model_version(self) -> str:
        return getattr(self.client, "model", "unknown")

    async def _complete(self, messages: Sequence[dict[str, str]]) -> Any:
        self.breaker.check()
        waited = await self.throttle.acquire()
        self.breaker.check()
        start = time.perf_counter()
        try:
            content = await self.client.complete(messages)
        except PaymentRequiredError as e:
            open_until = self.breaker.trip(BreakerCause.PAYMENT_REQUIRED)
            logger.error("Classifier balance exhausted; provider calls suspended", open_until=open_until.isoformat())
            raise CircuitBreakerOpenError(open_until, BreakerCause.PAYMENT_REQUIRED) from e
        except RateLimitedError as e:
            open_until = self.breaker.trip(BreakerCause.RATE_LIMITED, retry_after=e.retry_after)
            logger.warning("Classifier rate limited", open_until=open_until.isoformat(), retry_after=e.retry_after)
            raise CircuitBreakerOpenError(open_until, BreakerCause.RATE_LIMITED) from e
        log_performance(
            "classifier_call",
            (time.perf_counter() - start) * 1000,
            {"throttle_wait_s": round(waited, 2), "messages": len(messages)},
        )
        cleaned = strip_code_fences(content)
        logger.debug("Classifier response", content=cleaned[:2000])
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError as e:
            logger.error("Classifier returned malformed JSON", content=cleaned[:500])
            raise ClassifierResponseError(f"Malformed JSON from classifier: {e.msg}", content=cleaned) from e

    async def classify(self, lot_text: str) -> LotClassificationResult:
        """Classify one lot. Raises CircuitBreakerOpenError or ClassificationError."""
        payload = await self._complete(build_single_messages(lot_text))
        return parse_result(payload)

    async def classify_batch(self, lots: Mapping[str, str]) -> dict[str, LotClassificationResult]:
        """Classify several lots in one round-trip.

        Returns results keyed by lot id. Ids the provider left out, or whose
        entry fails validation, are absent from the result.
        """
        if not lots:
            return {}
        if len(lots) == 1:
            lot_id, text = next(iter(lots.items()))
            return {lot_id: await self.classify(text)}

        payload = await self._complete(build_batch_messages(lots))
        if not isinstance(payload, dict):
            raise ClassifierResponseError("Batch payload is not a JSON object", content=str(payload)[:500])
        results: dict[str, LotClassificationResult] = {}
        wanted = {str(k).casefold(): k for k in lots}
        for key, value in payload.items():
            lot_id = wanted.get(str(key).strip().casefold())
            if lot_id is None:
                logger.warning("Batch response has unknown lot id", key=key)
                continue
            try:
                results[lot_id] = parse_result(value)
            except ClassifierResponseError as e:
                logger.warning("Batch entry rejected", lot_id=lot_id, error=str(e))
        logger.info("Batch classified", classified=len(results), total=len(lots))
        return results


__all__ = ["LotClassifier", "parse_result", "strip_code_fences"]
