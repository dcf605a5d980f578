import asyncio
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import FakeChatClient
from lots_ingest.services.classification import (
    ClassifierResponseError,
    LotClassifier,
    PaymentRequiredError,
    RateLimitedError,
    clean_categories,
)
from lots_ingest.services.classification.prompts import build_batch_messages, build_single_messages, describe_lot
from lots_ingest.utils.circuit_breaker import BreakerCause, CircuitBreaker, CircuitBreakerOpenError
from lots_ingest.utils.throttle import RequestThrottle

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_classifier(*responses, breaker=None):
    chat = FakeChatClient(responses)
    return LotClassifier(chat, RequestThrottle(0), breaker or CircuitBreaker()), chat


def payload(**overrides):
    body = {"categories": ["Квартира"], "title": "Квартира 45 кв.м", "isSharedOwnership": False}
    body.update(overrides)
    return json.dumps(body, ensure_ascii=False)


# ----------------------------- categories ----------------------------- #

def test_clean_categories_whitelist_and_hint_stripping():
    raw = ["Нежилое помещение (склады)", "квартира", "Летающая тарелка", "Квартира", "", None]
    assert clean_categories(raw) == ["Нежилое помещение", "Квартира"]
    assert clean_categories(None) == []


# ----------------------------- single lot ----------------------------- #

def test_classify_strips_fences_and_cleans_categories():
    content = "```json\n" + payload(
        categories=["Квартира", "Неизвестное"], marketValueMin=1000, isSharedOwnership=None
    ) + "\n```"
    classifier, chat = make_classifier(content)

    result = asyncio.run(classifier.classify("Квартира 45 кв.м"))

    assert result.categories == ["Квартира"]
    assert result.market_value_min == Decimal(1000)
    assert result.is_shared_ownership is False
    assert chat.calls[0] == build_single_messages("Квартира 45 кв.м")


def test_non_string_category_entries_are_dropped():
    classifier, _ = make_classifier(payload(categories=["Квартира", None, 7], title="t"))
    result = asyncio.run(classifier.classify("Квартира"))
    assert result.categories == ["Квартира"]
    assert result.title == "t"


def test_payment_required_trips_breaker_and_blocks_next_call():
    breaker = CircuitBreaker()
    classifier, chat = make_classifier(PaymentRequiredError(), breaker=breaker)

    with pytest.raises(CircuitBreakerOpenError) as exc:
        asyncio.run(classifier.classify("x"))
    assert exc.value.cause is BreakerCause.PAYMENT_REQUIRED
    assert breaker.is_open()

    with pytest.raises(CircuitBreakerOpenError):
        asyncio.run(classifier.classify("y"))
    assert len(chat.calls) == 1


def test_rate_limit_uses_provider_retry_after():
    breaker = CircuitBreaker(clock=lambda: T0)
    classifier, _ = make_classifier(RateLimitedError(retry_after=5), breaker=breaker)

    with pytest.raises(CircuitBreakerOpenError):
        asyncio.run(classifier.classify("x"))

    snap = breaker.snapshot()
    assert snap["state"] == "OPEN"
    assert snap["cause"] == "rate_limited"
    assert snap["open_until"] == (T0 + timedelta(seconds=5)).isoformat()


def test_open_breaker_short_circuits_without_provider_call():
    breaker = CircuitBreaker()
    breaker.trip(BreakerCause.RATE_LIMITED)
    classifier, chat = make_classifier(breaker=breaker)
    with pytest.raises(CircuitBreakerOpenError):
        asyncio.run(classifier.classify("x"))
    assert chat.calls == []


@pytest.mark.parametrize("content", ["not json at all", "[1, 2]", payload(isSharedOwnership="maybe")])
def test_bad_payloads_are_response_errors_and_do_not_trip(content):
    breaker = CircuitBreaker()
    classifier, _ = make_classifier(content, breaker=breaker)
    with pytest.raises(ClassifierResponseError):
        asyncio.run(classifier.classify("x"))
    assert not breaker.is_open()


# ----------------------------- batch ----------------------------- #

def test_batch_matches_ids_case_insensitively_and_drops_invalid_entries():
    response = json.dumps({
        "lot-a ": {"categories": ["Жилой дом"]},
        "LOT-B": {"categories": ["Квартира"], "isSharedOwnership": "maybe"},
        "stranger": {"categories": ["Прочее"]},
    }, ensure_ascii=False)
    classifier, chat = make_classifier(response)
    lots = {"Lot-A": "Дом", "lot-b": "Квартира", "lot-c": "Гараж"}

    results = asyncio.run(classifier.classify_batch(lots))

    assert set(results) == {"Lot-A"}
    assert results["Lot-A"].categories == ["Жилой дом"]
    assert chat.calls[0] == build_batch_messages(lots)


def test_batch_of_one_uses_single_prompt():
    classifier, chat = make_classifier(payload())
    results = asyncio.run(classifier.classify_batch({"only": "Квартира"}))
    assert list(results) == ["only"]
    assert chat.calls[0] == build_single_messages("Квартира")


def test_empty_batch_makes_no_call():
    classifier, chat = make_classifier()
    assert asyncio.run(classifier.classify_batch({})) == {}
    assert chat.calls == []


def test_batch_payload_must_be_object():
    classifier, _ = make_classifier("[]")
    with pytest.raises(ClassifierResponseError):
        asyncio.run(classifier.classify_batch({"a": "x", "b": "y"}))


def test_describe_lot_appends_known_facts():
    text = describe_lot(" Квартира ", start_price=Decimal("100.00"), cadastral_numbers=["50:10:0010203:45", ""])
    assert text.splitlines() == ["Квартира", "Начальная цена: 100.00 руб.", "Кадастровые номера: 50:10:0010203:45"]
