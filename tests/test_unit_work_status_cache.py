from datetime import datetime, timedelta, timezone

from lots_ingest.cache import WorkStatus, WorkStatusCache
from lots_ingest.scrapers.models import BiddingListEntry


def _cache(max_attempts=3, delay=60):
    now = [datetime(2025, 1, 1, tzinfo=timezone.utc)]
    cache = WorkStatusCache(
        "biddings",
        key_fn=lambda e: e.id,
        max_attempts=max_attempts,
        retry_delay=lambda attempt: delay,
        clock=lambda: now[0],
    )
    return cache, now


def test_add_many_is_add_if_absent():
    cache, _ = _cache()
    a, b = BiddingListEntry(id="a"), BiddingListEntry(id="b")
    assert cache.add_many([a, b, a]) == 2
    assert cache.mark_completed("a") is True
    # rediscovery must not reset a completed entry
    assert cache.add_many([BiddingListEntry(id="a", trade_number="T-1")]) == 0
    assert cache.status_of("a") is WorkStatus.COMPLETED
    assert [e.id for e in cache.get_pending()] == ["b"]


def test_mark_completed_is_compare_and_swap():
    cache, _ = _cache()
    cache.add_many([BiddingListEntry(id="a")])
    assert cache.mark_completed("a") is True
    assert cache.mark_completed("a") is False
    assert cache.mark_completed("missing") is False


def test_failure_schedules_retry_then_parks_entry():
    cache, now = _cache(max_attempts=3, delay=60)
    cache.add_many([BiddingListEntry(id="b")])

    assert cache.record_failure("b", "timeout") is WorkStatus.NEW
    assert cache.get_pending() == []
    now[0] += timedelta(seconds=61)
    assert [e.id for e in cache.get_pending()] == ["b"]

    assert cache.record_failure("b", "timeout") is WorkStatus.NEW
    assert cache.record_failure("b", "timeout") is WorkStatus.FAILED
    now[0] += timedelta(days=1)
    assert cache.get_pending() == []
    entry = cache.get_entry("b")
    assert entry.attempts == 3 and entry.last_error == "timeout"

    # terminal entries ignore further transitions
    assert cache.record_failure("b") is None
    assert cache.mark_completed("b") is False
    assert cache.record_failure("unknown") is None


def test_prune_and_snapshot():
    cache, _ = _cache(max_attempts=1)
    cache.add_many([BiddingListEntry(id=i) for i in ("a", "b", "c", "d")])
    cache.mark_completed("a")
    cache.record_failure("b")
    snap = cache.snapshot()
    assert snap["size"] == 4
    assert snap["COMPLETED"] == 1 and snap["FAILED"] == 1 and snap["NEW"] == 2

    assert cache.prune_completed() == 1
    assert cache.prune_failed() == 1
    assert len(cache) == 2
    assert "a" not in cache and "c" in cache
