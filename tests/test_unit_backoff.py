from lots_ingest.utils.backoff import compute_backoff_seconds, scrape_retry_delay


def test_backoff_growth_and_cap():
    first = compute_backoff_seconds(1, base=1, factor=2, max_seconds=10, jitter_pct=0.0)
    second = compute_backoff_seconds(2, base=1, factor=2, max_seconds=10, jitter_pct=0.0)
    third = compute_backoff_seconds(3, base=1, factor=2, max_seconds=10, jitter_pct=0.0)
    assert first == 1
    assert second == 2
    assert third == 4
    capped = compute_backoff_seconds(10, base=1, factor=2, max_seconds=5, jitter_pct=0.0)
    assert capped <= 5


def test_backoff_attempt_below_one_is_treated_as_first():
    assert compute_backoff_seconds(0, base=3, factor=2, max_seconds=10, jitter_pct=0.0) == 3


def test_scrape_retry_delay_uses_worker_policy_with_jitter():
    # retry_base_seconds=30, +/-10% jitter
    for _ in range(20):
        assert 27 <= scrape_retry_delay(1) <= 33
    # capped at retry_max_seconds=3600 (+10% jitter at most)
    assert scrape_retry_delay(50) <= 3960
