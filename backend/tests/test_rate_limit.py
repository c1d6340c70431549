from concurrent.futures import ThreadPoolExecutor

from vendor_portal.decisions import RejectionReason
from vendor_portal.rate_limit import (
    BoundedKeyedTracker,
    SlidingWindowLimiter,
    SubmissionRateLimiter,
    WindowPolicy,
)

HOUR = 60 * 60
DAY = 24 * HOUR
T0 = 1_700_000_000.0


def _limiter(capacity: int = 1000) -> SubmissionRateLimiter:
    return SubmissionRateLimiter(
        address_policy=WindowPolicy(window=HOUR, max_attempts=3, block_duration=HOUR),
        identity_policy=WindowPolicy(window=DAY, max_attempts=1),
        capacity=capacity,
    )


def test_sliding_window_limiter_rejects_after_max_events():
    limiter = SlidingWindowLimiter()

    assert limiter.allow("http:1.2.3.4", 2, 60, now=T0)
    assert limiter.allow("http:1.2.3.4", 2, 60, now=T0 + 1)
    assert not limiter.allow("http:1.2.3.4", 2, 60, now=T0 + 2)
    assert limiter.allow("http:5.6.7.8", 2, 60, now=T0 + 2)
    assert limiter.allow("http:1.2.3.4", 2, 60, now=T0 + 61)


def test_sliding_window_limiter_prune_drops_idle_keys():
    limiter = SlidingWindowLimiter()
    limiter.allow("a", 5, 60, now=T0)
    limiter.allow("b", 5, 60, now=T0 + 50)

    assert limiter.prune(60, now=T0 + 100) == 1
    assert len(limiter) == 1


def test_nth_attempt_allowed_and_next_one_blocks():
    tracker = BoundedKeyedTracker("address", capacity=10)

    for offset in range(3):
        verdict = tracker.record_and_evaluate("10.0.0.1", T0 + offset, HOUR, 3, HOUR)
        assert verdict.allowed

    verdict = tracker.record_and_evaluate("10.0.0.1", T0 + 3, HOUR, 3, HOUR)
    assert not verdict.allowed
    assert verdict.is_new_block
    assert verdict.retry_after_seconds == HOUR
    assert tracker.get("10.0.0.1").blocked_until == T0 + 3 + HOUR


def test_blocked_key_rejected_without_counting():
    tracker = BoundedKeyedTracker("address", capacity=10)
    for offset in range(4):
        tracker.record_and_evaluate("k", T0 + offset, HOUR, 3, HOUR)

    count_before = tracker.get("k").count
    verdict = tracker.record_and_evaluate("k", T0 + 600, HOUR, 3, HOUR)

    assert not verdict.allowed
    assert verdict.blocked
    assert verdict.retry_after_seconds == HOUR + 3 - 600
    assert tracker.get("k").count == count_before


def test_block_outlives_counting_window():
    tracker = BoundedKeyedTracker("address", capacity=10)
    window, block = 60, 10 * 60
    for offset in range(3):
        tracker.record_and_evaluate("k", T0 + offset, window, 2, block)

    # Window has elapsed, block has not.
    verdict = tracker.record_and_evaluate("k", T0 + 2 * window, window, 2, block)
    assert not verdict.allowed
    assert verdict.blocked

    assert tracker.cleanup(T0 + 2 * window, window) == 0
    assert "k" in tracker


def test_attempt_after_block_expiry_starts_fresh_window():
    tracker = BoundedKeyedTracker("address", capacity=10)
    window, block = 10 * HOUR, HOUR
    for offset in range(4):
        tracker.record_and_evaluate("k", T0 + offset, window, 3, block)

    after_block = T0 + 3 + block + 1
    verdict = tracker.record_and_evaluate("k", after_block, window, 3, block)

    assert verdict.allowed
    counter = tracker.get("k")
    assert counter.count == 1
    assert counter.first_seen == after_block
    assert counter.blocked_until is None


def test_window_without_block_is_its_own_cooldown():
    tracker = BoundedKeyedTracker("identity", capacity=10)

    assert tracker.record_and_evaluate("x@y.com", T0, DAY, 1).allowed
    verdict = tracker.record_and_evaluate("x@y.com", T0 + HOUR, DAY, 1)

    assert not verdict.allowed
    assert not verdict.is_new_block
    assert verdict.retry_after_seconds == DAY - HOUR
    assert tracker.get("x@y.com").blocked_until is None
    assert tracker.record_and_evaluate("x@y.com", T0 + DAY + 1, DAY, 1).allowed


def test_evict_keeps_most_recent_keys_within_capacity():
    tracker = BoundedKeyedTracker("address", capacity=1000)
    for i in range(150):
        tracker.record_and_evaluate(f"key-{i}", T0 + i, HOUR, 3, HOUR)

    removed = tracker.evict(capacity=100)

    assert removed == 50
    assert len(tracker) <= 100
    remaining = set(tracker.snapshot())
    assert remaining == {f"key-{i}" for i in range(50, 150)}


def test_evict_removes_a_fifth_when_just_over_capacity():
    tracker = BoundedKeyedTracker("address", capacity=10)
    for i in range(11):
        tracker.record_and_evaluate(f"key-{i}", T0 + i, HOUR, 3, HOUR)

    assert tracker.evict() == 2
    assert "key-0" not in tracker
    assert "key-1" not in tracker
    assert "key-2" in tracker


def test_evict_ignores_block_state():
    tracker = BoundedKeyedTracker("address", capacity=1)
    for offset in range(2):
        tracker.record_and_evaluate("blocked", T0 + offset, HOUR, 1, HOUR)
    tracker.record_and_evaluate("fresh", T0 + 10, HOUR, 1, HOUR)

    tracker.evict()

    assert "blocked" not in tracker
    assert "fresh" in tracker


def test_new_keys_never_push_tracker_past_one_pending_insertion():
    tracker = BoundedKeyedTracker("address", capacity=10)
    for i in range(50):
        tracker.record_and_evaluate(f"key-{i}", T0 + i, HOUR, 3, HOUR)
        assert len(tracker) <= 11

    assert "key-49" in tracker
    assert "key-0" not in tracker


def test_concurrent_new_keys_respect_capacity_bound():
    limiter = _limiter(capacity=10)

    def submit(i: int) -> None:
        limiter.evaluate(f"10.1.{i // 256}.{i % 256}", f"user{i}@example.com", T0 + i)

    with ThreadPoolExecutor(max_workers=16) as pool:
        list(pool.map(submit, range(400)))

    assert len(limiter.address_tracker) <= 11
    assert len(limiter.identity_tracker) <= 11


def test_evict_is_noop_within_capacity():
    tracker = BoundedKeyedTracker("address", capacity=5)
    tracker.record_and_evaluate("a", T0, HOUR, 3, HOUR)
    assert tracker.evict() == 0
    assert len(tracker) == 1


def test_cleanup_removes_only_expired_counters():
    tracker = BoundedKeyedTracker("address", capacity=10)
    tracker.record_and_evaluate("old", T0, HOUR, 3, HOUR)
    tracker.record_and_evaluate("new", T0 + HOUR, HOUR, 3, HOUR)

    assert tracker.cleanup(T0 + HOUR + 1, HOUR) == 1
    assert "old" not in tracker
    assert "new" in tracker


def test_get_returns_detached_copy():
    tracker = BoundedKeyedTracker("address", capacity=10)
    tracker.record_and_evaluate("k", T0, HOUR, 3, HOUR)

    snapshot = tracker.get("k")
    snapshot.count = 99

    assert tracker.get("k").count == 1
    assert tracker.get("missing") is None


def test_concurrent_attempts_for_one_key_never_exceed_threshold():
    tracker = BoundedKeyedTracker("address", capacity=10)

    def attempt(i: int) -> bool:
        return tracker.record_and_evaluate("shared", T0 + i * 0.001, HOUR, 3, HOUR).allowed

    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(attempt, range(200)))

    assert sum(results) == 3


def test_address_scenario_block_and_recovery():
    limiter = _limiter()
    for i in range(3):
        decision = limiter.evaluate("A", f"user{i}@example.com", T0 + i * 60)
        assert decision.allowed

    fourth_at = T0 + 180
    decision = limiter.evaluate("A", "user3@example.com", fourth_at)
    assert not decision.allowed
    assert decision.reason is RejectionReason.ADDRESS_RATE_LIMITED
    assert decision.retry_after_seconds == 3600

    decision = limiter.evaluate("A", "user4@example.com", fourth_at + 60)
    assert decision.reason is RejectionReason.ADDRESS_BLOCKED

    decision = limiter.evaluate("A", "user5@example.com", fourth_at + HOUR + 60)
    assert decision.allowed


def test_address_rejection_does_not_consume_identity():
    limiter = _limiter()
    for i in range(3):
        limiter.evaluate("A", f"user{i}@example.com", T0 + i)

    limiter.evaluate("A", "late@example.com", T0 + 10)

    assert limiter.identity_tracker.get("late@example.com") is None
    assert limiter.evaluate("B", "late@example.com", T0 + 20).allowed


def test_identity_rejection_still_spends_address_attempt():
    limiter = _limiter()
    assert limiter.evaluate("A", "Same@Example.com", T0).allowed

    decision = limiter.evaluate("B", "same@example.com", T0 + 60)

    assert decision.reason is RejectionReason.IDENTITY_RATE_LIMITED
    assert decision.retry_after_seconds == 24 * HOUR - 60
    assert limiter.address_tracker.get("B").count == 1


def test_missing_address_pools_into_unknown_bucket():
    limiter = _limiter()
    for i in range(3):
        assert limiter.evaluate(None if i % 2 else "", f"u{i}@example.com", T0 + i).allowed

    decision = limiter.evaluate("   ", "u9@example.com", T0 + 5)
    assert decision.reason is RejectionReason.ADDRESS_RATE_LIMITED
    assert limiter.address_tracker.get("unknown").count == 4


def test_evaluate_evicts_before_admitting_new_keys():
    limiter = _limiter(capacity=5)
    for i in range(20):
        limiter.evaluate(f"10.0.0.{i}", None, T0 + i)
        assert len(limiter.address_tracker) <= 6

    assert "10.0.0.19" in limiter.address_tracker


def test_periodic_cleanup_runs_every_n_evaluations():
    limiter = SubmissionRateLimiter(
        address_policy=WindowPolicy(window=60, max_attempts=3, block_duration=60),
        identity_policy=WindowPolicy(window=60, max_attempts=1),
        capacity=100,
        cleanup_every=2,
    )
    limiter.evaluate("old", None, T0)
    limiter.evaluate("new", None, T0 + 120)

    assert "old" not in limiter.address_tracker
    assert "new" in limiter.address_tracker


def test_blocked_count_tracks_live_blocks():
    tracker = BoundedKeyedTracker("address", capacity=10)
    for offset in range(2):
        tracker.record_and_evaluate("blocked", T0 + offset, HOUR, 1, HOUR)
    tracker.record_and_evaluate("fresh", T0 + 2, HOUR, 1, HOUR)

    assert tracker.blocked_count(T0 + 10) == 1
    assert tracker.blocked_count(T0 + 1 + HOUR + 1) == 0
