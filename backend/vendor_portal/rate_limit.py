from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, replace
import logging
import math
from threading import Lock
import time
from typing import Optional

from .decisions import Decision, RejectionReason

logger = logging.getLogger("vendor_portal.rate_limit")

UNKNOWN_ADDRESS = "unknown"
EVICTION_FRACTION = 0.2


class SlidingWindowLimiter:
    """Coarse per-key request limiter used in front of every route."""

    def __init__(self) -> None:
        self._events: dict[str, deque[float]] = defaultdict(deque)
        self._lock = Lock()

    def allow(self, key: str, max_events: int, period_seconds: int, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        window_start = now - period_seconds
        with self._lock:
            events = self._events[key]
            while events and events[0] < window_start:
                events.popleft()

            if len(events) >= max_events:
                return False

            events.append(now)
            return True

    def prune(self, period_seconds: int, now: Optional[float] = None) -> int:
        """Drop keys with no events inside the window."""
        now = time.time() if now is None else now
        window_start = now - period_seconds
        removed = 0
        with self._lock:
            for key in list(self._events):
                events = self._events[key]
                while events and events[0] < window_start:
                    events.popleft()
                if not events:
                    del self._events[key]
                    removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._events)


@dataclass
class WindowedCounter:
    count: int
    first_seen: float
    last_seen: float
    blocked_until: Optional[float] = None

    def is_blocked(self, now: float) -> bool:
        return self.blocked_until is not None and self.blocked_until > now

    def is_expired(self, now: float, window: float) -> bool:
        # A live block keeps the counter around after its window has passed.
        if now - self.first_seen <= window:
            return False
        return self.blocked_until is None or now > self.blocked_until

    def reset(self, now: float) -> None:
        self.count = 0
        self.first_seen = now
        self.blocked_until = None


@dataclass(frozen=True)
class TrackerVerdict:
    allowed: bool
    retry_after_seconds: Optional[int] = None
    is_new_block: bool = False
    blocked: bool = False


class BoundedKeyedTracker:
    """Windowed counters for one tracking dimension, bounded by ``capacity``.

    Every public method takes the tracker lock for the whole read-modify-write,
    so concurrent events for the same key are serialized.
    """

    def __init__(self, name: str, capacity: int) -> None:
        self.name = name
        self.capacity = capacity
        self._counters: dict[str, WindowedCounter] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        return len(self._counters)

    def __contains__(self, key: str) -> bool:
        return key in self._counters

    def get(self, key: str) -> Optional[WindowedCounter]:
        with self._lock:
            counter = self._counters.get(key)
            return replace(counter) if counter is not None else None

    def record_and_evaluate(
        self,
        key: str,
        now: float,
        window: float,
        max_attempts: int,
        block_duration: Optional[float] = None,
    ) -> TrackerVerdict:
        evicted = 0
        with self._lock:
            counter = self._counters.get(key)
            if counter is None:
                # A new key only lands once the tracker is back within capacity.
                evicted = self._evict_locked(self.capacity)
                counter = WindowedCounter(count=0, first_seen=now, last_seen=now)
                self._counters[key] = counter
            verdict = self._apply_attempt(counter, now, window, max_attempts, block_duration)

        if evicted:
            self._log_eviction(evicted)
        return verdict

    @staticmethod
    def _apply_attempt(
        counter: WindowedCounter,
        now: float,
        window: float,
        max_attempts: int,
        block_duration: Optional[float],
    ) -> TrackerVerdict:
        if counter.is_blocked(now):
            return TrackerVerdict(
                allowed=False,
                retry_after_seconds=math.ceil(counter.blocked_until - now),
                blocked=True,
            )

        if now - counter.first_seen > window or counter.blocked_until is not None:
            counter.reset(now)

        counter.count += 1
        if counter.count > max_attempts:
            if block_duration:
                counter.blocked_until = now + block_duration
                return TrackerVerdict(
                    allowed=False,
                    retry_after_seconds=math.ceil(block_duration),
                    is_new_block=True,
                )
            # Without a block the rest of the window is the cooldown.
            remaining = counter.first_seen + window - now
            return TrackerVerdict(allowed=False, retry_after_seconds=max(1, math.ceil(remaining)))

        counter.last_seen = now
        return TrackerVerdict(allowed=True)

    def evict(self, capacity: Optional[int] = None) -> int:
        """Drop the least recently seen entries once over capacity, blocked or not."""
        limit = self.capacity if capacity is None else capacity
        with self._lock:
            removed = self._evict_locked(limit)
        if removed:
            self._log_eviction(removed)
        return removed

    def _evict_locked(self, limit: int) -> int:
        size = len(self._counters)
        if size <= limit:
            return 0

        to_remove = max(max(1, int(size * EVICTION_FRACTION)), size - limit)
        oldest = sorted(self._counters.items(), key=lambda item: item[1].last_seen)[:to_remove]
        for key, _counter in oldest:
            del self._counters[key]
        return len(oldest)

    def _log_eviction(self, removed: int) -> None:
        logger.warning(
            "Tracker over capacity, evicted least recently seen keys",
            extra={"event": f"{self.name}_tracker_evicted", "removed": removed},
        )

    def cleanup(self, now: float, window: float) -> int:
        with self._lock:
            expired = [key for key, counter in self._counters.items() if counter.is_expired(now, window)]
            for key in expired:
                del self._counters[key]
        return len(expired)

    def blocked_count(self, now: float) -> int:
        with self._lock:
            return sum(1 for counter in self._counters.values() if counter.is_blocked(now))

    def snapshot(self) -> dict[str, WindowedCounter]:
        with self._lock:
            return {key: replace(counter) for key, counter in self._counters.items()}


@dataclass(frozen=True)
class WindowPolicy:
    window: float
    max_attempts: int
    block_duration: Optional[float] = None


def normalize_address(address: Optional[str]) -> str:
    candidate = (address or "").strip()
    return candidate or UNKNOWN_ADDRESS


def normalize_identity(identity: Optional[str]) -> Optional[str]:
    candidate = (identity or "").strip().lower()
    return candidate or None


class SubmissionRateLimiter:
    """Per-address and per-identity admission limits for vendor submissions."""

    def __init__(
        self,
        address_policy: WindowPolicy,
        identity_policy: WindowPolicy,
        capacity: int,
        cleanup_every: int = 256,
    ) -> None:
        self.address_policy = address_policy
        self.identity_policy = identity_policy
        self.address_tracker = BoundedKeyedTracker("address", capacity)
        self.identity_tracker = BoundedKeyedTracker("identity", capacity)
        self.cleanup_every = cleanup_every
        self._ops = 0
        self._ops_lock = Lock()

    def _housekeeping(self, now: float) -> None:
        self.address_tracker.evict()
        self.identity_tracker.evict()

        with self._ops_lock:
            self._ops += 1
            due = self.cleanup_every > 0 and self._ops % self.cleanup_every == 0
        if due:
            self.cleanup(now)

    def evaluate(self, address: Optional[str], identity: Optional[str], now: float) -> Decision:
        self._housekeeping(now)

        address_key = normalize_address(address)
        policy = self.address_policy
        verdict = self.address_tracker.record_and_evaluate(
            address_key, now, policy.window, policy.max_attempts, policy.block_duration
        )
        if not verdict.allowed:
            if verdict.is_new_block:
                logger.warning(
                    "Address blocked after too many submissions",
                    extra={"event": "address_blocked", "ip": address_key},
                )
            reason = RejectionReason.ADDRESS_BLOCKED if verdict.blocked else RejectionReason.ADDRESS_RATE_LIMITED
            return Decision.reject(reason, retry_after_seconds=verdict.retry_after_seconds)

        # The address attempt above stays committed even if the identity check fails.
        identity_key = normalize_identity(identity)
        if identity_key is not None:
            policy = self.identity_policy
            verdict = self.identity_tracker.record_and_evaluate(
                identity_key, now, policy.window, policy.max_attempts, policy.block_duration
            )
            if not verdict.allowed:
                return Decision.reject(
                    RejectionReason.IDENTITY_RATE_LIMITED,
                    retry_after_seconds=verdict.retry_after_seconds,
                )

        return Decision.allow()

    def cleanup(self, now: float) -> dict[str, int]:
        return {
            "address": self.address_tracker.cleanup(now, self.address_policy.window),
            "identity": self.identity_tracker.cleanup(now, self.identity_policy.window),
        }

    def evict(self) -> dict[str, int]:
        return {
            "address": self.address_tracker.evict(),
            "identity": self.identity_tracker.evict(),
        }
