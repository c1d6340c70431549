from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
import logging
import time
from typing import Any, Callable, Optional
import uuid

from .decisions import Decision, RejectionReason
from .duplicates import (
    DUPLICATE_WINDOW_SECONDS,
    RETENTION_SECONDS,
    DuplicateSubmissionIndex,
    HistorySummary,
    SubmissionCandidate,
    SubmissionRecord,
)
from .logging_utils import mask_email
from .metrics import ADMISSION_DECISIONS_TOTAL, HISTORY_SIZE, MAINTENANCE_RUNS_TOTAL, TRACKED_KEYS
from .rate_limit import SubmissionRateLimiter, WindowPolicy

logger = logging.getLogger("vendor_portal.gate")

Clock = Callable[[], float]


def iso_timestamp(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def new_submission_id(now: float) -> str:
    return f"SUB-{int(now * 1000)}-{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True)
class AdmissionConfig:
    address_policy: WindowPolicy = WindowPolicy(window=60 * 60, max_attempts=3, block_duration=60 * 60)
    identity_policy: WindowPolicy = WindowPolicy(window=24 * 60 * 60, max_attempts=1)
    duplicate_window: float = DUPLICATE_WINDOW_SECONDS
    history_retention: float = RETENTION_SECONDS
    tracker_capacity: int = 10_000
    max_history: int = 50_000
    cleanup_every: int = 256

    @classmethod
    def from_settings(cls, settings: Any) -> "AdmissionConfig":
        return cls(
            address_policy=WindowPolicy(
                window=settings.address_window_seconds,
                max_attempts=settings.address_max_attempts,
                block_duration=settings.address_block_seconds or None,
            ),
            identity_policy=WindowPolicy(
                window=settings.identity_window_seconds,
                max_attempts=settings.identity_max_attempts,
            ),
            duplicate_window=settings.duplicate_window_seconds,
            history_retention=settings.history_retention_seconds,
            tracker_capacity=settings.tracker_capacity,
            max_history=settings.max_history,
            cleanup_every=settings.cleanup_every,
        )


@dataclass(frozen=True)
class MaintenanceReport:
    cleaned_addresses: int
    cleaned_identities: int
    evicted_addresses: int
    evicted_identities: int
    swept_records: int

    @property
    def total_removed(self) -> int:
        return (
            self.cleaned_addresses
            + self.cleaned_identities
            + self.evicted_addresses
            + self.evicted_identities
            + self.swept_records
        )


@dataclass(frozen=True)
class GateStats:
    generated_at: str
    address_keys: int
    identity_keys: int
    blocked_addresses: int
    blocked_identities: int
    history_size: int
    active_history: int
    address_entries: list[dict[str, Any]] = field(default_factory=list)
    identity_entries: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class SubmissionGate:
    """Single admission check for vendor submissions.

    Runs the address/identity limiter first and the duplicate index second.
    Only submissions that pass both are appended to the history. ``clock``
    is injectable so tests can drive time explicitly.
    """

    def __init__(self, config: Optional[AdmissionConfig] = None, clock: Clock = time.time) -> None:
        self.config = config or AdmissionConfig()
        self._clock = clock
        self.rate_limiter = SubmissionRateLimiter(
            address_policy=self.config.address_policy,
            identity_policy=self.config.identity_policy,
            capacity=self.config.tracker_capacity,
            cleanup_every=self.config.cleanup_every,
        )
        self.index = DuplicateSubmissionIndex(max_history=self.config.max_history)

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now

    def _record(self, candidate: SubmissionCandidate, decision: Decision) -> None:
        reason = decision.reason.value if decision.reason else "none"
        outcome = "allowed" if decision.allowed else "rejected"
        ADMISSION_DECISIONS_TOTAL.labels(outcome=outcome, reason=reason).inc()
        HISTORY_SIZE.set(len(self.index))
        TRACKED_KEYS.labels(dimension="address").set(len(self.rate_limiter.address_tracker))
        TRACKED_KEYS.labels(dimension="identity").set(len(self.rate_limiter.identity_tracker))

        extra = {
            "event": f"submission_{outcome}",
            "ip": candidate.source_address,
            "email": mask_email(candidate.email_lower) or None,
            "submission_id": decision.submission_id or decision.matched_submission_id,
        }
        if decision.allowed:
            logger.info("Submission admitted", extra=extra)
        else:
            logger.info("Submission rejected", extra={**extra, "reason": reason})

    def admit(self, candidate: SubmissionCandidate, now: Optional[float] = None) -> Decision:
        now = self._now(now)
        window = self.config.duplicate_window

        decision = self.rate_limiter.evaluate(candidate.source_address, candidate.email, now)
        if not decision.allowed:
            if decision.reason is RejectionReason.IDENTITY_RATE_LIMITED:
                # Report the earlier submission when history still explains the identity limit.
                match = self.index.find_duplicate(candidate, now, window)
                if match is not None and match.reason is RejectionReason.DUPLICATE_EMAIL:
                    decision = Decision.reject(
                        RejectionReason.DUPLICATE_EMAIL,
                        retry_after_seconds=decision.retry_after_seconds,
                        matched_record_age=match.age_seconds,
                        matched_submission_id=match.record.submission_id,
                    )
            self._record(candidate, decision)
            return decision

        submission_id = new_submission_id(now)
        if candidate.has_identity:
            match = self.index.check_and_append(candidate, now, submission_id, window)
            if match is not None:
                decision = Decision.reject(
                    match.reason,
                    matched_record_age=match.age_seconds,
                    matched_submission_id=match.record.submission_id,
                )
                self._record(candidate, decision)
                return decision
        else:
            self.index.append(SubmissionRecord.from_candidate(candidate, now, submission_id))

        decision = Decision.allow(submission_id)
        self._record(candidate, decision)
        return decision

    def maintain(self, now: Optional[float] = None) -> MaintenanceReport:
        now = self._now(now)
        cleaned = self.rate_limiter.cleanup(now)
        evicted = self.rate_limiter.evict()
        swept = self.index.sweep(now, self.config.history_retention)

        report = MaintenanceReport(
            cleaned_addresses=cleaned["address"],
            cleaned_identities=cleaned["identity"],
            evicted_addresses=evicted["address"],
            evicted_identities=evicted["identity"],
            swept_records=swept,
        )
        MAINTENANCE_RUNS_TOTAL.inc()
        HISTORY_SIZE.set(len(self.index))
        TRACKED_KEYS.labels(dimension="address").set(len(self.rate_limiter.address_tracker))
        TRACKED_KEYS.labels(dimension="identity").set(len(self.rate_limiter.identity_tracker))
        if report.total_removed:
            logger.info(
                "Admission maintenance completed",
                extra={"event": "admission_maintenance", "removed": report.total_removed},
            )
        return report

    def stats(self, now: Optional[float] = None) -> GateStats:
        now = self._now(now)
        addresses = self.rate_limiter.address_tracker.snapshot()
        identities = self.rate_limiter.identity_tracker.snapshot()

        return GateStats(
            generated_at=iso_timestamp(now),
            address_keys=len(addresses),
            identity_keys=len(identities),
            blocked_addresses=self.rate_limiter.address_tracker.blocked_count(now),
            blocked_identities=self.rate_limiter.identity_tracker.blocked_count(now),
            history_size=len(self.index),
            active_history=self.index.active_count(now, self.config.duplicate_window),
            address_entries=[
                {"ip": key, "count": counter.count, "blocked": counter.is_blocked(now)}
                for key, counter in addresses.items()
            ],
            identity_entries=[
                {"email": mask_email(key), "first_seen": iso_timestamp(counter.first_seen)}
                for key, counter in identities.items()
            ],
        )

    def submission_summary(self, now: Optional[float] = None) -> HistorySummary:
        return self.index.summary(self._now(now))
