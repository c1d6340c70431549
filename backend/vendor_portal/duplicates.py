"""
Duplicate-submission detection over the history of accepted registrations.

Records live in two overlapping windows: a short one (24 h by default) in
which they are matched against new submissions, and a long retention period
(30 days) during which they are only kept for submission statistics.
"""
from __future__ import annotations

import base64
from dataclasses import dataclass
import logging
from threading import Lock
from typing import Optional

from .decisions import RejectionReason
from .rate_limit import normalize_address

logger = logging.getLogger("vendor_portal.duplicates")

DUPLICATE_WINDOW_SECONDS = 24 * 60 * 60
RETENTION_SECONDS = 30 * 24 * 60 * 60


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


def submission_fingerprint(email_lower: str, company_lower: str, phone: str, source_address: str) -> str:
    """Cheap equality key over the identity fields. Not a security primitive."""
    raw = f"{email_lower}-{company_lower}-{phone}-{source_address}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


@dataclass(frozen=True)
class SubmissionCandidate:
    """Identity-bearing fields of an incoming submission, normalized for matching."""

    source_address: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company_name: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "source_address", normalize_address(self.source_address))

    @property
    def email_lower(self) -> str:
        return _clean(self.email).lower()

    @property
    def phone_clean(self) -> str:
        return _clean(self.phone)

    @property
    def company_lower(self) -> str:
        return _clean(self.company_name).lower()

    @property
    def has_identity(self) -> bool:
        return bool(self.email_lower)

    @property
    def fingerprint(self) -> str:
        return submission_fingerprint(self.email_lower, self.company_lower, self.phone_clean, self.source_address)


@dataclass(frozen=True)
class SubmissionRecord:
    email_lower: str
    phone: str
    company_lower: str
    source_address: str
    fingerprint: str
    accepted_at: float
    submission_id: str

    @classmethod
    def from_candidate(cls, candidate: SubmissionCandidate, accepted_at: float, submission_id: str) -> "SubmissionRecord":
        return cls(
            email_lower=candidate.email_lower,
            phone=candidate.phone_clean,
            company_lower=candidate.company_lower,
            source_address=candidate.source_address,
            fingerprint=candidate.fingerprint,
            accepted_at=accepted_at,
            submission_id=submission_id,
        )

    def match_reason(self, candidate: SubmissionCandidate) -> Optional[RejectionReason]:
        email = candidate.email_lower
        company = candidate.company_lower
        phone = candidate.phone_clean

        if email and self.email_lower == email:
            return RejectionReason.DUPLICATE_EMAIL
        if phone and company and self.phone == phone and self.company_lower == company:
            return RejectionReason.DUPLICATE_PHONE_COMPANY
        if company and self.source_address == candidate.source_address and self.company_lower == company:
            return RejectionReason.DUPLICATE_IP_COMPANY
        if self.fingerprint == candidate.fingerprint:
            return RejectionReason.DUPLICATE_FINGERPRINT
        return None


@dataclass(frozen=True)
class DuplicateMatch:
    reason: RejectionReason
    record: SubmissionRecord
    age_seconds: float


@dataclass(frozen=True)
class HistorySummary:
    total: int
    last_24_hours: int
    last_7_days: int
    oldest_accepted_at: Optional[float]
    newest_accepted_at: Optional[float]


class DuplicateSubmissionIndex:
    def __init__(self, max_history: int = 0) -> None:
        self.max_history = max_history
        self._records: list[SubmissionRecord] = []
        self._lock = Lock()

    def __len__(self) -> int:
        return len(self._records)

    def _scan(
        self, candidate: SubmissionCandidate, now: float, window: float
    ) -> Optional[DuplicateMatch]:
        for record in self._records:
            age = now - record.accepted_at
            if age > window:
                continue
            reason = record.match_reason(candidate)
            if reason is not None:
                return DuplicateMatch(reason=reason, record=record, age_seconds=age)
        return None

    def _append(self, record: SubmissionRecord) -> None:
        self._records.append(record)
        if self.max_history and len(self._records) > self.max_history:
            overflow = len(self._records) - self.max_history
            del self._records[:overflow]
            logger.warning(
                "Submission history over capacity, dropped oldest records",
                extra={"event": "history_trimmed", "removed": overflow},
            )

    def find_duplicate(
        self,
        candidate: SubmissionCandidate,
        now: float,
        window: float = DUPLICATE_WINDOW_SECONDS,
    ) -> Optional[DuplicateMatch]:
        with self._lock:
            return self._scan(candidate, now, window)

    def append(self, record: SubmissionRecord) -> None:
        with self._lock:
            self._append(record)

    def check_and_append(
        self,
        candidate: SubmissionCandidate,
        now: float,
        submission_id: str,
        window: float = DUPLICATE_WINDOW_SECONDS,
    ) -> Optional[DuplicateMatch]:
        """Match and record under one lock so equivalent concurrent submissions cannot both pass."""
        with self._lock:
            match = self._scan(candidate, now, window)
            if match is None:
                self._append(SubmissionRecord.from_candidate(candidate, now, submission_id))
            return match

    def sweep(self, now: float, retention: float = RETENTION_SECONDS) -> int:
        with self._lock:
            kept = [record for record in self._records if now - record.accepted_at <= retention]
            removed = len(self._records) - len(kept)
            self._records = kept
        return removed

    def active_count(self, now: float, window: float = DUPLICATE_WINDOW_SECONDS) -> int:
        with self._lock:
            return sum(1 for record in self._records if now - record.accepted_at <= window)

    def recent_records(self, now: float, window: float = DUPLICATE_WINDOW_SECONDS) -> list[SubmissionRecord]:
        with self._lock:
            return [record for record in self._records if now - record.accepted_at <= window]

    def summary(self, now: float) -> HistorySummary:
        with self._lock:
            timestamps = [record.accepted_at for record in self._records]
        return HistorySummary(
            total=len(timestamps),
            last_24_hours=sum(1 for ts in timestamps if now - ts < 24 * 60 * 60),
            last_7_days=sum(1 for ts in timestamps if now - ts < 7 * 24 * 60 * 60),
            oldest_accepted_at=min(timestamps) if timestamps else None,
            newest_accepted_at=max(timestamps) if timestamps else None,
        )
