from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import math
from typing import Optional


class RejectionReason(str, Enum):
    """Why a submission was turned away. Values are the wire error codes."""

    ADDRESS_BLOCKED = "IP_BLOCKED"
    ADDRESS_RATE_LIMITED = "IP_RATE_LIMIT_EXCEEDED"
    IDENTITY_RATE_LIMITED = "EMAIL_RATE_LIMIT_EXCEEDED"
    DUPLICATE_EMAIL = "DUPLICATE_EMAIL"
    DUPLICATE_PHONE_COMPANY = "DUPLICATE_PHONE_COMPANY"
    DUPLICATE_IP_COMPANY = "DUPLICATE_IP_COMPANY"
    DUPLICATE_FINGERPRINT = "DUPLICATE_FINGERPRINT"

    @property
    def is_rate_limit(self) -> bool:
        return self in _RATE_LIMIT_REASONS


_RATE_LIMIT_REASONS = frozenset(
    {
        RejectionReason.ADDRESS_BLOCKED,
        RejectionReason.ADDRESS_RATE_LIMITED,
        RejectionReason.IDENTITY_RATE_LIMITED,
    }
)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[RejectionReason] = None
    retry_after_seconds: Optional[int] = None
    matched_record_age: Optional[float] = None
    matched_submission_id: Optional[str] = None
    submission_id: Optional[str] = None

    @classmethod
    def allow(cls, submission_id: Optional[str] = None) -> "Decision":
        return cls(allowed=True, submission_id=submission_id)

    @classmethod
    def reject(
        cls,
        reason: RejectionReason,
        retry_after_seconds: Optional[int] = None,
        matched_record_age: Optional[float] = None,
        matched_submission_id: Optional[str] = None,
    ) -> "Decision":
        return cls(
            allowed=False,
            reason=reason,
            retry_after_seconds=retry_after_seconds,
            matched_record_age=matched_record_age,
            matched_submission_id=matched_submission_id,
        )

    @property
    def matched_age_hours(self) -> Optional[int]:
        if self.matched_record_age is None:
            return None
        return int(max(0.0, self.matched_record_age) // 3600)

    @property
    def retry_after_minutes(self) -> Optional[int]:
        if self.retry_after_seconds is None:
            return None
        return math.ceil(self.retry_after_seconds / 60)
