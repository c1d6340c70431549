from __future__ import annotations

import os
from dataclasses import dataclass


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _as_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    env: str
    port: int
    cors_origins: list[str]
    log_level: str
    rate_limit_requests_per_window: int
    rate_limit_window_seconds: int
    address_window_seconds: float
    address_max_attempts: int
    address_block_seconds: float
    identity_window_seconds: float
    identity_max_attempts: int
    duplicate_window_seconds: float
    history_retention_seconds: float
    tracker_capacity: int
    max_history: int
    cleanup_every: int
    maintenance_interval_seconds: float
    enable_debug_stats: bool
    allow_debug_stats_in_production: bool
    enable_prometheus_metrics: bool
    max_upload_files: int
    max_upload_bytes: int

    @property
    def is_production(self) -> bool:
        return self.env.lower() not in {"development", "dev", "test", "testing"}

    @property
    def debug_stats_enabled(self) -> bool:
        return self.enable_debug_stats or not self.is_production

    def validate(self) -> None:
        """Raise early on dangerous mis-configurations in non-dev environments."""
        if self.is_production and self.enable_debug_stats and not self.allow_debug_stats_in_production:
            raise RuntimeError(
                "ENABLE_DEBUG_STATS exposes admission state and must not be set in production. "
                "Set ALLOW_DEBUG_STATS_IN_PRODUCTION=1 to override explicitly."
            )
        if self.address_max_attempts < 1 or self.identity_max_attempts < 1:
            raise RuntimeError("ADDRESS_MAX_ATTEMPTS and IDENTITY_MAX_ATTEMPTS must be at least 1")


settings = Settings(
    env=os.getenv("ENV", "development"),
    port=_as_int(os.getenv("PORT"), 5000),
    cors_origins=[
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "*").split(",")
        if origin.strip()
    ],
    log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
    rate_limit_requests_per_window=max(1, _as_int(os.getenv("RATE_LIMIT_REQUESTS_PER_WINDOW"), 100)),
    rate_limit_window_seconds=max(1, _as_int(os.getenv("RATE_LIMIT_WINDOW_SECONDS"), 15 * 60)),
    address_window_seconds=max(1.0, _as_float(os.getenv("ADDRESS_WINDOW_SECONDS"), 60 * 60)),
    address_max_attempts=_as_int(os.getenv("ADDRESS_MAX_ATTEMPTS"), 3),
    address_block_seconds=max(0.0, _as_float(os.getenv("ADDRESS_BLOCK_SECONDS"), 60 * 60)),
    identity_window_seconds=max(1.0, _as_float(os.getenv("IDENTITY_WINDOW_SECONDS"), 24 * 60 * 60)),
    identity_max_attempts=_as_int(os.getenv("IDENTITY_MAX_ATTEMPTS"), 1),
    duplicate_window_seconds=max(1.0, _as_float(os.getenv("DUPLICATE_WINDOW_SECONDS"), 24 * 60 * 60)),
    history_retention_seconds=max(1.0, _as_float(os.getenv("HISTORY_RETENTION_SECONDS"), 30 * 24 * 60 * 60)),
    tracker_capacity=max(1, _as_int(os.getenv("TRACKER_CAPACITY"), 10_000)),
    max_history=max(0, _as_int(os.getenv("MAX_HISTORY"), 50_000)),
    cleanup_every=max(0, _as_int(os.getenv("CLEANUP_EVERY"), 256)),
    maintenance_interval_seconds=max(1.0, _as_float(os.getenv("MAINTENANCE_INTERVAL_SECONDS"), 5 * 60)),
    enable_debug_stats=_as_bool(os.getenv("ENABLE_DEBUG_STATS"), False),
    allow_debug_stats_in_production=_as_bool(os.getenv("ALLOW_DEBUG_STATS_IN_PRODUCTION"), False),
    enable_prometheus_metrics=_as_bool(os.getenv("ENABLE_PROMETHEUS_METRICS"), True),
    max_upload_files=max(1, _as_int(os.getenv("MAX_UPLOAD_FILES"), 3)),
    max_upload_bytes=max(1, _as_int(os.getenv("MAX_UPLOAD_BYTES"), 10 * 1024 * 1024)),
)

settings.validate()
