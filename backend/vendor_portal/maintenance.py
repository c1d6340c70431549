from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .gate import SubmissionGate
from .rate_limit import SlidingWindowLimiter

logger = logging.getLogger("vendor_portal.maintenance")


class MaintenanceLoop:
    """Runs ``SubmissionGate.maintain`` on a fixed period for the lifetime of the app."""

    def __init__(
        self,
        gate: SubmissionGate,
        interval_seconds: float,
        request_limiter: Optional[SlidingWindowLimiter] = None,
        request_window_seconds: int = 0,
    ) -> None:
        self.gate = gate
        self.interval_seconds = interval_seconds
        self.request_limiter = request_limiter
        self.request_window_seconds = request_window_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> None:
        self.gate.maintain()
        if self.request_limiter is not None:
            self.request_limiter.prune(self.request_window_seconds)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.run_once()
            except Exception:
                logger.exception("Admission maintenance failed", extra={"event": "maintenance_failed"})

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(
            "Admission maintenance scheduled",
            extra={"event": "maintenance_started"},
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
