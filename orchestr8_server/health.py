"""Process health reporting: uptime, resident memory, degradation flag."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Literal, Optional

import psutil
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class HealthStatus(BaseModel):
    status: Literal["healthy", "degraded"]
    uptime_ms: int = Field(..., ge=0)
    memory_mb: float = Field(..., ge=0)


def process_memory_mb() -> float:
    """Resident set size of the current process in MiB."""
    return psutil.Process().memory_info().rss / 1024 / 1024


class HealthMonitor:
    """
    Captures a monotonic start time and reports health on demand.

    ``clock`` and ``memory_probe`` are injectable so tests can drive them.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        memory_probe: Callable[[], float] = process_memory_mb,
    ) -> None:
        self._clock = clock
        self._memory_probe = memory_probe
        self._started = clock()
        self._last_uptime_ms = 0
        self._degraded_reason: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def degraded_reason(self) -> Optional[str]:
        return self._degraded_reason

    def mark_degraded(self, reason: str) -> None:
        if self._degraded_reason != reason:
            logger.warning("Server degraded: %s", reason)
        self._degraded_reason = reason

    def clear_degraded(self) -> None:
        if self._degraded_reason is not None:
            logger.info("Server recovered from: %s", self._degraded_reason)
        self._degraded_reason = None

    def uptime_ms(self) -> int:
        with self._lock:
            elapsed = int((self._clock() - self._started) * 1000)
            # never report less than before, even if the clock misbehaves
            self._last_uptime_ms = max(self._last_uptime_ms, elapsed, 0)
            return self._last_uptime_ms

    def check(self) -> HealthStatus:
        degraded = self._degraded_reason is not None
        try:
            memory_mb = max(float(self._memory_probe()), 0.0)
        except psutil.Error as exc:
            logger.warning("Memory sampling failed: %s", exc)
            memory_mb = 0.0
            degraded = True
        return HealthStatus(
            status="degraded" if degraded else "healthy",
            uptime_ms=self.uptime_ms(),
            memory_mb=round(memory_mb, 3),
        )
