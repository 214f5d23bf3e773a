"""
Per-model call accounting: latency, confidence and success counts.

Records are created on first use and updated in place with running means;
they are never removed. Foreground requests and the background scheduler
share one monitor, which is safe because all updates happen on the event
loop thread between awaits.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CONFIDENCE = 0.8  # used when a result carries no confidence of its own

HEALTHY_SUCCESS_RATE = 0.9
DEGRADED_SUCCESS_RATE = 0.5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def confidence_of(result: Any) -> float:
    value = getattr(result, "confidence", None)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return DEFAULT_CONFIDENCE


@dataclass
class ModelPerformanceRecord:
    total_calls: int = 0
    successful_calls: int = 0
    average_response_time_ms: float = 0.0
    average_confidence: float = 0.0
    last_updated: datetime = field(default_factory=_utcnow)

    @property
    def success_rate(self) -> float:
        return self.successful_calls / self.total_calls if self.total_calls else 0.0

    def update(self, duration_ms: float, confidence: float, success: bool, now: datetime) -> None:
        self.total_calls += 1
        if success:
            self.successful_calls += 1
        n = self.total_calls
        self.average_response_time_ms += (duration_ms - self.average_response_time_ms) / n
        self.average_confidence += (confidence - self.average_confidence) / n
        self.last_updated = now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "success_rate": round(self.success_rate, 4),
            "average_response_time_ms": round(self.average_response_time_ms, 2),
            "average_confidence": round(self.average_confidence, 4),
            "last_updated": self.last_updated.isoformat(),
        }


class PerformanceMonitor:
    """Owned by the orchestrator; one record per model name."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._records: Dict[str, ModelPerformanceRecord] = {}
        self._clock = clock

    def record(self, model: str, *, duration_ms: float, confidence: float, success: bool) -> ModelPerformanceRecord:
        rec = self._records.get(model)
        if rec is None:
            rec = ModelPerformanceRecord(last_updated=self._clock())
            self._records[model] = rec
        rec.update(duration_ms, confidence, success, self._clock())
        return rec

    async def measure(
        self,
        model: str,
        fn: Callable[[], Awaitable[T]],
        *,
        confidence: Optional[Callable[[T], float]] = None,
    ) -> T:
        """
        Await ``fn()`` and record its latency and outcome under ``model``.

        Failures are recorded with zero confidence and re-raised.
        """
        start = time.perf_counter()
        try:
            result = await fn()
        except Exception:
            elapsed = (time.perf_counter() - start) * 1000
            self.record(model, duration_ms=elapsed, confidence=0.0, success=False)
            raise
        elapsed = (time.perf_counter() - start) * 1000
        conf = confidence(result) if confidence else confidence_of(result)
        self.record(model, duration_ms=elapsed, confidence=conf, success=True)
        logger.debug(
            "%s completed in %.1fms", model, elapsed,
            extra={"model": model, "duration_ms": round(elapsed, 2), "confidence": conf},
        )
        return result

    def get(self, model: str) -> Optional[ModelPerformanceRecord]:
        return self._records.get(model)

    def all_metrics(self) -> Dict[str, Dict[str, Any]]:
        return {name: rec.to_dict() for name, rec in self._records.items()}

    def status(self) -> str:
        """healthy / degraded / critical from the worst model success rate."""
        if not self._records:
            return "healthy"
        worst = min(rec.success_rate for rec in self._records.values())
        if worst >= HEALTHY_SUCCESS_RATE:
            return "healthy"
        if worst >= DEGRADED_SUCCESS_RATE:
            return "degraded"
        return "critical"
