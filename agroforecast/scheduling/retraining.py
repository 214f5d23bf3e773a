"""
Background prediction refresh and model retraining.

═══════════════════════════════════════════════════════════════════════════
JOBS
═══════════════════════════════════════════════════════════════════════════

1. PREDICTION REFRESH (every REFRESH_INTERVAL_HOURS, default 6h)
   - First run after INITIAL_REFRESH_DELAY_S
   - Crop recommendations + alerts for the first REFRESH_LOCATION_LIMIT
     locations, one at a time, REFRESH_INTER_LOCATION_DELAY_S apart
   - A failing location is logged and skipped

2. WEATHER RETRAINING (every RETRAIN_INTERVAL_HOURS, default 24h)
   - Last RETRAIN_HISTORY_DAYS of observations per location
   - Locations with fewer than RETRAIN_MIN_OBSERVATIONS readings are dropped
   - No qualifying location → completed no-op

Both ticks (``run_prediction_refresh`` / ``run_retraining``) can be awaited
directly, so tests drive them without timers. ``start()`` only adds the
two sleeping loops around them.

A single process owns the schedule; running several replicas would need
an external lock that is not provided here.
═══════════════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from agroforecast.core.config import Settings, settings as default_settings
from agroforecast.core.logging_config import log_context
from agroforecast.services.advisory import AdvisoryService

logger = logging.getLogger(__name__)

JOB_HISTORY_SIZE = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Job Status Model
# ═══════════════════════════════════════════════════════════════════════════

class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobProgress:
    """Progress tracking for one scheduler tick."""
    task_id: str
    job_type: str
    status: JobStatus
    progress: float  # 0.0 to 1.0
    message: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "job_type": self.job_type,
            "status": self.status.value,
            "progress": round(self.progress * 100, 1),
            "message": self.message,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "elapsed_seconds": (
                (self.completed_at - self.started_at).total_seconds() if self.completed_at else None
            ),
            "error": self.error,
            "result": self.result,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Scheduler
# ═══════════════════════════════════════════════════════════════════════════

class RetrainingScheduler:
    """
    Usage:
        scheduler = RetrainingScheduler(advisory)
        await scheduler.start()
        ...
        await scheduler.stop()

        # or drive one tick directly
        progress = await scheduler.run_retraining()
    """

    def __init__(
        self,
        advisory: AdvisoryService,
        *,
        config: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ):
        cfg = config or default_settings
        self.advisory = advisory
        self.refresh_interval_s = cfg.REFRESH_INTERVAL_HOURS * 3600
        self.retrain_interval_s = cfg.RETRAIN_INTERVAL_HOURS * 3600
        self.initial_delay_s = cfg.INITIAL_REFRESH_DELAY_S
        self.location_limit = cfg.REFRESH_LOCATION_LIMIT
        self.inter_location_delay_s = cfg.REFRESH_INTER_LOCATION_DELAY_S
        self.history_days = cfg.RETRAIN_HISTORY_DAYS
        self.min_observations = cfg.RETRAIN_MIN_OBSERVATIONS
        self._sleep = sleep
        self._clock = clock
        self._jobs: Deque[JobProgress] = deque(maxlen=JOB_HISTORY_SIZE)
        self._tasks: List[asyncio.Task] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def list_jobs(self, job_type: Optional[str] = None) -> List[JobProgress]:
        """Recent jobs, newest first."""
        jobs = [j for j in self._jobs if job_type is None or j.job_type == job_type]
        return sorted(jobs, key=lambda j: j.started_at, reverse=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(
                self._loop("prediction_refresh", self.run_prediction_refresh,
                           self.initial_delay_s, self.refresh_interval_s)
            ),
            asyncio.create_task(
                self._loop("weather_retraining", self.run_retraining,
                           self.retrain_interval_s, self.retrain_interval_s)
            ),
        ]
        logger.info(
            "Scheduler started (refresh every %.1fh, retrain every %.1fh)",
            self.refresh_interval_s / 3600, self.retrain_interval_s / 3600,
        )

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("Scheduler stopped")

    async def _loop(
        self,
        name: str,
        tick: Callable[[], Awaitable[JobProgress]],
        first_delay: float,
        interval: float,
    ) -> None:
        delay = first_delay
        while self._running:
            await self._sleep(delay)
            delay = interval
            try:
                await tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                # ticks record their own failures; this only guards the loop
                logger.exception("Scheduler %s tick crashed", name, extra={"job_type": name})

    def _new_job(self, job_type: str, message: str) -> JobProgress:
        job = JobProgress(
            task_id=str(uuid.uuid4())[:8],
            job_type=job_type,
            status=JobStatus.RUNNING,
            progress=0.0,
            message=message,
            started_at=self._clock(),
        )
        self._jobs.append(job)
        return job

    def _finish(self, job: JobProgress, message: str, result: Dict[str, Any]) -> JobProgress:
        job.status = JobStatus.COMPLETED
        job.progress = 1.0
        job.message = message
        job.result = result
        job.completed_at = self._clock()
        logger.info(message, extra={"job_type": job.job_type, "task_id": job.task_id})
        return job

    def _fail(self, job: JobProgress, error: Exception) -> JobProgress:
        job.status = JobStatus.FAILED
        job.error = str(error)
        job.message = f"{job.job_type} failed"
        job.completed_at = self._clock()
        logger.error(
            "%s job %s failed: %s", job.job_type, job.task_id, error,
            extra={"job_type": job.job_type, "task_id": job.task_id},
        )
        return job

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    async def run_prediction_refresh(self) -> JobProgress:
        job = self._new_job("prediction_refresh", "Refreshing predictions")
        with log_context(task_id=job.task_id, job_type=job.job_type):
            return await self._refresh(job)

    async def _refresh(self, job: JobProgress) -> JobProgress:
        try:
            locations = (await self.advisory.list_locations())[: self.location_limit]
        except Exception as e:
            return self._fail(job, e)

        refreshed: List[str] = []
        failed: Dict[str, str] = {}
        total = len(locations)
        for idx, location in enumerate(locations):
            job.progress = idx / total
            job.message = f"Refreshing {idx + 1}/{total}..."
            try:
                await self.advisory.refresh_location(location)
                refreshed.append(location.name)
            except Exception as e:
                logger.warning(
                    "Prediction refresh failed for %s: %s", location.name, e,
                    extra={"location": location.name, "job_type": job.job_type},
                )
                failed[location.name] = str(e)
            if idx < total - 1:
                await self._sleep(self.inter_location_delay_s)

        return self._finish(
            job,
            f"Refreshed {len(refreshed)}/{total} locations",
            {"refreshed": refreshed, "failed": failed, "total": total},
        )

    async def run_retraining(self) -> JobProgress:
        job = self._new_job("weather_retraining", "Collecting training history")
        with log_context(task_id=job.task_id, job_type=job.job_type):
            return await self._retrain(job)

    async def _retrain(self, job: JobProgress) -> JobProgress:
        try:
            cutoff = self._clock() - timedelta(days=self.history_days)
            batches = []
            skipped: List[str] = []
            for location in await self.advisory.list_locations():
                rows = await self.advisory.observations.latest(location, self.history_days)
                rows = [r for r in rows if r.recorded_at >= cutoff]
                if len(rows) < self.min_observations:
                    skipped.append(location.name)
                    continue
                batches.append(rows)

            if not batches:
                return self._finish(
                    job, "No locations with enough history; retraining skipped",
                    {"trained": False, "locations": 0, "skipped": skipped},
                )

            job.progress = 0.5
            job.message = f"Training on {len(batches)} locations"
            report = await self.advisory.train_models(batches)
        except Exception as e:
            return self._fail(job, e)

        return self._finish(
            job,
            f"Weather ensemble retrained on {report.samples} observations from {len(batches)} locations",
            {"trained": report.any_trained, "locations": len(batches), "skipped": skipped, **report.to_dict()},
        )
