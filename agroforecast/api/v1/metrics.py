"""
FastAPI route: model performance.

    GET /api/v1/metrics/performance   — per-model call records, cached predictions, status
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from agroforecast.api.deps import get_advisory
from agroforecast.services.advisory import AdvisoryService

router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])


@router.get("/performance")
async def performance(
    request: Request,
    advisory: AdvisoryService = Depends(get_advisory),
) -> Dict[str, Any]:
    metrics = await advisory.get_performance_metrics()
    scheduler = getattr(request.app.state, "scheduler", None)
    metrics["scheduler_jobs"] = [j.to_dict() for j in scheduler.list_jobs()] if scheduler else []
    return metrics
