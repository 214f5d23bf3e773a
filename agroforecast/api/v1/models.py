"""
FastAPI route: on-demand weather ensemble training.

    POST /api/v1/models/train   — one observation batch per location
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from agroforecast.api.deps import get_advisory
from agroforecast.api.schemas import TrainRequest, TrainResponse
from agroforecast.services.advisory import AdvisoryService

router = APIRouter(prefix="/api/v1/models", tags=["models"])


@router.post("/train", response_model=TrainResponse)
async def train_models(
    body: TrainRequest,
    advisory: AdvisoryService = Depends(get_advisory),
) -> TrainResponse:
    report = await advisory.train_models(body.to_batches())
    return TrainResponse(
        status="trained" if report.any_trained else "not_trained",
        report=report.to_dict(),
    )
