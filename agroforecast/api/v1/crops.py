"""
FastAPI route: crop recommendations.

    GET /api/v1/crops/{location}?season=Kharif|Rabi|Zaid
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from agroforecast.api.deps import get_advisory
from agroforecast.ml.domain.crop import Season
from agroforecast.services.advisory import AdvisoryService

router = APIRouter(prefix="/api/v1/crops", tags=["crops"])


@router.get("/{location}")
async def recommend_crops(
    location: str,
    season: Optional[Season] = Query(None, description="Growing season (inferred from the date when omitted)"),
    advisory: AdvisoryService = Depends(get_advisory),
) -> Dict[str, Any]:
    result = await advisory.recommend_crops(location, season)
    return {"location": location, **result.to_dict()}
