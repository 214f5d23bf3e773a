"""
FastAPI route: weather hazard alerts.

    GET /api/v1/alerts/{location}   — current + 3-day forecast alerts
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from agroforecast.api.deps import get_advisory
from agroforecast.services.advisory import AdvisoryService

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


@router.get("/{location}")
async def get_alerts(
    location: str,
    advisory: AdvisoryService = Depends(get_advisory),
) -> Dict[str, Any]:
    result = await advisory.predict_alerts(location)
    return {"location": location, **result.to_dict()}
