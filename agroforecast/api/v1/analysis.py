"""
FastAPI endpoints for combined analyses.

Routes:
    POST /api/v1/analysis/comprehensive         — all domains + integrated insights
    GET  /api/v1/analysis/insights/{location}   — weather + crops + alerts summary
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from agroforecast.api.deps import get_advisory
from agroforecast.api.schemas import ComprehensiveRequestIn
from agroforecast.services.advisory import AdvisoryService

router = APIRouter(prefix="/api/v1/analysis", tags=["analysis"])


@router.post("/comprehensive")
async def comprehensive_analysis(
    body: ComprehensiveRequestIn,
    advisory: AdvisoryService = Depends(get_advisory),
) -> Dict[str, Any]:
    result = await advisory.run_comprehensive_analysis(body.to_request())
    return result.to_dict()


@router.get("/insights/{location}")
async def comprehensive_insights(
    location: str,
    advisory: AdvisoryService = Depends(get_advisory),
) -> Dict[str, Any]:
    return await advisory.comprehensive_insights(location)
