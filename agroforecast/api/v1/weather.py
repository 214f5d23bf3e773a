"""
FastAPI endpoint for ensemble weather forecasts.

Routes:
    POST /api/v1/weather/predict    — multi-day forecast for a registered location

Requests without a ``current_observation`` are served from the Redis hot
cache when a fresh copy exists; requests that carry one always recompute.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from agroforecast.api.deps import get_advisory
from agroforecast.api.schemas import WeatherPredictRequest
from agroforecast.core.cache import cache_get, cache_set, forecast_key
from agroforecast.services.advisory import AdvisoryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/weather", tags=["weather"])


@router.post("/predict")
async def predict_weather(
    body: WeatherPredictRequest,
    advisory: AdvisoryService = Depends(get_advisory),
) -> Dict[str, Any]:
    cacheable = body.current_observation is None
    key = forecast_key(body.location, body.horizon_days)
    if cacheable:
        cached = await cache_get(key)
        if cached is not None:
            return {**cached, "cached": True}

    current = body.current_observation.to_observation() if body.current_observation else None
    result = await advisory.predict_weather(body.location, body.horizon_days, current)
    payload = {"location": body.location, **result.to_dict()}

    if cacheable:
        await cache_set(key, payload)
    return {**payload, "cached": False}
