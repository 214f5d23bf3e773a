"""
FastAPI endpoints for the location registry and observation history.

Routes:
    POST /api/v1/locations                        — register a location
    GET  /api/v1/locations                        — list registered locations
    POST /api/v1/locations/{name}/observations    — append weather readings
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from agroforecast.api.deps import get_advisory
from agroforecast.api.schemas import LocationInput, LocationOut, ObservationBatch, ObservationsStored
from agroforecast.services.advisory import AdvisoryService

router = APIRouter(prefix="/api/v1/locations", tags=["locations"])


@router.post("", response_model=LocationOut, status_code=201)
async def register_location(
    body: LocationInput,
    advisory: AdvisoryService = Depends(get_advisory),
) -> LocationOut:
    location = await advisory.register_location(body.to_location())
    return LocationOut.from_location(location)


@router.get("", response_model=List[LocationOut])
async def list_locations(advisory: AdvisoryService = Depends(get_advisory)) -> List[LocationOut]:
    return [LocationOut.from_location(loc) for loc in await advisory.list_locations()]


@router.post("/{name}/observations", response_model=ObservationsStored, status_code=201)
async def add_observations(
    name: str,
    body: ObservationBatch,
    advisory: AdvisoryService = Depends(get_advisory),
) -> ObservationsStored:
    stored = await advisory.record_observations(name, [o.to_observation() for o in body.observations])
    return ObservationsStored(location=name, stored=stored)
