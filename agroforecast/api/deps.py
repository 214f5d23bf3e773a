"""FastAPI dependencies: the application-owned service instances."""

from __future__ import annotations

from fastapi import Request

from agroforecast.core.errors import ModelNotInitializedError
from agroforecast.services.advisory import AdvisoryService


def get_advisory(request: Request) -> AdvisoryService:
    advisory = getattr(request.app.state, "advisory", None)
    if advisory is None or not advisory.is_initialized:
        raise ModelNotInitializedError("advisory")
    return advisory
