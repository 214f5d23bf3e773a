"""
Pydantic schemas for the advisory API.

Request bodies are validated here and converted to the dataclasses the
services work with; responses are the services' own ``to_dict()`` output,
so only the small fixed-shape ones get a response model.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from agroforecast.ml.domain.energy import EquipmentUsage
from agroforecast.ml.models import Location, WeatherObservation
from agroforecast.orchestration.requests import (
    AnalysisScope,
    ComprehensiveAnalysisRequest,
    FarmProfile,
)


# ---------------------------------------------------------------------------
# Shared inputs
# ---------------------------------------------------------------------------

class ObservationInput(BaseModel):
    """One weather reading."""
    temperature: float = Field(..., ge=-60, le=60, description="Air temperature (°C)", examples=[27.5])
    humidity: float = Field(..., ge=0, le=100, description="Relative humidity (%)", examples=[68.0])
    rainfall: float = Field(0.0, ge=0, description="Rainfall (mm)", examples=[2.4])
    pressure: float = Field(1013.0, ge=800, le=1100, description="Surface pressure (hPa)")
    recorded_at: Optional[datetime] = Field(
        None, description="Observation time (defaults to now, UTC)",
    )
    wind_speed: Optional[float] = Field(None, ge=0, description="Wind speed (km/h)")
    cloud_cover: Optional[float] = Field(None, ge=0, le=100, description="Cloud cover (%)")
    solar_radiation: Optional[float] = Field(None, ge=0, description="Shortwave radiation (W/m²)")

    def to_observation(self) -> WeatherObservation:
        recorded_at = self.recorded_at or datetime.now(timezone.utc)
        if recorded_at.tzinfo is None:
            recorded_at = recorded_at.replace(tzinfo=timezone.utc)
        return WeatherObservation(
            temperature=self.temperature,
            humidity=self.humidity,
            rainfall=self.rainfall,
            pressure=self.pressure,
            recorded_at=recorded_at,
            wind_speed=self.wind_speed,
            cloud_cover=self.cloud_cover,
            solar_radiation=self.solar_radiation,
        )


class LocationInput(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, examples=["Pune"])
    latitude: Optional[float] = Field(None, ge=-90.0, le=90.0, examples=[18.52])
    longitude: Optional[float] = Field(None, ge=-180.0, le=180.0, examples=[73.86])

    @field_validator("name")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v

    def to_location(self) -> Location:
        return Location(name=self.name, latitude=self.latitude, longitude=self.longitude)


# ---------------------------------------------------------------------------
# Weather / training
# ---------------------------------------------------------------------------

class WeatherPredictRequest(BaseModel):
    """Body for POST /api/v1/weather/predict."""
    location: str = Field(..., min_length=1, examples=["Pune"])
    horizon_days: int = Field(7, description="Forecast days (1 to MAX_FORECAST_HORIZON_DAYS)")
    current_observation: Optional[ObservationInput] = Field(
        None, description="Latest reading; when omitted the stored history (and provider, if enabled) is used",
    )


class ObservationBatch(BaseModel):
    observations: List[ObservationInput] = Field(..., min_length=1, max_length=5000)


class TrainRequest(BaseModel):
    """Body for POST /api/v1/models/train: one observation batch per location."""
    batches: List[List[ObservationInput]] = Field(..., min_length=1)

    def to_batches(self) -> List[List[WeatherObservation]]:
        return [[o.to_observation() for o in batch] for batch in self.batches]


# ---------------------------------------------------------------------------
# Comprehensive analysis
# ---------------------------------------------------------------------------

class EquipmentInput(BaseModel):
    equipment_id: str = Field(..., examples=["pump-1"])
    power_rating: float = Field(..., gt=0, description="kW", examples=[5.5])
    priority: str = Field("medium", pattern="^(low|medium|high|critical)$")
    current_status: str = Field("off", pattern="^(on|off)$")
    flexible_timing: bool = True


class FarmProfileInput(BaseModel):
    size: float = Field(1.0, ge=0, description="Farm size (acres)")
    soil_type: str = Field("loam", examples=["clay"])
    current_crops: List[str] = Field(default_factory=list, examples=[["rice"]])
    equipment: List[EquipmentInput] = Field(default_factory=list)


class ComprehensiveRequestIn(BaseModel):
    """Body for POST /api/v1/analysis/comprehensive."""
    location: LocationInput
    current_weather: ObservationInput
    farm_profile: FarmProfileInput = Field(default_factory=FarmProfileInput)
    analysis_type: AnalysisScope = AnalysisScope.FULL
    time_horizon: int = Field(7, ge=1, le=14)

    def to_request(self) -> ComprehensiveAnalysisRequest:
        farm = self.farm_profile
        return ComprehensiveAnalysisRequest(
            location=self.location.to_location(),
            current_weather=self.current_weather.to_observation(),
            farm_profile=FarmProfile(
                size=farm.size,
                soil_type=farm.soil_type,
                current_crops=list(farm.current_crops),
                equipment=[EquipmentUsage(**e.model_dump()) for e in farm.equipment],
            ),
            analysis_type=self.analysis_type,
            time_horizon=self.time_horizon,
        )


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class LocationOut(BaseModel):
    id: Optional[int] = None
    name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @classmethod
    def from_location(cls, location: Location) -> "LocationOut":
        return cls(
            id=location.id, name=location.name,
            latitude=location.latitude, longitude=location.longitude,
        )


class ObservationsStored(BaseModel):
    location: str
    stored: int


class TrainResponse(BaseModel):
    status: str = "trained"
    report: Dict[str, Any]
