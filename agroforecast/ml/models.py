"""
Data structures shared by the forecasting, alert and orchestration layers.

═══════════════════════════════════════════════════════════════════════════
INVARIANTS
═══════════════════════════════════════════════════════════════════════════

    WeatherObservation   immutable, produced by ingestion
    WeatherPrediction    day 1..H with no gaps, confidence in [0, 1]
    AlertPrediction      only entries above the probability floor survive
    AlertSeverity        ordered LOW < MEDIUM < HIGH < CRITICAL

═══════════════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum, IntEnum
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class HazardType(str, Enum):
    FLOOD = "FLOOD"
    HEAT = "HEAT"
    COLD = "COLD"
    DROUGHT = "DROUGHT"
    STORM = "STORM"
    FROST = "FROST"
    HAIL = "HAIL"


class AlertSeverity(IntEnum):
    """Ordered so that severities compare numerically."""
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class ForecastSource(str, Enum):
    HYBRID = "Hybrid"  # ensemble of time-series + neural model
    ML = "ML"          # trend-extrapolation fallback


# ═══════════════════════════════════════════════════════════════════════════
# Observations & predictions
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Location:
    name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    id: Optional[int] = None

    @property
    def key(self) -> str:
        return self.name.strip().lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


@dataclass(frozen=True)
class WeatherObservation:
    """One daily weather reading."""

    temperature: float      # °C
    humidity: float         # %
    rainfall: float         # mm
    pressure: float         # hPa
    recorded_at: datetime
    wind_speed: Optional[float] = None       # km/h
    cloud_cover: Optional[float] = None      # %
    solar_radiation: Optional[float] = None  # W/m²

    def as_row(self) -> List[float]:
        """Feature row used by the neural model: [T, H, R, P]."""
        return [self.temperature, self.humidity, self.rainfall, self.pressure]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "humidity": self.humidity,
            "rainfall": self.rainfall,
            "pressure": self.pressure,
            "recorded_at": self.recorded_at.isoformat(),
            "wind_speed": self.wind_speed,
            "cloud_cover": self.cloud_cover,
            "solar_radiation": self.solar_radiation,
        }


@dataclass
class WeatherPrediction:
    day: int
    date: date
    temperature: float
    humidity: float
    rainfall: float
    confidence: float
    source: ForecastSource = ForecastSource.HYBRID
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "day": self.day,
            "date": self.date.isoformat(),
            "temperature": self.temperature,
            "humidity": self.humidity,
            "rainfall": self.rainfall,
            "confidence": round(self.confidence, 4),
            "source": self.source.value,
            "metadata": self.metadata,
        }


@dataclass
class AlertPrediction:
    hazard_type: HazardType
    severity: AlertSeverity
    probability: float
    expected_time: datetime
    duration_hours: float
    recommended_actions: List[str]
    confidence: float
    affected_areas: List[str] = field(default_factory=lambda: ["Current Location"])
    forecast_day: Optional[int] = None  # None = current conditions

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hazard_type": self.hazard_type.value,
            "severity": self.severity.name,
            "probability": round(self.probability, 4),
            "expected_time": self.expected_time.isoformat(),
            "duration_hours": round(self.duration_hours, 1),
            "recommended_actions": list(self.recommended_actions),
            "confidence": round(self.confidence, 4),
            "affected_areas": list(self.affected_areas),
            "forecast_day": self.forecast_day,
        }


@dataclass
class ModelPredictionResult(Generic[T]):
    """Envelope returned by every prediction service."""

    predictions: List[T]
    confidence: float
    model_type: str
    generated_at: datetime
    valid_until: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "predictions": [
                p.to_dict() if hasattr(p, "to_dict") else p for p in self.predictions
            ],
            "confidence": round(self.confidence, 4),
            "model_type": self.model_type,
            "generated_at": self.generated_at.isoformat(),
            "valid_until": self.valid_until.isoformat(),
            "metadata": self.metadata,
        }


@dataclass
class ModelMetrics:
    """Training/usage counters kept by each base model."""

    trained_samples: int = 0
    last_trained: Optional[datetime] = None
    average_accuracy: float = 0.0
    predictions_count: int = 0
    last_prediction: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trained_samples": self.trained_samples,
            "last_trained": self.last_trained.isoformat() if self.last_trained else None,
            "average_accuracy": round(self.average_accuracy, 4),
            "predictions_count": self.predictions_count,
            "last_prediction": self.last_prediction.isoformat() if self.last_prediction else None,
        }
