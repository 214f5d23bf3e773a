"""Comprehensive-analysis request types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Sequence

from agroforecast.ml.domain.energy import EquipmentUsage
from agroforecast.ml.models import Location, WeatherObservation
from agroforecast.orchestration.results import Domain


class AnalysisScope(str, Enum):
    FULL = "full"
    WEATHER = "weather"
    CROPS = "crops"
    SOIL = "soil"
    IRRIGATION = "irrigation"
    ENERGY = "energy"
    ALERTS = "alerts"

    def includes(self, domain: Domain) -> bool:
        return self is AnalysisScope.FULL or self.value == domain.value


@dataclass
class FarmProfile:
    size: float = 1.0  # acres
    soil_type: str = "loam"
    current_crops: List[str] = field(default_factory=list)
    equipment: List[EquipmentUsage] = field(default_factory=list)


@dataclass
class ComprehensiveAnalysisRequest:
    location: Location
    current_weather: WeatherObservation
    farm_profile: FarmProfile = field(default_factory=FarmProfile)
    analysis_type: AnalysisScope = AnalysisScope.FULL
    time_horizon: int = 7
    history: Sequence[WeatherObservation] = ()
