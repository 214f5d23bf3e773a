"""
Irrigation planning from soil moisture and the short-range forecast.

Water demand (mm):
    wd = max(0, 20 + 0.8·T̄ − 0.3·H̄ − 0.5·ΣR) × stage_factor × soil_factor

    T̄, H̄ are forecast means (25 °C / 60 % without a forecast), ΣR the
    forecast rainfall total. The base relation is learnt by a scikit-learn
    LinearRegression fitted on synthetic samples at initialise.

Action policy (moisture in %):
    moisture ≥ 50, or rain expected and moisture ≥ 35 → none
    moisture < 30                                     → heavy
    moisture < 40                                     → medium
    otherwise                                         → light

    light  = min(0.5·wd, 25) mm, 30 min, drip
    medium = min(0.75·wd, 40) mm, 45 min, sprinkler
    heavy  = min(wd, 60) mm, 60 min, sprinkler

should_irrigate = action ≠ none and moisture < 50.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Sequence

import numpy as np
from sklearn.linear_model import LinearRegression

from agroforecast.ml.domain.base import DomainPredictor
from agroforecast.ml.models import WeatherPrediction

logger = logging.getLogger(__name__)

N_SYNTHETIC_SAMPLES = 500
RAIN_DAY_MM = 2.0
CONFIDENCE = 0.85

GROWTH_STAGE_FACTOR = {
    "seedling": 0.5, "vegetative": 1.0, "flowering": 1.3, "fruiting": 1.2, "maturity": 0.8,
}
SOIL_DEMAND_FACTOR = {"clay": 0.8, "loam": 1.0, "sand": 1.3, "sandy": 1.3, "silt": 0.9}
METHOD_EFFICIENCY = {"drip": 0.90, "sprinkler": 0.75, "flood": 0.50, "smart": 0.85}
SOIL_EFFICIENCY_FACTOR = {"clay": 1.1, "loam": 1.0, "sand": 0.8, "sandy": 0.8, "silt": 0.95}
MAX_EFFICIENCY = 0.95


class IrrigationAction(str, Enum):
    NONE = "no_irrigation"
    LIGHT = "light_irrigation"
    MEDIUM = "medium_irrigation"
    HEAVY = "heavy_irrigation"


# action → (demand fraction, cap mm, duration min, method)
ACTION_PLAN = {
    IrrigationAction.NONE: (0.0, 0.0, 0, "smart"),
    IrrigationAction.LIGHT: (0.5, 25.0, 30, "drip"),
    IrrigationAction.MEDIUM: (0.75, 40.0, 45, "sprinkler"),
    IrrigationAction.HEAVY: (1.0, 60.0, 60, "sprinkler"),
}


def irrigation_efficiency(method: str, soil_type: str) -> float:
    base = METHOD_EFFICIENCY.get(method, 0.75)
    factor = SOIL_EFFICIENCY_FACTOR.get((soil_type or "").lower(), 1.0)
    return min(MAX_EFFICIENCY, base * factor)


def choose_action(moisture: float, rain_expected: bool) -> IrrigationAction:
    if moisture >= 50 or (rain_expected and moisture >= 35):
        return IrrigationAction.NONE
    if moisture < 30:
        return IrrigationAction.HEAVY
    if moisture < 40:
        return IrrigationAction.MEDIUM
    return IrrigationAction.LIGHT


@dataclass
class IrrigationInput:
    current_moisture: float
    weather_forecast: Sequence[WeatherPrediction] = field(default_factory=list)
    crop_type: str = "rice"
    growth_stage: str = "vegetative"
    soil_type: str = "loam"
    field_size: float = 1.0


@dataclass
class IrrigationPlan:
    should_irrigate: bool
    action: IrrigationAction
    recommended_amount: float  # mm
    water_demand: float        # mm
    scheduled_time: datetime
    duration_minutes: int
    method: str
    efficiency: float          # 0-0.95
    water_savings: float
    estimated_cost: float
    cost_savings: float
    next_irrigation: datetime
    confidence: float = CONFIDENCE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "should_irrigate": self.should_irrigate,
            "action": self.action.value,
            "recommended_amount": round(self.recommended_amount, 2),
            "water_demand": round(self.water_demand, 2),
            "scheduled_time": self.scheduled_time.isoformat(),
            "duration_minutes": self.duration_minutes,
            "method": self.method,
            "efficiency": round(self.efficiency, 4),
            "water_savings": round(self.water_savings, 2),
            "cost_optimization": {
                "estimated_cost": round(self.estimated_cost, 2),
                "savings": round(self.cost_savings, 2),
            },
            "next_irrigation": self.next_irrigation.isoformat(),
            "confidence": self.confidence,
        }


class IrrigationOptimizer(DomainPredictor[IrrigationInput, IrrigationPlan]):
    name = "irrigation"
    version = "2.0.0"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.demand_model = LinearRegression()

    def _fit(self) -> None:
        n = N_SYNTHETIC_SAMPLES
        temperature = 20 + self._rng.random_sample(n) * 20
        humidity = 30 + self._rng.random_sample(n) * 50
        rainfall = self._rng.random_sample(n) * 20
        X = np.column_stack([temperature, humidity, rainfall])
        y = np.maximum(0.0, 20 + 0.8 * temperature - 0.3 * humidity - 0.5 * rainfall)
        self.demand_model.fit(X, y)
        self.metrics.trained_samples = n

    def water_demand(self, inputs: IrrigationInput) -> float:
        forecast = list(inputs.weather_forecast)
        avg_temp = float(np.mean([d.temperature for d in forecast])) if forecast else 25.0
        avg_hum = float(np.mean([d.humidity for d in forecast])) if forecast else 60.0
        total_rain = float(sum(d.rainfall for d in forecast))
        base = float(self.demand_model.predict([[avg_temp, avg_hum, total_rain]])[0])
        stage = GROWTH_STAGE_FACTOR.get(inputs.growth_stage, 1.0)
        soil = SOIL_DEMAND_FACTOR.get((inputs.soil_type or "").lower(), 1.0)
        return max(0.0, base) * stage * soil

    def _predict(self, inputs: IrrigationInput) -> IrrigationPlan:
        demand = self.water_demand(inputs)
        rain_expected = any(d.rainfall > RAIN_DAY_MM for d in inputs.weather_forecast)
        action = choose_action(inputs.current_moisture, rain_expected)
        fraction, cap, duration, method = ACTION_PLAN[action]

        amount = min(demand * fraction, cap)
        should = action != IrrigationAction.NONE and inputs.current_moisture < 50
        water_savings = amount * 0.25
        cost = amount * 0.05 + duration * 0.1

        now = self._clock()
        scheduled = now.replace(hour=6, minute=0, second=0, microsecond=0)
        if scheduled < now:
            scheduled += timedelta(days=1)

        return IrrigationPlan(
            should_irrigate=should,
            action=action,
            recommended_amount=amount,
            water_demand=demand,
            scheduled_time=scheduled,
            duration_minutes=duration,
            method=method,
            efficiency=irrigation_efficiency(method, inputs.soil_type),
            water_savings=water_savings,
            estimated_cost=cost,
            cost_savings=water_savings * 0.1,
            next_irrigation=now + timedelta(hours=24 if should else 48),
        )
