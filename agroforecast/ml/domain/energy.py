"""
Farm energy optimisation: equipment scheduling, savings and solar sizing.

    efficiency (%) = (utilisation · 0.6 + solar_ratio · 0.4) · 100

    utilisation  = active power rating / total power rating
    solar_ratio  = min(1, solar_generation / current_usage)

Flexible equipment is shifted to the first low-demand hour of the price
table; durations come from the equipment priority.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from agroforecast.ml.domain.base import DomainPredictor
from agroforecast.ml.models import WeatherObservation

logger = logging.getLogger(__name__)

CONFIDENCE = 0.88
CURRENT_TARIFF = 0.15      # per kWh
OPTIMISED_TARIFF = 0.12
CARBON_KG_PER_KWH = 0.5
PANEL_KW_PER_ACRE = 8
PANEL_CAPACITY_PER_ACRE = 10
PEAK_SUN_HOURS = 4.5
INSTALL_COST_PER_KW = 2000

PRIORITY_DURATION_HOURS = {"low": 2, "medium": 3, "high": 4, "critical": 1}
PRIORITY_VALUE = {"low": 1, "medium": 2, "high": 3, "critical": 4}


@dataclass
class EquipmentUsage:
    equipment_id: str
    power_rating: float           # kW
    priority: str = "medium"      # low | medium | high | critical
    current_status: str = "off"   # on | off
    flexible_timing: bool = True


@dataclass
class EnergyPricing:
    hour: int
    price: float
    demand_level: str  # low | medium | high


def default_price_table() -> List[EnergyPricing]:
    """24-hour tariff: 0.10 base, +0.05 during 10-18h peak."""
    table = []
    for hour in range(24):
        peak = 10 <= hour <= 18
        demand = "high" if peak else "low" if hour <= 6 or hour >= 22 else "medium"
        table.append(EnergyPricing(hour=hour, price=0.10 + (0.05 if peak else 0.0), demand_level=demand))
    return table


def time_of_day_factor(hour: int) -> float:
    diff = abs(hour - 12)
    if diff > 6:
        return 0.0
    return math.cos(diff / 6 * math.pi / 2)


@dataclass
class EnergyInput:
    current_usage: float = 50.0
    equipment: List[EquipmentUsage] = field(default_factory=list)
    prices: List[EnergyPricing] = field(default_factory=default_price_table)
    farm_size: float = 1.0
    weather: Optional[WeatherObservation] = None
    solar_generation: Optional[float] = None
    hour: Optional[int] = None


@dataclass
class ScheduledOperation:
    equipment_id: str
    start_time: str
    duration_hours: int
    energy_consumption: float
    priority: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "equipment_id": self.equipment_id,
            "start_time": self.start_time,
            "duration_hours": self.duration_hours,
            "energy_consumption": round(self.energy_consumption, 2),
            "priority": self.priority,
        }


@dataclass
class EnergyPlan:
    current_efficiency: float
    optimized_schedule: List[ScheduledOperation]
    savings_energy_kwh: float
    savings_cost: float
    savings_carbon_kg: float
    predicted_solar_kw: float
    optimal_panel_kw: float
    estimated_annual_generation_kwh: float
    payback_years: float
    peak_shifting_opportunities: List[str]
    recommendations: List[str]
    confidence: float = CONFIDENCE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_efficiency": round(self.current_efficiency, 2),
            "optimized_schedule": [s.to_dict() for s in self.optimized_schedule],
            "estimated_savings": {
                "energy_kwh": round(self.savings_energy_kwh, 2),
                "cost": round(self.savings_cost, 2),
                "carbon_footprint": round(self.savings_carbon_kg, 2),
            },
            "predicted_solar_kw": round(self.predicted_solar_kw, 2),
            "solar_recommendations": {
                "optimal_panel_size": self.optimal_panel_kw,
                "estimated_generation": round(self.estimated_annual_generation_kwh, 1),
                "payback_period": self.payback_years,
            },
            "peak_shifting_opportunities": list(self.peak_shifting_opportunities),
            "recommendations": list(self.recommendations),
            "confidence": self.confidence,
        }


class EnergyOptimizer(DomainPredictor[EnergyInput, EnergyPlan]):
    name = "energy"
    version = "2.0.0"

    def _predict(self, inputs: EnergyInput) -> EnergyPlan:
        schedule = [self._schedule(eq, inputs.prices) for eq in inputs.equipment]
        efficiency = self.current_efficiency(inputs)

        optimized_usage = sum(s.energy_consumption for s in schedule)
        energy_savings = max(0.0, inputs.current_usage - optimized_usage)
        cost_savings = max(0.0, inputs.current_usage * CURRENT_TARIFF - optimized_usage * OPTIMISED_TARIFF)

        panel_kw = inputs.farm_size * PANEL_KW_PER_ACRE
        annual_kwh = panel_kw * PEAK_SUN_HOURS * 365
        annual_savings = annual_kwh * CURRENT_TARIFF
        payback = round(panel_kw * INSTALL_COST_PER_KW / annual_savings, 2) if annual_savings > 0 else 0.0

        return EnergyPlan(
            current_efficiency=efficiency,
            optimized_schedule=schedule,
            savings_energy_kwh=energy_savings,
            savings_cost=cost_savings,
            savings_carbon_kg=energy_savings * CARBON_KG_PER_KWH,
            predicted_solar_kw=self.predict_solar(inputs),
            optimal_panel_kw=panel_kw,
            estimated_annual_generation_kwh=annual_kwh,
            payback_years=payback,
            peak_shifting_opportunities=self._peak_shifting(inputs),
            recommendations=self._recommendations(inputs, efficiency, energy_savings),
        )

    @staticmethod
    def current_efficiency(inputs: EnergyInput) -> float:
        total = sum(eq.power_rating for eq in inputs.equipment)
        active = sum(eq.power_rating for eq in inputs.equipment if eq.current_status == "on")
        utilisation = active / total if total > 0 else 0.0
        solar_ratio = (
            min(1.0, inputs.solar_generation / inputs.current_usage)
            if inputs.solar_generation and inputs.current_usage > 0 else 0.0
        )
        return (utilisation * 0.6 + solar_ratio * 0.4) * 100

    def predict_solar(self, inputs: EnergyInput) -> float:
        w = inputs.weather
        irradiance = w.solar_radiation if w and w.solar_radiation is not None else 600.0
        cloud = w.cloud_cover if w and w.cloud_cover is not None else 30.0
        hour = inputs.hour if inputs.hour is not None else self._clock().hour
        clear_sky = 1.0 - 0.75 * min(1.0, max(0.0, cloud / 100))
        capacity = inputs.farm_size * PANEL_CAPACITY_PER_ACRE
        return max(0.0, irradiance / 1000 * clear_sky * time_of_day_factor(hour) * capacity)

    @staticmethod
    def _schedule(eq: EquipmentUsage, prices: List[EnergyPricing]) -> ScheduledOperation:
        if not eq.flexible_timing:
            start = "08:00"
        else:
            low = [p for p in prices if p.demand_level == "low"]
            start = f"{low[0].hour:02d}:00" if low else "06:00"
        duration = PRIORITY_DURATION_HOURS.get(eq.priority, 2)
        return ScheduledOperation(
            equipment_id=eq.equipment_id,
            start_time=start,
            duration_hours=duration,
            energy_consumption=eq.power_rating * duration,
            priority=PRIORITY_VALUE.get(eq.priority, 2),
        )

    @staticmethod
    def _peak_shifting(inputs: EnergyInput) -> List[str]:
        opportunities = []
        if any(p.demand_level == "high" for p in inputs.prices):
            opportunities.append(f"Shift {len(inputs.equipment)} equipment operations away from peak hours")
            opportunities.append("Consider battery storage for peak shaving")
            opportunities.append("Implement demand response programs")
        flexible = [eq for eq in inputs.equipment if eq.flexible_timing]
        if flexible:
            opportunities.append(f"{len(flexible)} equipment units can be rescheduled for optimal timing")
        return opportunities

    @staticmethod
    def _recommendations(inputs: EnergyInput, efficiency: float, energy_savings: float) -> List[str]:
        recs = []
        if efficiency < 70:
            recs.append("Consider upgrading to more energy-efficient equipment")
            recs.append("Implement real-time energy monitoring system")
        if energy_savings > 10:
            recs.append(f"Potential to save {round(energy_savings)} kWh daily")
        if not inputs.solar_generation or inputs.solar_generation < 10:
            recs.append("Solar panel installation highly recommended")
        if any(eq.current_status == "on" and eq.priority != "critical" for eq in inputs.equipment):
            recs.append("Schedule non-critical equipment during off-peak hours")
        recs.append("Regular energy audits recommended")
        return recs
