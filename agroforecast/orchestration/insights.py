"""
Integrated insights — typed merge of per-domain results.

Every derivation reads only the payloads of domains that actually
succeeded; a missing or failed domain contributes nothing (no imputation)
except where a documented default applies.

═══════════════════════════════════════════════════════════════════════════
ACTION PRIORITIES
═══════════════════════════════════════════════════════════════════════════

    soil health < 60          → soil_management     high
    irrigation required       → water_management    critical if > 40 mm else high
    energy efficiency < 70 %  → energy_management   medium

Sorted by tier critical > high > medium > low; ties keep declaration order.

═══════════════════════════════════════════════════════════════════════════
RISK ASSESSMENT
═══════════════════════════════════════════════════════════════════════════

    soil health < 50          → soil_degradation    80
    alert risk high/critical  → weather_extreme     75

    max contribution    level
    ────────────────    ─────────
        > 80            critical
        > 65            high
        > 45            medium
        > 25            low
        otherwise       very_low

Time to next critical event = hours until the earliest HIGH/CRITICAL
alert, 168 when there is none.

═══════════════════════════════════════════════════════════════════════════
SUSTAINABILITY
═══════════════════════════════════════════════════════════════════════════

    score = 0.25·water + 0.25·energy + 0.30·soil + 0.15·(100 − carbon) + 0.05·biodiversity

    water   = irrigation efficiency × 100   (75 without irrigation)
    energy  = energy efficiency             (70 without energy)
    soil    = soil health score             (60 without soil)
    carbon  = max(0, 100 − energy)
    biodiversity = 60

═══════════════════════════════════════════════════════════════════════════
ECONOMICS
═══════════════════════════════════════════════════════════════════════════

    revenue = size · 2000 · (mean crop suitability / 100)
    costs   = size · 1200 − energy cost savings
    margin  = (revenue − costs) / revenue · 100
    roi     = (revenue − costs) / costs · 100
    risk-adjusted return = roi × {critical 0.85, high 0.9, medium 0.95, else 1}
    outlook: positive if margin > 25, negative if margin < 15
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np

from agroforecast.ml.alert_predictor import overall_risk
from agroforecast.ml.domain.crop import CropRecommendation
from agroforecast.ml.domain.energy import EnergyPlan
from agroforecast.ml.domain.irrigation import IrrigationPlan
from agroforecast.ml.domain.soil import SoilHealthReport
from agroforecast.ml.models import AlertPrediction, AlertSeverity, ModelPredictionResult
from agroforecast.orchestration.requests import ComprehensiveAnalysisRequest
from agroforecast.orchestration.results import DomainResult

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PRIORITY_ORDER = {"critical": 4, "high": 3, "medium": 2, "low": 1}

SOIL_PRIORITY_THRESHOLD = 60
SOIL_RISK_THRESHOLD = 50
SOIL_RECOMMENDATION_THRESHOLD = 70
ENERGY_PRIORITY_THRESHOLD = 70
CRITICAL_IRRIGATION_MM = 40

SOIL_DEGRADATION_RISK = 80
WEATHER_EXTREME_RISK = 75
NO_CRITICAL_EVENT_HOURS = 168

DEFAULT_WATER_EFFICIENCY = 75
DEFAULT_ENERGY_EFFICIENCY = 70
DEFAULT_SOIL_HEALTH = 60
BIODIVERSITY_INDEX = 60

BASE_REVENUE_PER_ACRE = 2000
BASE_COST_PER_ACRE = 1200
RISK_RETURN_ADJUSTMENT = {"critical": 0.85, "high": 0.9, "medium": 0.95}

DEFAULT_OVERALL_SCORE = 70
DEFAULT_OVERALL_CONFIDENCE = 0.75


# ═══════════════════════════════════════════════════════════════════════════
# Insight types
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ActionPriority:
    category: str
    action: str
    priority: str  # critical | high | medium | low
    timeframe: str
    estimated_impact: int
    cost: float
    feasibility: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "action": self.action,
            "priority": self.priority,
            "timeframe": self.timeframe,
            "estimated_impact": self.estimated_impact,
            "cost": round(self.cost, 2),
            "feasibility": self.feasibility,
        }


@dataclass
class RiskFactor:
    category: str
    level: int
    description: str
    mitigation: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "level": self.level,
            "description": self.description,
            "mitigation": list(self.mitigation),
        }


@dataclass
class RiskAssessment:
    overall_risk_level: str
    risk_factors: List[RiskFactor]
    time_to_next_critical_event: float  # hours

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_risk_level": self.overall_risk_level,
            "risk_factors": [f.to_dict() for f in self.risk_factors],
            "time_to_next_critical_event": round(self.time_to_next_critical_event, 1),
        }


@dataclass
class SustainabilityMetrics:
    water_efficiency: float
    energy_efficiency: float
    carbon_footprint: float
    soil_health: float
    biodiversity_index: float
    sustainability_score: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "water_efficiency": round(self.water_efficiency, 2),
            "energy_efficiency": round(self.energy_efficiency, 2),
            "carbon_footprint": round(self.carbon_footprint, 2),
            "soil_health": round(self.soil_health, 2),
            "biodiversity_index": self.biodiversity_index,
            "sustainability_score": self.sustainability_score,
        }


@dataclass
class EconomicForecast:
    expected_revenue: int
    operational_costs: int
    profit_margin: float
    roi: float
    risk_adjusted_return: float
    market_outlook: str  # positive | neutral | negative

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expected_revenue": self.expected_revenue,
            "operational_costs": self.operational_costs,
            "profit_margin": self.profit_margin,
            "roi": self.roi,
            "risk_adjusted_return": self.risk_adjusted_return,
            "market_outlook": self.market_outlook,
        }


@dataclass
class IntegratedRecommendation:
    id: str
    category: str
    title: str
    description: str
    priority: int
    impact: Dict[str, float]
    implementation_steps: List[str]
    dependencies: List[str]
    timeframe: str
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "impact": dict(self.impact),
            "implementation_steps": list(self.implementation_steps),
            "dependencies": list(self.dependencies),
            "timeframe": self.timeframe,
            "confidence": self.confidence,
        }


@dataclass
class IntegratedInsights:
    action_priorities: List[ActionPriority] = field(default_factory=list)
    risk_assessment: Optional[RiskAssessment] = None
    sustainability_metrics: Optional[SustainabilityMetrics] = None
    economic_forecast: Optional[EconomicForecast] = None
    recommendations: List[IntegratedRecommendation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_priorities": [a.to_dict() for a in self.action_priorities],
            "risk_assessment": self.risk_assessment.to_dict() if self.risk_assessment else None,
            "sustainability_metrics": (
                self.sustainability_metrics.to_dict() if self.sustainability_metrics else None
            ),
            "economic_forecast": self.economic_forecast.to_dict() if self.economic_forecast else None,
            "recommendations": [r.to_dict() for r in self.recommendations],
        }


# ═══════════════════════════════════════════════════════════════════════════
# Derivations
# ═══════════════════════════════════════════════════════════════════════════

def mean_suitability(crops: Optional[ModelPredictionResult[CropRecommendation]]) -> Optional[float]:
    if crops is None or not crops.predictions:
        return None
    return float(np.mean([c.suitability_score for c in crops.predictions]))


def action_priorities(
    soil: Optional[SoilHealthReport],
    irrigation: Optional[IrrigationPlan],
    energy: Optional[EnergyPlan],
) -> List[ActionPriority]:
    priorities: List[ActionPriority] = []
    if soil is not None and soil.health_score < SOIL_PRIORITY_THRESHOLD:
        priorities.append(ActionPriority(
            category="soil_management",
            action="Improve soil health through organic amendments",
            priority="high",
            timeframe="1-2 weeks",
            estimated_impact=85,
            cost=500,
            feasibility=90,
        ))
    if irrigation is not None and irrigation.should_irrigate:
        priorities.append(ActionPriority(
            category="water_management",
            action=f"Apply {irrigation.recommended_amount:.1f}mm irrigation",
            priority="critical" if irrigation.recommended_amount > CRITICAL_IRRIGATION_MM else "high",
            timeframe="24 hours",
            estimated_impact=75,
            cost=irrigation.estimated_cost,
            feasibility=95,
        ))
    if energy is not None and energy.current_efficiency < ENERGY_PRIORITY_THRESHOLD:
        priorities.append(ActionPriority(
            category="energy_management",
            action="Optimize equipment scheduling for energy efficiency",
            priority="medium",
            timeframe="1 week",
            estimated_impact=60,
            cost=200,
            feasibility=80,
        ))
    # sorted() is stable, so equal tiers keep declaration order
    return sorted(priorities, key=lambda a: PRIORITY_ORDER[a.priority], reverse=True)


def classify_risk_level(max_contribution: float) -> str:
    if max_contribution > 80:
        return "critical"
    if max_contribution > 65:
        return "high"
    if max_contribution > 45:
        return "medium"
    if max_contribution > 25:
        return "low"
    return "very_low"


def hours_to_next_critical_event(alerts: Sequence[AlertPrediction], now: datetime) -> float:
    upcoming = [a.expected_time for a in alerts if a.severity >= AlertSeverity.HIGH]
    if not upcoming:
        return float(NO_CRITICAL_EVENT_HOURS)
    return max(0.0, (min(upcoming) - now).total_seconds() / 3600)


def risk_assessment(
    soil: Optional[SoilHealthReport],
    alerts: Optional[ModelPredictionResult[AlertPrediction]],
    now: datetime,
) -> RiskAssessment:
    factors: List[RiskFactor] = []
    if soil is not None and soil.health_score < SOIL_RISK_THRESHOLD:
        factors.append(RiskFactor(
            category="soil_degradation",
            level=SOIL_DEGRADATION_RISK,
            description="Poor soil health detected",
            mitigation=["Apply organic matter", "Improve drainage", "Regular soil testing"],
        ))
    alert_list = alerts.predictions if alerts is not None else []
    if overall_risk(alert_list) in ("high", "critical"):
        factors.append(RiskFactor(
            category="weather_extreme",
            level=WEATHER_EXTREME_RISK,
            description="Severe weather conditions expected",
            mitigation=["Secure equipment", "Protect crops", "Monitor conditions closely"],
        ))
    max_level = max((f.level for f in factors), default=0)
    return RiskAssessment(
        overall_risk_level=classify_risk_level(max_level),
        risk_factors=factors,
        time_to_next_critical_event=hours_to_next_critical_event(alert_list, now),
    )


def sustainability_metrics(
    soil: Optional[SoilHealthReport],
    irrigation: Optional[IrrigationPlan],
    energy: Optional[EnergyPlan],
) -> SustainabilityMetrics:
    water = irrigation.efficiency * 100 if irrigation is not None else DEFAULT_WATER_EFFICIENCY
    power = energy.current_efficiency if energy is not None else DEFAULT_ENERGY_EFFICIENCY
    soil_health = soil.health_score if soil is not None else DEFAULT_SOIL_HEALTH
    carbon = max(0.0, 100 - power)
    score = (
        water * 0.25
        + power * 0.25
        + soil_health * 0.3
        + (100 - carbon) * 0.15
        + BIODIVERSITY_INDEX * 0.05
    )
    return SustainabilityMetrics(
        water_efficiency=water,
        energy_efficiency=power,
        carbon_footprint=carbon,
        soil_health=soil_health,
        biodiversity_index=BIODIVERSITY_INDEX,
        sustainability_score=int(round(score)),
    )


def economic_forecast(
    farm_size: float,
    crops: Optional[ModelPredictionResult[CropRecommendation]],
    energy: Optional[EnergyPlan],
    risk_level: str,
) -> EconomicForecast:
    suitability = mean_suitability(crops)
    revenue = farm_size * BASE_REVENUE_PER_ACRE * (suitability / 100 if suitability is not None else 1.0)
    costs = farm_size * BASE_COST_PER_ACRE - (energy.savings_cost if energy is not None else 0.0)

    profit = revenue - costs
    margin = profit / revenue * 100 if revenue > 0 else 0.0
    roi = profit / costs * 100 if costs > 0 else 0.0
    adjusted = roi * RISK_RETURN_ADJUSTMENT.get(risk_level, 1.0)

    if margin > 25:
        outlook = "positive"
    elif margin < 15:
        outlook = "negative"
    else:
        outlook = "neutral"

    return EconomicForecast(
        expected_revenue=int(round(revenue)),
        operational_costs=int(round(costs)),
        profit_margin=round(margin, 2),
        roi=round(roi, 2),
        risk_adjusted_return=round(adjusted, 2),
        market_outlook=outlook,
    )


def integrated_recommendations(
    soil: Optional[SoilHealthReport],
    irrigation: Optional[IrrigationPlan],
) -> List[IntegratedRecommendation]:
    recs: List[IntegratedRecommendation] = []
    if soil is not None and soil.health_score < SOIL_RECOMMENDATION_THRESHOLD:
        recs.append(IntegratedRecommendation(
            id=f"rec_{len(recs) + 1}",
            category="soil_management",
            title="Improve Soil Health",
            description="Implement comprehensive soil improvement program",
            priority=90,
            impact={"yield": 15, "cost": -500, "sustainability": 20, "risk": -25},
            implementation_steps=[
                "Conduct soil testing", "Apply organic matter",
                "Implement cover cropping", "Optimize pH levels",
            ],
            dependencies=["soil_testing", "organic_matter_sourcing"],
            timeframe="2-4 weeks",
            confidence=0.85,
        ))
    if irrigation is not None and irrigation.should_irrigate:
        recs.append(IntegratedRecommendation(
            id=f"rec_{len(recs) + 1}",
            category="water_management",
            title="Optimize Irrigation Schedule",
            description="Implement smart irrigation based on model recommendations",
            priority=85,
            impact={"yield": 10, "cost": -200, "sustainability": 15, "risk": -15},
            implementation_steps=[
                "Install soil sensors", "Set up automation",
                "Schedule as recommended", "Monitor feedback",
            ],
            dependencies=["irrigation_equipment"],
            timeframe="1-2 weeks",
            confidence=0.90,
        ))
    return sorted(recs, key=lambda r: r.priority, reverse=True)


def overall_score(
    crops: Optional[ModelPredictionResult[CropRecommendation]],
    soil: Optional[SoilHealthReport],
    irrigation: Optional[IrrigationPlan],
    energy: Optional[EnergyPlan],
) -> int:
    """Mean of the domain scores that were actually computed."""
    scores: List[float] = []
    if soil is not None:
        scores.append(soil.health_score)
    if irrigation is not None:
        scores.append(irrigation.efficiency * 100)
    if energy is not None:
        scores.append(energy.current_efficiency)
    suitability = mean_suitability(crops)
    if suitability is not None:
        scores.append(suitability)
    if not scores:
        return DEFAULT_OVERALL_SCORE
    return int(round(float(np.mean(scores))))


def overall_confidence(results: Iterable[DomainResult]) -> float:
    """Mean confidence over every attempted domain, failed ones counting 0."""
    values = [r.confidence for r in results]
    if not values:
        return DEFAULT_OVERALL_CONFIDENCE
    return round(float(np.mean(values)), 2)


def data_quality(request: ComprehensiveAnalysisRequest) -> int:
    quality = 100
    farm = request.farm_profile
    if request.current_weather is None or request.current_weather.temperature is None:
        quality -= 20
    if request.location.latitude is None or request.location.longitude is None:
        quality -= 15
    if not farm.size or farm.size <= 0:
        quality -= 15
    if not farm.soil_type:
        quality -= 10
    if not farm.current_crops:
        quality -= 10
    return max(0, quality)


def build_insights(
    request: ComprehensiveAnalysisRequest,
    *,
    crops: Optional[ModelPredictionResult[CropRecommendation]],
    soil: Optional[SoilHealthReport],
    irrigation: Optional[IrrigationPlan],
    energy: Optional[EnergyPlan],
    alerts: Optional[ModelPredictionResult[AlertPrediction]],
    now: datetime,
) -> IntegratedInsights:
    risk = risk_assessment(soil, alerts, now)
    return IntegratedInsights(
        action_priorities=action_priorities(soil, irrigation, energy),
        risk_assessment=risk,
        sustainability_metrics=sustainability_metrics(soil, irrigation, energy),
        economic_forecast=economic_forecast(request.farm_profile.size, crops, energy, risk.overall_risk_level),
        recommendations=integrated_recommendations(soil, irrigation),
    )
