"""
Crop recommendation: random-forest suitability blended with rule scoring.

    suitability = 0.7 · forest(features) + 0.3 · rule_score

    rule_score  = 0.4 · s(T) + 0.3 · s(H) + 0.3 · s(R)

    s(x) inside [min, max]:  max(0.6, 1 − |x − optimal| / ((max − min) / 2))
    s(x) outside the range:  max(0,   1 − distance_to_range / optimal)

The forest (scikit-learn RandomForestRegressor, 15 trees) is fitted at
initialise on synthetic samples whose target is the rule score, so it learns
a smoothed version of the agronomic rules over the feature space.

Only crops grown in the current season are scored; the top 6 are returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestRegressor

from agroforecast.ml.domain.base import DomainPredictor
from agroforecast.ml.models import ModelPredictionResult, WeatherObservation

logger = logging.getLogger(__name__)

FOREST_WEIGHT = 0.7
RULE_WEIGHT = 0.3
N_TREES = 15
N_SYNTHETIC_SAMPLES = 500
TOP_N = 6
MODEL_TYPE = "Random Forest + Rule Scoring"

FEATURE_COLUMNS = [
    "temp_norm", "humidity_norm", "rainfall_norm",
    "temp_gap", "humidity_gap", "growth_fraction", "seasonal_factor",
]


class Season(str, Enum):
    KHARIF = "Kharif"  # monsoon, Jun-Nov
    RABI = "Rabi"      # winter
    ZAID = "Zaid"      # short summer


@dataclass(frozen=True)
class OptimalRange:
    min: float
    max: float
    optimal: float


@dataclass(frozen=True)
class CropProfile:
    crop_id: str
    name: str
    local_name: str
    temperature: OptimalRange
    humidity: OptimalRange
    rainfall: OptimalRange
    seasons: Tuple[Season, ...]
    growth_days: int
    water_requirement: str
    category: str
    yield_min: float
    yield_max: float
    yield_unit: str = "kg/hectare"


CROP_DATABASE: Dict[str, CropProfile] = {
    "rice": CropProfile(
        "rice", "Rice", "धान",
        OptimalRange(20, 35, 27), OptimalRange(70, 95, 85), OptimalRange(100, 300, 200),
        (Season.KHARIF,), 120, "high", "cereal", 3000, 6000,
    ),
    "wheat": CropProfile(
        "wheat", "Wheat", "गेहूं",
        OptimalRange(10, 25, 18), OptimalRange(50, 70, 60), OptimalRange(30, 100, 60),
        (Season.RABI,), 110, "medium", "cereal", 2500, 5000,
    ),
    "maize": CropProfile(
        "maize", "Maize", "मक्का",
        OptimalRange(21, 30, 25), OptimalRange(60, 80, 70), OptimalRange(60, 150, 100),
        (Season.KHARIF,), 100, "medium", "cereal", 4000, 8000,
    ),
    "chickpea": CropProfile(
        "chickpea", "Chickpea", "चना",
        OptimalRange(10, 30, 22), OptimalRange(30, 60, 45), OptimalRange(20, 60, 40),
        (Season.RABI,), 95, "low", "pulse", 800, 2000,
    ),
    "groundnut": CropProfile(
        "groundnut", "Groundnut", "मूंगफली",
        OptimalRange(22, 33, 28), OptimalRange(50, 75, 65), OptimalRange(50, 125, 80),
        (Season.KHARIF, Season.ZAID), 110, "medium", "oilseed", 1500, 3000,
    ),
}


def current_season(month: int) -> Season:
    return Season.KHARIF if 6 <= month <= 11 else Season.RABI


def seasonal_factor(month: int) -> float:
    return float(np.sin((month - 1) * np.pi / 6))


def parameter_score(value: float, rng: OptimalRange) -> float:
    if value < rng.min or value > rng.max:
        distance = min(abs(value - rng.min), abs(value - rng.max))
        return max(0.0, 1.0 - distance / rng.optimal) if rng.optimal else 0.0
    half_range = (rng.max - rng.min) / 2
    return max(0.6, 1.0 - abs(value - rng.optimal) / half_range)


def rule_score(temperature: float, humidity: float, rainfall: float, crop: CropProfile) -> float:
    return (
        0.4 * parameter_score(temperature, crop.temperature)
        + 0.3 * parameter_score(humidity, crop.humidity)
        + 0.3 * parameter_score(rainfall, crop.rainfall)
    )


def feature_vector(
    temperature: float, humidity: float, rainfall: float, crop: CropProfile, month: int,
) -> List[float]:
    return [
        temperature / 50,
        humidity / 100,
        rainfall / 200,
        abs(temperature - crop.temperature.optimal) / 30,
        abs(humidity - crop.humidity.optimal) / 50,
        crop.growth_days / 365,
        seasonal_factor(month),
    ]


def generate_synthetic_suitability_data(n: int, rng: np.random.RandomState) -> pd.DataFrame:
    """Random (weather, crop, month) samples labelled with the rule score."""
    crops = list(CROP_DATABASE.values())
    rows = []
    for _ in range(n):
        crop = crops[rng.randint(len(crops))]
        temp = 5 + rng.random_sample() * 40
        hum = 20 + rng.random_sample() * 80
        rain = rng.random_sample() * 300
        month = int(rng.randint(1, 13))
        rows.append(feature_vector(temp, hum, rain, crop, month) + [rule_score(temp, hum, rain, crop)])
    return pd.DataFrame(rows, columns=FEATURE_COLUMNS + ["suitability"])


# ═══════════════════════════════════════════════════════════════════════════
# Result types
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class CropInput:
    weather: WeatherObservation
    season: Optional[Season] = None
    month: Optional[int] = None


@dataclass
class CropRecommendation:
    crop_id: str
    name: str
    local_name: str
    suitability_score: int  # 0-100
    risk_level: str
    risk_factors: List[str]
    predicted_yield: float
    yield_unit: str
    recommendation: str
    confidence: int  # 30-95
    category: str
    water_requirement: str
    growth_days: int
    economic_viability: int = 75

    def to_dict(self) -> Dict[str, Any]:
        return {
            "crop_id": self.crop_id,
            "name": self.name,
            "local_name": self.local_name,
            "suitability_score": self.suitability_score,
            "risk_level": self.risk_level,
            "risk_factors": list(self.risk_factors),
            "predicted_yield": self.predicted_yield,
            "yield_unit": self.yield_unit,
            "recommendation": self.recommendation,
            "confidence": self.confidence,
            "category": self.category,
            "water_requirement": self.water_requirement,
            "growth_days": self.growth_days,
            "economic_viability": self.economic_viability,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Predictor
# ═══════════════════════════════════════════════════════════════════════════

class CropRecommender(DomainPredictor[CropInput, ModelPredictionResult[CropRecommendation]]):
    name = "crop"
    version = "2.0.0"

    def __init__(self, validity_days: int = 7, **kwargs):
        super().__init__(**kwargs)
        self.validity = timedelta(days=validity_days)
        self.forest: Optional[RandomForestRegressor] = None

    def _fit(self) -> None:
        data = generate_synthetic_suitability_data(N_SYNTHETIC_SAMPLES, self._rng)
        self.forest = RandomForestRegressor(n_estimators=N_TREES, random_state=self._random_state)
        self.forest.fit(data[FEATURE_COLUMNS].to_numpy(), data["suitability"].to_numpy())
        self.metrics.trained_samples = len(data)

    def _predict(self, inputs: CropInput) -> ModelPredictionResult[CropRecommendation]:
        now = self._clock()
        month = inputs.month or now.month
        season = inputs.season or current_season(month)
        w = inputs.weather

        candidates = [c for c in CROP_DATABASE.values() if season in c.seasons]
        recommendations: List[CropRecommendation] = []
        if candidates:
            X = np.array([feature_vector(w.temperature, w.humidity, w.rainfall, c, month) for c in candidates])
            forest_scores = self.forest.predict(X)
            for crop, forest_score in zip(candidates, forest_scores):
                suitability = float(np.clip(
                    FOREST_WEIGHT * forest_score
                    + RULE_WEIGHT * rule_score(w.temperature, w.humidity, w.rainfall, crop),
                    0.0, 1.0,
                ))
                level, factors = self._assess_risk(w, crop)
                recommendations.append(
                    CropRecommendation(
                        crop_id=crop.crop_id,
                        name=crop.name,
                        local_name=crop.local_name,
                        suitability_score=int(round(suitability * 100)),
                        risk_level=level,
                        risk_factors=factors,
                        predicted_yield=self._predict_yield(crop, suitability),
                        yield_unit=crop.yield_unit,
                        recommendation=self._recommendation_text(suitability, level),
                        confidence=self._confidence(suitability, level),
                        category=crop.category,
                        water_requirement=crop.water_requirement,
                        growth_days=crop.growth_days,
                    )
                )

        recommendations.sort(key=lambda r: r.suitability_score, reverse=True)
        recommendations = recommendations[:TOP_N]
        confidence = float(np.mean([r.confidence / 100 for r in recommendations])) if recommendations else 0.0
        return ModelPredictionResult(
            predictions=recommendations,
            confidence=confidence,
            model_type=MODEL_TYPE,
            generated_at=now,
            valid_until=now + self.validity,
            metadata={"season": season.value, "candidates": len(candidates)},
        )

    @staticmethod
    def _assess_risk(w: WeatherObservation, crop: CropProfile) -> Tuple[str, List[str]]:
        factors: List[str] = []
        score = 0
        if w.temperature < crop.temperature.min - 3:
            factors.append("Low temperature may affect growth")
            score += 2
        if w.temperature > crop.temperature.max + 3:
            factors.append("Heat stress during growth stages")
            score += 2
        if w.rainfall < crop.rainfall.min - 10:
            factors.append("Insufficient rainfall - irrigation required")
            score += 2
        level = "high" if score >= 3 else "medium" if score >= 1 else "low"
        return level, factors

    def _predict_yield(self, crop: CropProfile, suitability: float) -> float:
        base = (crop.yield_min + crop.yield_max) / 2
        predicted = round(base * suitability * (0.9 + self._rng.random_sample() * 0.2))
        return float(max(crop.yield_min, predicted))

    @staticmethod
    def _recommendation_text(suitability: float, risk_level: str) -> str:
        score = suitability * 100
        if score >= 80 and risk_level == "low":
            return "Highly recommended - excellent conditions"
        if score >= 60:
            return "Recommended with proper care"
        if score >= 40:
            return "Possible with additional inputs"
        return "Not recommended under current conditions"

    @staticmethod
    def _confidence(suitability: float, risk_level: str) -> int:
        factor = {"high": 0.7, "medium": 0.85}.get(risk_level, 0.95)
        return int(max(30, min(95, round(suitability * 100 * factor))))
