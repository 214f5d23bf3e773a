"""
Soil health estimation from surface weather.

Four linear sub-models (scikit-learn LinearRegression) are fitted at
initialise on synthetic environment → soil relations:

    moisture      ~ H, R, T, P, wind, |T − 25|
    nutrients     ~ T, H, R, solar, [H > 80]
    pH            ~ R, T, H
    soil temp     ~ T, solar, H, wind

Health score (0-100):
    0.3 · band(moisture) + 0.3 · band(nutrients) + 0.2 · band(pH) + 0.2 · band(soil temp)

Risk: >80 low, >60 moderate, >40 high, else critical.
Confidence: max(0.6, 1 − min(var_moisture / 10, 0.4)), where var_moisture is
the moisture model's residual variance on its training sample.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from sklearn.linear_model import LinearRegression

from agroforecast.ml.domain.base import DomainPredictor

logger = logging.getLogger(__name__)

N_SYNTHETIC_SAMPLES = 1000

MOISTURE_FEATURES = ["humidity", "rainfall", "temperature", "pressure", "wind_speed", "temp_deviation"]
NUTRIENT_FEATURES = ["temperature", "humidity", "rainfall", "solar_radiation", "very_humid"]
PH_FEATURES = ["rainfall", "temperature", "humidity"]
SOIL_TEMP_FEATURES = ["temperature", "solar_radiation", "humidity", "wind_speed"]

NUTRIENT_ADVICE = {
    "high": ["Maintain current fertility program", "Consider reducing fertilizer input"],
    "good": ["Continue current management", "Monitor nutrient levels regularly"],
    "adequate": ["Consider balanced fertilizer application", "Add organic matter"],
    "low": ["Apply nitrogen-rich fertilizer", "Add compost or organic amendments", "Consider soil testing"],
}

RISK_FACTORS = {
    "low": ["Minimal soil degradation risk"],
    "moderate": ["Monitor nutrient depletion", "Watch for compaction"],
    "high": ["Nutrient deficiency risk", "Potential erosion", "Reduced water retention"],
    "critical": ["Severe degradation", "Poor water retention", "Nutrient depletion", "Erosion risk"],
}


def generate_synthetic_soil_data(n: int, rng: np.random.RandomState) -> pd.DataFrame:
    humidity = 30 + rng.random_sample(n) * 70
    rainfall = rng.random_sample(n) * 50
    temperature = 15 + rng.random_sample(n) * 30
    pressure = 995 + rng.random_sample(n) * 30
    wind_speed = rng.random_sample(n) * 20
    solar = rng.random_sample(n) * 1000

    df = pd.DataFrame({
        "humidity": humidity,
        "rainfall": rainfall,
        "temperature": temperature,
        "pressure": pressure,
        "wind_speed": wind_speed,
        "solar_radiation": solar,
    })
    df["temp_deviation"] = (df["temperature"] - 25).abs()
    df["very_humid"] = (df["humidity"] > 80).astype(float)

    df["moisture"] = (20 + 0.6 * humidity + 1.5 * rainfall - 0.8 * df["temp_deviation"]).clip(10, 90)
    df["nutrients"] = (40 + 0.3 * rainfall + 0.5 * temperature - 10 * df["very_humid"]).clip(20, 100)
    df["ph"] = (6.5 + (rainfall - 25) * 0.02 + rng.random_sample(n) * 0.5 - 0.25).clip(5.5, 8.5)
    df["soil_temperature"] = (temperature - 2 + solar / 1000 * 3 - 0.1 * wind_speed).clip(10, 40)
    return df


# ── Band scores ──

def score_moisture(m: float) -> float:
    if 40 <= m <= 70:
        return 100
    if 30 <= m <= 80:
        return 80
    if 20 <= m <= 90:
        return 60
    return 40


def score_nutrients(n: float) -> float:
    if n >= 80:
        return 100
    if n >= 60:
        return 85
    if n >= 40:
        return 70
    if n >= 20:
        return 50
    return 30


def score_ph(ph: float) -> float:
    if 6.0 <= ph <= 7.5:
        return 100
    if 5.5 <= ph <= 8.0:
        return 80
    if 5.0 <= ph <= 8.5:
        return 60
    return 40


def score_soil_temperature(t: float) -> float:
    if 20 <= t <= 30:
        return 100
    if 15 <= t <= 35:
        return 80
    if 10 <= t <= 40:
        return 60
    return 40


def soil_risk_level(health_score: float) -> str:
    if health_score > 80:
        return "low"
    if health_score > 60:
        return "moderate"
    if health_score > 40:
        return "high"
    return "critical"


@dataclass
class SoilInput:
    temperature: float
    humidity: float
    rainfall: float
    pressure: float = 1013.0
    wind_speed: Optional[float] = None
    solar_radiation: Optional[float] = None


@dataclass
class SoilHealthReport:
    health_score: float
    moisture_level: float
    moisture_uncertainty: float
    nutrient_level: str
    nitrogen: int
    phosphorus: int
    potassium: int
    ph_level: float
    soil_temperature: float
    risk_level: str
    risk_factors: List[str]
    recommendations: List[str]
    outlook: List[Dict[str, float]] = field(default_factory=list)
    confidence: float = 0.8

    def to_dict(self) -> Dict[str, Any]:
        return {
            "health_score": self.health_score,
            "moisture_level": self.moisture_level,
            "moisture_uncertainty": self.moisture_uncertainty,
            "nutrients": {
                "level": self.nutrient_level,
                "nitrogen": self.nitrogen,
                "phosphorus": self.phosphorus,
                "potassium": self.potassium,
                "recommendations": NUTRIENT_ADVICE[self.nutrient_level],
            },
            "ph_level": self.ph_level,
            "soil_temperature": self.soil_temperature,
            "risk_assessment": {"level": self.risk_level, "factors": self.risk_factors},
            "recommendations": list(self.recommendations),
            "outlook": list(self.outlook),
            "confidence": round(self.confidence, 4),
        }


class SoilHealthPredictor(DomainPredictor[SoilInput, SoilHealthReport]):
    name = "soil"
    version = "2.0.0"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._models: Dict[str, LinearRegression] = {}
        self._moisture_variance = 0.0

    def _fit(self) -> None:
        df = generate_synthetic_soil_data(N_SYNTHETIC_SAMPLES, self._rng)
        specs = {
            "moisture": MOISTURE_FEATURES,
            "nutrients": NUTRIENT_FEATURES,
            "ph": PH_FEATURES,
            "soil_temperature": SOIL_TEMP_FEATURES,
        }
        for target, cols in specs.items():
            model = LinearRegression()
            model.fit(df[cols].to_numpy(), df[target].to_numpy())
            self._models[target] = model
        residuals = df["moisture"].to_numpy() - self._models["moisture"].predict(df[MOISTURE_FEATURES].to_numpy())
        self._moisture_variance = float(np.var(residuals))
        self.metrics.trained_samples = len(df)

    def _features(self, s: SoilInput) -> pd.DataFrame:
        row = {
            "humidity": s.humidity,
            "rainfall": s.rainfall,
            "temperature": s.temperature,
            "pressure": s.pressure,
            "wind_speed": 5.0 if s.wind_speed is None else s.wind_speed,
            "solar_radiation": 500.0 if s.solar_radiation is None else s.solar_radiation,
        }
        df = pd.DataFrame([row])
        df["temp_deviation"] = (df["temperature"] - 25).abs()
        df["very_humid"] = (df["humidity"] > 80).astype(float)
        return df

    def _estimate(self, target: str, df: pd.DataFrame, cols: List[str]) -> float:
        return float(self._models[target].predict(df[cols].to_numpy())[0])

    def _predict(self, inputs: SoilInput) -> SoilHealthReport:
        df = self._features(inputs)
        moisture = float(np.clip(self._estimate("moisture", df, MOISTURE_FEATURES), 0, 100))
        nutrients = float(np.clip(self._estimate("nutrients", df, NUTRIENT_FEATURES), 0, 100))
        ph = float(np.clip(self._estimate("ph", df, PH_FEATURES), 3.5, 10.0))
        soil_temp = self._estimate("soil_temperature", df, SOIL_TEMP_FEATURES)

        health = (
            0.3 * score_moisture(moisture)
            + 0.3 * score_nutrients(nutrients)
            + 0.2 * score_ph(ph)
            + 0.2 * score_soil_temperature(soil_temp)
        )
        level = "high" if nutrients > 80 else "good" if nutrients > 60 else "adequate" if nutrients > 40 else "low"
        risk = soil_risk_level(health)

        return SoilHealthReport(
            health_score=round(health, 2),
            moisture_level=round(moisture, 2),
            moisture_uncertainty=round(self._moisture_variance, 2),
            nutrient_level=level,
            nitrogen=int(round(nutrients * 0.8 + 10)),
            phosphorus=int(round(nutrients * 0.9 + 7.5)),
            potassium=int(round(nutrients * 0.85 + 9)),
            ph_level=round(ph, 2),
            soil_temperature=round(soil_temp, 2),
            risk_level=risk,
            risk_factors=list(RISK_FACTORS[risk]),
            recommendations=self._recommendations(health, moisture, ph, soil_temp),
            outlook=self._outlook(moisture, soil_temp),
            confidence=max(0.6, 1 - min(self._moisture_variance / 10, 0.4)),
        )

    @staticmethod
    def _recommendations(health: float, moisture: float, ph: float, soil_temp: float) -> List[str]:
        if health > 85:
            recs = ["Excellent soil health: maintain current practices"]
        elif health > 70:
            recs = ["Good soil health with room for improvement"]
        elif health > 50:
            recs = ["Moderate soil health: active management needed"]
        else:
            recs = ["Poor soil health: immediate intervention required"]

        if moisture < 30:
            recs.append("Increase irrigation frequency")
        elif moisture > 80:
            recs.append("Improve drainage to prevent waterlogging")
        if ph < 6.0:
            recs.append("Apply lime to increase soil pH")
        elif ph > 7.5:
            recs.append("Add sulfur or organic matter to lower pH")
        if soil_temp > 35:
            recs.append("Use mulch to moderate soil temperature")
        elif soil_temp < 15:
            recs.append("Consider season-appropriate crops")
        return recs

    def _outlook(self, moisture: float, soil_temp: float) -> List[Dict[str, float]]:
        outlook = []
        for day in range(1, 8):
            temp_change = (self._rng.random_sample() - 0.5) * 4
            moisture_change = (self._rng.random_sample() - 0.5) * 10
            outlook.append({
                "day": day,
                "expected_moisture": round(float(np.clip(moisture + moisture_change, 10, 90)), 2),
                "expected_temperature": round(float(np.clip(soil_temp + temp_change, 10, 40)), 2),
                "confidence": round(0.8 - day * 0.05, 2),
            })
        return outlook
