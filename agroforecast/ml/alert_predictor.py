"""
alert_predictor.py — Threshold-driven multi-hazard alert prediction.

═══════════════════════════════════════════════════════════════════════════
THRESHOLD TABLE
═══════════════════════════════════════════════════════════════════════════

    Hazard    Driver            Direction   LOW   MEDIUM  HIGH  CRITICAL
    FLOOD     rainfall (mm)        ≥         50     100    200     300
    HEAT      temperature (°C)     ≥         35      40     45      50
    COLD      temperature (°C)     ≤          5       0     -5     -10
    DROUGHT   drought index        ≤         20      10      5       1

    drought index = (max(0, 100 − rainfall) + max(0, 100 − humidity)) / 2

    The DROUGHT direction is inverted relative to the other hazards: a
    LOWER index is treated as MORE severe. Downstream consumers are
    calibrated on this scale, so it is preserved as-is.

Tier probabilities: LOW 0.4, MEDIUM 0.6, HIGH 0.8, CRITICAL 0.9
(HEAT CRITICAL 0.95). Only alerts with probability above the floor (0.3)
are emitted, so "no tier crossed" (probability 0) never produces an alert.

    duration   = base_hours[hazard] × {LOW 0.5, MEDIUM 1, HIGH 1.5, CRITICAL 2}
    confidence = min(0.95, probability + 0.1)

The highest tier crossed wins, so severity is a monotone function of the
driving variable.
═══════════════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from agroforecast.core.config import Settings, settings as default_settings
from agroforecast.core.errors import InsufficientDataError, ModelNotInitializedError
from agroforecast.ml.models import (
    AlertPrediction,
    AlertSeverity,
    HazardType,
    ModelMetrics,
    ModelPredictionResult,
    WeatherObservation,
    WeatherPrediction,
)

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════
# Constants
# ═══════════════════════════════════════════════════════════════════════════

ThresholdTable = Dict[HazardType, Dict[AlertSeverity, float]]

DEFAULT_THRESHOLDS: ThresholdTable = {
    HazardType.FLOOD: {
        AlertSeverity.LOW: 50, AlertSeverity.MEDIUM: 100,
        AlertSeverity.HIGH: 200, AlertSeverity.CRITICAL: 300,
    },
    HazardType.HEAT: {
        AlertSeverity.LOW: 35, AlertSeverity.MEDIUM: 40,
        AlertSeverity.HIGH: 45, AlertSeverity.CRITICAL: 50,
    },
    HazardType.COLD: {
        AlertSeverity.LOW: 5, AlertSeverity.MEDIUM: 0,
        AlertSeverity.HIGH: -5, AlertSeverity.CRITICAL: -10,
    },
    HazardType.DROUGHT: {
        AlertSeverity.LOW: 20, AlertSeverity.MEDIUM: 10,
        AlertSeverity.HIGH: 5, AlertSeverity.CRITICAL: 1,
    },
}

TIER_PROBABILITY: Dict[AlertSeverity, float] = {
    AlertSeverity.LOW: 0.4,
    AlertSeverity.MEDIUM: 0.6,
    AlertSeverity.HIGH: 0.8,
    AlertSeverity.CRITICAL: 0.9,
}

PROBABILITY_OVERRIDES: Dict[Tuple[HazardType, AlertSeverity], float] = {
    (HazardType.HEAT, AlertSeverity.CRITICAL): 0.95,
}

BASE_DURATION_HOURS: Dict[HazardType, float] = {
    HazardType.FLOOD: 12,
    HazardType.HEAT: 8,
    HazardType.COLD: 6,
    HazardType.DROUGHT: 168,
    HazardType.STORM: 4,
    HazardType.FROST: 2,
    HazardType.HAIL: 1,
}
DEFAULT_DURATION_HOURS = 4

SEVERITY_DURATION_MULTIPLIER: Dict[AlertSeverity, float] = {
    AlertSeverity.LOW: 0.5,
    AlertSeverity.MEDIUM: 1.0,
    AlertSeverity.HIGH: 1.5,
    AlertSeverity.CRITICAL: 2.0,
}

MAX_CONFIDENCE = 0.95
CONFIDENCE_MARGIN = 0.1
FORECAST_PRESSURE_HPA = 1013.0
AFFECTED_AREAS = ["Current Location"]

RECOMMENDED_ACTIONS: Dict[HazardType, Dict[AlertSeverity, List[str]]] = {
    HazardType.FLOOD: {
        AlertSeverity.LOW: ["Monitor water levels", "Check drainage systems"],
        AlertSeverity.MEDIUM: ["Prepare emergency supplies", "Move valuables to higher ground"],
        AlertSeverity.HIGH: ["Evacuate low-lying areas", "Avoid travel"],
        AlertSeverity.CRITICAL: ["Immediate evacuation", "Emergency services contact"],
    },
    HazardType.HEAT: {
        AlertSeverity.LOW: ["Stay hydrated", "Avoid direct sunlight"],
        AlertSeverity.MEDIUM: ["Use cooling measures", "Limit outdoor activities"],
        AlertSeverity.HIGH: ["Stay indoors", "Check on vulnerable people"],
        AlertSeverity.CRITICAL: ["Emergency cooling centers", "Medical attention if needed"],
    },
    HazardType.COLD: {
        AlertSeverity.LOW: ["Wear warm clothing", "Heat homes adequately"],
        AlertSeverity.MEDIUM: ["Check heating systems", "Protect plants"],
        AlertSeverity.HIGH: ["Avoid exposure", "Emergency heating"],
        AlertSeverity.CRITICAL: ["Shelter immediately", "Emergency services"],
    },
    HazardType.DROUGHT: {
        AlertSeverity.LOW: ["Water conservation", "Monitor soil moisture"],
        AlertSeverity.MEDIUM: ["Strict water rationing", "Crop protection"],
        AlertSeverity.HIGH: ["Emergency water supplies", "Livestock protection"],
        AlertSeverity.CRITICAL: ["Water emergency declared", "Emergency distribution"],
    },
    HazardType.STORM: {
        AlertSeverity.LOW: ["Secure loose objects", "Monitor weather updates"],
        AlertSeverity.MEDIUM: ["Stay indoors", "Avoid travel"],
        AlertSeverity.HIGH: ["Emergency shelter", "Power outage preparation"],
        AlertSeverity.CRITICAL: ["Immediate shelter", "Emergency services"],
    },
    HazardType.FROST: {
        AlertSeverity.LOW: ["Protect sensitive plants", "Cover crops"],
        AlertSeverity.MEDIUM: ["Heating for crops", "Livestock shelter"],
        AlertSeverity.HIGH: ["Emergency crop protection", "Water pipe protection"],
        AlertSeverity.CRITICAL: ["Emergency heating", "Prevent freezing damage"],
    },
    HazardType.HAIL: {
        AlertSeverity.LOW: ["Protect vehicles", "Stay indoors"],
        AlertSeverity.MEDIUM: ["Secure property", "Avoid travel"],
        AlertSeverity.HIGH: ["Emergency shelter", "Protect crops"],
        AlertSeverity.CRITICAL: ["Immediate indoor shelter", "Emergency services"],
    },
}
DEFAULT_ACTIONS = ["Monitor conditions", "Stay alert"]

MIN_TRAINING_OBSERVATIONS = 5


class Direction(str, Enum):
    ABOVE = "above"  # tier crossed when driver >= cut
    BELOW = "below"  # tier crossed when driver <= cut


# ═══════════════════════════════════════════════════════════════════════════
# Driving variables
# ═══════════════════════════════════════════════════════════════════════════

def drought_index(rainfall: float, humidity: float) -> float:
    """Mean of rainfall and humidity deficits below 100."""
    return (max(0.0, 100.0 - rainfall) + max(0.0, 100.0 - humidity)) / 2.0


HAZARD_DRIVERS: Dict[HazardType, Tuple[Callable[[WeatherObservation], float], Direction]] = {
    HazardType.FLOOD: (lambda o: o.rainfall, Direction.ABOVE),
    HazardType.HEAT: (lambda o: o.temperature, Direction.ABOVE),
    HazardType.COLD: (lambda o: o.temperature, Direction.BELOW),
    HazardType.DROUGHT: (lambda o: drought_index(o.rainfall, o.humidity), Direction.BELOW),
}


def duration_hours(hazard: HazardType, severity: AlertSeverity) -> float:
    base = BASE_DURATION_HOURS.get(hazard, DEFAULT_DURATION_HOURS)
    return base * SEVERITY_DURATION_MULTIPLIER[severity]


def recommended_actions(hazard: HazardType, severity: AlertSeverity) -> List[str]:
    return list(RECOMMENDED_ACTIONS.get(hazard, {}).get(severity, DEFAULT_ACTIONS))


def tier_probability(hazard: HazardType, severity: AlertSeverity) -> float:
    return PROBABILITY_OVERRIDES.get((hazard, severity), TIER_PROBABILITY[severity])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Predictor
# ═══════════════════════════════════════════════════════════════════════════

class HazardAlertPredictor:
    """
    Evaluate one observation against the per-hazard threshold table.

    Parameters
    ----------
    thresholds : mapping, optional
        Hazard → {severity → cut point}. Only hazards that have both a
        threshold row and a known driver are evaluated.
    min_probability : float
        Alerts at or below this probability are dropped.
    lead_time : timedelta
        Offset from "now" used as ``expected_time``.
    """

    name = "Ensemble Alert Predictor"
    version = "1.0.0"

    def __init__(
        self,
        thresholds: Optional[Mapping[HazardType, Mapping[AlertSeverity, float]]] = None,
        min_probability: float = 0.3,
        lead_time: timedelta = timedelta(hours=2),
        clock: Callable[[], datetime] = _utcnow,
    ):
        source = thresholds if thresholds is not None else DEFAULT_THRESHOLDS
        self.thresholds: ThresholdTable = {h: dict(t) for h, t in source.items()}
        self.min_probability = min_probability
        self.lead_time = lead_time
        self._clock = clock

    def classify(self, hazard: HazardType, value: float) -> Optional[AlertSeverity]:
        """Highest tier crossed by ``value`` for ``hazard`` (None if none)."""
        table = self.thresholds.get(hazard)
        driver = HAZARD_DRIVERS.get(hazard)
        if not table or driver is None:
            return None
        direction = driver[1]
        for severity in sorted(table, reverse=True):
            cut = table[severity]
            crossed = value >= cut if direction == Direction.ABOVE else value <= cut
            if crossed:
                return severity
        return None

    def predict(
        self,
        observation: WeatherObservation,
        *,
        expected_time: Optional[datetime] = None,
        forecast_day: Optional[int] = None,
    ) -> List[AlertPrediction]:
        when = expected_time or (self._clock() + self.lead_time)
        alerts: List[AlertPrediction] = []
        for hazard in self.thresholds:
            driver = HAZARD_DRIVERS.get(hazard)
            if driver is None:
                continue
            severity = self.classify(hazard, driver[0](observation))
            if severity is None:
                continue
            probability = tier_probability(hazard, severity)
            if probability <= self.min_probability:
                continue
            alerts.append(
                AlertPrediction(
                    hazard_type=hazard,
                    severity=severity,
                    probability=probability,
                    expected_time=when,
                    duration_hours=duration_hours(hazard, severity),
                    recommended_actions=recommended_actions(hazard, severity),
                    confidence=min(MAX_CONFIDENCE, probability + CONFIDENCE_MARGIN),
                    affected_areas=list(AFFECTED_AREAS),
                    forecast_day=forecast_day,
                )
            )
        return alerts

    def predict_from_forecast(
        self,
        forecast: Sequence[WeatherPrediction],
        days: int = 3,
    ) -> List[AlertPrediction]:
        """
        Repeat ``predict`` for each of the first ``days`` forecast days.

        Results are concatenated in day order without de-duplication.
        """
        alerts: List[AlertPrediction] = []
        for day in list(forecast)[:days]:
            recorded = datetime.combine(day.date, time(12, 0), tzinfo=timezone.utc)
            obs = WeatherObservation(
                temperature=day.temperature,
                humidity=day.humidity,
                rainfall=day.rainfall,
                pressure=FORECAST_PRESSURE_HPA,
                recorded_at=recorded,
            )
            alerts.extend(
                self.predict(
                    obs,
                    expected_time=self._clock() + self.lead_time + timedelta(days=day.day),
                    forecast_day=day.day,
                )
            )
        return alerts


# ═══════════════════════════════════════════════════════════════════════════
# Service wrapper
# ═══════════════════════════════════════════════════════════════════════════

def overall_risk(alerts: Sequence[AlertPrediction]) -> str:
    """Highest severity present, as a lowercase level ('none' if empty)."""
    if not alerts:
        return "none"
    return max(a.severity for a in alerts).name.lower()


class AlertPredictionService:
    """Current-conditions + short-range forecast alerting with a validity window."""

    name = "alert"
    version = "2.0.0"

    def __init__(
        self,
        predictor: Optional[HazardAlertPredictor] = None,
        *,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        cfg = config or default_settings
        self.predictor = predictor or HazardAlertPredictor(
            min_probability=cfg.ALERT_MIN_PROBABILITY,
            lead_time=timedelta(hours=cfg.ALERT_LEAD_HOURS),
            clock=clock,
        )
        self.forecast_days = cfg.ALERT_FORECAST_DAYS
        self.validity = timedelta(hours=cfg.ALERT_VALIDITY_HOURS)
        self._clock = clock
        self.is_initialized = False
        self.metrics = ModelMetrics()

    async def initialize(self) -> None:
        self.is_initialized = True

    def train(self, observations: Sequence[WeatherObservation]) -> None:
        """
        Record a calibration pass over historical observations.

        Thresholds are fixed; training only checks that enough history
        exists and counts how often each hazard would have fired.
        """
        if not self.is_initialized:
            raise ModelNotInitializedError(self.name)
        if len(observations) < MIN_TRAINING_OBSERVATIONS:
            raise InsufficientDataError(MIN_TRAINING_OBSERVATIONS, len(observations))
        fired = sum(len(self.predictor.predict(o)) for o in observations)
        self.metrics.trained_samples = len(observations)
        self.metrics.last_trained = self._clock()
        self.metrics.average_accuracy = 1.0 - fired / (len(observations) * max(1, len(self.predictor.thresholds)))
        logger.info("Alert predictor calibrated on %d observations (%d alerts)", len(observations), fired)

    def predict_alerts(
        self,
        current: WeatherObservation,
        forecast: Optional[Sequence[WeatherPrediction]] = None,
    ) -> ModelPredictionResult[AlertPrediction]:
        if not self.is_initialized:
            raise ModelNotInitializedError(self.name)

        alerts = self.predictor.predict(current)
        if forecast:
            alerts += self.predictor.predict_from_forecast(forecast, self.forecast_days)

        now = self._clock()
        self.metrics.predictions_count += 1
        self.metrics.last_prediction = now
        return ModelPredictionResult(
            predictions=alerts,
            confidence=float(np.mean([a.confidence for a in alerts])) if alerts else 0.0,
            model_type=self.predictor.name,
            generated_at=now,
            valid_until=now + self.validity,
            metadata={
                "forecast_based": bool(forecast),
                "overall_risk": overall_risk(alerts),
                "alert_count": len(alerts),
            },
        )
