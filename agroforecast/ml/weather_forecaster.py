"""
weather_forecaster.py — Multi-day weather forecast from a short daily history.

═══════════════════════════════════════════════════════════════════════════
PIPELINE
═══════════════════════════════════════════════════════════════════════════

    history (≥ 7 daily observations)
        │
        ├── ARIMA(3,1,2) on temperature ─────────► f_arima[1..H]
        ├── MLP on last observation row ─────────► f_nn (one step, reused)
        │
        ▼
    EnsembleCombiner(day k) = combine(f_arima[k], f_nn)   → temperature
        │
        ▼
    humidity / rainfall derived, not modelled:

        X_k = mean₇(X) + trend₇(X) + (T_k − 25) · ρ_X + U(−1, 1)

        ρ_humidity = −0.3    ρ_rainfall = +0.1

    confidence(k) = clamp(0.95 − 0.05·k + min(0.1, n/100), 0.5, 0.99)

═══════════════════════════════════════════════════════════════════════════
FALLBACK
═══════════════════════════════════════════════════════════════════════════

If the ensemble path raises anything, the forecast degrades to linear trend
extrapolation of the last observation:

    T_k = T_last + trend₇(T) · k + U(−1, 1)
    H_k = H_last ± 2.5
    R_k = R_last · U(0.5, 1.5)
    confidence(k) = max(0.3, 0.8 − 0.1·k)

Too-short history is never padded: it raises InsufficientDataError.
═══════════════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from agroforecast.core.config import Settings, settings as default_settings
from agroforecast.core.errors import InsufficientDataError, ModelNotInitializedError
from agroforecast.ml.arima_model import TimeSeriesForecastModel
from agroforecast.ml.ensemble import EnsembleCombiner
from agroforecast.ml.models import (
    ForecastSource,
    ModelPredictionResult,
    WeatherObservation,
    WeatherPrediction,
)
from agroforecast.ml.neural_model import NeuralForecastModel
from agroforecast.ml.preprocessing import observations_to_frame, trailing_stats

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BASELINE_TEMPERATURE = 25.0   # °C, reference for secondary-parameter correlation
HUMIDITY_CORRELATION = -0.3
RAINFALL_CORRELATION = 0.1
NOISE_AMPLITUDE = 1.0         # secondary parameters get U(-1, 1)

FALLBACK_BASE_CONFIDENCE = 0.8
FALLBACK_DAY_DECAY = 0.1
FALLBACK_MIN_CONFIDENCE = 0.3
FALLBACK_HUMIDITY_JITTER = 2.5

MODEL_TYPE = "Advanced Hybrid (ARIMA + Neural Network)"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TrainingReport:
    """Outcome of one ensemble training run."""

    samples: int
    locations: int
    arima_trained: bool = False
    nn_trained: bool = False
    errors: Dict[str, str] = field(default_factory=dict)
    trained_at: datetime = field(default_factory=_utcnow)

    @property
    def any_trained(self) -> bool:
        return self.arima_trained or self.nn_trained

    def to_dict(self) -> Dict[str, Any]:
        return {
            "samples": self.samples,
            "locations": self.locations,
            "arima_trained": self.arima_trained,
            "nn_trained": self.nn_trained,
            "errors": dict(self.errors),
            "trained_at": self.trained_at.isoformat(),
        }


class WeatherForecastService:
    """
    ARIMA + neural ensemble with derived secondary parameters.

    Parameters
    ----------
    arima, neural : base models (constructed from settings if omitted)
    combiner : EnsembleCombiner over ["arima", "neural"]
    clock : callable returning the current UTC datetime
    """

    name = "weather"
    version = "2.0.0"

    def __init__(
        self,
        arima: Optional[TimeSeriesForecastModel] = None,
        neural: Optional[NeuralForecastModel] = None,
        combiner: Optional[EnsembleCombiner] = None,
        *,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        cfg = config or default_settings
        self.arima = arima or TimeSeriesForecastModel(
            cfg.ARIMA_P, cfg.ARIMA_D, cfg.ARIMA_Q, random_state=cfg.RANDOM_SEED,
        )
        self.neural = neural or NeuralForecastModel(
            hidden_size=cfg.NN_HIDDEN_SIZE,
            learning_rate=cfg.NN_LEARNING_RATE,
            epochs=cfg.NN_EPOCHS,
            target_mse=cfg.NN_TARGET_MSE,
            random_state=cfg.RANDOM_SEED,
        )
        self.combiner = combiner or EnsembleCombiner(
            ["arima", "neural"], cfg.ENSEMBLE_WEIGHTS, cfg.ENSEMBLE_STRATEGY,
        )
        self.min_history = cfg.MIN_HISTORY_DAYS
        self.validity = timedelta(hours=cfg.PREDICTION_VALIDITY_HOURS)
        self.confidence_base = cfg.CONFIDENCE_BASE
        self.confidence_decay = cfg.CONFIDENCE_DAY_DECAY
        self.data_bonus_cap = cfg.CONFIDENCE_DATA_BONUS_CAP
        self.confidence_floor = cfg.CONFIDENCE_FLOOR
        self.confidence_ceiling = cfg.CONFIDENCE_CEILING
        self.random_seed = cfg.RANDOM_SEED
        self._rng = np.random.RandomState(cfg.RANDOM_SEED)
        self._clock = clock
        self.is_initialized = False
        self.last_training: Optional[TrainingReport] = None

    async def initialize(self) -> None:
        self.arima.initialize()
        self.neural.initialize()
        self.is_initialized = True
        logger.info("Weather forecast service initialised")

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train(self, batches: Sequence[Sequence[WeatherObservation]]) -> TrainingReport:
        """
        Retrain both base models on per-location histories.

        A failure in one base model is logged and recorded in the report;
        the ensemble keeps serving with whichever model succeeded.
        """
        if not self.is_initialized:
            raise ModelNotInitializedError(self.name)
        frames = [observations_to_frame(b) for b in batches if b]
        total = int(sum(len(f) for f in frames))
        if total == 0:
            raise InsufficientDataError(1, 0)

        report = TrainingReport(samples=total, locations=len(frames))

        try:
            self.arima.train_many([f["temperature"].to_numpy() for f in frames])
            report.arima_trained = True
        except Exception as e:
            logger.warning("ARIMA training failed: %s", e, extra={"model": "arima"})
            report.errors["arima"] = str(e)

        try:
            self.neural.train_many([f.to_numpy(dtype=float).tolist() for f in frames])
            report.nn_trained = True
        except Exception as e:
            logger.warning("Neural network training failed: %s", e, extra={"model": "neural"})
            report.errors["neural"] = str(e)

        self.last_training = report
        logger.info(
            "Weather ensemble trained on %d observations from %d locations (arima=%s, nn=%s)",
            total, len(frames), report.arima_trained, report.nn_trained,
        )
        return report

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def predict(
        self,
        history: Sequence[WeatherObservation],
        horizon_days: int = 7,
        reference_date: Optional[date] = None,
    ) -> List[WeatherPrediction]:
        """
        Forecast days 1..horizon_days after ``reference_date`` (today by default).

        Raises
        ------
        ModelNotInitializedError
            ``initialize()`` has not run.
        InsufficientDataError
            Fewer than ``min_history`` distinct observations.
        """
        if not self.is_initialized:
            raise ModelNotInitializedError(self.name)
        if horizon_days < 1:
            raise ValueError(f"horizon_days must be >= 1, got {horizon_days}")

        df = observations_to_frame(history)
        if len(df) < self.min_history:
            raise InsufficientDataError(self.min_history, len(df))

        start = reference_date or self._clock().date()
        try:
            return self._ensemble_forecast(df, horizon_days, start)
        except Exception as e:
            logger.warning("Ensemble forecast failed (%s); using trend fallback", e)
            return self._fallback_forecast(df, horizon_days, start)

    def forecast(
        self,
        history: Sequence[WeatherObservation],
        horizon_days: int = 7,
    ) -> ModelPredictionResult[WeatherPrediction]:
        """``predict`` wrapped in a result envelope with a validity window."""
        predictions = self.predict(history, horizon_days)
        now = self._clock()
        return ModelPredictionResult(
            predictions=predictions,
            confidence=float(np.mean([p.confidence for p in predictions])),
            model_type=MODEL_TYPE,
            generated_at=now,
            valid_until=now + self.validity,
            metadata={
                "history_length": len(history),
                "horizon_days": horizon_days,
                "fallback": any(p.source == ForecastSource.ML for p in predictions),
                "arima_trained": self.arima.is_trained,
                "nn_trained": self.neural.is_trained,
            },
        )

    def confidence_for_day(self, day: int, history_length: int) -> float:
        bonus = min(self.data_bonus_cap, history_length / 100.0)
        raw = self.confidence_base - self.confidence_decay * day + bonus
        return float(min(self.confidence_ceiling, max(self.confidence_floor, raw)))

    def _ensemble_forecast(
        self, df: pd.DataFrame, horizon: int, start: date,
    ) -> List[WeatherPrediction]:
        temps = df["temperature"].to_numpy(dtype=float)
        arima_values = self.arima.predict(temps, steps=horizon)

        nn_value: Optional[float] = None
        if self.neural.is_trained:
            nn_value = self.neural.predict(df.to_numpy(dtype=float).tolist())[0]

        used = ["arima"] + (["neural"] if nn_value is not None else [])
        contributions = self.combiner.contributions(used)
        hum_mean, hum_trend = trailing_stats(df, "humidity")
        rain_mean, rain_trend = trailing_stats(df, "rainfall")

        predictions = []
        for day in range(1, horizon + 1):
            inputs = [arima_values[day - 1]] + ([nn_value] if nn_value is not None else [])
            temperature = self.combiner.combine(inputs)
            if not np.isfinite(temperature):
                raise FloatingPointError(f"non-finite temperature on day {day}")

            delta = temperature - BASELINE_TEMPERATURE
            humidity = (
                hum_mean + hum_trend + delta * HUMIDITY_CORRELATION
                + self._rng.uniform(-NOISE_AMPLITUDE, NOISE_AMPLITUDE)
            )
            rainfall = (
                rain_mean + rain_trend + delta * RAINFALL_CORRELATION
                + self._rng.uniform(-NOISE_AMPLITUDE, NOISE_AMPLITUDE)
            )

            predictions.append(
                WeatherPrediction(
                    day=day,
                    date=start + timedelta(days=day),
                    temperature=round(temperature, 1),
                    humidity=float(round(min(100.0, max(0.0, humidity)))),
                    rainfall=round(max(0.0, rainfall), 1),
                    confidence=self.confidence_for_day(day, len(df)),
                    source=ForecastSource.HYBRID,
                    metadata={
                        "arima_contribution": round(contributions.get("arima", 0.0), 3),
                        "nn_contribution": round(contributions.get("neural", 0.0), 3),
                        "ensemble_method": self.combiner.strategy.value,
                    },
                )
            )
        return predictions

    def _fallback_forecast(
        self, df: pd.DataFrame, horizon: int, start: date,
    ) -> List[WeatherPrediction]:
        last = df.iloc[-1]
        _, temp_trend = trailing_stats(df, "temperature")
        rng = np.random.RandomState(self.random_seed)

        predictions = []
        for day in range(1, horizon + 1):
            temperature = last["temperature"] + temp_trend * day + rng.uniform(-1.0, 1.0)
            humidity = last["humidity"] + rng.uniform(-FALLBACK_HUMIDITY_JITTER, FALLBACK_HUMIDITY_JITTER)
            rainfall = last["rainfall"] * (0.5 + rng.random_sample())
            predictions.append(
                WeatherPrediction(
                    day=day,
                    date=start + timedelta(days=day),
                    temperature=round(float(temperature), 1),
                    humidity=float(round(min(100.0, max(0.0, humidity)))),
                    rainfall=round(max(0.0, float(rainfall)), 1),
                    confidence=max(
                        FALLBACK_MIN_CONFIDENCE,
                        FALLBACK_BASE_CONFIDENCE - FALLBACK_DAY_DECAY * day,
                    ),
                    source=ForecastSource.ML,
                    metadata={"fallback": True},
                )
            )
        return predictions
