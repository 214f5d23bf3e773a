"""
arima_model.py — Autoregressive forecaster for one scalar weather series.

Model
    ARIMA(p, d, q) in its simplest usable form:

        Δᵈx_t = Σᵢ φᵢ · Δᵈx_{t-i} + Σⱼ θⱼ · ε_{t-j}

    • d rounds of differencing remove trend.
    • φ (AR) is fitted by ordinary least squares on lagged differences.
    • θ (MA) is NOT estimated; each training run draws small coefficients
      from U[-0.05, 0.05). The moving-average part therefore only nudges
      the forecast by a fraction of recent in-sample residuals.
    • ε buffer is seeded from the OLS in-sample residuals; future
      innovations enter the recursion at their expectation (zero), so a
      forecast is a pure function of (model state, input series).

Prediction is recursive: each forecast difference is appended to the working
series before the next step, so multi-day forecasts compound. Differences are
integrated back to the original scale at the end.

Degenerate regressions (rank-deficient or non-finite solutions, e.g. a flat
series) are logged and replaced by the default coefficients 0.1.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import numpy as np

from agroforecast.core.errors import (
    InsufficientDataError,
    ModelNotInitializedError,
    NumericalDegeneracyError,
)
from agroforecast.ml.models import ModelMetrics
from agroforecast.ml.preprocessing import (
    build_lag_matrix,
    difference,
    regression_metrics,
    undifference,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_COEFFICIENT = 0.1
MA_PERTURBATION = 0.05     # θ ~ U[-MA_PERTURBATION, MA_PERTURBATION)
MIN_EXTRA_SAMPLES = 10     # train needs p + d + q + MIN_EXTRA_SAMPLES points
RESIDUAL_BUFFER_SIZE = 10


class TimeSeriesForecastModel:
    """
    ARIMA-style forecaster.

    Parameters
    ----------
    p, d, q : int
        Autoregressive order, differencing order, moving-average order.
    random_state : int, optional
        Seed for the MA perturbation draw.
    """

    name = "ARIMA"
    version = "1.0.0"

    def __init__(self, p: int = 2, d: int = 1, q: int = 2, random_state: Optional[int] = None):
        if p < 1 or d < 0 or q < 0:
            raise ValueError(f"Invalid ARIMA order ({p}, {d}, {q})")
        self.p = p
        self.d = d
        self.q = q
        self._rng = np.random.RandomState(random_state)
        self.ar_coefficients = np.zeros(p)
        self.ma_coefficients = np.zeros(q)
        self._residuals: List[float] = []
        self.is_initialized = False
        self.is_trained = False
        self.metrics = ModelMetrics()

    @property
    def min_training_length(self) -> int:
        return self.p + self.d + self.q + MIN_EXTRA_SAMPLES

    def initialize(self) -> None:
        """Reset to default coefficients."""
        self.ar_coefficients = np.full(self.p, DEFAULT_COEFFICIENT)
        self.ma_coefficients = np.full(self.q, DEFAULT_COEFFICIENT)
        self._residuals = []
        self.is_initialized = True
        self.is_trained = False

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train(self, series: Sequence[float]) -> None:
        """Fit on a single one-dimensional history."""
        self.train_many([series])

    def train_many(self, batches: Sequence[Sequence[float]]) -> None:
        """
        Fit on several independent histories (e.g. one per location).

        Each batch is differenced on its own so no artificial jump is
        introduced where one location's series ends and the next begins.
        """
        if not self.is_initialized:
            raise ModelNotInitializedError(self.name)

        arrays = [np.asarray(b, dtype=float).ravel() for b in batches if len(b) > 0]
        total = int(sum(a.size for a in arrays))
        if total < self.min_training_length:
            raise InsufficientDataError(self.min_training_length, total)

        rows, targets = [], []
        for arr in arrays:
            X, y = build_lag_matrix(difference(arr, self.d), self.p)
            if y.size:
                rows.append(X)
                targets.append(y)

        try:
            if not rows:
                raise NumericalDegeneracyError(self.name, "no usable lag rows")
            X = np.vstack(rows)
            y = np.concatenate(targets)
            coef = self._solve(X, y)
        except NumericalDegeneracyError as e:
            logger.warning("%s; falling back to default coefficients", e.message)
            self.ar_coefficients = np.full(self.p, DEFAULT_COEFFICIENT)
            self._residuals = []
        else:
            self.ar_coefficients = coef
            fitted = X @ coef
            residuals = y - fitted
            self._residuals = residuals[-RESIDUAL_BUFFER_SIZE:].tolist()
            scores = regression_metrics(y, fitted)
            self.metrics.average_accuracy = max(0.0, scores["r2"])

        self.ma_coefficients = self._rng.uniform(-MA_PERTURBATION, MA_PERTURBATION, self.q)
        self.is_trained = True
        self.metrics.trained_samples = total
        self.metrics.last_trained = datetime.now(timezone.utc)
        logger.info(
            "%s(%d,%d,%d) trained on %d points: ar=%s",
            self.name, self.p, self.d, self.q, total,
            np.round(self.ar_coefficients, 4).tolist(),
        )

    def _solve(self, X: np.ndarray, y: np.ndarray) -> np.ndarray:
        if X.shape[0] < self.p:
            raise NumericalDegeneracyError(
                self.name, f"{X.shape[0]} rows for {self.p} coefficients"
            )
        coef, _, rank, _ = np.linalg.lstsq(X, y, rcond=None)
        if rank < self.p:
            raise NumericalDegeneracyError(self.name, f"rank {rank} < {self.p}")
        if not np.all(np.isfinite(coef)):
            raise NumericalDegeneracyError(self.name, "non-finite coefficients")
        return coef

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def predict(self, series: Sequence[float], steps: int = 7) -> List[float]:
        """
        Forecast ``steps`` future values continuing ``series``.

        Returns values on the original (undifferenced) scale.
        """
        if not self.is_initialized:
            raise ModelNotInitializedError(self.name)
        history = np.asarray(series, dtype=float).ravel()
        needed = self.p + self.d + 1
        if history.size < needed:
            raise InsufficientDataError(needed, int(history.size))

        working = difference(history, self.d).tolist()
        residuals = list(self._residuals)
        if len(residuals) < self.q:
            residuals = [0.0] * (self.q - len(residuals)) + residuals

        diffs = []
        for _ in range(steps):
            ar_term = sum(self.ar_coefficients[i] * working[-1 - i] for i in range(self.p))
            ma_term = sum(self.ma_coefficients[j] * residuals[-1 - j] for j in range(self.q))
            value = float(ar_term + ma_term)
            working.append(value)
            residuals.append(0.0)
            diffs.append(value)

        forecast = undifference(np.asarray(diffs), history, self.d)
        self.metrics.predictions_count += 1
        self.metrics.last_prediction = datetime.now(timezone.utc)
        return [float(v) for v in forecast]
