"""
neural_model.py — Small feed-forward regressor for a one-step temperature forecast.

Architecture
    input (7) → dense(hidden, ReLU) → dense(1, linear)

Features per observation row [T, H, R, P]:
    T, H, R, P, T·H, T², MA₅(T)

    MA₅(T) is the trailing 5-step mean of temperature including the current
    row; with fewer than 5 rows available it falls back to T.

Training
    Pairs: features(row_i) → T_{i+1}
    Inputs and targets standardised (scikit-learn StandardScaler).
    Per-sample SGD, samples shuffled each epoch, early stop once the epoch
    mean squared error (in standardised units) drops below ``target_mse``.
    Xavier-style uniform init: ±sqrt(2 / (fan_in + fan_out)).

This model exists to diversify the ensemble, not to be state of the art.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import numpy as np
from sklearn.preprocessing import StandardScaler

from agroforecast.core.errors import (
    InsufficientDataError,
    ModelNotInitializedError,
    NumericalDegeneracyError,
)
from agroforecast.ml.models import ModelMetrics

logger = logging.getLogger(__name__)

MIN_TRAINING_ROWS = 10
MOVING_AVERAGE_WINDOW = 5


def create_features(row: Sequence[float], trailing_temperatures: Sequence[float]) -> np.ndarray:
    """
    Build the augmented feature vector for one observation row.

    Parameters
    ----------
    row : [temperature, humidity, rainfall, pressure]
    trailing_temperatures : temperatures up to and including this row
    """
    t, h = float(row[0]), float(row[1])
    base = [float(v) for v in row]
    if len(trailing_temperatures) >= MOVING_AVERAGE_WINDOW:
        ma = float(np.mean(trailing_temperatures[-MOVING_AVERAGE_WINDOW:]))
    else:
        ma = t
    return np.array(base + [t * h, t * t, ma], dtype=float)


class NeuralForecastModel:
    """One-hidden-layer MLP trained with plain numpy SGD."""

    name = "NeuralNetwork"
    version = "1.0.0"

    def __init__(
        self,
        hidden_size: int = 10,
        learning_rate: float = 0.01,
        epochs: int = 100,
        target_mse: float = 0.001,
        random_state: Optional[int] = None,
    ):
        self.hidden_size = hidden_size
        self.learning_rate = learning_rate
        self.epochs = epochs
        self.target_mse = target_mse
        self._rng = np.random.RandomState(random_state)
        self._x_scaler = StandardScaler()
        self._y_scaler = StandardScaler()
        self.W1: Optional[np.ndarray] = None
        self.b1: Optional[np.ndarray] = None
        self.W2: Optional[np.ndarray] = None
        self.b2: float = 0.0
        self.is_initialized = False
        self.is_trained = False
        self.epochs_run = 0
        self.metrics = ModelMetrics()

    def initialize(self) -> None:
        self.is_initialized = True

    def _init_weights(self, n_inputs: int) -> None:
        lim1 = np.sqrt(2.0 / (n_inputs + self.hidden_size))
        lim2 = np.sqrt(2.0 / (self.hidden_size + 1))
        self.W1 = self._rng.uniform(-lim1, lim1, (self.hidden_size, n_inputs))
        self.b1 = np.zeros(self.hidden_size)
        self.W2 = self._rng.uniform(-lim2, lim2, self.hidden_size)
        self.b2 = 0.0

    def _forward(self, x: np.ndarray):
        pre = self.W1 @ x + self.b1
        hidden = np.maximum(pre, 0.0)
        return pre, hidden, float(self.W2 @ hidden + self.b2)

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train(self, rows: Sequence[Sequence[float]]) -> None:
        """Train on one chronologically ordered sequence of observation rows."""
        self.train_many([rows])

    def train_many(self, sequences: Sequence[Sequence[Sequence[float]]]) -> None:
        """
        Train on several independent sequences (one per location).

        Pairs never cross a sequence boundary.

        Raises
        ------
        InsufficientDataError
            Fewer than 10 rows in total.
        NumericalDegeneracyError
            Loss became non-finite during SGD.
        """
        if not self.is_initialized:
            raise ModelNotInitializedError(self.name)
        total_rows = sum(len(s) for s in sequences)
        if total_rows < MIN_TRAINING_ROWS:
            raise InsufficientDataError(MIN_TRAINING_ROWS, total_rows, what="rows")

        features, targets = [], []
        for rows in sequences:
            temps = [float(r[0]) for r in rows]
            for i in range(len(rows) - 1):
                features.append(create_features(rows[i], temps[: i + 1]))
                targets.append(temps[i + 1])
        if len(features) < MIN_TRAINING_ROWS - 1:
            raise InsufficientDataError(MIN_TRAINING_ROWS - 1, len(features), what="training pairs")
        X = np.vstack(features)
        y = np.asarray(targets, dtype=float).reshape(-1, 1)

        Xs = self._x_scaler.fit_transform(X)
        ys = self._y_scaler.fit_transform(y).ravel()
        self._init_weights(Xs.shape[1])

        lr = self.learning_rate
        mse = float("inf")
        epoch = 0
        for epoch in range(1, self.epochs + 1):
            order = self._rng.permutation(len(Xs))
            total = 0.0
            for idx in order:
                x, target = Xs[idx], ys[idx]
                pre, hidden, out = self._forward(x)
                err = out - target
                total += err * err

                grad_hidden = err * self.W2 * (pre > 0)
                self.W2 -= lr * err * hidden
                self.b2 -= lr * err
                self.W1 -= lr * np.outer(grad_hidden, x)
                self.b1 -= lr * grad_hidden

            mse = total / len(Xs)
            if not np.isfinite(mse):
                self.is_trained = False
                raise NumericalDegeneracyError(self.name, f"loss diverged at epoch {epoch}")
            if mse < self.target_mse:
                break

        self.epochs_run = epoch
        self.is_trained = True
        self.metrics.trained_samples = len(Xs)
        self.metrics.last_trained = datetime.now(timezone.utc)
        self.metrics.average_accuracy = max(0.0, 1.0 - mse)
        logger.info(
            "%s trained on %d pairs: %d epochs, mse=%.5f",
            self.name, len(Xs), epoch, mse,
        )

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def predict(self, rows: Sequence[Sequence[float]]) -> List[float]:
        """
        One-step forecast of the next temperature after the last row.

        An empty input yields [0.0].
        """
        if not rows:
            return [0.0]
        if not self.is_trained:
            raise ModelNotInitializedError(self.name)

        temps = [float(r[0]) for r in rows]
        x = create_features(rows[-1], temps)
        xs = self._x_scaler.transform(x.reshape(1, -1))[0]
        _, _, out = self._forward(xs)
        value = float(self._y_scaler.inverse_transform([[out]])[0][0])

        self.metrics.predictions_count += 1
        self.metrics.last_prediction = datetime.now(timezone.utc)
        return [value]
