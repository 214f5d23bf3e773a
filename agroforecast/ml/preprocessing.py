"""
preprocessing.py — History shaping and evaluation helpers for the forecasters.

Handles:
    • Observation list → chronologically sorted DataFrame
    • Trailing-window statistics (mean, linear trend) per weather parameter
    • Lag-matrix construction for autoregressive least squares
    • Integer-order differencing and its inverse
    • Regression evaluation metrics (MSE / MAE / R²)

All public functions return plain numpy arrays or pandas DataFrames so they
stay framework-agnostic.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score

from agroforecast.ml.models import WeatherObservation

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

WEATHER_COLUMNS: List[str] = ["temperature", "humidity", "rainfall", "pressure"]

TRAILING_WINDOW = 7  # days used for secondary-parameter derivation


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------


def observations_to_frame(history: Sequence[WeatherObservation]) -> pd.DataFrame:
    """
    Convert observations into a DataFrame indexed by ``recorded_at``.

    Rows are sorted oldest → newest; duplicate timestamps keep the last
    reading.
    """
    if not history:
        return pd.DataFrame(columns=WEATHER_COLUMNS)

    df = pd.DataFrame(
        {
            "recorded_at": [o.recorded_at for o in history],
            **{col: [float(getattr(o, col)) for o in history] for col in WEATHER_COLUMNS},
        }
    )
    df = df.drop_duplicates(subset="recorded_at", keep="last")
    return df.sort_values("recorded_at").set_index("recorded_at")


def trailing_stats(df: pd.DataFrame, column: str, window: int = TRAILING_WINDOW) -> Tuple[float, float]:
    """
    Mean and per-step linear trend of the last ``window`` values.

    Trend is (last − first) / n over the window, matching the simple
    difference-quotient used for fallback extrapolation.
    """
    recent = df[column].tail(window).to_numpy(dtype=float)
    if recent.size == 0:
        return 0.0, 0.0
    mean = float(recent.mean())
    trend = float((recent[-1] - recent[0]) / recent.size)
    return mean, trend


# ---------------------------------------------------------------------------
# Time-series transforms
# ---------------------------------------------------------------------------


def difference(series: np.ndarray, order: int) -> np.ndarray:
    """Apply ``order`` rounds of first differencing."""
    out = np.asarray(series, dtype=float)
    for _ in range(order):
        out = np.diff(out)
    return out


def undifference(forecast_diffs: np.ndarray, history: np.ndarray, order: int) -> np.ndarray:
    """
    Integrate forecast differences back to the original scale.

    ``history`` is the undifferenced series the forecast continues from.
    For order d, the tail values of each intermediate differencing level are
    used as integration constants.
    """
    values = np.asarray(forecast_diffs, dtype=float)
    history = np.asarray(history, dtype=float)
    # Last value at each differencing level 0..d-1
    anchors = []
    level = history
    for _ in range(order):
        anchors.append(level[-1])
        level = np.diff(level)
    for anchor in reversed(anchors):
        values = anchor + np.cumsum(values)
    return values


def build_lag_matrix(series: np.ndarray, p: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Design matrix for AR(p) least squares.

    Row t holds [x[t-1], x[t-2], ..., x[t-p]] and the target is x[t].
    """
    series = np.asarray(series, dtype=float)
    n = series.size - p
    if n <= 0:
        return np.empty((0, p)), np.empty(0)
    X = np.column_stack([series[p - i - 1: p - i - 1 + n] for i in range(p)])
    y = series[p:]
    return X, y


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def regression_metrics(y_true: Sequence[float], y_pred: Sequence[float]) -> Dict[str, float]:
    """MSE / MAE / R² for a pair of aligned arrays."""
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    if y_true.size == 0:
        return {"mse": 0.0, "mae": 0.0, "r2": 0.0}
    r2 = float(r2_score(y_true, y_pred)) if y_true.size > 1 else 0.0
    return {
        "mse": round(float(mean_squared_error(y_true, y_pred)), 6),
        "mae": round(float(mean_absolute_error(y_true, y_pred)), 6),
        "r2": round(r2, 6),
    }
