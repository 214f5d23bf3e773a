"""
ensemble.py — Per-day combination of base-model forecasts.

Strategies:
    weighted  F = Σ wᵢ · fᵢ            (weights renormalised to sum to 1)
    average   F = mean(fᵢ)
    median    F = median(fᵢ)            (robust vote when models disagree)

Default weights [0.6, 0.4] favour the time-series model over the neural
model. The weights are hand-tuned and exposed through settings.

When the number of forecasts passed in differs from the number of
registered weights (e.g. one base model failed to train) the weighted
strategy degrades to a plain average of whatever was supplied.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, List, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


class EnsembleStrategy(str, Enum):
    WEIGHTED = "weighted"
    AVERAGE = "average"
    MEDIAN = "median"


class EnsembleCombiner:
    """
    Combine scalar forecasts from named base models.

    Parameters
    ----------
    model_names : list of str
        Base-model names, in the order forecasts will be supplied.
    weights : list of float, optional
        One weight per model. Defaults to equal weights.
    strategy : str or EnsembleStrategy
    """

    def __init__(
        self,
        model_names: Sequence[str],
        weights: Optional[Sequence[float]] = None,
        strategy: EnsembleStrategy | str = EnsembleStrategy.WEIGHTED,
    ):
        self.strategy = EnsembleStrategy(strategy)
        self._names: List[str] = list(model_names)
        if weights is None:
            weights = [1.0] * len(self._names)
        if len(weights) != len(self._names):
            raise ValueError(
                f"{len(weights)} weights for {len(self._names)} models"
            )
        self._weights = self._normalise(weights)

    @staticmethod
    def _normalise(weights: Sequence[float]) -> np.ndarray:
        w = np.asarray(weights, dtype=float)
        if w.size == 0:
            return w
        if np.any(w < 0) or w.sum() <= 0:
            raise ValueError("Ensemble weights must be non-negative with a positive sum")
        return w / w.sum()

    @property
    def model_names(self) -> List[str]:
        return list(self._names)

    @property
    def weights(self) -> Dict[str, float]:
        return {n: float(w) for n, w in zip(self._names, self._weights)}

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def add_model(self, name: str, weight: float) -> None:
        raw = [*(self._weights.tolist()), weight]
        self._names.append(name)
        self._weights = self._normalise(raw)

    def remove_model(self, name: str) -> None:
        if name not in self._names:
            return
        idx = self._names.index(name)
        self._names.pop(idx)
        remaining = np.delete(self._weights, idx)
        self._weights = self._normalise(remaining) if remaining.size else remaining

    def update_weights(self, weights: Sequence[float]) -> None:
        if len(weights) != len(self._names):
            raise ValueError(
                f"{len(weights)} weights for {len(self._names)} models"
            )
        self._weights = self._normalise(weights)

    # ------------------------------------------------------------------
    # Combination
    # ------------------------------------------------------------------

    def combine(self, forecasts: Sequence[float]) -> float:
        values = np.asarray(forecasts, dtype=float)
        if values.size == 0:
            raise ValueError("No forecasts to combine")

        if self.strategy == EnsembleStrategy.MEDIAN:
            return float(np.median(values))
        if self.strategy == EnsembleStrategy.WEIGHTED and values.size == self._weights.size:
            return float(values @ self._weights)
        return float(values.mean())

    def contributions(self, available: Sequence[str]) -> Dict[str, float]:
        """Effective share of each model for a given set of supplied forecasts."""
        present = [n for n in self._names if n in set(available)]
        if not present:
            return {}
        if self.strategy == EnsembleStrategy.WEIGHTED and len(present) == len(self._names):
            return self.weights
        share = 1.0 / len(present)
        return {n: share for n in present}
