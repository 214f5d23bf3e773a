"""
Shared lifecycle contract for per-domain predictors.

    predictor = SoilHealthPredictor()
    await predictor.initialize()        # fit internal models (off the event loop)
    report = await predictor.predict(SoilInput(...))

Calling ``predict`` before ``initialize`` raises ModelNotInitializedError.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Generic, Optional, TypeVar

import numpy as np

from agroforecast.core.errors import ModelNotInitializedError
from agroforecast.ml.models import ModelMetrics

logger = logging.getLogger(__name__)

InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DomainPredictor(ABC, Generic[InputT, OutputT]):
    """Base class: lifecycle flags, metrics, seeded RNG, injectable clock."""

    name: str = "domain"
    version: str = "1.0.0"

    def __init__(self, random_state: Optional[int] = None, clock: Callable[[], datetime] = utcnow):
        self.is_initialized = False
        self.metrics = ModelMetrics()
        self._random_state = random_state
        self._rng = np.random.RandomState(random_state)
        self._clock = clock

    async def initialize(self) -> None:
        """Fit internal models in a worker thread."""
        await asyncio.to_thread(self._fit)
        self.is_initialized = True
        self.metrics.last_trained = self._clock()
        logger.info("%s predictor initialised", self.name)

    async def predict(self, inputs: InputT) -> OutputT:
        if not self.is_initialized:
            raise ModelNotInitializedError(self.name)
        result = self._predict(inputs)
        self.metrics.predictions_count += 1
        self.metrics.last_prediction = self._clock()
        return result

    def _fit(self) -> None:
        """Train internal models; default is a no-op for rule-based predictors."""

    @abstractmethod
    def _predict(self, inputs: InputT) -> OutputT:
        ...
