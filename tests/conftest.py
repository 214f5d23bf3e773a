"""
Shared test fixtures.

The environment is pinned before any ``agroforecast`` import so the
module-level settings never point at Redis, PostgreSQL, Open-Meteo or a
running scheduler.
"""

from __future__ import annotations

import os

os.environ["REDIS_ENABLED"] = "false"
os.environ["EXTERNAL_PROVIDER_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["ENVIRONMENT"] = "testing"

import asyncio  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import List  # noqa: E402

import numpy as np  # noqa: E402
import pytest  # noqa: E402

from agroforecast.ml.models import Location, WeatherObservation  # noqa: E402

# Mid-July, so the crop season is Kharif
FIXED_NOW = datetime(2024, 7, 15, 12, 0, tzinfo=timezone.utc)

PUNE = Location(name="Pune", latitude=18.52, longitude=73.86)


def _fixed_clock() -> datetime:
    return FIXED_NOW


def synthetic_history(
    days: int = 30,
    *,
    end: datetime = FIXED_NOW,
    seed: int = 0,
    temperature: float = 25.0,
    humidity: float = 60.0,
    rainfall: float = 2.0,
) -> List[WeatherObservation]:
    """Daily readings ending at ``end``: T≈25±3, H≈60±10, R≈2±2 (clipped at 0)."""
    rng = np.random.RandomState(seed)
    start = end - timedelta(days=days - 1)
    return [
        WeatherObservation(
            temperature=round(temperature + rng.uniform(-3, 3), 2),
            humidity=round(float(np.clip(humidity + rng.uniform(-10, 10), 0, 100)), 2),
            rainfall=round(max(0.0, rainfall + rng.uniform(-2, 2)), 2),
            pressure=round(1013 + rng.uniform(-5, 5), 2),
            recorded_at=start + timedelta(days=i),
        )
        for i in range(days)
    ]


@pytest.fixture
def clock():
    return _fixed_clock


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def pune() -> Location:
    return PUNE


@pytest.fixture
def history() -> List[WeatherObservation]:
    return synthetic_history(30)


@pytest.fixture
def make_history():
    return synthetic_history


@pytest.fixture
def run():
    """Drive a coroutine to completion from a sync test."""
    return asyncio.run
