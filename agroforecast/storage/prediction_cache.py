"""
Prediction cache — latest result per (location, prediction type).

    cache = PredictionCache(InMemoryPredictionStore())
    await cache.store(location, "weather", result.to_dict(), result.confidence)
    record = await cache.get_active(location, "weather")

Writes are upserts: a newer run replaces the previous row for the same key.
"Active" reads filter on ``valid_until > now``; stale rows are left in
place and simply stop being returned. Cache I/O failures are logged and
swallowed because callers always hold the live result.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, Union

import numpy as np

from agroforecast.core.config import Settings, settings as default_settings
from agroforecast.core.errors import PersistenceError
from agroforecast.ml.models import Location

logger = logging.getLogger(__name__)

LocationRef = Union[Location, str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def location_key(location: LocationRef) -> str:
    if isinstance(location, Location):
        return location.key
    return location.strip().lower()


def to_jsonable(payload: Any) -> Any:
    """Serialise to plain JSON types, matching what the SQL backend stores."""
    if hasattr(payload, "to_dict"):
        payload = payload.to_dict()
    return json.loads(json.dumps(payload, default=str))


@dataclass
class CachedPredictionRecord:
    location_key: str
    prediction_type: str
    payload: Any
    confidence: float
    generated_at: datetime
    valid_until: datetime
    model_version: str

    def is_active(self, now: datetime) -> bool:
        return self.valid_until > now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location": self.location_key,
            "prediction_type": self.prediction_type,
            "payload": self.payload,
            "confidence": round(self.confidence, 4),
            "generated_at": self.generated_at.isoformat(),
            "valid_until": self.valid_until.isoformat(),
            "model_version": self.model_version,
        }


class PredictionStore(Protocol):
    async def upsert(self, record: CachedPredictionRecord) -> None: ...

    async def get(self, location_key: str, prediction_type: str) -> Optional[CachedPredictionRecord]: ...

    async def list_active(
        self,
        now: datetime,
        location_key: Optional[str] = None,
        prediction_type: Optional[str] = None,
    ) -> List[CachedPredictionRecord]: ...


class InMemoryPredictionStore:
    """Dict keyed by (location_key, prediction_type)."""

    def __init__(self):
        self._rows: Dict[Tuple[str, str], CachedPredictionRecord] = {}

    async def upsert(self, record: CachedPredictionRecord) -> None:
        self._rows[(record.location_key, record.prediction_type)] = record

    async def get(self, location_key: str, prediction_type: str) -> Optional[CachedPredictionRecord]:
        return self._rows.get((location_key, prediction_type))

    async def list_active(
        self,
        now: datetime,
        location_key: Optional[str] = None,
        prediction_type: Optional[str] = None,
    ) -> List[CachedPredictionRecord]:
        rows = [
            r for r in self._rows.values()
            if r.is_active(now)
            and (location_key is None or r.location_key == location_key)
            and (prediction_type is None or r.prediction_type == prediction_type)
        ]
        return sorted(rows, key=lambda r: r.generated_at, reverse=True)

    def __len__(self) -> int:
        return len(self._rows)


class PredictionCache:
    def __init__(
        self,
        store: Optional[PredictionStore] = None,
        *,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        cfg = config or default_settings
        self.backend = store if store is not None else InMemoryPredictionStore()
        self.default_validity = timedelta(hours=cfg.PREDICTION_VALIDITY_HOURS)
        self.model_version = cfg.MODEL_VERSION
        self._clock = clock

    async def store(
        self,
        location: LocationRef,
        prediction_type: str,
        payload: Any,
        confidence: float,
        valid_until: Optional[datetime] = None,
    ) -> bool:
        """Upsert one record. Returns False (and logs) when the write fails."""
        now = self._clock()
        key = location_key(location)
        try:
            record = CachedPredictionRecord(
                location_key=key,
                prediction_type=prediction_type,
                payload=to_jsonable(payload),
                confidence=float(confidence),
                generated_at=now,
                valid_until=valid_until or now + self.default_validity,
                model_version=self.model_version,
            )
            await self.backend.upsert(record)
        except Exception as e:
            err = e if isinstance(e, PersistenceError) else PersistenceError("store", str(e))
            logger.warning(
                "Failed to cache %s prediction for %s: %s", prediction_type, key, err.message,
                extra={"location": key, "prediction_type": prediction_type},
            )
            return False
        logger.debug(
            "Cached %s prediction for %s", prediction_type, key,
            extra={"location": key, "prediction_type": prediction_type, "confidence": confidence},
        )
        return True

    async def get_active(self, location: LocationRef, prediction_type: str) -> Optional[CachedPredictionRecord]:
        key = location_key(location)
        try:
            record = await self.backend.get(key, prediction_type)
        except Exception as e:
            logger.warning("Failed to read cached %s prediction for %s: %s", prediction_type, key, e)
            return None
        if record is None or not record.is_active(self._clock()):
            return None
        return record

    async def list_active(
        self,
        location: Optional[LocationRef] = None,
        prediction_type: Optional[str] = None,
    ) -> List[CachedPredictionRecord]:
        key = location_key(location) if location is not None else None
        try:
            return await self.backend.list_active(self._clock(), key, prediction_type)
        except Exception as e:
            logger.warning("Failed to list cached predictions: %s", e)
            return []

    async def summary(self) -> Dict[str, Dict[str, Any]]:
        """Active predictions grouped by type: count, mean confidence, latest generation."""
        grouped: Dict[str, List[CachedPredictionRecord]] = defaultdict(list)
        for record in await self.list_active():
            grouped[record.prediction_type].append(record)
        return {
            ptype: {
                "count": len(rows),
                "average_confidence": round(float(np.mean([r.confidence for r in rows])), 4),
                "latest_prediction": max(r.generated_at for r in rows).isoformat(),
            }
            for ptype, rows in grouped.items()
        }
