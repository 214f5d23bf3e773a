"""
Observation history and location registry.

Both are consumed through small async protocols so the advisory service
does not care whether rows live in process memory or in the SQL database
(see ``agroforecast.storage.orm`` for the SQL-backed implementations).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Protocol, Sequence

from agroforecast.ml.models import Location, WeatherObservation

logger = logging.getLogger(__name__)


class ObservationRepository(Protocol):
    async def add(self, location: Location, observation: WeatherObservation) -> None: ...

    async def add_many(self, location: Location, observations: Sequence[WeatherObservation]) -> int: ...

    async def latest(self, location: Location, limit: int) -> List[WeatherObservation]:
        """Most recent ``limit`` observations, oldest first."""
        ...

    async def latest_one(self, location: Location) -> Optional[WeatherObservation]: ...


class LocationRegistry(Protocol):
    async def register(self, location: Location) -> Location: ...

    async def get_by_name(self, name: str) -> Optional[Location]: ...

    async def all(self) -> List[Location]: ...


# ═══════════════════════════════════════════════════════════════════════════
# In-memory implementations
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryObservationRepository:
    def __init__(self):
        self._rows: Dict[str, Dict[object, WeatherObservation]] = defaultdict(dict)

    async def add(self, location: Location, observation: WeatherObservation) -> None:
        # one reading per timestamp; later writes replace earlier ones
        self._rows[location.key][observation.recorded_at] = observation

    async def add_many(self, location: Location, observations: Sequence[WeatherObservation]) -> int:
        for obs in observations:
            await self.add(location, obs)
        return len(observations)

    async def latest(self, location: Location, limit: int) -> List[WeatherObservation]:
        if limit <= 0:
            return []
        rows = sorted(self._rows.get(location.key, {}).values(), key=lambda o: o.recorded_at)
        return rows[-limit:]

    async def latest_one(self, location: Location) -> Optional[WeatherObservation]:
        rows = await self.latest(location, 1)
        return rows[0] if rows else None

    def count(self, location: Location) -> int:
        return len(self._rows.get(location.key, {}))


class InMemoryLocationRegistry:
    def __init__(self, locations: Sequence[Location] = ()):
        self._by_key: Dict[str, Location] = {}
        self._next_id = 1
        for loc in locations:
            self._store(loc)

    def _store(self, location: Location) -> Location:
        existing = self._by_key.get(location.key)
        loc_id = location.id or (existing.id if existing else None)
        if loc_id is None:
            loc_id = self._next_id
        self._next_id = max(self._next_id, loc_id + 1)
        stored = Location(name=location.name, latitude=location.latitude, longitude=location.longitude, id=loc_id)
        self._by_key[stored.key] = stored
        return stored

    async def register(self, location: Location) -> Location:
        stored = self._store(location)
        logger.info("Location registered: %s", stored.name, extra={"location": stored.name})
        return stored

    async def get_by_name(self, name: str) -> Optional[Location]:
        return self._by_key.get(name.strip().lower())

    async def all(self) -> List[Location]:
        return sorted(self._by_key.values(), key=lambda loc: loc.id or 0)
