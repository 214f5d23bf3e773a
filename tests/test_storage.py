"""
Tests for the prediction cache, the in-memory repositories, the SQL
upsert statement builder and the SQL-backed stores (on in-memory SQLite).
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from agroforecast.core.database import Base
from agroforecast.core.errors import NotFoundError, PersistenceError
from agroforecast.ml.models import Location, WeatherObservation
from agroforecast.storage.orm import (
    SqlLocationRegistry,
    SqlObservationRepository,
    SqlPredictionStore,
    build_upsert_statement,
    prediction_values,
)
from agroforecast.storage.prediction_cache import (
    CachedPredictionRecord,
    InMemoryPredictionStore,
    PredictionCache,
    location_key,
)
from agroforecast.storage.repositories import (
    InMemoryLocationRegistry,
    InMemoryObservationRepository,
)


class _Clock:
    """Settable clock for validity-window tests."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


# ═══════════════════════════════════════════════════════════════════════════
# Prediction cache
# ═══════════════════════════════════════════════════════════════════════════

class TestPredictionCache:
    def test_store_and_read_back(self, run, now, pune):
        cache = PredictionCache(clock=_Clock(now))
        assert run(cache.store(pune, "weather", {"value": 1}, 0.8))
        record = run(cache.get_active("  PUNE ", "weather"))
        assert record.payload == {"value": 1}
        assert record.location_key == "pune"
        assert record.valid_until == now + timedelta(hours=24)

    def test_newer_write_replaces_older(self, run, now, pune):
        store = InMemoryPredictionStore()
        cache = PredictionCache(store, clock=_Clock(now))
        run(cache.store(pune, "weather", {"run": 1}, 0.7))
        run(cache.store(pune, "weather", {"run": 2}, 0.9))
        assert len(store) == 1
        assert run(cache.get_active(pune, "weather")).payload == {"run": 2}

    def test_expired_record_not_returned(self, run, now, pune):
        clock = _Clock(now)
        cache = PredictionCache(clock=clock)
        run(cache.store(pune, "alerts", [], 0.5, valid_until=now + timedelta(hours=6)))
        clock.now = now + timedelta(hours=6)
        assert run(cache.get_active(pune, "alerts")) is None
        assert run(cache.list_active()) == []

    def test_backend_failure_is_reported_not_raised(self, run, now, pune):
        backend = MagicMock()
        backend.upsert = AsyncMock(side_effect=PersistenceError("upsert", "database offline"))
        backend.get = AsyncMock(side_effect=RuntimeError("database offline"))
        cache = PredictionCache(backend, clock=_Clock(now))
        assert run(cache.store(pune, "weather", {}, 0.5)) is False
        assert run(cache.get_active(pune, "weather")) is None

    def test_payload_serialised_to_json_types(self, run, now, pune):
        cache = PredictionCache(clock=_Clock(now))
        run(cache.store(pune, "weather", {"when": now}, 0.5))
        assert run(cache.get_active(pune, "weather")).payload == {"when": str(now)}

    def test_summary_groups_by_type(self, run, now):
        cache = PredictionCache(clock=_Clock(now))
        run(cache.store("Pune", "weather", {}, 0.8))
        run(cache.store("Nashik", "weather", {}, 0.6))
        run(cache.store("Pune", "crops", {}, 0.9))
        summary = run(cache.summary())
        assert summary["weather"]["count"] == 2
        assert summary["weather"]["average_confidence"] == pytest.approx(0.7)
        assert summary["crops"]["count"] == 1

    def test_location_key(self, pune):
        assert location_key(pune) == location_key("pune ") == "pune"


# ═══════════════════════════════════════════════════════════════════════════
# In-memory repositories
# ═══════════════════════════════════════════════════════════════════════════

class TestObservationRepository:
    def test_latest_is_oldest_first(self, run, pune, history):
        repo = InMemoryObservationRepository()
        run(repo.add_many(pune, list(reversed(history))))
        latest = run(repo.latest(pune, 5))
        assert latest == history[-5:]
        assert run(repo.latest_one(pune)) == history[-1]

    def test_same_timestamp_replaces(self, run, pune, history):
        repo = InMemoryObservationRepository()
        run(repo.add_many(pune, history[:3]))
        run(repo.add(pune, history[2]))
        assert repo.count(pune) == 3

    def test_empty(self, run, pune):
        repo = InMemoryObservationRepository()
        assert run(repo.latest(pune, 0)) == []
        assert run(repo.latest_one(pune)) is None


class TestLocationRegistry:
    def test_register_assigns_ids(self, run):
        registry = InMemoryLocationRegistry()
        pune = run(registry.register(Location("Pune", 18.52, 73.86)))
        nashik = run(registry.register(Location("Nashik")))
        assert (pune.id, nashik.id) == (1, 2)
        assert [loc.name for loc in run(registry.all())] == ["Pune", "Nashik"]

    def test_reregister_keeps_id(self, run):
        registry = InMemoryLocationRegistry([Location("Pune")])
        again = run(registry.register(Location("pune", 18.5, 73.9)))
        assert again.id == 1
        assert run(registry.get_by_name(" PUNE ")).latitude == 18.5


# ═══════════════════════════════════════════════════════════════════════════
# SQL upsert
# ═══════════════════════════════════════════════════════════════════════════

def _record(now) -> CachedPredictionRecord:
    return CachedPredictionRecord(
        location_key="pune", prediction_type="weather", payload={"a": 1},
        confidence=0.8, generated_at=now, valid_until=now + timedelta(hours=24),
        model_version="2.0.0",
    )


class TestUpsertStatement:
    @pytest.mark.parametrize("name, dialect", [("postgresql", postgresql.dialect()), ("sqlite", sqlite.dialect())])
    def test_on_conflict_update(self, now, name, dialect):
        stmt = build_upsert_statement(name, prediction_values(_record(now)))
        sql = str(stmt.compile(dialect=dialect))
        assert "ON CONFLICT (city_name, prediction_type) DO UPDATE" in sql
        assert "valid_until" in sql

    def test_unsupported_dialect(self, now):
        with pytest.raises(PersistenceError):
            build_upsert_statement("mysql", prediction_values(_record(now)))


# ═══════════════════════════════════════════════════════════════════════════
# SQL-backed stores
# ═══════════════════════════════════════════════════════════════════════════

async def _sqlite_engine():
    # one shared connection, so every session sees the same in-memory database
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


class TestSqlStores:
    def test_prediction_cache_round_trip(self, run, now, pune):
        clock = _Clock(now)

        async def scenario():
            engine = await _sqlite_engine()
            try:
                store = SqlPredictionStore(async_sessionmaker(engine, expire_on_commit=False))
                cache = PredictionCache(store, clock=clock)
                assert await cache.store(pune, "weather", {"run": 1}, 0.7)
                assert await cache.store(pune, "weather", {"run": 2}, 0.9)
                active = await cache.get_active("PUNE", "weather")
                listed = await cache.list_active(pune)
                clock.now = now + timedelta(hours=25)
                expired = await cache.get_active(pune, "weather")
                after = await cache.list_active()
            finally:
                await engine.dispose()
            return active, listed, expired, after

        active, listed, expired, after = run(scenario())
        assert active.payload == {"run": 2}
        assert active.confidence == pytest.approx(0.9)
        assert active.valid_until == now + timedelta(hours=24)
        assert active.valid_until.tzinfo is not None
        assert [r.payload for r in listed] == [{"run": 2}]
        assert expired is None
        assert after == []

    def test_observation_repository(self, run, history):
        async def scenario():
            engine = await _sqlite_engine()
            try:
                factory = async_sessionmaker(engine, expire_on_commit=False)
                pune = await SqlLocationRegistry(factory).register(Location("Pune", 18.52, 73.86))
                repo = SqlObservationRepository(factory)
                await repo.add_many(pune, list(reversed(history)))
                corrected = WeatherObservation(
                    temperature=40.0, humidity=20.0, rainfall=0.0, pressure=1000.0,
                    recorded_at=history[-1].recorded_at,
                )
                await repo.add(pune, corrected)
                latest = await repo.latest(Location("pune"), 5)
                newest = await repo.latest_one(pune)
                with pytest.raises(NotFoundError):
                    await repo.latest(Location("Atlantis"), 5)
            finally:
                await engine.dispose()
            return latest, newest

        latest, newest = run(scenario())
        assert [o.recorded_at for o in latest] == [o.recorded_at for o in history[-5:]]
        assert [o.temperature for o in latest[:-1]] == [o.temperature for o in history[-5:-1]]
        assert newest == latest[-1]
        assert newest.temperature == 40.0

    def test_location_registry(self, run):
        async def scenario():
            engine = await _sqlite_engine()
            try:
                registry = SqlLocationRegistry(async_sessionmaker(engine, expire_on_commit=False))
                pune = await registry.register(Location("Pune", 18.52, 73.86))
                nashik = await registry.register(Location("Nashik"))
                again = await registry.register(Location("pune", 18.5, None))
                found = await registry.get_by_name(" PUNE ")
                missing = await registry.get_by_name("Atlantis")
                everything = await registry.all()
            finally:
                await engine.dispose()
            return pune, nashik, again, found, missing, everything

        pune, nashik, again, found, missing, everything = run(scenario())
        assert pune.id != nashik.id
        assert again.id == pune.id
        assert found.latitude == 18.5
        assert found.longitude == 73.86
        assert missing is None
        assert [loc.name for loc in everything] == ["Pune", "Nashik"]
