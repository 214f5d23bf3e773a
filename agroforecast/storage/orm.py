"""
SQL persistence: ORM tables and SQL-backed stores.

Tables
──────
    locations             id, name (unique), latitude, longitude
    weather_observations  one row per (location_id, recorded_at)
    ml_predictions        one row per (city_name, prediction_type)
                          UNIQUE + index idx_ml_city_type on that pair

Prediction writes are ``INSERT … ON CONFLICT (city_name, prediction_type)
DO UPDATE`` on PostgreSQL and SQLite, so concurrent writers for the same
key resolve last-writer-wins inside the database.

Every SQLAlchemy failure is re-raised as PersistenceError; the prediction
cache above this layer decides whether it is fatal.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql.dml import Insert

from agroforecast.core.database import Base, get_session_factory
from agroforecast.core.errors import NotFoundError, PersistenceError
from agroforecast.ml.models import Location, WeatherObservation
from agroforecast.storage.prediction_cache import CachedPredictionRecord

logger = logging.getLogger(__name__)

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # SQLite returns naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Tables
# ═══════════════════════════════════════════════════════════════════════════

class LocationRow(Base):
    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def to_location(self) -> Location:
        return Location(name=self.name, latitude=self.latitude, longitude=self.longitude, id=self.id)


class ObservationRow(Base):
    __tablename__ = "weather_observations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="CASCADE"), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    temperature: Mapped[float] = mapped_column(Float, nullable=False)
    humidity: Mapped[float] = mapped_column(Float, nullable=False)
    rainfall: Mapped[float] = mapped_column(Float, nullable=False)
    pressure: Mapped[float] = mapped_column(Float, nullable=False)
    wind_speed: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    cloud_cover: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    solar_radiation: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    __table_args__ = (
        UniqueConstraint("location_id", "recorded_at", name="uq_observation_location_time"),
        Index("idx_observation_location_time", "location_id", "recorded_at"),
    )

    def to_observation(self) -> WeatherObservation:
        return WeatherObservation(
            temperature=self.temperature,
            humidity=self.humidity,
            rainfall=self.rainfall,
            pressure=self.pressure,
            recorded_at=_aware(self.recorded_at),
            wind_speed=self.wind_speed,
            cloud_cover=self.cloud_cover,
            solar_radiation=self.solar_radiation,
        )


class PredictionRow(Base):
    __tablename__ = "ml_predictions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    city_name: Mapped[str] = mapped_column(String(100), nullable=False)
    prediction_type: Mapped[str] = mapped_column(String(50), nullable=False)
    prediction_data: Mapped[Any] = mapped_column(JSONType, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    model_version: Mapped[str] = mapped_column(String(20), nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("city_name", "prediction_type", name="uq_ml_city_type"),
        Index("idx_ml_city_type", "city_name", "prediction_type"),
    )

    def to_record(self) -> CachedPredictionRecord:
        return CachedPredictionRecord(
            location_key=self.city_name,
            prediction_type=self.prediction_type,
            payload=self.prediction_data,
            confidence=self.confidence,
            generated_at=_aware(self.generated_at),
            valid_until=_aware(self.valid_until),
            model_version=self.model_version,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Upsert
# ═══════════════════════════════════════════════════════════════════════════

_UPSERT_DIALECTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def prediction_values(record: CachedPredictionRecord) -> Dict[str, Any]:
    return {
        "city_name": record.location_key,
        "prediction_type": record.prediction_type,
        "prediction_data": record.payload,
        "confidence": record.confidence,
        "model_version": record.model_version,
        "generated_at": record.generated_at,
        "valid_until": record.valid_until,
    }


def build_upsert_statement(dialect_name: str, values: Dict[str, Any]) -> Insert:
    """INSERT … ON CONFLICT (city_name, prediction_type) DO UPDATE for ``dialect_name``."""
    insert_fn = _UPSERT_DIALECTS.get(dialect_name)
    if insert_fn is None:
        raise PersistenceError("upsert", f"dialect '{dialect_name}' has no ON CONFLICT support")
    stmt = insert_fn(PredictionRow).values(**values)
    updatable = ("prediction_data", "confidence", "model_version", "generated_at", "valid_until")
    return stmt.on_conflict_do_update(
        index_elements=["city_name", "prediction_type"],
        set_={col: stmt.excluded[col] for col in updatable},
    )


# ═══════════════════════════════════════════════════════════════════════════
# SQL-backed stores
# ═══════════════════════════════════════════════════════════════════════════

class _SqlStore:
    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._factory = session_factory

    @property
    def sessions(self) -> async_sessionmaker[AsyncSession]:
        if self._factory is None:
            self._factory = get_session_factory()
        return self._factory


class SqlPredictionStore(_SqlStore):
    async def upsert(self, record: CachedPredictionRecord) -> None:
        try:
            async with self.sessions() as session:
                dialect = session.get_bind().dialect.name
                await session.execute(build_upsert_statement(dialect, prediction_values(record)))
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError("upsert", str(e), location=record.location_key) from e

    async def get(self, location_key: str, prediction_type: str) -> Optional[CachedPredictionRecord]:
        try:
            async with self.sessions() as session:
                row = await session.scalar(
                    select(PredictionRow).where(
                        PredictionRow.city_name == location_key,
                        PredictionRow.prediction_type == prediction_type,
                    )
                )
        except SQLAlchemyError as e:
            raise PersistenceError("get", str(e), location=location_key) from e
        return row.to_record() if row is not None else None

    async def list_active(
        self,
        now: datetime,
        location_key: Optional[str] = None,
        prediction_type: Optional[str] = None,
    ) -> List[CachedPredictionRecord]:
        stmt = select(PredictionRow).where(PredictionRow.valid_until > now)
        if location_key is not None:
            stmt = stmt.where(PredictionRow.city_name == location_key)
        if prediction_type is not None:
            stmt = stmt.where(PredictionRow.prediction_type == prediction_type)
        stmt = stmt.order_by(PredictionRow.generated_at.desc())
        try:
            async with self.sessions() as session:
                rows = (await session.scalars(stmt)).all()
        except SQLAlchemyError as e:
            raise PersistenceError("list_active", str(e)) from e
        return [r.to_record() for r in rows]


class SqlLocationRegistry(_SqlStore):
    async def _find(self, session: AsyncSession, name: str) -> Optional[LocationRow]:
        return await session.scalar(
            select(LocationRow).where(func.lower(LocationRow.name) == name.strip().lower())
        )

    async def register(self, location: Location) -> Location:
        try:
            async with self.sessions() as session:
                row = await self._find(session, location.name)
                if row is None:
                    row = LocationRow(name=location.name)
                    session.add(row)
                if location.latitude is not None:
                    row.latitude = location.latitude
                if location.longitude is not None:
                    row.longitude = location.longitude
                await session.commit()
                await session.refresh(row)
                stored = row.to_location()
        except SQLAlchemyError as e:
            raise PersistenceError("register_location", str(e), location=location.name) from e
        logger.info("Location registered: %s", stored.name, extra={"location": stored.name})
        return stored

    async def get_by_name(self, name: str) -> Optional[Location]:
        try:
            async with self.sessions() as session:
                row = await self._find(session, name)
        except SQLAlchemyError as e:
            raise PersistenceError("get_location", str(e), location=name) from e
        return row.to_location() if row is not None else None

    async def all(self) -> List[Location]:
        try:
            async with self.sessions() as session:
                rows = (await session.scalars(select(LocationRow).order_by(LocationRow.id))).all()
        except SQLAlchemyError as e:
            raise PersistenceError("list_locations", str(e)) from e
        return [r.to_location() for r in rows]


class SqlObservationRepository(_SqlStore):
    async def _location_id(self, session: AsyncSession, location: Location) -> int:
        if location.id is not None:
            return location.id
        loc_id = await session.scalar(
            select(LocationRow.id).where(func.lower(LocationRow.name) == location.key)
        )
        if loc_id is None:
            raise NotFoundError("Location", name=location.name)
        return loc_id

    async def add(self, location: Location, observation: WeatherObservation) -> None:
        await self.add_many(location, [observation])

    async def add_many(self, location: Location, observations: Sequence[WeatherObservation]) -> int:
        try:
            async with self.sessions() as session:
                loc_id = await self._location_id(session, location)
                for obs in observations:
                    row = await session.scalar(
                        select(ObservationRow).where(
                            ObservationRow.location_id == loc_id,
                            ObservationRow.recorded_at == obs.recorded_at,
                        )
                    )
                    if row is None:
                        row = ObservationRow(location_id=loc_id, recorded_at=obs.recorded_at)
                        session.add(row)
                    row.temperature = obs.temperature
                    row.humidity = obs.humidity
                    row.rainfall = obs.rainfall
                    row.pressure = obs.pressure
                    row.wind_speed = obs.wind_speed
                    row.cloud_cover = obs.cloud_cover
                    row.solar_radiation = obs.solar_radiation
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError("add_observations", str(e), location=location.name) from e
        return len(observations)

    async def latest(self, location: Location, limit: int) -> List[WeatherObservation]:
        if limit <= 0:
            return []
        try:
            async with self.sessions() as session:
                loc_id = await self._location_id(session, location)
                rows = (await session.scalars(
                    select(ObservationRow)
                    .where(ObservationRow.location_id == loc_id)
                    .order_by(ObservationRow.recorded_at.desc())
                    .limit(limit)
                )).all()
        except SQLAlchemyError as e:
            raise PersistenceError("latest_observations", str(e), location=location.name) from e
        return [r.to_observation() for r in reversed(rows)]

    async def latest_one(self, location: Location) -> Optional[WeatherObservation]:
        rows = await self.latest(location, 1)
        return rows[0] if rows else None
