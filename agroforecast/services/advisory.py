"""
AdvisoryService — the public prediction operations.

Wires the orchestrator's predictors to stored history, the location
registry, the prediction cache and the optional external provider.

═══════════════════════════════════════════════════════════════════════════
OPERATIONS
═══════════════════════════════════════════════════════════════════════════

    predict_weather(location, horizon_days, current)   → forecast result
    predict_alerts(location)                           → alert result
    recommend_crops(location, season)                  → crop result
    comprehensive_insights(location)                   → weather + crops + alerts + summary
    run_comprehensive_analysis(request)                → orchestrator result
    get_performance_metrics()                          → per-model records + cache summary
    train_models(batches)                              → training report
    refresh_location(location)                         → crops + alerts (scheduler)

Propagated to the caller:
    NotFoundError            unknown location
    ValidationError          horizon outside 1..MAX_FORECAST_HORIZON_DAYS
    InsufficientDataError    not enough history for the requested operation
    ModelNotInitializedError service used before initialize()

Recovered and logged:
    ExternalSourceUnavailableError   provider snapshot skipped, history used
    PersistenceError                 cache write skipped, live result returned
    auxiliary forecast failure       alerts computed from current conditions only
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from agroforecast.core.cache import FORECAST_NAMESPACE, cache_clear_prefix
from agroforecast.core.config import Settings, settings as default_settings
from agroforecast.core.errors import (
    ExternalSourceUnavailableError,
    InsufficientDataError,
    NotFoundError,
    ValidationError,
)
from agroforecast.ingestion.open_meteo import OpenMeteoProvider
from agroforecast.ml.domain.crop import CropInput, CropRecommendation, Season
from agroforecast.ml.models import (
    AlertPrediction,
    Location,
    ModelPredictionResult,
    WeatherObservation,
    WeatherPrediction,
)
from agroforecast.ml.weather_forecaster import TrainingReport
from agroforecast.orchestration.orchestrator import ComprehensiveResult, PredictionOrchestrator
from agroforecast.orchestration.requests import ComprehensiveAnalysisRequest
from agroforecast.storage.prediction_cache import PredictionCache
from agroforecast.storage.repositories import (
    InMemoryLocationRegistry,
    InMemoryObservationRepository,
    LocationRegistry,
    ObservationRepository,
)

logger = logging.getLogger(__name__)

HOT_TEMPERATURE = 35.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ok(value: Any) -> Any:
    return None if isinstance(value, BaseException) else value


class AdvisoryService:
    def __init__(
        self,
        orchestrator: Optional[PredictionOrchestrator] = None,
        cache: Optional[PredictionCache] = None,
        observations: Optional[ObservationRepository] = None,
        locations: Optional[LocationRegistry] = None,
        provider: Optional[OpenMeteoProvider] = None,
        *,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.config = config or default_settings
        self.orchestrator = orchestrator or PredictionOrchestrator(config=self.config, clock=clock)
        self.cache = cache or PredictionCache(config=self.config, clock=clock)
        self.observations = observations or InMemoryObservationRepository()
        self.locations = locations or InMemoryLocationRegistry()
        self.provider = provider
        self._clock = clock

    @property
    def is_initialized(self) -> bool:
        return self.orchestrator.is_initialized

    async def initialize(self) -> None:
        await self.orchestrator.initialize()
        logger.info("Advisory service ready")

    async def shutdown(self) -> None:
        if self.provider is not None:
            await self.provider.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def resolve_location(self, name: str) -> Location:
        location = await self.locations.get_by_name(name)
        if location is None:
            raise NotFoundError("Location", name=name)
        return location

    async def _history(self, location: Location) -> List[WeatherObservation]:
        return await self.observations.latest(location, self.config.HISTORY_WINDOW_DAYS)

    async def _current(self, location: Location) -> WeatherObservation:
        current = await self.observations.latest_one(location)
        if current is None:
            raise InsufficientDataError(1, 0)
        return current

    def _validate_horizon(self, horizon_days: int) -> None:
        limit = self.config.MAX_FORECAST_HORIZON_DAYS
        if not 1 <= horizon_days <= limit:
            raise ValidationError(
                f"horizon_days must be between 1 and {limit}", field="horizon_days", value=horizon_days,
            )

    # ------------------------------------------------------------------
    # Weather
    # ------------------------------------------------------------------

    async def predict_weather(
        self,
        location_name: str,
        horizon_days: Optional[int] = None,
        current: Optional[WeatherObservation] = None,
    ) -> ModelPredictionResult[WeatherPrediction]:
        horizon = self.config.FORECAST_HORIZON_DAYS if horizon_days is None else horizon_days
        self._validate_horizon(horizon)
        location = await self.resolve_location(location_name)

        external = False
        if current is None and self.provider is not None:
            try:
                current = await self.provider.current(location)
                external = True
            except ExternalSourceUnavailableError as e:
                logger.warning(
                    "External provider unavailable for %s, using stored history: %s",
                    location.name, e.message, extra={"location": location.name},
                )

        history = await self._history(location)
        if current is not None:
            history = [*history, current]

        weather = self.orchestrator.weather

        async def run():
            return weather.forecast(history, horizon)

        result = await self.orchestrator.performance.measure("weather", run)
        result.metadata["external_snapshot"] = external
        result.metadata["location"] = location.name
        await self.cache.store(location, "weather", result, result.confidence, result.valid_until)
        return result

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    async def predict_alerts(self, location_name: str) -> ModelPredictionResult[AlertPrediction]:
        location = await self.resolve_location(location_name)
        current = await self._current(location)

        forecast: Optional[List[WeatherPrediction]] = None
        try:
            history = await self._history(location)
            forecast = self.orchestrator.weather.predict(history, self.config.ALERT_FORECAST_DAYS)
        except Exception as e:
            logger.warning(
                "Could not forecast for alerts at %s: %s", location.name, e,
                extra={"location": location.name},
            )

        alerts = self.orchestrator.alerts

        async def run():
            return alerts.predict_alerts(current, forecast)

        result = await self.orchestrator.performance.measure("alert", run)
        await self.cache.store(location, "alert", result, result.confidence, result.valid_until)
        return result

    # ------------------------------------------------------------------
    # Crops
    # ------------------------------------------------------------------

    async def recommend_crops(
        self,
        location_name: str,
        season: Optional[Season] = None,
    ) -> ModelPredictionResult[CropRecommendation]:
        location = await self.resolve_location(location_name)
        current = await self._current(location)
        crops = self.orchestrator.crops
        result = await self.orchestrator.performance.measure(
            "crop", lambda: crops.predict(CropInput(weather=current, season=season)),
        )
        await self.cache.store(location, "crop", result, result.confidence, result.valid_until)
        return result

    # ------------------------------------------------------------------
    # Combined views
    # ------------------------------------------------------------------

    async def comprehensive_insights(self, location_name: str) -> Dict[str, Any]:
        """Weather, crops and alerts together; a failed part becomes an error entry."""
        location = await self.resolve_location(location_name)
        weather, crops, alerts = await asyncio.gather(
            self.predict_weather(location.name, self.config.FORECAST_HORIZON_DAYS),
            self.recommend_crops(location.name),
            self.predict_alerts(location.name),
            return_exceptions=True,
        )

        parts: Dict[str, Any] = {}
        for key, value in (("weather", weather), ("crops", crops), ("alerts", alerts)):
            if isinstance(value, BaseException):
                logger.warning(
                    "Insights %s part failed for %s: %s", key, location.name, value,
                    extra={"location": location.name},
                )
                parts[key] = {"error": str(value), "confidence": 0.0}
            else:
                parts[key] = value.to_dict()

        return {
            "location": location.name,
            **parts,
            "summary": self.insights_summary(_ok(weather), _ok(crops), _ok(alerts)),
            "generated_at": self._clock().isoformat(),
        }

    @staticmethod
    def insights_summary(
        weather: Optional[ModelPredictionResult[WeatherPrediction]],
        crops: Optional[ModelPredictionResult[CropRecommendation]],
        alerts: Optional[ModelPredictionResult[AlertPrediction]],
    ) -> Dict[str, Any]:
        summary: Dict[str, Any] = {
            "overall_conditions": "normal",
            "key_insights": [],
            "recommendations": [],
            "risk_level": "low",
            "average_temperature": None,
            "top_crop": None,
            "alert_count": 0,
            "concerning_weather": False,
        }
        if weather is not None and weather.predictions:
            avg = float(np.mean([p.temperature for p in weather.predictions]))
            summary["average_temperature"] = round(avg, 1)
            if avg > HOT_TEMPERATURE:
                summary["concerning_weather"] = True
                summary["overall_conditions"] = "concerning"
                summary["key_insights"].append("High temperatures expected this week")
        if crops is not None and crops.predictions:
            top = crops.predictions[0]
            summary["top_crop"] = top.name
            summary["key_insights"].append(f"{top.name} shows highest suitability ({top.suitability_score}%)")
            summary["recommendations"].append(f"Consider cultivating {top.name}")
        if alerts is not None and alerts.predictions:
            summary["alert_count"] = len(alerts.predictions)
            summary["risk_level"] = alerts.metadata.get("overall_risk", "medium")
            summary["overall_conditions"] = "alert"
            summary["key_insights"].append(f"{len(alerts.predictions)} weather alert(s) detected")
        return summary

    async def run_comprehensive_analysis(self, request: ComprehensiveAnalysisRequest) -> ComprehensiveResult:
        location = request.location
        known = await self.locations.get_by_name(location.name)
        if known is not None:
            if not request.history:
                request.history = await self._history(known)
            if request.location.latitude is None and known.latitude is not None:
                request.location = known
        result = await self.orchestrator.run_comprehensive_analysis(request)
        await self.cache.store(location, "comprehensive", result, result.confidence)
        return result

    # ------------------------------------------------------------------
    # Metrics & training
    # ------------------------------------------------------------------

    async def get_performance_metrics(self) -> Dict[str, Any]:
        health = self.orchestrator.system_health()
        return {
            "models": health["models"],
            "predictions": await self.cache.summary(),
            "system_status": health["status"] if self.is_initialized else "initializing",
            "weather_training": (
                self.orchestrator.weather.last_training.to_dict()
                if self.orchestrator.weather.last_training else None
            ),
        }

    async def train_models(self, batches: Sequence[Sequence[WeatherObservation]]) -> TrainingReport:
        if not batches or not any(batches):
            raise InsufficientDataError(1, 0, what="training batches")
        weather = self.orchestrator.weather

        async def run():
            return await asyncio.to_thread(weather.train, batches)

        report = await self.orchestrator.performance.measure("weather_training", run, confidence=lambda _: 1.0)
        cleared = await cache_clear_prefix(FORECAST_NAMESPACE)
        if cleared:
            logger.info("Invalidated %d hot forecast entries after retraining", cleared)
        return report

    async def refresh_location(self, location: Location) -> Dict[str, Any]:
        """Recompute crop recommendations and alerts for one location."""
        crops = await self.recommend_crops(location.name)
        alerts = await self.predict_alerts(location.name)
        return {
            "location": location.name,
            "crops": len(crops.predictions),
            "alerts": len(alerts.predictions),
        }

    # ------------------------------------------------------------------
    # Locations & observations
    # ------------------------------------------------------------------

    async def register_location(self, location: Location) -> Location:
        return await self.locations.register(location)

    async def record_observations(self, location_name: str, observations: Sequence[WeatherObservation]) -> int:
        location = await self.resolve_location(location_name)
        count = await self.observations.add_many(location, observations)
        await cache_clear_prefix(FORECAST_NAMESPACE)
        logger.info("Stored %d observations for %s", count, location.name, extra={"location": location.name})
        return count

    async def list_locations(self) -> List[Location]:
        return await self.locations.all()
