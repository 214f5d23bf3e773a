"""
PredictionOrchestrator — one entry point over every predictor.

Dependency order within a comprehensive analysis:

    weather ──► crops ┐                ┌─► irrigation ┐
                      ├─ (concurrent) ─┤              ├─ (concurrent) ─► alerts
                soil  ┘                └─► energy     ┘

    irrigation  uses the soil moisture estimate (50 % when soil is absent)
                and the weather forecast (empty when weather is absent)
    alerts      uses the first forecast days when a forecast exists

Each sub-analysis is timed and recorded in the performance monitor. A
failing predictor becomes a zero-confidence DomainResult carrying the
error; the remaining domains still run (partial-result policy).
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from agroforecast.core.config import Settings, settings as default_settings
from agroforecast.core.errors import ModelNotInitializedError
from agroforecast.ml.alert_predictor import AlertPredictionService
from agroforecast.ml.domain.crop import CropInput, CropRecommender
from agroforecast.ml.domain.energy import EnergyInput, EnergyOptimizer, default_price_table
from agroforecast.ml.domain.irrigation import IrrigationInput, IrrigationOptimizer
from agroforecast.ml.domain.soil import SoilHealthPredictor, SoilInput
from agroforecast.ml.weather_forecaster import WeatherForecastService
from agroforecast.orchestration.insights import (
    IntegratedInsights,
    build_insights,
    data_quality,
    overall_confidence,
    overall_score,
)
from agroforecast.orchestration.performance import PerformanceMonitor, confidence_of
from agroforecast.orchestration.requests import ComprehensiveAnalysisRequest
from agroforecast.orchestration.results import Domain, DomainResult, payload_of

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MOISTURE = 50.0
DEFAULT_CROP = "rice"
DEFAULT_GROWTH_STAGE = "vegetative"
DEFAULT_ENERGY_USAGE_KWH = 50.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ComprehensiveResult:
    timestamp: datetime
    location: str
    overall_score: int
    confidence: float
    results: Dict[Domain, DomainResult]
    insights: IntegratedInsights
    processing_time_ms: float
    models_used: List[str] = field(default_factory=list)
    data_quality: int = 100

    def get(self, domain: Domain) -> Optional[DomainResult]:
        return self.results.get(domain)

    @property
    def failed_domains(self) -> List[Domain]:
        return [d for d, r in self.results.items() if not r.ok]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "location": self.location,
            "overall_score": self.overall_score,
            "confidence": self.confidence,
        }
        for domain, result in self.results.items():
            data[domain.value] = result.to_dict()
        data.update(self.insights.to_dict())
        data["system_metrics"] = {
            "total_processing_time_ms": round(self.processing_time_ms, 2),
            "models_used": list(self.models_used),
            "data_quality": self.data_quality,
        }
        return data


class PredictionOrchestrator:
    """
    Owns the weather/alert services, the domain predictors and the
    performance monitor. All state lives on the instance.
    """

    def __init__(
        self,
        *,
        weather: Optional[WeatherForecastService] = None,
        alerts: Optional[AlertPredictionService] = None,
        crops: Optional[CropRecommender] = None,
        soil: Optional[SoilHealthPredictor] = None,
        irrigation: Optional[IrrigationOptimizer] = None,
        energy: Optional[EnergyOptimizer] = None,
        performance: Optional[PerformanceMonitor] = None,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        cfg = config or default_settings
        seed = cfg.RANDOM_SEED
        self.weather = weather or WeatherForecastService(config=cfg, clock=clock)
        self.alerts = alerts or AlertPredictionService(config=cfg, clock=clock)
        self.crops = crops or CropRecommender(validity_days=cfg.CROP_VALIDITY_DAYS, random_state=seed, clock=clock)
        self.soil = soil or SoilHealthPredictor(random_state=seed, clock=clock)
        self.irrigation = irrigation or IrrigationOptimizer(random_state=seed, clock=clock)
        self.energy = energy or EnergyOptimizer(random_state=seed, clock=clock)
        self.performance = performance or PerformanceMonitor(clock=clock)
        self.default_horizon = cfg.FORECAST_HORIZON_DAYS
        self._clock = clock
        self.is_initialized = False

    @property
    def predictors(self) -> Dict[str, Any]:
        return {
            "weather": self.weather,
            "crop": self.crops,
            "alert": self.alerts,
            "soil": self.soil,
            "irrigation": self.irrigation,
            "energy": self.energy,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Initialise every predictor concurrently; the first failure is re-raised."""
        start = time.perf_counter()

        async def init_one(name: str, predictor: Any) -> None:
            try:
                await self.performance.measure(name, predictor.initialize, confidence=lambda _: 1.0)
            except Exception:
                logger.exception("Failed to initialise %s model", name, extra={"model": name})
                raise

        await asyncio.gather(*(init_one(n, p) for n, p in self.predictors.items()))
        self.is_initialized = True
        elapsed = (time.perf_counter() - start) * 1000
        logger.info(
            "All models initialised in %.0fms", elapsed,
            extra={"duration_ms": round(elapsed, 2)},
        )

    def system_health(self) -> Dict[str, Any]:
        return {
            "status": self.performance.status(),
            "initialized": self.is_initialized,
            "models": self.performance.all_metrics(),
        }

    # ------------------------------------------------------------------
    # Comprehensive analysis
    # ------------------------------------------------------------------

    async def run_comprehensive_analysis(self, request: ComprehensiveAnalysisRequest) -> ComprehensiveResult:
        if not self.is_initialized:
            raise ModelNotInitializedError("orchestrator")

        start = time.perf_counter()
        scope = request.analysis_type
        current = request.current_weather
        farm = request.farm_profile
        horizon = request.time_horizon or self.default_horizon
        logger.info(
            "Running %s analysis for %s", scope.value, request.location.name,
            extra={"location": request.location.name},
        )

        results: Dict[Domain, DomainResult] = {}

        async def stage(domain: Domain, fn: Callable[[], Awaitable[T]]) -> None:
            if scope.includes(domain):
                results[domain] = await self._run(domain, fn)

        # duplicate timestamps collapse to the last reading when framed
        history = [*request.history, current]

        async def weather_fn():
            return self.weather.forecast(history, horizon)

        await stage(Domain.WEATHER, weather_fn)
        forecast = payload_of(results.get(Domain.WEATHER))
        forecast_days = forecast.predictions if forecast is not None else []

        await asyncio.gather(
            stage(Domain.CROPS, lambda: self.crops.predict(CropInput(weather=current))),
            stage(Domain.SOIL, lambda: self.soil.predict(SoilInput(
                temperature=current.temperature,
                humidity=current.humidity,
                rainfall=current.rainfall,
                pressure=current.pressure,
                wind_speed=current.wind_speed,
                solar_radiation=current.solar_radiation,
            ))),
        )
        soil = payload_of(results.get(Domain.SOIL))

        await asyncio.gather(
            stage(Domain.IRRIGATION, lambda: self.irrigation.predict(IrrigationInput(
                current_moisture=soil.moisture_level if soil is not None else DEFAULT_MOISTURE,
                weather_forecast=forecast_days,
                crop_type=farm.current_crops[0] if farm.current_crops else DEFAULT_CROP,
                growth_stage=DEFAULT_GROWTH_STAGE,
                soil_type=farm.soil_type,
                field_size=farm.size,
            ))),
            stage(Domain.ENERGY, lambda: self.energy.predict(EnergyInput(
                current_usage=DEFAULT_ENERGY_USAGE_KWH,
                equipment=list(farm.equipment),
                prices=default_price_table(),
                farm_size=farm.size,
                weather=current,
            ))),
        )

        async def alerts_fn():
            return self.alerts.predict_alerts(current, forecast_days or None)

        await stage(Domain.ALERTS, alerts_fn)

        # fixed domain order regardless of completion order
        ordered = {d: results[d] for d in Domain if d in results}
        now = self._clock()
        crops = payload_of(ordered.get(Domain.CROPS))
        irrigation = payload_of(ordered.get(Domain.IRRIGATION))
        energy = payload_of(ordered.get(Domain.ENERGY))
        insights = build_insights(
            request,
            crops=crops,
            soil=soil,
            irrigation=irrigation,
            energy=energy,
            alerts=payload_of(ordered.get(Domain.ALERTS)),
            now=now,
        )
        elapsed = (time.perf_counter() - start) * 1000

        result = ComprehensiveResult(
            timestamp=now,
            location=request.location.name,
            overall_score=overall_score(crops, soil, irrigation, energy),
            confidence=overall_confidence(ordered.values()),
            results=ordered,
            insights=insights,
            processing_time_ms=elapsed,
            models_used=[d.model_name for d in ordered],
            data_quality=data_quality(request),
        )
        if result.failed_domains:
            logger.warning(
                "Analysis for %s completed with failed domains: %s",
                request.location.name, ", ".join(d.value for d in result.failed_domains),
                extra={"location": request.location.name},
            )
        logger.info(
            "Analysis for %s completed in %.0fms", request.location.name, elapsed,
            extra={"location": request.location.name, "duration_ms": round(elapsed, 2)},
        )
        return result

    async def _run(self, domain: Domain, fn: Callable[[], Awaitable[T]]) -> DomainResult[T]:
        start = time.perf_counter()
        try:
            payload = await self.performance.measure(domain.model_name, fn)
        except Exception as e:
            elapsed = (time.perf_counter() - start) * 1000
            logger.warning(
                "%s analysis failed: %s", domain.value, e,
                extra={"model": domain.model_name, "duration_ms": round(elapsed, 2)},
            )
            return DomainResult.failure(domain, e, elapsed)
        elapsed = (time.perf_counter() - start) * 1000
        return DomainResult(domain=domain, payload=payload, confidence=confidence_of(payload), duration_ms=elapsed)
