"""
FastAPI application entry point.

Run with:
    uvicorn agroforecast.main:app --reload --port 8000

Startup wiring (lifespan):
    1. Storage backend per STORAGE_BACKEND (memory | sql; sql creates tables)
    2. Optional Open-Meteo provider (EXTERNAL_PROVIDER_ENABLED)
    3. Advisory service: every predictor initialised concurrently
    4. Background scheduler (SCHEDULER_ENABLED)

Shutdown reverses it: scheduler, provider client, Redis, database.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from agroforecast.core.cache import close_redis
from agroforecast.core.config import Settings, settings
from agroforecast.core.database import close_db, init_db
from agroforecast.core.errors import register_error_handlers
from agroforecast.core.health import HealthStatus, run_health_check
from agroforecast.core.logging_config import get_logger, setup_logging
from agroforecast.core.middleware import RequestLoggingMiddleware
from agroforecast.ingestion.open_meteo import OpenMeteoProvider
from agroforecast.scheduling.retraining import RetrainingScheduler
from agroforecast.services.advisory import AdvisoryService
from agroforecast.storage.prediction_cache import PredictionCache

# ── API routers ──
from agroforecast.api.v1.alerts import router as alerts_router
from agroforecast.api.v1.analysis import router as analysis_router
from agroforecast.api.v1.crops import router as crops_router
from agroforecast.api.v1.locations import router as locations_router
from agroforecast.api.v1.metrics import router as metrics_router
from agroforecast.api.v1.models import router as models_router
from agroforecast.api.v1.weather import router as weather_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


def build_advisory(config: Settings = settings) -> AdvisoryService:
    """Assemble the advisory service for the configured storage backend."""
    if config.STORAGE_BACKEND == "sql":
        from agroforecast.storage.orm import (
            SqlLocationRegistry,
            SqlObservationRepository,
            SqlPredictionStore,
        )

        cache = PredictionCache(SqlPredictionStore(), config=config)
        observations = SqlObservationRepository()
        locations = SqlLocationRegistry()
    else:
        cache, observations, locations = None, None, None

    provider = OpenMeteoProvider(config=config) if config.EXTERNAL_PROVIDER_ENABLED else None
    return AdvisoryService(
        cache=cache,
        observations=observations,
        locations=locations,
        provider=provider,
        config=config,
    )


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown events."""
    logger.info(
        "Starting %s v%s [%s, storage=%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT, settings.STORAGE_BACKEND,
    )
    if settings.STORAGE_BACKEND == "sql":
        await init_db()

    advisory = build_advisory()
    await advisory.initialize()
    app.state.advisory = advisory

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = RetrainingScheduler(advisory)
        await scheduler.start()
    app.state.scheduler = scheduler

    yield

    logger.info("Shutting down %s", settings.APP_NAME)
    if scheduler is not None:
        await scheduler.stop()
    await advisory.shutdown()
    await close_redis()
    if settings.STORAGE_BACKEND == "sql":
        await close_db()


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Agricultural advisory forecasting backend. "
        "ARIMA + neural-network ensemble weather forecasts, "
        "threshold-based hazard alerts, crop, soil, irrigation and energy "
        "predictors, integrated farm insights, a validity-windowed "
        "prediction cache and scheduled retraining."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware stack (order matters, outermost first) ──

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# ── Error handlers ──
register_error_handlers(app)

# ── Register routers ──
app.include_router(weather_router)
app.include_router(alerts_router)
app.include_router(crops_router)
app.include_router(analysis_router)
app.include_router(metrics_router)
app.include_router(locations_router)
app.include_router(models_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "weather-forecast",
            "hazard-alerts",
            "crop-recommendation",
            "soil-health",
            "irrigation",
            "energy",
            "comprehensive-analysis",
            "scheduled-retraining",
        ],
        "docs": "/docs",
    }


async def _report(request: Request):
    advisory = getattr(request.app.state, "advisory", None)
    return await run_health_check(
        advisory.orchestrator if advisory is not None else None,
        getattr(request.app.state, "scheduler", None),
    )


@app.get("/health", tags=["health"])
async def health_check(request: Request):
    """Deep health probe: checks all subsystems."""
    report = await _report(request)
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Kubernetes liveness probe: is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness(request: Request):
    """Kubernetes readiness probe: can we serve traffic?"""
    report = await _report(request)
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
