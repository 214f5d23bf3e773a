"""
agroforecast — Environmental-advisory backend.

Turns a short weather history into multi-day forecasts, hazard alerts and
farming recommendations.

Sub-packages:
    core/           — settings, logging, errors, middleware, database, Redis
    ml/             — forecasting models, ensemble, alert predictor
    ml/domain/      — crop, soil, irrigation and energy predictors
    orchestration/  — comprehensive analysis, performance tracking, insights
    storage/        — observation history, location registry, prediction cache
    ingestion/      — optional external weather snapshot provider
    services/       — public advisory operations
    scheduling/     — background refresh and retraining
    api/            — FastAPI routers and schemas
"""

__version__ = "2.0.0"
