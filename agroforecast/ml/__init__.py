"""
ml — Forecasting and alerting models.

Modules:
    models              — shared data structures
    preprocessing       — history frames, differencing, metrics
    arima_model         — autoregressive temperature forecaster
    neural_model        — small MLP one-step forecaster
    ensemble            — per-day combination of base forecasts
    weather_forecaster  — multi-day forecast service
    alert_predictor     — threshold-driven hazard alerts
    domain/             — crop, soil, irrigation, energy predictors
"""
