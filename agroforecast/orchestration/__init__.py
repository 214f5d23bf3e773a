"""
orchestration — Comprehensive analysis across all predictors.

Modules:
    performance   — per-model latency / confidence / success records
    results       — tagged per-domain results
    requests      — analysis request and farm profile
    insights      — typed merge of domain results into integrated insights
    orchestrator  — PredictionOrchestrator
"""
