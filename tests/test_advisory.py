"""
Tests for the advisory service and the background scheduler.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agroforecast.core.errors import (
    ExternalSourceUnavailableError,
    InsufficientDataError,
    NotFoundError,
    ValidationError,
)
from agroforecast.ml.domain.crop import Season
from agroforecast.ml.models import Location
from agroforecast.orchestration.requests import ComprehensiveAnalysisRequest
from agroforecast.scheduling.retraining import JobStatus, RetrainingScheduler
from agroforecast.services.advisory import AdvisoryService

NASHIK = Location("Nashik", 19.99, 73.79)


@pytest.fixture
def advisory(run, clock, pune, history):
    service = AdvisoryService(clock=clock)

    async def setup():
        await service.initialize()
        await service.register_location(pune)
        await service.record_observations("Pune", history)

    run(setup())
    return service


# ═══════════════════════════════════════════════════════════════════════════
# Weather
# ═══════════════════════════════════════════════════════════════════════════

class TestPredictWeather:
    def test_forecast_and_cache(self, run, advisory):
        result = run(advisory.predict_weather("pune", 7))
        assert len(result.predictions) == 7
        assert result.metadata["location"] == "Pune"
        assert result.metadata["external_snapshot"] is False
        cached = run(advisory.cache.get_active("Pune", "weather"))
        assert cached is not None
        assert len(cached.payload["predictions"]) == 7

    def test_unknown_location(self, run, advisory):
        with pytest.raises(NotFoundError):
            run(advisory.predict_weather("Atlantis", 7))

    @pytest.mark.parametrize("horizon", [0, 15])
    def test_horizon_bounds(self, run, advisory, horizon):
        with pytest.raises(ValidationError):
            run(advisory.predict_weather("Pune", horizon))

    def test_not_enough_history(self, run, advisory, make_history):
        run(advisory.register_location(NASHIK))
        run(advisory.record_observations("Nashik", make_history(4)))
        with pytest.raises(InsufficientDataError):
            run(advisory.predict_weather("Nashik", 7))

    def test_provider_snapshot_used(self, run, advisory, now, make_history):
        snapshot = make_history(1, end=now + timedelta(hours=1))[0]
        advisory.provider = MagicMock(current=AsyncMock(return_value=snapshot))
        result = run(advisory.predict_weather("Pune", 3))
        assert result.metadata["external_snapshot"] is True
        assert result.metadata["history_length"] == 31

    def test_provider_failure_falls_back_to_history(self, run, advisory):
        advisory.provider = MagicMock(
            current=AsyncMock(side_effect=ExternalSourceUnavailableError("open-meteo", "down")),
        )
        result = run(advisory.predict_weather("Pune", 3))
        assert result.metadata["external_snapshot"] is False
        assert len(result.predictions) == 3

    def test_cache_failure_does_not_fail_request(self, run, advisory):
        with patch.object(advisory.cache.backend, "upsert", side_effect=RuntimeError("disk full")):
            result = run(advisory.predict_weather("Pune", 3))
        assert len(result.predictions) == 3


# ═══════════════════════════════════════════════════════════════════════════
# Alerts, crops and combined views
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertsAndCrops:
    def test_alerts_need_an_observation(self, run, advisory):
        run(advisory.register_location(NASHIK))
        with pytest.raises(InsufficientDataError):
            run(advisory.predict_alerts("Nashik"))

    def test_alerts_use_short_forecast(self, run, advisory):
        result = run(advisory.predict_alerts("Pune"))
        assert result.metadata["forecast_based"] is True
        assert run(advisory.cache.get_active("Pune", "alert")) is not None

    def test_alerts_without_forecast(self, run, advisory, make_history):
        run(advisory.register_location(NASHIK))
        run(advisory.record_observations("Nashik", make_history(2)))
        result = run(advisory.predict_alerts("Nashik"))
        assert result.metadata["forecast_based"] is False

    def test_crops_follow_calendar(self, run, advisory):
        result = run(advisory.recommend_crops("Pune"))
        assert result.metadata["season"] == "Kharif"
        rabi = run(advisory.recommend_crops("Pune", Season.RABI))
        assert {c.crop_id for c in rabi.predictions} == {"wheat", "chickpea"}

    def test_insights_with_failed_weather(self, run, advisory, make_history):
        run(advisory.register_location(NASHIK))
        run(advisory.record_observations("Nashik", make_history(3)))
        insights = run(advisory.comprehensive_insights("Nashik"))
        assert insights["weather"]["confidence"] == 0.0
        assert "error" in insights["weather"]
        assert insights["summary"]["top_crop"] is not None
        assert insights["summary"]["average_temperature"] is None

    def test_insights_summary(self, run, advisory):
        insights = run(advisory.comprehensive_insights("Pune"))
        assert insights["location"] == "Pune"
        assert insights["summary"]["overall_conditions"] in {"normal", "concerning", "alert"}
        assert insights["summary"]["average_temperature"] is not None


class TestComprehensiveAnalysis:
    def test_uses_stored_history(self, run, advisory, history):
        request = ComprehensiveAnalysisRequest(location=Location("Pune"), current_weather=history[-1])
        result = run(advisory.run_comprehensive_analysis(request))
        assert result.failed_domains == []
        assert request.location.latitude == pytest.approx(18.52)
        assert run(advisory.cache.get_active("Pune", "comprehensive")) is not None

    def test_unregistered_location_without_history(self, run, advisory, history):
        request = ComprehensiveAnalysisRequest(location=Location("Elsewhere"), current_weather=history[-1])
        result = run(advisory.run_comprehensive_analysis(request))
        assert [d.value for d in result.failed_domains] == ["weather"]


class TestTrainingAndMetrics:
    def test_empty_batches(self, run, advisory):
        with pytest.raises(InsufficientDataError):
            run(advisory.train_models([]))
        with pytest.raises(InsufficientDataError):
            run(advisory.train_models([[]]))

    def test_train_and_report(self, run, advisory, history):
        report = run(advisory.train_models([history]))
        assert report.any_trained
        metrics = run(advisory.get_performance_metrics())
        assert metrics["weather_training"]["samples"] == 30
        assert metrics["models"]["weather_training"]["total_calls"] == 1

    def test_training_runs_off_the_event_loop(self, run, advisory, history):
        with patch.object(asyncio, "to_thread", wraps=asyncio.to_thread) as to_thread:
            report = run(advisory.train_models([history]))
        assert report.samples == 30
        assert any(c.args[0] == advisory.orchestrator.weather.train for c in to_thread.call_args_list)

    def test_new_observations_clear_hot_forecasts(self, run, advisory, make_history):
        with patch("agroforecast.services.advisory.cache_clear_prefix", new=AsyncMock(return_value=0)) as clear:
            run(advisory.record_observations("Pune", make_history(3, seed=4)))
        clear.assert_awaited_once_with("forecast")

    def test_metrics_include_cache_summary(self, run, advisory):
        run(advisory.predict_weather("Pune", 7))
        metrics = run(advisory.get_performance_metrics())
        assert metrics["system_status"] == "healthy"
        assert metrics["predictions"]["weather"]["count"] == 1

    def test_refresh_location(self, run, advisory, pune):
        summary = run(advisory.refresh_location(pune))
        assert summary["location"] == "Pune"
        assert summary["crops"] == 3


# ═══════════════════════════════════════════════════════════════════════════
# Scheduler
# ═══════════════════════════════════════════════════════════════════════════

class _Sleeps:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)
        await asyncio.sleep(0)


class TestRetrainingScheduler:
    def test_refresh_all_locations(self, run, advisory, clock, history):
        run(advisory.register_location(NASHIK))
        run(advisory.record_observations("Nashik", history))
        sleeps = _Sleeps()
        scheduler = RetrainingScheduler(advisory, sleep=sleeps, clock=clock)
        job = run(scheduler.run_prediction_refresh())
        assert job.status == JobStatus.COMPLETED
        assert job.result == {"refreshed": ["Pune", "Nashik"], "failed": {}, "total": 2}
        assert sleeps.calls == [scheduler.inter_location_delay_s]

    def test_refresh_capped_at_ten_locations(self, run, advisory, clock):
        for i in range(11):
            run(advisory.register_location(Location(f"Farm{i}")))
        assert len(run(advisory.list_locations())) == 12
        sleeps = _Sleeps()
        scheduler = RetrainingScheduler(advisory, sleep=sleeps, clock=clock)
        job = run(scheduler.run_prediction_refresh())
        assert job.result["total"] == 10
        assert len(job.result["refreshed"]) + len(job.result["failed"]) == 10
        assert len(sleeps.calls) == 9

    def test_failing_location_is_skipped(self, run, advisory, clock, history):
        run(advisory.register_location(NASHIK))
        scheduler = RetrainingScheduler(advisory, sleep=_Sleeps(), clock=clock)
        job = run(scheduler.run_prediction_refresh())
        assert job.status == JobStatus.COMPLETED
        assert job.result["refreshed"] == ["Pune"]
        assert list(job.result["failed"]) == ["Nashik"]

    def test_retraining(self, run, advisory, clock):
        scheduler = RetrainingScheduler(advisory, sleep=_Sleeps(), clock=clock)
        job = run(scheduler.run_retraining())
        assert job.status == JobStatus.COMPLETED
        assert job.result["trained"] is True
        assert job.result["locations"] == 1
        assert job.result["samples"] == 30

    def test_retraining_needs_eleven_observations(self, run, advisory, clock, make_history):
        async def setup():
            await advisory.register_location(Location("Short"))
            await advisory.record_observations("Short", make_history(10, seed=2))
            await advisory.register_location(NASHIK)
            await advisory.record_observations("Nashik", make_history(11, seed=3))

        run(setup())
        scheduler = RetrainingScheduler(advisory, sleep=_Sleeps(), clock=clock)
        job = run(scheduler.run_retraining())
        assert job.status == JobStatus.COMPLETED
        assert job.result["skipped"] == ["Short"]
        assert job.result["locations"] == 2
        assert job.result["samples"] == 41

    def test_retraining_without_history_is_noop(self, run, clock, make_history):
        service = AdvisoryService(clock=clock)

        async def setup():
            await service.initialize()
            await service.register_location(NASHIK)
            await service.record_observations("Nashik", make_history(5))

        run(setup())
        scheduler = RetrainingScheduler(service, sleep=_Sleeps(), clock=clock)
        job = run(scheduler.run_retraining())
        assert job.status == JobStatus.COMPLETED
        assert job.result == {"trained": False, "locations": 0, "skipped": ["Nashik"]}
        assert service.orchestrator.weather.last_training is None

    def test_retraining_failure_recorded(self, run, advisory, clock):
        scheduler = RetrainingScheduler(advisory, sleep=_Sleeps(), clock=clock)
        with patch.object(advisory, "train_models", side_effect=RuntimeError("out of memory")):
            job = run(scheduler.run_retraining())
        assert job.status == JobStatus.FAILED
        assert job.error == "out of memory"
        assert job.to_dict()["status"] == "failed"

    def test_job_history_filter(self, run, advisory, clock):
        scheduler = RetrainingScheduler(advisory, sleep=_Sleeps(), clock=clock)
        run(scheduler.run_prediction_refresh())
        run(scheduler.run_retraining())
        assert [j.job_type for j in scheduler.list_jobs("weather_retraining")] == ["weather_retraining"]
        assert len(scheduler.list_jobs()) == 2

    def test_start_and_stop(self, run, clock):
        service = AdvisoryService(clock=clock)
        sleeps = _Sleeps()
        scheduler = RetrainingScheduler(service, sleep=sleeps, clock=clock)

        async def cycle():
            await service.initialize()
            await scheduler.start()
            assert scheduler.running
            for _ in range(5):
                await asyncio.sleep(0)
            await scheduler.stop()

        run(cycle())
        assert not scheduler.running
        assert scheduler.initial_delay_s in sleeps.calls
        assert scheduler.retrain_interval_s in sleeps.calls
        assert scheduler.list_jobs("prediction_refresh")
