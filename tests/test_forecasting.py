"""
Tests for the weather forecasting stack.

Covers:
    • ARIMA-style time-series model (defaults, degeneracy fallback, determinism)
    • Neural one-step model (feature construction, lifecycle errors)
    • Ensemble combiner strategies and weight management
    • WeatherForecastService end to end (horizon, confidence decay,
      minimum history, trend fallback, training report)
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from unittest.mock import patch

import numpy as np
import pytest

from agroforecast.core.errors import InsufficientDataError, ModelNotInitializedError
from agroforecast.ml.arima_model import DEFAULT_COEFFICIENT, TimeSeriesForecastModel
from agroforecast.ml.ensemble import EnsembleCombiner, EnsembleStrategy
from agroforecast.ml.models import ForecastSource, WeatherObservation
from agroforecast.ml.neural_model import NeuralForecastModel, create_features
from agroforecast.ml.preprocessing import difference, observations_to_frame, undifference
from agroforecast.ml.weather_forecaster import WeatherForecastService


def _service(clock) -> WeatherForecastService:
    service = WeatherForecastService(clock=clock)
    asyncio.run(service.initialize())
    return service


# ═══════════════════════════════════════════════════════════════════════════
# Preprocessing
# ═══════════════════════════════════════════════════════════════════════════

class TestPreprocessing:
    def test_difference_then_undifference_restores_continuation(self):
        history = np.array([1.0, 3.0, 6.0, 10.0])
        diffs = np.array([5.0, 6.0])  # next first differences
        assert undifference(diffs, history, 1).tolist() == [15.0, 21.0]
        assert difference(history, 1).tolist() == [2.0, 3.0, 4.0]

    def test_frame_sorted_and_deduplicated(self, make_history):
        history = make_history(5)
        shuffled = [history[3], history[0], history[4], history[1], history[2], history[4]]
        df = observations_to_frame(shuffled)
        assert len(df) == 5
        assert list(df.index) == sorted(df.index)

    def test_empty_frame(self):
        assert observations_to_frame([]).empty


# ═══════════════════════════════════════════════════════════════════════════
# Time-series model
# ═══════════════════════════════════════════════════════════════════════════

class TestTimeSeriesModel:
    def test_invalid_order_rejected(self):
        with pytest.raises(ValueError):
            TimeSeriesForecastModel(p=0)

    def test_predict_before_initialize(self):
        with pytest.raises(ModelNotInitializedError):
            TimeSeriesForecastModel().predict([1, 2, 3, 4, 5])

    def test_initialize_sets_default_coefficients(self):
        model = TimeSeriesForecastModel(p=3, d=1, q=2)
        model.initialize()
        assert model.ar_coefficients.tolist() == [DEFAULT_COEFFICIENT] * 3
        assert model.ma_coefficients.tolist() == [DEFAULT_COEFFICIENT] * 2
        assert not model.is_trained

    def test_default_coefficients_forecast(self):
        """AR(2) with φ = 0.1 on a unit-step series: Δ = 0.2, then 0.12."""
        model = TimeSeriesForecastModel(p=2, d=1, q=2)
        model.initialize()
        forecast = model.predict([1, 2, 3, 4, 5], steps=2)
        assert forecast == pytest.approx([5.2, 5.32])

    def test_forecast_length(self):
        model = TimeSeriesForecastModel()
        model.initialize()
        assert len(model.predict(list(range(20)), steps=7)) == 7

    def test_short_series_rejected(self):
        model = TimeSeriesForecastModel(p=3, d=1, q=2)
        model.initialize()
        with pytest.raises(InsufficientDataError):
            model.predict([1.0, 2.0, 3.0])

    def test_training_needs_minimum_points(self):
        model = TimeSeriesForecastModel(p=3, d=1, q=2)
        model.initialize()
        with pytest.raises(InsufficientDataError):
            model.train(list(range(model.min_training_length - 1)))

    def test_linear_series_falls_back_to_defaults(self):
        """Constant differences give a rank-deficient regression."""
        model = TimeSeriesForecastModel(p=3, d=1, q=2, random_state=1)
        model.initialize()
        model.train([10 + 0.5 * t for t in range(30)])
        assert model.is_trained
        assert model.ar_coefficients.tolist() == [DEFAULT_COEFFICIENT] * 3

    def test_ma_coefficients_are_small(self, history):
        model = TimeSeriesForecastModel(p=3, d=1, q=2, random_state=7)
        model.initialize()
        model.train([o.temperature for o in history])
        assert np.all(np.abs(model.ma_coefficients) <= 0.05)
        assert np.all(np.isfinite(model.ar_coefficients))

    def test_identical_input_identical_output(self, history):
        model = TimeSeriesForecastModel(p=3, d=1, q=2, random_state=7)
        model.initialize()
        temps = [o.temperature for o in history]
        model.train(temps)
        assert model.predict(temps, 7) == model.predict(temps, 7)

    def test_batches_are_differenced_independently(self, make_history):
        a = [o.temperature for o in make_history(20, seed=1)]
        b = [o.temperature + 100 for o in make_history(20, seed=2)]
        model = TimeSeriesForecastModel(p=2, d=1, q=1, random_state=0)
        model.initialize()
        model.train_many([a, b])
        # a single 100-degree jump between batches would dominate the fit
        assert np.all(np.abs(model.ar_coefficients) < 2)


# ═══════════════════════════════════════════════════════════════════════════
# Neural model
# ═══════════════════════════════════════════════════════════════════════════

class TestNeuralModel:
    def test_features_without_history(self):
        feats = create_features([20, 50, 1, 1010], [20])
        assert feats.tolist() == [20, 50, 1, 1010, 1000, 400, 20]

    def test_features_moving_average(self):
        feats = create_features([50, 50, 0, 1010], [10, 20, 30, 40, 50])
        assert feats[-1] == pytest.approx(30.0)

    def test_empty_input_predicts_zero(self):
        assert NeuralForecastModel().predict([]) == [0.0]

    def test_predict_untrained(self):
        model = NeuralForecastModel()
        model.initialize()
        with pytest.raises(ModelNotInitializedError):
            model.predict([[25, 60, 2, 1013]])

    def test_train_before_initialize(self, history):
        with pytest.raises(ModelNotInitializedError):
            NeuralForecastModel().train([o.as_row() for o in history])

    def test_train_needs_ten_rows(self, history):
        model = NeuralForecastModel()
        model.initialize()
        with pytest.raises(InsufficientDataError):
            model.train([o.as_row() for o in history[:9]])

    def test_trained_prediction_is_plausible(self, history):
        model = NeuralForecastModel(hidden_size=8, epochs=50, random_state=3)
        model.initialize()
        rows = [o.as_row() for o in history]
        model.train(rows)
        value = model.predict(rows)[0]
        assert model.is_trained
        assert np.isfinite(value)
        assert 0 < value < 50


# ═══════════════════════════════════════════════════════════════════════════
# Ensemble
# ═══════════════════════════════════════════════════════════════════════════

class TestEnsembleCombiner:
    def test_weighted(self):
        combiner = EnsembleCombiner(["arima", "neural"], [0.6, 0.4])
        assert combiner.combine([10.0, 20.0]) == pytest.approx(14.0)

    def test_average(self):
        combiner = EnsembleCombiner(["a", "b", "c"], strategy="average")
        assert combiner.combine([1.0, 2.0, 6.0]) == pytest.approx(3.0)

    def test_median(self):
        combiner = EnsembleCombiner(["a", "b", "c"], strategy=EnsembleStrategy.MEDIAN)
        assert combiner.combine([1.0, 2.0, 60.0]) == pytest.approx(2.0)

    def test_count_mismatch_degrades_to_average(self):
        combiner = EnsembleCombiner(["arima", "neural"], [0.6, 0.4])
        assert combiner.combine([10.0]) == pytest.approx(10.0)

    def test_weights_renormalised(self):
        combiner = EnsembleCombiner(["a", "b"], [3, 1])
        assert combiner.weights == pytest.approx({"a": 0.75, "b": 0.25})

    def test_add_and_remove_model(self):
        combiner = EnsembleCombiner(["a", "b"], [1, 1])
        combiner.add_model("c", 0.5)
        assert sum(combiner.weights.values()) == pytest.approx(1.0)
        assert combiner.model_names == ["a", "b", "c"]
        combiner.remove_model("a")
        assert combiner.weights == pytest.approx({"b": 0.5, "c": 0.5})

    def test_update_weights_length_checked(self):
        combiner = EnsembleCombiner(["a", "b"])
        with pytest.raises(ValueError):
            combiner.update_weights([1.0])

    def test_negative_weight_rejected(self):
        with pytest.raises(ValueError):
            EnsembleCombiner(["a", "b"], [1.0, -1.0])

    def test_empty_combine_rejected(self):
        with pytest.raises(ValueError):
            EnsembleCombiner(["a"]).combine([])

    def test_contributions_single_model(self):
        combiner = EnsembleCombiner(["arima", "neural"], [0.6, 0.4])
        assert combiner.contributions(["arima"]) == {"arima": 1.0}
        assert combiner.contributions(["arima", "neural"]) == pytest.approx({"arima": 0.6, "neural": 0.4})


# ═══════════════════════════════════════════════════════════════════════════
# Weather forecast service
# ═══════════════════════════════════════════════════════════════════════════

class TestWeatherForecastService:
    def test_seven_day_forecast(self, clock, now, history):
        predictions = _service(clock).predict(history, 7)
        assert [p.day for p in predictions] == list(range(1, 8))
        assert predictions[0].date == now.date() + timedelta(days=1)
        assert all(p.source == ForecastSource.HYBRID for p in predictions)

    def test_confidence_strictly_decreasing(self, clock, history):
        confidences = [p.confidence for p in _service(clock).predict(history, 7)]
        assert all(a > b for a, b in zip(confidences, confidences[1:]))
        assert all(0.5 <= c <= 0.99 for c in confidences)

    def test_confidence_formula(self, clock):
        service = _service(clock)
        assert service.confidence_for_day(1, 30) == pytest.approx(0.99)
        assert service.confidence_for_day(7, 30) == pytest.approx(0.70)
        assert service.confidence_for_day(14, 7) == pytest.approx(0.5)

    def test_values_in_range(self, clock, history):
        for p in _service(clock).predict(history, 14):
            assert 0 <= p.humidity <= 100
            assert p.rainfall >= 0

    def test_six_observations_rejected(self, clock, make_history):
        with pytest.raises(InsufficientDataError):
            _service(clock).predict(make_history(6), 7)

    def test_duplicate_timestamps_count_once(self, clock, make_history):
        history = make_history(6)
        with pytest.raises(InsufficientDataError):
            _service(clock).predict(history + [history[-1]], 7)

    def test_not_initialized(self, clock, history):
        with pytest.raises(ModelNotInitializedError):
            WeatherForecastService(clock=clock).predict(history, 7)

    def test_invalid_horizon(self, clock, history):
        with pytest.raises(ValueError):
            _service(clock).predict(history, 0)

    def test_deterministic_for_same_seed(self, clock, history):
        a = [p.to_dict() for p in _service(clock).predict(history, 7)]
        b = [p.to_dict() for p in _service(clock).predict(history, 7)]
        assert a == b

    def test_temperature_repeatable_on_one_instance(self, clock, history):
        service = _service(clock)
        first = [p.temperature for p in service.predict(history, 7)]
        second = [p.temperature for p in service.predict(history, 7)]
        assert first == second

    def test_untrained_network_uses_time_series_only(self, clock, history):
        meta = _service(clock).predict(history, 3)[0].metadata
        assert meta["arima_contribution"] == 1.0
        assert meta["nn_contribution"] == 0.0

    def test_trend_fallback(self, clock, history):
        service = _service(clock)
        with patch.object(service.arima, "predict", side_effect=RuntimeError("boom")):
            predictions = service.predict(history, 7)
        assert all(p.source == ForecastSource.ML for p in predictions)
        assert all(p.metadata == {"fallback": True} for p in predictions)
        assert [p.confidence for p in predictions] == pytest.approx([0.7, 0.6, 0.5, 0.4, 0.3, 0.3, 0.3])

    def test_trend_fallback_repeatable_on_one_instance(self, clock, history):
        service = _service(clock)
        with patch.object(service.arima, "predict", side_effect=RuntimeError("boom")):
            first = [p.to_dict() for p in service.predict(history, 5)]
            second = [p.to_dict() for p in service.predict(history, 5)]
        assert first == second

    def test_forecast_envelope(self, clock, now, history):
        result = _service(clock).forecast(history, 5)
        assert len(result.predictions) == 5
        assert result.valid_until == now + timedelta(hours=24)
        assert result.confidence == pytest.approx(np.mean([p.confidence for p in result.predictions]))
        assert result.metadata["fallback"] is False

    def test_train_enables_neural_contribution(self, clock, history, make_history):
        service = _service(clock)
        report = service.train([history, make_history(20, seed=5)])
        assert report.arima_trained and report.nn_trained
        assert report.locations == 2
        assert report.samples == 50
        meta = service.predict(history, 3)[0].metadata
        assert meta["nn_contribution"] == pytest.approx(0.4)
        assert service.last_training is report

    def test_train_empty_rejected(self, clock):
        with pytest.raises(InsufficientDataError):
            _service(clock).train([[]])

    def test_partial_training_failure_recorded(self, clock, make_history):
        service = _service(clock)
        # 8 readings: below the minimum of both base models
        report = service.train([make_history(8)])
        assert not report.nn_trained
        assert "neural" in report.errors
        assert not report.any_trained


def test_observation_row_order():
    obs = WeatherObservation(
        temperature=21.0, humidity=55.0, rainfall=0.4, pressure=1009.0,
        recorded_at=datetime(2024, 1, 1),
    )
    assert obs.as_row() == [21.0, 55.0, 0.4, 1009.0]
