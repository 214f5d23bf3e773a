"""
Tests for the per-domain predictors (crop, soil, irrigation, energy).
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from agroforecast.core.errors import ModelNotInitializedError
from agroforecast.ml.domain.crop import (
    CROP_DATABASE,
    CropInput,
    CropRecommender,
    Season,
    current_season,
    parameter_score,
)
from agroforecast.ml.domain.energy import (
    EnergyInput,
    EnergyOptimizer,
    EquipmentUsage,
    default_price_table,
    time_of_day_factor,
)
from agroforecast.ml.domain.irrigation import (
    IrrigationAction,
    IrrigationInput,
    IrrigationOptimizer,
    choose_action,
    irrigation_efficiency,
)
from agroforecast.ml.domain.soil import SoilHealthPredictor, SoilInput, soil_risk_level
from agroforecast.ml.models import WeatherObservation, WeatherPrediction


def _ready(predictor, run):
    run(predictor.initialize())
    return predictor


def _weather(now, temperature=27.0, humidity=85.0, rainfall=200.0):
    return WeatherObservation(
        temperature=temperature, humidity=humidity, rainfall=rainfall,
        pressure=1010.0, recorded_at=now,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═══════════════════════════════════════════════════════════════════════════

@pytest.mark.parametrize(
    "predictor, inputs",
    [
        (CropRecommender(), None),
        (SoilHealthPredictor(), SoilInput(25, 60, 5)),
        (IrrigationOptimizer(), IrrigationInput(current_moisture=40)),
        (EnergyOptimizer(), EnergyInput()),
    ],
    ids=["crop", "soil", "irrigation", "energy"],
)
def test_predict_before_initialize(predictor, inputs, run, now):
    if inputs is None:
        inputs = CropInput(weather=_weather(now))
    with pytest.raises(ModelNotInitializedError):
        run(predictor.predict(inputs))


def test_metrics_counted(run, clock):
    predictor = _ready(SoilHealthPredictor(random_state=1, clock=clock), run)
    run(predictor.predict(SoilInput(25, 60, 5)))
    assert predictor.metrics.predictions_count == 1
    assert predictor.metrics.trained_samples == 1000


# ═══════════════════════════════════════════════════════════════════════════
# Crop recommendation
# ═══════════════════════════════════════════════════════════════════════════

class TestCropRecommender:
    def test_season_calendar(self):
        assert current_season(7) == Season.KHARIF
        assert current_season(11) == Season.KHARIF
        assert current_season(1) == Season.RABI

    def test_parameter_score(self):
        rice_temp = CROP_DATABASE["rice"].temperature
        assert parameter_score(27, rice_temp) == pytest.approx(1.0)
        assert parameter_score(34, rice_temp) == pytest.approx(0.6)
        assert parameter_score(40, rice_temp) == pytest.approx(1 - 5 / 27)

    def test_kharif_candidates(self, run, clock, now):
        recommender = _ready(CropRecommender(random_state=0, clock=clock), run)
        result = run(recommender.predict(CropInput(weather=_weather(now))))
        assert result.metadata == {"season": "Kharif", "candidates": 3}
        assert {r.crop_id for r in result.predictions} == {"rice", "maize", "groundnut"}
        scores = [r.suitability_score for r in result.predictions]
        assert scores == sorted(scores, reverse=True)
        assert all(30 <= r.confidence <= 95 for r in result.predictions)
        assert result.valid_until == now + timedelta(days=7)

    def test_monsoon_weather_favours_rice(self, run, clock, now):
        recommender = _ready(CropRecommender(random_state=0, clock=clock), run)
        result = run(recommender.predict(CropInput(weather=_weather(now))))
        assert result.predictions[0].crop_id == "rice"

    def test_explicit_season(self, run, clock, now):
        recommender = _ready(CropRecommender(random_state=0, clock=clock), run)
        result = run(recommender.predict(CropInput(weather=_weather(now), season=Season.ZAID)))
        assert [r.crop_id for r in result.predictions] == ["groundnut"]

    def test_dry_heat_is_risky(self, run, clock, now):
        recommender = _ready(CropRecommender(random_state=0, clock=clock), run)
        weather = _weather(now, temperature=42, humidity=30, rainfall=0)
        rice = [
            r for r in run(recommender.predict(CropInput(weather=weather))).predictions
            if r.crop_id == "rice"
        ][0]
        assert rice.risk_level == "high"
        assert "Heat stress during growth stages" in rice.risk_factors
        assert rice.predicted_yield >= CROP_DATABASE["rice"].yield_min


# ═══════════════════════════════════════════════════════════════════════════
# Soil health
# ═══════════════════════════════════════════════════════════════════════════

class TestSoilHealthPredictor:
    def test_report_ranges(self, run, clock):
        predictor = _ready(SoilHealthPredictor(random_state=0, clock=clock), run)
        report = run(predictor.predict(SoilInput(temperature=26, humidity=65, rainfall=10)))
        assert 0 <= report.health_score <= 100
        assert 0 <= report.moisture_level <= 100
        assert report.risk_level in {"low", "moderate", "high", "critical"}
        assert 0.6 <= report.confidence <= 1.0
        assert [d["day"] for d in report.outlook] == list(range(1, 8))

    def test_serialised_nutrients(self, run, clock):
        predictor = _ready(SoilHealthPredictor(random_state=0, clock=clock), run)
        data = run(predictor.predict(SoilInput(26, 65, 10))).to_dict()
        assert set(data["nutrients"]) == {"level", "nitrogen", "phosphorus", "potassium", "recommendations"}
        assert data["risk_assessment"]["factors"]

    @pytest.mark.parametrize("score, level", [(90, "low"), (80, "moderate"), (50, "high"), (40, "critical")])
    def test_risk_bands(self, score, level):
        assert soil_risk_level(score) == level


# ═══════════════════════════════════════════════════════════════════════════
# Irrigation
# ═══════════════════════════════════════════════════════════════════════════

def _rain_forecast(now, rainfall):
    return [
        WeatherPrediction(
            day=d, date=now.date() + timedelta(days=d), temperature=28.0,
            humidity=60.0, rainfall=rainfall, confidence=0.9,
        )
        for d in range(1, 4)
    ]


class TestIrrigationPolicy:
    @pytest.mark.parametrize(
        "moisture, rain, action",
        [
            (55, False, IrrigationAction.NONE),
            (36, True, IrrigationAction.NONE),
            (34, True, IrrigationAction.MEDIUM),
            (25, False, IrrigationAction.HEAVY),
            (35, False, IrrigationAction.MEDIUM),
            (45, False, IrrigationAction.LIGHT),
        ],
    )
    def test_choose_action(self, moisture, rain, action):
        assert choose_action(moisture, rain) == action

    def test_efficiency_capped(self):
        assert irrigation_efficiency("drip", "loam") == pytest.approx(0.9)
        assert irrigation_efficiency("drip", "clay") == pytest.approx(0.95)
        assert irrigation_efficiency("sprinkler", "sand") == pytest.approx(0.6)


class TestIrrigationOptimizer:
    def test_dry_soil_gets_heavy_irrigation(self, run, clock, now):
        optimizer = _ready(IrrigationOptimizer(random_state=0, clock=clock), run)
        plan = run(optimizer.predict(IrrigationInput(current_moisture=20)))
        assert plan.should_irrigate
        assert plan.action == IrrigationAction.HEAVY
        assert 0 < plan.recommended_amount <= 60
        assert plan.method == "sprinkler"
        assert plan.next_irrigation == now + timedelta(hours=24)
        # 12:00 now, so the 06:00 slot is tomorrow
        assert plan.scheduled_time == (now + timedelta(days=1)).replace(hour=6)

    def test_wet_soil_skips(self, run, clock, now):
        optimizer = _ready(IrrigationOptimizer(random_state=0, clock=clock), run)
        plan = run(optimizer.predict(IrrigationInput(current_moisture=60)))
        assert not plan.should_irrigate
        assert plan.recommended_amount == 0
        assert plan.next_irrigation == now + timedelta(hours=48)

    def test_expected_rain_defers(self, run, clock, now):
        optimizer = _ready(IrrigationOptimizer(random_state=0, clock=clock), run)
        plan = run(optimizer.predict(
            IrrigationInput(current_moisture=38, weather_forecast=_rain_forecast(now, 8.0))
        ))
        assert plan.action == IrrigationAction.NONE

    def test_demand_scales_with_growth_stage(self, run, clock):
        optimizer = _ready(IrrigationOptimizer(random_state=0, clock=clock), run)
        seedling = optimizer.water_demand(IrrigationInput(current_moisture=30, growth_stage="seedling"))
        flowering = optimizer.water_demand(IrrigationInput(current_moisture=30, growth_stage="flowering"))
        assert flowering == pytest.approx(seedling * 1.3 / 0.5)


# ═══════════════════════════════════════════════════════════════════════════
# Energy
# ═══════════════════════════════════════════════════════════════════════════

def _equipment():
    return [
        EquipmentUsage("pump", power_rating=10, current_status="on", flexible_timing=True),
        EquipmentUsage("cold-store", power_rating=5, current_status="off", flexible_timing=False),
    ]


class TestEnergyOptimizer:
    def test_efficiency(self):
        inputs = EnergyInput(current_usage=50, equipment=_equipment(), solar_generation=25)
        assert EnergyOptimizer.current_efficiency(inputs) == pytest.approx(60.0)

    def test_efficiency_without_equipment(self):
        assert EnergyOptimizer.current_efficiency(EnergyInput()) == 0.0

    def test_schedule_start_times(self, run, clock):
        optimizer = _ready(EnergyOptimizer(clock=clock), run)
        plan = run(optimizer.predict(EnergyInput(equipment=_equipment())))
        starts = {op.equipment_id: op.start_time for op in plan.optimized_schedule}
        assert starts == {"pump": "00:00", "cold-store": "08:00"}
        assert plan.optimized_schedule[0].energy_consumption == pytest.approx(30.0)

    def test_solar_sizing(self, run, clock):
        optimizer = _ready(EnergyOptimizer(clock=clock), run)
        plan = run(optimizer.predict(EnergyInput(farm_size=1.0)))
        assert plan.optimal_panel_kw == 8
        assert plan.estimated_annual_generation_kwh == pytest.approx(13140.0)
        assert plan.payback_years == pytest.approx(8.12)
        assert "Solar panel installation highly recommended" in plan.recommendations

    def test_time_of_day_factor(self):
        assert time_of_day_factor(12) == pytest.approx(1.0)
        assert time_of_day_factor(6) == pytest.approx(0.0, abs=1e-9)
        assert time_of_day_factor(22) == 0.0

    def test_default_price_table_has_peak(self):
        table = default_price_table()
        assert len(table) == 24
        assert table[12].demand_level == "high"
        assert table[12].price == pytest.approx(0.15)
