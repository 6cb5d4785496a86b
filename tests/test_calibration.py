"""
Tests for the calibration loop.

Test scenarios:
1. Repeated outcomes converge the decay exponent without overshoot
2. Decay stays within [1.03, 1.12] and history is bounded
3. Outcomes that cannot calibrate return not_ready
4. Correction factors smoothed per distance band, only for present conditions
5. Performance model helpers (projection, trend, quality)
"""

from datetime import date

import pytest

from coach_engine.calibration import (
    CalibrationInput,
    CalibrationLoop,
    UltraCalibrationInput,
    clamp_decay,
    decay_description,
    decay_trend,
    initialize_performance_model,
    model_quality,
    predict_time_with_model,
    smoothing_alpha,
    update_baseline_in_model,
)
from coach_engine.schemas import (
    BaselineRace,
    DistanceBand,
    EngineStatus,
    PerformanceModel,
    Surface,
    Unavailable,
)

RACE_DAY = date(2026, 6, 28)
HALF_KM = 21.1


@pytest.fixture
def loop():
    return CalibrationLoop(alpha_cap=0.4)


@pytest.fixture
def baseline():
    return BaselineRace(
        distance_km=10.0,
        time_min=50.0,
        pace_min_per_km=5.0,
        race_date=date(2026, 4, 12),
        is_real_race=True,
        confidence=0.95,
    )


@pytest.fixture
def model(baseline):
    return initialize_performance_model(baseline, athlete_id="runner_001")


def _half(actual_decay: float, race_id: str = "half") -> CalibrationInput:
    ratio = HALF_KM / 10.0
    return CalibrationInput(
        race_id=race_id,
        race_date=RACE_DAY,
        distance_km=HALF_KM,
        predicted_time_min=50 * ratio ** 1.06,
        actual_time_min=50 * ratio ** actual_decay,
    )


def test_smoothing_alpha():
    assert smoothing_alpha(0, 0.4) == 0.4
    assert smoothing_alpha(1, 0.4) == pytest.approx(1 / 3)
    assert smoothing_alpha(8, 0.4) == pytest.approx(0.1)


def test_clamp_decay():
    assert clamp_decay(1.0) == 1.03
    assert clamp_decay(1.2) == 1.12
    assert clamp_decay(1.07) == 1.07


def test_first_calibration_step(loop, model):
    result = loop.calibrate_decay(model, _half(1.09))

    assert result.implied_decay == pytest.approx(1.09)
    assert result.alpha == 0.4
    assert result.model.performance_decay == pytest.approx(0.6 * 1.06 + 0.4 * 1.09)
    assert result.model.calibration_count == 1
    assert result.model.last_calibration_date == RACE_DAY
    assert result.record.track == "decay"
    assert result.record.value_before == 1.06
    assert model.calibration_count == 0


def test_calibration_reports_trend_and_projection(loop, model):
    """A slower-than-predicted half raises the decay and the half projection."""
    result = loop.calibrate_decay(model, _half(1.09))

    assert result.trend.direction == "declining"
    assert result.projected_time_min == pytest.approx(50 * 2.11 ** (0.6 * 1.06 + 0.4 * 1.09))
    assert result.projected_time_min > 50 * 2.11 ** 1.06


def test_repeated_outcome_converges(loop, model):
    """Ten identical results pull the decay to within 0.005 of 1.09."""
    decays = [model.performance_decay]
    for i in range(10):
        model = loop.calibrate_decay(model, _half(1.09, race_id=f"half-{i}")).model
        decays.append(model.performance_decay)

    assert abs(decays[-1] - 1.09) < 0.005
    assert decays == sorted(decays)
    assert max(decays) <= 1.09


def test_decay_clamped(loop, model):
    result = loop.calibrate_decay(model, _half(1.5))

    assert result.model.performance_decay == 1.12
    assert "Significant model adjustment" in result.record.notes


def test_history_bounded(loop, model):
    for i in range(12):
        model = loop.calibrate_decay(model, _half(1.07, race_id=f"r{i}")).model

    assert len(model.calibration_history) == 10
    assert model.calibration_history[-1].race_id == "r11"


def test_not_ready_without_baseline(loop):
    result = loop.calibrate_decay(PerformanceModel(), _half(1.09))

    assert isinstance(result, Unavailable)
    assert result.status == EngineStatus.NOT_READY
    assert result.reason == "No baseline available"


@pytest.mark.parametrize(
    "distance_km,actual,reason",
    [
        (4.0, 20.0, "too short"),
        (HALF_KM, 200.0, "deviation too large"),
        (10.2, 51.0, "matches the baseline"),
    ],
)
def test_not_ready_outcomes(loop, model, distance_km, actual, reason):
    outcome = CalibrationInput(
        race_id="r",
        race_date=RACE_DAY,
        distance_km=distance_km,
        predicted_time_min=actual * 0.98 if actual < 100 else 110.0,
        actual_time_min=actual,
    )

    result = loop.calibrate_decay(model, outcome)

    assert result.status == EngineStatus.NOT_READY
    assert reason in result.reason


# Correction factors


@pytest.fixture
def hot_night_trail():
    """100 km trail: 14% slower than predicted, 20 min lost at aid stations."""
    return UltraCalibrationInput(
        race_id="trail-100",
        race_date=RACE_DAY,
        distance_km=100.0,
        predicted_time_min=600.0,
        actual_time_min=684.0,
        surface=Surface.TRAIL,
        temperature_c=28.0,
        night_section=True,
        aid_station_predicted_min=40.0,
        aid_station_actual_min=60.0,
        fatigue_factor_used=1.2,
    )


def test_corrections_from_neutral(loop, hot_night_trail):
    result = loop.calibrate_corrections(None, hot_night_trail, athlete_id="runner_001")

    factors = result.factors
    assert factors.distance_band == DistanceBand.HUNDRED_K
    assert factors.athlete_id == "runner_001"
    assert result.actual_fatigue_factor == pytest.approx(1.2 * 664 / 600)
    assert factors.base_fatigue_factor == pytest.approx(0.6 + 0.4 * 1.2 * 664 / 600)
    assert factors.trail_factor == pytest.approx(1.008)
    assert factors.night_factor == pytest.approx(1.02)
    assert factors.heat_factor == pytest.approx(1.012)
    assert factors.aid_station_multiplier == pytest.approx(1.2)
    assert factors.mountain_factor == 1.0
    assert factors.calibration_count == 1
    assert result.updated_fields == [
        "aid_station_multiplier",
        "base_fatigue_factor",
        "heat_factor",
        "night_factor",
        "trail_factor",
    ]


def test_corrections_quality_and_insights(loop, hot_night_trail):
    result = loop.calibrate_corrections(None, hot_night_trail)

    assert result.record.quality == pytest.approx(0.7 * 1.15)
    assert result.factors.confidence == pytest.approx(50 + 0.805 * 5)
    assert result.insights[0] == "Prediction was 14.0% optimistic"
    assert any("Heat (28°C)" in i for i in result.insights)
    assert any("Aid station time differed by +20 min" in i for i in result.insights)
    assert result.record.track == "corrections"


def test_corrections_alpha_shrinks(loop, hot_night_trail):
    first = loop.calibrate_corrections(None, hot_night_trail)

    second = loop.calibrate_corrections(first.factors, hot_night_trail)

    assert second.alpha == pytest.approx(1 / 3)
    assert second.factors.calibration_count == 2
    assert len(second.factors.race_history) == 2


def test_fast_road_ultra_only_updates_base(loop):
    outcome = UltraCalibrationInput(
        race_id="road-60",
        race_date=RACE_DAY,
        distance_km=60.0,
        predicted_time_min=400.0,
        actual_time_min=352.0,
    )

    result = loop.calibrate_corrections(None, outcome)

    assert result.updated_fields == ["base_fatigue_factor"]
    assert result.factors.base_fatigue_factor == 1.0
    assert "faster than predicted" in result.insights[0]


# Model helpers


def test_initialize_without_baseline():
    model = initialize_performance_model(None, athlete_id="a")

    assert model.has_baseline is False
    assert predict_time_with_model(model, 21.1) is None


def test_predict_with_model(model):
    assert predict_time_with_model(model, HALF_KM) == pytest.approx(50 * 2.11 ** 1.06)


def test_update_baseline_keeps_decay(model):
    tuned = model.model_copy(update={"performance_decay": 1.08})
    newer = BaselineRace(
        distance_km=21.1,
        time_min=105.5,
        pace_min_per_km=5.0,
        race_date=RACE_DAY,
        is_real_race=True,
        confidence=1.0,
    )

    updated = update_baseline_in_model(tuned, newer)

    assert updated.performance_decay == 1.08
    assert updated.baseline_distance_km == 21.1
    assert updated.confidence == 1.0


def test_decay_trend():
    assert decay_trend(1.07, 1.08).direction == "improving"
    assert decay_trend(1.09, 1.07).direction == "declining"
    assert decay_trend(1.081, 1.08).direction == "stable"


def test_model_quality_categories(model):
    assert model_quality(PerformanceModel()).category == "initial"
    assert model_quality(model).category == "fair"
    assert model_quality(model.model_copy(update={"calibration_count": 1})).category == "good"
    assert model_quality(model.model_copy(update={"calibration_count": 3})).category == "excellent"


def test_decay_description():
    assert decay_description(1.04).startswith("Excellent endurance")
    assert decay_description(1.06).startswith("Strong endurance")
    assert decay_description(1.10).startswith("Developing endurance")
