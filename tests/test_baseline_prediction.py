"""
Tests for baseline selection and race time prediction.

Test scenarios:
1. Official race results rank above training efforts
2. Race-like training runs and recency confidence
3. Riegel projection and standard-distance projections
4. Prediction method priority: route, manual, projection
5. Performance modifiers and calibrated decay
"""

from datetime import timedelta

import pytest

from coach_engine.baseline import (
    find_best_baseline,
    format_pace,
    format_time,
    generate_projections,
    project_time,
    recency_confidence,
)
from coach_engine.prediction import (
    CalculationMethod,
    ConfidenceTier,
    RaceTimePredictor,
    TrainingStats,
    fitness_factor,
    long_run_factor,
    consistency_factor,
    training_stats,
    weather_factor,
)
from coach_engine.schemas import (
    ActivityRecord,
    BaselineRace,
    EngineStatus,
    PaceConfidence,
    PerformanceModel,
    RaceResult,
    RouteAnalysis,
    Surface,
    TargetRace,
    Unavailable,
    WeatherReading,
)
from conftest import TODAY, make_activities

MILD = WeatherReading(temperature_c=15.0, humidity_pct=50.0)


@pytest.fixture
def predictor():
    return RaceTimePredictor(riegel_exponent=1.06)


@pytest.fixture
def baseline_10k():
    return BaselineRace(
        distance_km=10.0,
        time_min=50.0,
        pace_min_per_km=5.0,
        race_date=TODAY - timedelta(days=20),
        is_real_race=True,
        confidence=1.0,
    )


@pytest.fixture
def half():
    return TargetRace(
        id="half", name="City Half", race_date=TODAY + timedelta(weeks=8), distance_km=21.1
    )


@pytest.fixture
def steady_stats():
    return TrainingStats(
        avg_pace_min_per_km=5.5,
        longest_run_km=18.0,
        fitness_level=0.9,
        weekly_km=[50.0] * 8,
    )


# Baseline selection


def test_recency_confidence_bands():
    assert recency_confidence(TODAY - timedelta(days=10), TODAY) == 1.0
    assert recency_confidence(TODAY - timedelta(days=45), TODAY) == 0.95
    assert recency_confidence(TODAY - timedelta(days=90), TODAY) == 0.85
    assert recency_confidence(TODAY - timedelta(days=120), TODAY) == 0.75
    assert recency_confidence(TODAY - timedelta(days=400), TODAY) == 0.6


def test_race_result_beats_faster_training_run():
    results = [RaceResult(race_date=TODAY - timedelta(days=100), distance_km=10.0, time_min=48.0)]
    activities = [
        ActivityRecord(activity_date=TODAY - timedelta(days=5), distance_km=10.0, duration_min=42.0)
    ]

    baseline = find_best_baseline(results, activities, TODAY)

    assert baseline.is_real_race is True
    assert baseline.time_min == 48.0
    assert baseline.confidence == 0.75


def test_race_result_time_from_logged_activity():
    race_day = TODAY - timedelta(days=14)
    results = [RaceResult(race_date=race_day, name="Parkrun", distance_km=5.0)]
    activities = [ActivityRecord(activity_date=race_day, distance_km=5.1, duration_min=22.0)]

    baseline = find_best_baseline(results, activities, TODAY)

    assert baseline.is_real_race is True
    assert baseline.time_min == 22.0
    assert baseline.source == "race:Parkrun"


def test_training_baseline_needs_race_like_effort():
    easy = ActivityRecord(activity_date=TODAY - timedelta(days=2), distance_km=8.0, duration_min=44.0)
    long_run = ActivityRecord(
        activity_date=TODAY - timedelta(days=3), distance_km=22.0, duration_min=125.0, name="Long"
    )

    baseline = find_best_baseline([], [easy, long_run], TODAY)

    assert baseline.is_real_race is False
    assert baseline.distance_km == 22.0
    assert baseline.source == "log:Long - 22km"


def test_training_baseline_rejects_unrealistic_pace():
    walk = ActivityRecord(activity_date=TODAY, distance_km=21.0, duration_min=260.0)

    result = find_best_baseline([], [walk], TODAY)

    assert isinstance(result, Unavailable)
    assert result.status == EngineStatus.INSUFFICIENT_DATA


def test_faster_recent_training_effort_wins():
    older = ActivityRecord(
        activity_date=TODAY - timedelta(days=100), distance_km=10.0, duration_min=50.0
    )
    recent = ActivityRecord(
        activity_date=TODAY - timedelta(days=7), distance_km=10.0, duration_min=46.0
    )

    baseline = find_best_baseline([], [older, recent], TODAY)

    assert baseline.time_min == 46.0


def test_no_history_is_unavailable():
    assert isinstance(find_best_baseline([], [], TODAY), Unavailable)


# Projection


def test_riegel_projection():
    """10 km in 50 min -> half marathon: 50 * 2.11 ** 1.06"""
    projected = project_time(10.0, 50.0, 21.1, 1.06)

    assert projected == pytest.approx(50 * 2.11 ** 1.06)
    assert projected == pytest.approx(110.3, abs=0.5)


def test_format_helpers():
    assert format_time(45.0) == "45:00"
    assert format_time(110.5) == "1:50:30"
    assert format_pace(5.25) == "5:15"


def test_generate_projections_skip_own_distance(baseline_10k):
    projections = generate_projections(baseline_10k, exponent=1.06)

    names = [p.distance_name for p in projections]
    assert names == ["5K", "15K", "Half Marathon", "Marathon"]
    marathon = projections[-1]
    assert marathon.predicted_time_min == pytest.approx(50 * 4.2195 ** 1.06)


# Training stats


def test_training_stats_defaults():
    stats = training_stats([], TODAY)

    assert stats == TrainingStats()


def test_training_stats_summary():
    activities = make_activities(TODAY, days=14)

    stats = training_stats(activities, TODAY)

    assert stats.avg_pace_min_per_km == pytest.approx(5.5)
    assert stats.longest_run_km == 10.0
    assert stats.weekly_km[-2:] == [70.0, 70.0]
    assert stats.fitness_level == pytest.approx(140 / 8 / 50)


# Modifiers


def test_fitness_factor():
    assert fitness_factor(85) == pytest.approx(1.0)
    assert fitness_factor(95) == pytest.approx(0.97)
    assert fitness_factor(50) == pytest.approx(1.175)


def test_consistency_and_long_run_factors():
    assert consistency_factor([50, 50, 50, 50]) == 1.0
    assert consistency_factor([20, 60, 20, 60]) == 1.06
    assert consistency_factor([50, 50]) == 1.05
    assert long_run_factor(18, 21.1) == 0.98
    assert long_run_factor(5, 42.2) == 1.08


def test_weather_factor_heat():
    assert weather_factor(MILD) == 1.0
    assert weather_factor(WeatherReading(temperature_c=32.0, humidity_pct=70.0)) > 1.05


# Prediction


def test_projection_prediction(predictor, half, baseline_10k, steady_stats):
    result = predictor.predict(half, baseline_10k, steady_stats, 85, conditions=MILD, today=TODAY)

    assert result.method == CalculationMethod.PROJECTION
    assert result.calculation_confidence == ConfidenceTier.LOW
    assert result.base_time_min == pytest.approx(50 * 2.11 ** 1.06)
    expected = result.base_time_min
    for factor in result.factors.values():
        expected *= factor
    assert result.predicted_time_min == pytest.approx(expected)
    assert result.weeks_to_race == 8.0
    assert result.confidence == "high"
    assert len(result.pace_breakdown) == 22


def test_similar_distance_real_race_is_medium(predictor, baseline_10k, steady_stats):
    race = TargetRace(id="12k", name="12K", race_date=TODAY + timedelta(weeks=6), distance_km=12.0)

    result = predictor.predict(race, baseline_10k, steady_stats, 85, conditions=MILD)

    assert result.calculation_confidence == ConfidenceTier.MEDIUM


def test_far_ultra_projection_is_very_low(predictor, baseline_10k, steady_stats):
    race = TargetRace(
        id="100k", name="100K", race_date=TODAY + timedelta(weeks=20), distance_km=100.0
    )

    result = predictor.predict(race, baseline_10k, steady_stats, 85, conditions=MILD)

    assert result.calculation_confidence == ConfidenceTier.VERY_LOW


def test_manual_time_beats_projection(predictor, half, baseline_10k, steady_stats):
    race = half.model_copy(update={"expected_time_min": 100.0})

    result = predictor.predict(race, baseline_10k, steady_stats, 85, conditions=MILD)

    assert result.method == CalculationMethod.MANUAL
    assert result.base_time_min == 100.0
    assert result.calculation_confidence == ConfidenceTier.MEDIUM


def test_route_analysis_preferred(predictor, half, baseline_10k, steady_stats):
    route = RouteAnalysis(
        total_time_min=105.0,
        total_distance_km=21.0,
        personalized_pace=True,
        pace_confidence=PaceConfidence.HIGH,
    )
    race = half.model_copy(update={"route_analysis": route, "expected_time_min": 100.0})

    result = predictor.predict(race, baseline_10k, steady_stats, 80, conditions=MILD)

    assert result.method == CalculationMethod.ROUTE
    assert result.calculation_confidence == ConfidenceTier.VERY_HIGH
    assert set(result.factors) == {"weather", "readiness"}
    assert result.predicted_time_min == pytest.approx(105.0)


def test_mismatched_route_is_ignored(predictor, half, baseline_10k, steady_stats):
    route = RouteAnalysis(total_time_min=60.0, total_distance_km=12.0)
    race = half.model_copy(update={"route_analysis": route})

    result = predictor.predict(race, baseline_10k, steady_stats, 85, conditions=MILD)

    assert result.method == CalculationMethod.PROJECTION


def test_ultra_route_gets_fatigue_correction(predictor, baseline_10k, steady_stats):
    route = RouteAnalysis(total_time_min=360.0, total_distance_km=60.0, elevation_gain_m=1500)
    race = TargetRace(
        id="60k",
        name="Trail 60K",
        race_date=TODAY + timedelta(weeks=12),
        distance_km=60.0,
        elevation_gain_m=1500,
        surface=Surface.TRAIL,
        route_analysis=route,
    )

    result = predictor.predict(race, baseline_10k, steady_stats, 75, conditions=MILD)

    assert result.ultra is not None
    assert result.base_time_min == pytest.approx(result.ultra.adjusted_time_min)
    assert result.base_time_min > 360.0


def test_calibrated_decay_replaces_exponent(predictor, half, baseline_10k, steady_stats):
    model = PerformanceModel(performance_decay=1.10, calibration_count=2)

    result = predictor.predict(half, baseline_10k, steady_stats, 85, conditions=MILD, model=model)

    assert result.base_time_min == pytest.approx(50 * 2.11 ** 1.10)


def test_no_method_is_unavailable(predictor, half, steady_stats):
    result = predictor.predict(half, None, steady_stats, 85)

    assert isinstance(result, Unavailable)
    assert result.status == EngineStatus.INSUFFICIENT_DATA


def test_readiness_clamped(predictor, half, baseline_10k, steady_stats):
    result = predictor.predict(half, baseline_10k, steady_stats, 140, conditions=MILD)

    assert result.readiness == 100.0
