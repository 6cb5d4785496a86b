"""
Tests for the adaptive coaching orchestrator.

Test scenarios:
1. Planning cycle seeds, mutates and persists the week and learns weights
2. A second cycle for the same week while one is in flight is refused
3. A plan changed underneath the cycle is not overwritten
4. Store failures surface as external_unavailable
5. Race feedback becomes lessons that reach the next cycle
6. Prediction, simulation and race outcome calibration
"""

from datetime import date, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from coach_engine.calibration import DecayCalibrationResult, UltraCalibrationInput
from coach_engine.coach import AdaptiveCoach, PlanCycleGuard
from coach_engine.database import SqlCoachStore, get_engine, get_session_factory
from coach_engine.errors import ExternalServiceError
from coach_engine.fatigue import FatigueResult
from coach_engine.lessons import lesson_weight
from coach_engine.planner import PlanMutator, seed_plan
from coach_engine.prediction import CalculationMethod
from coach_engine.schemas import (
    DistanceBand,
    EngineStatus,
    LessonKey,
    RaceFeedback,
    Surface,
    Unavailable,
    Weights,
)
from coach_engine.simulation import NutritionInputs, Strategy
from conftest import TODAY

ATHLETE = "runner_001"


class OfflineStore:
    """Every store call fails as if the database were unreachable."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise ExternalServiceError("database offline")

        return fail


# Planning cycle


def test_planning_cycle_persists_plan(coach, loaded_store):
    result = coach.run_planning_cycle(ATHLETE, TODAY)

    assert result.applied is True
    assert result.week_start == TODAY
    assert result.plan.revision == 1
    assert loaded_store.get_plan(ATHLETE, TODAY) == result.plan
    assert result.race_weeks_out == pytest.approx(27 / 7)
    assert 0.0 <= result.fatigue.score <= 1.0
    assert result.trace.fatigue_score == result.fatigue.score


def test_planning_cycle_updates_state(coach, loaded_store):
    first = coach.run_planning_cycle(ATHLETE, TODAY)
    second = coach.run_planning_cycle(ATHLETE, TODAY)

    state = loaded_store.get_athlete_state(ATHLETE)
    assert second.plan.revision == 2
    assert state.cycle_count == 2
    assert state.weights == second.weights
    assert first.weights != Weights()


def test_planning_cycle_mid_week_targets_monday(coach):
    result = coach.run_planning_cycle(ATHLETE, TODAY + timedelta(days=3))

    assert result.week_start == TODAY


def test_planning_cycle_new_athlete(settings, store):
    """No history at all still yields a stored plan."""
    coach = AdaptiveCoach(store, settings=settings)

    result = coach.run_planning_cycle("newcomer", TODAY)

    assert result.applied is True
    assert result.race_weeks_out is None
    assert result.outcome_score == pytest.approx(-0.6)


def test_concurrent_cycle_refused(loaded_store, settings):
    """A cycle started while another holds the same week is refused."""
    inner_results = []
    holder = {}

    def reenter(days):
        inner_results.append(holder["coach"].run_planning_cycle(ATHLETE, TODAY))
        return days

    mutator = PlanMutator(settings.DEFAULT_RACE_HORIZON_WEEKS, extra_steps=[reenter])
    coach = AdaptiveCoach(loaded_store, settings=settings, mutator=mutator)
    holder["coach"] = coach

    outer = coach.run_planning_cycle(ATHLETE, TODAY)

    assert outer.applied is True
    assert isinstance(inner_results[0], Unavailable)
    assert inner_results[0].status == EngineStatus.CONCURRENT_MUTATION
    assert loaded_store.get_plan(ATHLETE, TODAY).revision == 1


def test_guard_released_after_cycle(coach):
    coach.run_planning_cycle(ATHLETE, TODAY)

    assert coach.guard.is_held(ATHLETE, TODAY) is False


def test_guard_is_per_week():
    guard = PlanCycleGuard()

    with guard.hold(ATHLETE, TODAY) as first:
        with guard.hold(ATHLETE, TODAY + timedelta(weeks=1)) as other_week:
            with guard.hold(ATHLETE, TODAY) as same_week:
                assert first is True
                assert other_week is True
                assert same_week is False


def test_stale_plan_not_overwritten(loaded_store, settings):
    """Another writer saves the week while the cycle is mutating it."""
    intruder = seed_plan(40, week_start=TODAY)

    def concurrent_write(days):
        loaded_store.save_plan(ATHLETE, intruder, expected_revision=0)
        return days

    mutator = PlanMutator(settings.DEFAULT_RACE_HORIZON_WEEKS, extra_steps=[concurrent_write])
    coach = AdaptiveCoach(loaded_store, settings=settings, mutator=mutator)

    result = coach.run_planning_cycle(ATHLETE, TODAY)

    assert isinstance(result, Unavailable)
    assert result.status == EngineStatus.CONCURRENT_MUTATION
    stored = loaded_store.get_plan(ATHLETE, TODAY)
    assert stored.revision == 1
    assert stored.total_distance() == intruder.total_distance()


def test_store_failure_is_unavailable(settings):
    coach = AdaptiveCoach(OfflineStore(), settings=settings)

    cycle = coach.run_planning_cycle(ATHLETE, TODAY)
    prediction = coach.predict_race(ATHLETE, TODAY)
    lessons = coach.record_race_feedback(ATHLETE, _feedback_stub())

    for result in (cycle, prediction, lessons):
        assert isinstance(result, Unavailable)
        assert result.status == EngineStatus.EXTERNAL_UNAVAILABLE
        assert "database offline" in result.reason


def test_database_failure_is_unavailable(settings):
    """A store whose schema was never created reports external_unavailable."""
    store = SqlCoachStore(get_session_factory(get_engine("sqlite://")))
    coach = AdaptiveCoach(store, settings=settings)

    cycle = coach.run_planning_cycle(ATHLETE, TODAY)
    fatigue = coach.score_fatigue(ATHLETE, TODAY)

    for result in (cycle, fatigue):
        assert isinstance(result, Unavailable)
        assert result.status == EngineStatus.EXTERNAL_UNAVAILABLE
        assert "Database error" in result.reason


def test_failed_state_write_keeps_previous_plan(loaded_store, settings):
    """Plan and learned state are written together or not at all."""

    class StateWriteFails(SqlCoachStore):
        def _write_state(self, session, state):
            raise OperationalError("UPDATE athletes", {}, Exception("disk I/O error"))

    coach = AdaptiveCoach(StateWriteFails(loaded_store.session_factory), settings=settings)

    result = coach.run_planning_cycle(ATHLETE, TODAY)

    assert isinstance(result, Unavailable)
    assert result.status == EngineStatus.EXTERNAL_UNAVAILABLE
    assert loaded_store.get_plan(ATHLETE, TODAY) is None
    assert loaded_store.get_athlete_state(ATHLETE).cycle_count == 0


def _feedback_stub():
    return RaceFeedback(
        id="any", name="Any", race_date=date(2026, 5, 1), distance_km=10.0, rpe=6.0
    )


# Fatigue and readiness


def test_score_fatigue_leaves_plan_alone(coach, loaded_store):
    fatigue = coach.score_fatigue(ATHLETE, TODAY)

    assert isinstance(fatigue, FatigueResult)
    assert loaded_store.get_plan(ATHLETE, TODAY) is None


def test_readiness_complements_fatigue(coach):
    fatigue = coach.score_fatigue(ATHLETE, TODAY)

    readiness = coach.readiness(ATHLETE, TODAY)

    assert readiness == round((1 - fatigue.score) * 100, 1)


# Lessons


def test_race_feedback_builds_lessons(coach, snapshot):
    for feedback in snapshot.race_feedback:
        lessons = coach.record_race_feedback(ATHLETE, feedback)

    assert lesson_weight(lessons, LessonKey.FUELING_FOCUS) == pytest.approx(0.25)
    assert lesson_weight(lessons, LessonKey.HEAT_ACCLIMATION) == pytest.approx(0.20)
    assert lesson_weight(lessons, LessonKey.PACING_CONTROL) == pytest.approx(0.15)


def test_lessons_reach_planning_cycle(coach, snapshot):
    for feedback in snapshot.race_feedback:
        coach.record_race_feedback(ATHLETE, feedback)

    result = coach.run_planning_cycle(ATHLETE, TODAY)

    assert {lesson.key for lesson in result.lessons} >= {
        LessonKey.FUELING_FOCUS,
        LessonKey.HEAT_ACCLIMATION,
    }
    assert result.adjustments.heat_prep is True
    assert result.adjustments.fueling_rehearsal is True


# Races


def test_best_baseline_prefers_race_result(coach):
    baseline = coach.best_baseline(ATHLETE, TODAY)

    assert baseline.is_real_race is True
    assert baseline.time_min == 45.0


def test_predict_next_race(coach, loaded_store):
    prediction = coach.predict_race(ATHLETE, TODAY)

    assert prediction.race_id == "city-half"
    assert prediction.method == CalculationMethod.PROJECTION
    assert prediction.base_time_min == pytest.approx(45 * 2.11 ** 1.06)
    assert prediction.conditions.source == "default"
    assert loaded_store.get_performance_model(ATHLETE).baseline_time_min == 45.0


def test_predict_unknown_race(coach):
    result = coach.predict_race(ATHLETE, TODAY, race_id="missing")

    assert result.status == EngineStatus.INSUFFICIENT_DATA


def test_simulate_uses_prediction(coach):
    prediction = coach.predict_race(ATHLETE, TODAY)

    simulation = coach.simulate_race(
        ATHLETE, TODAY, nutrition=NutritionInputs(), strategy=Strategy.CONSERVATIVE
    )

    assert simulation.distance_km == 21.1
    assert simulation.duration_min == pytest.approx(prediction.predicted_time_min)
    assert simulation.energy.selected_strategy == Strategy.CONSERVATIVE


def test_half_outcome_calibrates_decay(coach, loaded_store):
    outcome = UltraCalibrationInput(
        race_id="city-half",
        race_date=date(2026, 6, 28),
        distance_km=21.1,
        predicted_time_min=100.0,
        actual_time_min=98.0,
    )

    result = coach.record_race_outcome(ATHLETE, outcome)

    assert isinstance(result.decay, DecayCalibrationResult)
    assert result.corrections is None
    model = loaded_store.get_performance_model(ATHLETE)
    assert model.calibration_count == 1
    assert model.performance_decay < 1.06
    assert len(loaded_store.list_calibration_records(ATHLETE)) == 1


def test_calibrated_model_changes_prediction(coach):
    before = coach.predict_race(ATHLETE, TODAY)
    outcome = UltraCalibrationInput(
        race_id="city-half",
        race_date=date(2026, 6, 28),
        distance_km=21.1,
        predicted_time_min=100.0,
        actual_time_min=98.0,
    )
    coach.record_race_outcome(ATHLETE, outcome)

    after = coach.predict_race(ATHLETE, TODAY)

    assert after.base_time_min < before.base_time_min


def test_ultra_outcome_calibrates_band(coach, loaded_store, snapshot):
    outcome = UltraCalibrationInput(
        race_id="mountain-50k",
        race_date=date(2026, 9, 20),
        distance_km=50.0,
        predicted_time_min=360.0,
        actual_time_min=400.0,
        surface=Surface.TRAIL,
        elevation_gain_m=2400,
        fatigue_factor_used=1.1,
    )

    result = coach.record_race_outcome(ATHLETE, outcome, feedback=snapshot.race_feedback[0])

    assert result.corrections.factors.distance_band == DistanceBand.FIFTY_K
    stored = loaded_store.get_correction_factors(ATHLETE, DistanceBand.FIFTY_K)
    assert stored.calibration_count == 1
    assert result.lessons is not None
    assert len(loaded_store.list_calibration_records(ATHLETE)) == 2


def test_taper_outlook_inside_taper_window(coach):
    far = coach.run_planning_cycle(ATHLETE, TODAY)
    near = coach.run_planning_cycle(ATHLETE, TODAY + timedelta(weeks=2))

    assert far.taper is None
    assert near.taper.race_id == "city-half"
    assert near.taper.days_to_race == 13
    assert near.taper.priority_volume_factor == 0.70
    assert 0.0 < near.taper.taper_cut <= 0.5
    assert any("A-race taper" in note for note in near.trace.notes)


def test_race_projections_from_baseline(coach):
    projections = coach.race_projections(ATHLETE, TODAY)

    by_distance = {p.target_distance_km: p for p in projections}
    assert 10.0 not in by_distance
    assert by_distance[21.0975].predicted_time_min == pytest.approx(45 * 2.10975 ** 1.06)


def test_race_projections_use_calibrated_decay(coach):
    coach.record_race_outcome(
        ATHLETE,
        UltraCalibrationInput(
            race_id="city-half",
            race_date=date(2026, 6, 28),
            distance_km=21.1,
            predicted_time_min=100.0,
            actual_time_min=98.0,
        ),
    )

    projections = coach.race_projections(ATHLETE, TODAY)

    half = next(p for p in projections if p.target_distance_km == 21.0975)
    assert half.predicted_time_min < 45 * 2.10975 ** 1.06
