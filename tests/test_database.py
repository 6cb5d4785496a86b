"""
Tests for the SQLAlchemy store and the weather port.

Test scenarios:
1. Activities, feedback, races and results round-trip through the store
2. Plan writes are compare-and-set on the revision
3. A planning cycle writes plan and state in one transaction
4. Driver and schema failures surface as ExternalServiceError
5. Athlete state, performance model and correction factors persist
6. Weather falls back to configured defaults when the oracle fails
"""

from datetime import date, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from coach_engine.calibration import CalibrationRecord
from coach_engine.database import SqlCoachStore, _utcnow, get_engine, get_session_factory
from coach_engine.errors import ExternalServiceError, PlanRevisionConflict
from coach_engine.planner import seed_plan
from coach_engine.ports import resolve_conditions
from coach_engine.schemas import (
    AthleteState,
    CorrectionFactors,
    DistanceBand,
    LessonKey,
    PerformanceModel,
    RaceLesson,
    RouteAnalysis,
    WeatherReading,
    Weights,
)
from conftest import TODAY

ATHLETE = "runner_001"


def test_unknown_athlete_reads_empty(store):
    assert store.list_activities("nobody", TODAY, TODAY) == []
    assert store.get_plan("nobody", TODAY) is None
    assert store.get_athlete_state("nobody") is None
    assert store.next_race("nobody", TODAY) is None
    assert store.get_performance_model("nobody") is None


def test_activity_window(loaded_store):
    activities = loaded_store.list_activities(ATHLETE, TODAY - timedelta(days=7), TODAY)

    assert activities
    assert all(a.activity_date >= TODAY - timedelta(days=7) for a in activities)
    assert activities == sorted(activities, key=lambda a: a.activity_date)


def test_run_feedback_round_trip(loaded_store, snapshot):
    feedback = loaded_store.list_run_feedback(ATHLETE, TODAY - timedelta(days=7), TODAY)

    assert feedback == snapshot.run_feedback


def test_next_race_and_lookup(loaded_store):
    race = loaded_store.next_race(ATHLETE, TODAY)

    assert race.id == "city-half"
    assert loaded_store.get_race(ATHLETE, "mountain-50k").elevation_gain_m == 2400
    assert loaded_store.get_race(ATHLETE, "missing") is None


def test_upsert_race_replaces(loaded_store):
    route = RouteAnalysis(total_time_min=100.0, total_distance_km=21.1)
    race = loaded_store.get_race(ATHLETE, "city-half").model_copy(
        update={"route_analysis": route, "expected_time_min": 98.0}
    )

    loaded_store.upsert_race(ATHLETE, race)

    stored = loaded_store.get_race(ATHLETE, "city-half")
    assert stored.route_analysis == route
    assert stored.expected_time_min == 98.0


def test_race_results(loaded_store):
    results = loaded_store.list_race_results(ATHLETE)

    assert len(results) == 1
    assert results[0].time_min == 45.0


def test_race_feedback_replaced_newest_first(store, snapshot):
    store.replace_race_feedback(ATHLETE, snapshot.race_feedback)
    store.replace_race_feedback(ATHLETE, snapshot.race_feedback[:1])

    history = store.list_race_feedback(ATHLETE)

    assert len(history) == 1

    store.replace_race_feedback(ATHLETE, snapshot.race_feedback)
    dates = [f.race_date for f in store.list_race_feedback(ATHLETE)]
    assert dates == sorted(dates, reverse=True)


# Plans


def test_first_plan_write_expects_revision_zero(store):
    plan = seed_plan(50, week_start=TODAY)

    saved = store.save_plan(ATHLETE, plan, expected_revision=0)

    assert saved.revision == 1
    assert store.get_plan(ATHLETE, TODAY) == saved


def test_plan_revision_increments(store):
    plan = store.save_plan(ATHLETE, seed_plan(50, week_start=TODAY), expected_revision=0)

    updated = store.save_plan(ATHLETE, seed_plan(40, week_start=TODAY), expected_revision=1)

    assert updated.revision == 2
    assert store.get_plan(ATHLETE, TODAY).total_distance() < plan.total_distance()


def test_stale_plan_write_rejected(store):
    store.save_plan(ATHLETE, seed_plan(50, week_start=TODAY), expected_revision=0)

    with pytest.raises(PlanRevisionConflict) as exc_info:
        store.save_plan(ATHLETE, seed_plan(40, week_start=TODAY), expected_revision=0)

    assert exc_info.value.actual == 1
    assert store.get_plan(ATHLETE, TODAY).revision == 1


def test_cycle_writes_plan_and_state_together(store):
    state = AthleteState(athlete_id=ATHLETE, cycle_count=1)

    saved = store.save_cycle(ATHLETE, seed_plan(50, week_start=TODAY), 0, state)

    assert saved.revision == 1
    assert store.get_plan(ATHLETE, TODAY) == saved
    assert store.get_athlete_state(ATHLETE).cycle_count == 1


def test_cycle_without_plan_keeps_stored_plan(store):
    store.save_plan(ATHLETE, seed_plan(50, week_start=TODAY), expected_revision=0)

    saved = store.save_cycle(ATHLETE, None, 1, AthleteState(athlete_id=ATHLETE, cycle_count=4))

    assert saved is None
    assert store.get_plan(ATHLETE, TODAY).revision == 1
    assert store.get_athlete_state(ATHLETE).cycle_count == 4


def test_failed_state_write_rolls_back_plan(store):
    class StateWriteFails(SqlCoachStore):
        def _write_state(self, session, state):
            raise OperationalError("UPDATE athletes", {}, Exception("disk I/O error"))

    failing = StateWriteFails(store.session_factory)

    with pytest.raises(ExternalServiceError, match="save_cycle"):
        failing.save_cycle(
            ATHLETE, seed_plan(50, week_start=TODAY), 0, AthleteState(athlete_id=ATHLETE)
        )

    assert store.get_plan(ATHLETE, TODAY) is None


def test_missing_tables_raise_external_error():
    store = SqlCoachStore(get_session_factory(get_engine("sqlite://")))

    with pytest.raises(ExternalServiceError, match="list_activities"):
        store.list_activities(ATHLETE, TODAY, TODAY)
    with pytest.raises(ExternalServiceError, match="save_plan"):
        store.save_plan(ATHLETE, seed_plan(50, week_start=TODAY), expected_revision=0)


def test_row_timestamps_are_utc_aware():
    assert _utcnow().tzinfo is timezone.utc


# Learned state


def test_athlete_state_round_trip(store):
    state = AthleteState(
        athlete_id=ATHLETE,
        weights=Weights(sleep=0.5),
        lessons=[
            RaceLesson(key=LessonKey.HEAT_ACCLIMATION, weight=0.2, summary="Heat acclimation")
        ],
        cycle_count=3,
    )

    store.save_athlete_state(state)

    loaded = store.get_athlete_state(ATHLETE)
    assert loaded.weights.sleep == 0.5
    assert loaded.lessons == state.lessons
    assert loaded.cycle_count == 3


def test_performance_model_round_trip(store):
    model = PerformanceModel(
        athlete_id=ATHLETE,
        baseline_distance_km=10.0,
        baseline_time_min=45.0,
        baseline_date=date(2026, 4, 12),
        baseline_is_real=True,
        performance_decay=1.08,
        calibration_count=2,
    )

    store.save_performance_model(model)

    assert store.get_performance_model(ATHLETE) == model


def test_correction_factors_keyed_by_band(store):
    factors = CorrectionFactors(
        athlete_id=ATHLETE,
        distance_band=DistanceBand.FIFTY_K,
        base_fatigue_factor=1.1,
        race_history=[{"predicted_time_min": 300.0, "actual_time_min": 320.0}],
    )

    store.save_correction_factors(factors)

    assert store.get_correction_factors(ATHLETE, DistanceBand.FIFTY_K) == factors
    assert store.get_correction_factors(ATHLETE, DistanceBand.HUNDRED_K) is None


def test_calibration_records(store):
    record = CalibrationRecord(
        athlete_id=ATHLETE,
        race_id="half",
        track="decay",
        distance_km=21.1,
        predicted_time_min=100.0,
        actual_time_min=104.0,
        delta_pct=4.0,
        value_before=1.06,
        value_after=1.07,
        quality=0.9,
    )

    store.add_calibration_record(record)

    records = store.list_calibration_records(ATHLETE)
    assert len(records) == 1
    assert records[0].value_after == 1.07
    assert records[0].distance_band is None


# Weather


class FailingOracle:
    def forecast(self, location, on):
        raise ExternalServiceError("forecast service down")


class FixedOracle:
    def forecast(self, location, on):
        return WeatherReading(temperature_c=28.0, humidity_pct=75.0, source="forecast")


def test_weather_defaults_without_oracle(settings):
    conditions = resolve_conditions(None, TODAY, settings=settings)

    assert conditions.source == "default"
    assert conditions.temperature_c == settings.DEFAULT_TEMPERATURE_C


def test_weather_oracle_failure_falls_back(settings):
    conditions = resolve_conditions(FailingOracle(), TODAY, "Boulder", settings=settings)

    assert conditions.source == "default"
    assert conditions.humidity_pct == settings.DEFAULT_HUMIDITY_PCT


def test_weather_oracle_used(settings):
    conditions = resolve_conditions(FixedOracle(), TODAY, settings=settings)

    assert conditions.temperature_c == 28.0
    assert conditions.source == "forecast"
