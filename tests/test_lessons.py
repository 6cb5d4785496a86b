"""
Tests for race lesson derivation.

Test scenarios:
1. Each rule fires on its trigger and weights grow per occurrence up to a cap
2. Feedback is upserted by (id, date) and lessons fully recomputed
3. Lessons layered onto plan adjustments
4. Taper scale curve, experience profile and taper history analysis
"""

from datetime import date, timedelta

import pytest

from coach_engine.lessons import (
    LessonDeriver,
    apply_lessons,
    experience_profile,
    lesson_weight,
    taper_history_analysis,
    taper_scale,
)
from coach_engine.plan_schemas import PlanAdjustments
from coach_engine.schemas import (
    EngineStatus,
    LessonKey,
    RaceCondition,
    RaceFeedback,
    RaceIssue,
    RacePriority,
    Surface,
    Unavailable,
)


@pytest.fixture
def deriver():
    return LessonDeriver()


def _race(race_id="r1", days_ago=30, **fields) -> RaceFeedback:
    values = {
        "name": "Test Race",
        "race_date": date(2026, 6, 1) - timedelta(days=days_ago),
        "distance_km": 21.1,
        "rpe": 6.0,
    }
    values.update(fields)
    return RaceFeedback(id=race_id, **values)


def test_no_history_no_lessons(deriver):
    assert deriver.derive([]) == []


def test_missed_a_race_triggers_taper_lesson(deriver):
    history = [_race(priority=RacePriority.A, achieved=False, rpe=9)]

    lessons = deriver.derive(history)

    assert lesson_weight(lessons, LessonKey.TAPER_BIAS_UP) == 0.25


def test_missed_b_race_does_not_trigger_taper(deriver):
    history = [_race(priority=RacePriority.B, achieved=False, rpe=9)]

    assert lesson_weight(deriver.derive(history), LessonKey.TAPER_BIAS_UP) == 0.0


def test_missed_a_race_without_rpe_does_not_trigger_taper(deriver):
    history = [_race(priority=RacePriority.A, achieved=False, rpe=None)]

    assert lesson_weight(deriver.derive(history), LessonKey.TAPER_BIAS_UP) == 0.0


def test_taper_history_without_rpe():
    """Races with no reported effort count as successful when achieved."""
    history = [_race(f"r{i}", priority=RacePriority.B, rpe=None) for i in range(3)]
    history.append(_race("miss", priority=RacePriority.B, achieved=False, rpe=None))

    result = taper_history_analysis(history, RacePriority.B, 21.1)

    assert result.similar_races == 4
    assert result.successful_races == 3
    assert "well-calibrated" in result.recommendations[0]


def test_weights_grow_and_cap(deriver):
    """0.20 for the first fueling issue, +0.05 each, capped at 0.40."""
    two = [_race(f"r{i}", days_ago=30 * i, issues=[RaceIssue.GI]) for i in range(2)]
    many = [_race(f"r{i}", days_ago=30 * i, issues=[RaceIssue.FUELING]) for i in range(8)]

    assert lesson_weight(deriver.derive(two), LessonKey.FUELING_FOCUS) == pytest.approx(0.25)
    assert lesson_weight(deriver.derive(many), LessonKey.FUELING_FOCUS) == pytest.approx(0.40)


def test_condition_and_surface_rules(deriver):
    history = [
        _race("hot", conditions=[RaceCondition.HUMIDITY]),
        _race("trail", surface=Surface.TRAIL),
        _race("hilly", elevation_m=1500),
        _race("cramps", issues=[RaceIssue.CRAMPS]),
    ]

    lessons = deriver.derive(history)

    assert lesson_weight(lessons, LessonKey.HEAT_ACCLIMATION) == pytest.approx(0.20)
    assert lesson_weight(lessons, LessonKey.HILLS_SPECIFICITY) == pytest.approx(0.25)
    assert lesson_weight(lessons, LessonKey.PACING_CONTROL) == pytest.approx(0.15)


def test_record_feedback_upserts_by_id_and_date(deriver):
    original = _race("city", issues=[RaceIssue.GI])
    corrected = _race("city", issues=[])
    other_year = _race("city", days_ago=395, issues=[])

    history, lessons = deriver.record_feedback([original, other_year], corrected)

    assert len(history) == 2
    assert history[0] == corrected
    assert lesson_weight(lessons, LessonKey.FUELING_FOCUS) == 0.0


def test_record_feedback_sorts_newest_first(deriver):
    old = _race("old", days_ago=200)
    new = _race("new", days_ago=10)

    history, _ = deriver.record_feedback([old], new)

    assert [h.id for h in history] == ["new", "old"]


def test_record_feedback_leaves_input_untouched(deriver):
    history = [_race("a")]

    deriver.record_feedback(history, _race("b"))

    assert len(history) == 1


def test_apply_lessons_sets_knobs(deriver):
    lessons = deriver.derive(
        [
            _race("a", priority=RacePriority.A, achieved=False, rpe=9),
            _race("b", conditions=[RaceCondition.HEAT], surface=Surface.TRAIL),
        ]
    )

    adjustments = apply_lessons(PlanAdjustments(), lessons)

    assert adjustments.taper_cut_pct == pytest.approx(0.25)
    assert adjustments.heat_prep is True
    assert adjustments.hills_specificity is True
    assert adjustments.fueling_rehearsal is False


def test_apply_lessons_without_lessons():
    assert apply_lessons(PlanAdjustments(), []) == PlanAdjustments()


def test_taper_scale_curve():
    far = taper_scale(30, RacePriority.A)
    mid = taper_scale(10, RacePriority.A)
    race_day = taper_scale(0, RacePriority.A)

    assert far == 0.0
    assert 0.0 < mid < race_day
    assert race_day == pytest.approx(0.5)
    assert taper_scale(0, RacePriority.C) == pytest.approx(0.2)


def test_taper_scale_bumps(deriver):
    lessons = deriver.derive([_race(priority=RacePriority.A, achieved=False, rpe=9)])

    bumped = taper_scale(0, RacePriority.A, lessons, distance_km=50)

    assert bumped == pytest.approx(0.5 + 0.05 + 0.25 * 0.15)
    assert taper_scale(0, RacePriority.B, distance_km=50) == pytest.approx(0.4)


def test_experience_profile(snapshot):
    profile = experience_profile(snapshot.race_feedback)

    assert profile.total == 2
    assert profile.a_races == 1
    assert profile.heat == 1
    assert profile.fueling_issues == 2
    assert profile.last_race.id == "fall-marathon"


def test_taper_history_needs_three_similar_races():
    history = [_race("a", priority=RacePriority.A), _race("b", priority=RacePriority.A)]

    result = taper_history_analysis(history, RacePriority.A, 21.1)

    assert isinstance(result, Unavailable)
    assert result.status == EngineStatus.INSUFFICIENT_DATA


def test_taper_history_strained_races():
    history = [
        _race("a", priority=RacePriority.A, achieved=False, rpe=9),
        _race("b", priority=RacePriority.A, achieved=False, rpe=8.5, distance_km=20.0),
        _race("c", priority=RacePriority.A, rpe=6, distance_km=23.0),
        _race("d", priority=RacePriority.A, distance_km=42.2),
    ]

    result = taper_history_analysis(history, RacePriority.A, 21.1)

    assert result.similar_races == 3
    assert result.successful_races == 1
    assert result.data_quality == "limited"
    assert "extending your taper" in result.recommendations[0]


def test_taper_history_well_calibrated():
    history = [_race(f"r{i}", priority=RacePriority.B, rpe=6) for i in range(5)]

    result = taper_history_analysis(history, RacePriority.B, 21.1)

    assert result.success_rate == 1.0
    assert result.data_quality == "good"
    assert "well-calibrated" in result.recommendations[0]
