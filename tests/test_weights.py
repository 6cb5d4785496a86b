"""
Tests for weight learning.

Test scenarios:
1. Outcome synthesis from completion and perceived effort
2. Empty cycles count as nothing completed
3. EMA update and [0.2, 1.0] bounds
"""

from datetime import date

import pytest

from coach_engine.schemas import ActivityRecord, Weights
from coach_engine.weights import WeightLearner


@pytest.fixture
def learner():
    return WeightLearner(completion_weight=0.6, effort_weight=0.4)


def _run(distance_km, rpe=None):
    return ActivityRecord(activity_date=date(2026, 5, 25), distance_km=distance_km, rpe=rpe)


def test_outcome_completed_moderate_effort(learner):
    """Completion 1.0, RPE 5 -> (0.6 + 0.2) * 2 - 1 = 0.6"""
    outcome = learner.outcome_score([_run(10, 5), _run(8, 5), _run(12, 5)])

    assert outcome == pytest.approx(0.6)


def test_outcome_partial_credit(learner):
    """Zero distance earns 0.3 credit, unknown distance 0.7."""
    outcome = learner.outcome_score([_run(0.0, 5), _run(None, 5)])

    completion = (0.3 + 0.7) / 2
    assert outcome == pytest.approx((completion * 0.6 + 0.5 * 0.4) * 2 - 1)


def test_outcome_empty_cycle(learner):
    """No sessions: completion 0 and default RPE 5 -> 0.2 * 2 - 1 = -0.6"""
    assert learner.outcome_score([]) == pytest.approx(-0.6)


def test_outcome_bounds(learner):
    easy = learner.outcome_score([_run(10, 1)])
    hard = learner.outcome_score([_run(0.0, 10)])

    assert -1.0 <= hard <= easy <= 1.0
    assert easy == pytest.approx(0.92)


def test_update_blends_all_weights(learner):
    weights = learner.update(Weights(), 0.6)

    assert weights.sleep == pytest.approx(0.8 * 0.9 + 0.06)
    assert weights.hrv == pytest.approx(0.7 * 0.9 + 0.06)
    assert weights.rpe == pytest.approx(0.6 * 0.9 + 0.06)
    assert weights.race_proximity == pytest.approx(0.9 * 0.9 + 0.06)


def test_update_respects_bounds(learner):
    low = Weights(sleep=0.2, hrv=0.2, rpe=0.2, race_proximity=0.2)
    high = Weights(sleep=1.0, hrv=1.0, rpe=1.0, race_proximity=1.0)

    assert learner.update(low, -1.0).sleep == 0.2
    assert learner.update(high, 1.0).race_proximity == 1.0


def test_update_clamps_outcome(learner):
    assert learner.update(Weights(), 5.0) == learner.update(Weights(), 1.0)


def test_update_leaves_input_untouched(learner):
    weights = Weights()

    learner.update(weights, -1.0)

    assert weights == Weights()
