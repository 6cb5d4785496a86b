"""
Tests for signal aggregation.

Test scenarios:
1. Averages over recorded signals, defaults when missing
2. Out-of-range device values are clamped before averaging
3. ACWR from weekly totals, including a zero chronic baseline
4. Post-run feedback bias and quality cap
5. Weekly distance totals
"""

from datetime import date, timedelta

import pytest

from coach_engine.schemas import ActivityRecord, RunFeedback
from coach_engine.signals import (
    DEFAULT_HRV,
    DEFAULT_RPE,
    DEFAULT_SLEEP_HOURS,
    SignalAggregator,
    weekly_distance_totals,
)


@pytest.fixture
def aggregator():
    return SignalAggregator()


def _activity(day: int, **fields) -> ActivityRecord:
    return ActivityRecord(activity_date=date(2026, 5, day), **fields)


def test_aggregate_averages(aggregator):
    activities = [
        _activity(10, sleep_hours=6.0, hrv=50.0, rpe=7.0),
        _activity(11, sleep_hours=8.0, hrv=70.0, rpe=5.0),
    ]

    result = aggregator.aggregate(activities, [40, 40, 40, 40], 40)

    assert result.sleep_avg == pytest.approx(7.0)
    assert result.hrv_avg == pytest.approx(60.0)
    assert result.rpe_avg == pytest.approx(6.0)
    assert result.acwr == 1.0


def test_aggregate_defaults_when_no_signals(aggregator):
    """A brand new athlete still gets a computable feature set."""
    result = aggregator.aggregate([], [], 30)

    assert result.sleep_avg == DEFAULT_SLEEP_HOURS
    assert result.hrv_avg == DEFAULT_HRV
    assert result.rpe_avg == DEFAULT_RPE
    assert result.acwr == 30.0


def test_aggregate_ignores_missing_fields(aggregator):
    activities = [
        _activity(10, sleep_hours=6.0),
        _activity(11, rpe=8.0),
    ]

    result = aggregator.aggregate(activities, [50], 50)

    assert result.sleep_avg == 6.0
    assert result.rpe_avg == 8.0
    assert result.hrv_avg == DEFAULT_HRV


def test_aggregate_clamps_device_noise(aggregator):
    """Sleep of 30h and RPE of 14 are clamped, not rejected."""
    activities = [
        _activity(10, sleep_hours=30.0, rpe=14.0),
        _activity(11, sleep_hours=6.0, rpe=6.0),
    ]

    result = aggregator.aggregate(activities, [40], 40)

    assert result.sleep_avg == pytest.approx(15.0)
    assert result.rpe_avg == pytest.approx(8.0)


def test_acwr_rounding_and_zero_baseline(aggregator):
    assert aggregator.acwr([30, 40, 50, 60], 60) == 1.33
    assert aggregator.acwr([0, 0, 0, 0], 25) == 25.0
    assert aggregator.acwr([40, 40], -5) == 0.0


def test_feedback_bias_none_without_recent_feedback(aggregator):
    today = date(2026, 6, 1)
    old = [RunFeedback(feedback_date=today - timedelta(days=10), rpe=9, soreness=9)]

    bias = aggregator.recent_feedback_bias(old, today)

    assert bias.fatigue_bump == 0.0
    assert bias.quality_cap is None


def test_feedback_bias_bump_and_quality_cap(aggregator):
    """RPE 8 and soreness 7: bump 0.04 + 0.04, quality capped at one session."""
    today = date(2026, 6, 1)
    feedback = [
        RunFeedback(feedback_date=today - timedelta(days=1), rpe=8, soreness=7),
        RunFeedback(feedback_date=today - timedelta(days=3), rpe=8, soreness=7),
    ]

    bias = aggregator.recent_feedback_bias(feedback, today)

    assert bias.fatigue_bump == pytest.approx(0.08)
    assert bias.quality_cap == 1
    assert bias.rpe_avg == 8.0
    assert bias.soreness_avg == 7.0


def test_feedback_bias_capped(aggregator):
    today = date(2026, 6, 1)
    feedback = [RunFeedback(feedback_date=today, rpe=10, soreness=10)]

    bias = aggregator.recent_feedback_bias(feedback, today)

    assert bias.fatigue_bump == 0.15


def test_feedback_bias_light_effort(aggregator):
    today = date(2026, 6, 1)
    feedback = [RunFeedback(feedback_date=today, rpe=5, soreness=3)]

    bias = aggregator.recent_feedback_bias(feedback, today)

    assert bias.fatigue_bump == 0.0
    assert bias.quality_cap is None


def test_weekly_distance_totals_oldest_first():
    week_start = date(2026, 6, 1)
    activities = [
        ActivityRecord(activity_date=date(2026, 5, 4), distance_km=10.0),
        ActivityRecord(activity_date=date(2026, 5, 10), distance_km=5.0),
        ActivityRecord(activity_date=date(2026, 5, 31), distance_km=20.0),
        ActivityRecord(activity_date=date(2026, 6, 1), distance_km=99.0),
        ActivityRecord(activity_date=date(2026, 5, 20), distance_km=None),
    ]

    assert weekly_distance_totals(activities, week_start) == [15.0, 0.0, 0.0, 20.0]
