"""
Signal aggregation.

Reduces raw activity and health records into the scalar features the
fatigue scorer consumes: sleep, HRV and RPE averages plus the acute to
chronic workload ratio (ACWR).
"""

import logging
from datetime import date, timedelta
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field

from coach_engine.schemas import ActivityRecord, RunFeedback
from coach_engine.validator import InputValidator


logger = logging.getLogger(__name__)

# Population-typical values used when a field is missing
DEFAULT_SLEEP_HOURS = 7.0
DEFAULT_HRV = 60.0
DEFAULT_RPE = 5.0

FEEDBACK_WINDOW_DAYS = 7
FEEDBACK_BUMP_CAP = 0.15
FEEDBACK_RPE_THRESHOLD = 6.0
FEEDBACK_SORENESS_THRESHOLD = 5.0
FEEDBACK_STEP = 0.02


class SignalAggregates(BaseModel):
    """Scalar features derived from recent activity."""

    sleep_avg: float = Field(..., ge=0.0, le=24.0)
    hrv_avg: float = Field(..., ge=0.0)
    rpe_avg: float = Field(..., ge=0.0, le=10.0)
    acwr: float = Field(..., ge=0.0, description="Acute:chronic workload ratio")


class FeedbackBias(BaseModel):
    """Correction derived from the last week of post-run feedback."""

    fatigue_bump: float = Field(default=0.0, ge=0.0, le=FEEDBACK_BUMP_CAP)
    quality_cap: Optional[int] = Field(
        None, description="Maximum quality sessions when feedback signals strain"
    )
    rpe_avg: Optional[float] = None
    soreness_avg: Optional[float] = None


def _mean(values: Sequence[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


class SignalAggregator:
    """
    Reduces activity records into fatigue-scorer features.

    Missing fields fall back to population defaults and out-of-range values
    are clamped, so the scorer is always computable.
    """

    def __init__(self, validator: Optional[InputValidator] = None):
        self.validator = validator or InputValidator()

    def aggregate(
        self,
        activities: Sequence[ActivityRecord],
        last4_weeks_km: Sequence[float],
        this_week_planned_km: float,
    ) -> SignalAggregates:
        """
        Aggregate recent activities into scalar features.

        Args:
            activities: Recent activity records (typically the last 3-14)
            last4_weeks_km: Distance totals for the previous four weeks
            this_week_planned_km: Planned distance for the current week

        Returns:
            SignalAggregates with sleep/HRV/RPE averages and ACWR
        """
        sleeps = [
            self.validator.clamp_input("sleep_hours", a.sleep_hours)
            for a in activities
            if a.sleep_hours is not None
        ]
        hrvs = [
            self.validator.clamp_input("hrv", a.hrv)
            for a in activities
            if a.hrv is not None
        ]
        rpes = [
            self.validator.clamp_input("rpe", a.rpe)
            for a in activities
            if a.rpe is not None
        ]

        sleep_avg = _mean(sleeps)
        hrv_avg = _mean(hrvs)
        rpe_avg = _mean(rpes)

        aggregates = SignalAggregates(
            sleep_avg=sleep_avg if sleep_avg is not None else DEFAULT_SLEEP_HOURS,
            hrv_avg=hrv_avg if hrv_avg is not None else DEFAULT_HRV,
            rpe_avg=rpe_avg if rpe_avg is not None else DEFAULT_RPE,
            acwr=self.acwr(last4_weeks_km, this_week_planned_km),
        )
        logger.debug(
            "Aggregated %d activities: sleep=%.2f hrv=%.1f rpe=%.2f acwr=%.2f",
            len(activities),
            aggregates.sleep_avg,
            aggregates.hrv_avg,
            aggregates.rpe_avg,
            aggregates.acwr,
        )
        return aggregates

    @staticmethod
    def acwr(last4_weeks_km: Sequence[float], this_week_planned_km: float) -> float:
        """
        Acute:chronic workload ratio, rounded to 2 decimals.

        A zero or empty chronic baseline is replaced by 1.
        """
        chronic = _mean([max(0.0, km) for km in last4_weeks_km]) or 1.0
        return round(max(0.0, this_week_planned_km) / chronic, 2)

    def recent_feedback_bias(
        self, feedback: Sequence[RunFeedback], today: date
    ) -> FeedbackBias:
        """
        Derive the fatigue bump from the last 7 days of post-run feedback.

        bump = min(0.15, max(0, rpe-6)*0.02 + max(0, soreness-5)*0.02);
        quality sessions are capped at 1 when average RPE >= 7 or
        soreness >= 6.

        Args:
            feedback: Post-run feedback entries (any order)
            today: Reference date for the 7-day window

        Returns:
            FeedbackBias (zero bump when there is no recent feedback)
        """
        since = today - timedelta(days=FEEDBACK_WINDOW_DAYS)
        recent = [f for f in feedback if since <= f.feedback_date <= today]
        if not recent:
            return FeedbackBias()

        rpe_avg = _mean([f.rpe for f in recent])
        soreness_avg = _mean([f.soreness for f in recent])

        bump = (
            max(0.0, rpe_avg - FEEDBACK_RPE_THRESHOLD) * FEEDBACK_STEP
            + max(0.0, soreness_avg - FEEDBACK_SORENESS_THRESHOLD) * FEEDBACK_STEP
        )
        quality_cap = 1 if rpe_avg >= 7 or soreness_avg >= 6 else None

        return FeedbackBias(
            fatigue_bump=min(FEEDBACK_BUMP_CAP, bump),
            quality_cap=quality_cap,
            rpe_avg=round(rpe_avg, 2),
            soreness_avg=round(soreness_avg, 2),
        )


def weekly_distance_totals(
    activities: Sequence[ActivityRecord], week_start: date, weeks: int = 4
) -> List[float]:
    """
    Distance totals for the ``weeks`` full weeks preceding ``week_start``.

    Returns oldest first.
    """
    totals = []
    for i in range(weeks, 0, -1):
        start = week_start - timedelta(weeks=i)
        end = start + timedelta(days=7)
        totals.append(
            sum(
                a.distance_km or 0.0
                for a in activities
                if start <= a.activity_date < end
            )
        )
    return totals
