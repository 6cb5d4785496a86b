"""
Fatigue score calculation module.

Combines aggregated training signals, illness state and race proximity
into a single 0-1 fatigue score using the athlete's learned weights.
"""

import logging
from typing import Dict, Optional

from pydantic import BaseModel, Field

from coach_engine.config import get_settings
from coach_engine.plan_schemas import PlanAdjustments
from coach_engine.schemas import HealthState, Weights
from coach_engine.signals import FeedbackBias, SignalAggregates


logger = logging.getLogger(__name__)

SLEEP_THRESHOLD_HOURS = 7.0
HRV_THRESHOLD = 50.0
RPE_THRESHOLD = 6.0
ACWR_THRESHOLD = 1.2
ACWR_WEIGHT = 0.5  # fixed, not learned
RACE_PROXIMITY_SPAN_WEEKS = 12.0
SCORE_NORMALIZER = 4.0

HIGH_FATIGUE = 0.7
LOW_FATIGUE = 0.3

ILLNESS_IMPACT = {
    HealthState.NORMAL: 0.0,
    HealthState.SICK: 1.0,
    HealthState.RETURNING: 0.5,
}


class FatigueResult(BaseModel):
    """Result object for fatigue scoring."""

    score: float = Field(..., ge=0.0, le=1.0, description="Final fatigue score (0-1)")
    breakdown: Dict[str, float] = Field(
        ..., description="Contribution of each component to the raw sum"
    )
    aggregates: SignalAggregates = Field(..., description="Component averages used")
    interpretation: str = Field(..., description="Fatigue band")
    reason: str = Field(..., description="Why the score landed in this band")


class FatigueScorer:
    """
    Computes the weekly fatigue score.

    Fatigue = clamp([Σ(indicator_i × weight_i) + illness + race_term] / 4)
              + min(0.15, feedback bump), clamped again to [0, 1]

    Each indicator is binary (sleep < 7h, HRV < 50, RPE > 6, ACWR > 1.2).
    The ACWR weight is fixed; the other three weights and the race
    proximity weight are learned per athlete.
    """

    def __init__(self, default_horizon_weeks: Optional[float] = None):
        """
        Initialize scorer.

        Args:
            default_horizon_weeks: Race proximity used when no race is on record
        """
        if default_horizon_weeks is None:
            default_horizon_weeks = get_settings().DEFAULT_RACE_HORIZON_WEEKS
        self.default_horizon_weeks = default_horizon_weeks

    def score(
        self,
        aggregates: SignalAggregates,
        health_state: HealthState,
        weights: Weights,
        race_proximity_weeks: Optional[float] = None,
        feedback_bias: Optional[FeedbackBias] = None,
    ) -> FatigueResult:
        """
        Score fatigue for one planning cycle.

        Args:
            aggregates: Output of SignalAggregator
            health_state: Current illness state
            weights: Learned weights
            race_proximity_weeks: Weeks until the next race (None = default horizon)
            feedback_bias: Optional post-run feedback correction

        Returns:
            FatigueResult with score, breakdown, interpretation and reason
        """
        if race_proximity_weeks is None:
            race_proximity_weeks = self.default_horizon_weeks

        race_factor = max(0.0, 1.0 - race_proximity_weeks / RACE_PROXIMITY_SPAN_WEEKS)

        breakdown = {
            "sleep": weights.sleep if aggregates.sleep_avg < SLEEP_THRESHOLD_HOURS else 0.0,
            "hrv": weights.hrv if aggregates.hrv_avg < HRV_THRESHOLD else 0.0,
            "rpe": weights.rpe if aggregates.rpe_avg > RPE_THRESHOLD else 0.0,
            "acwr": ACWR_WEIGHT if aggregates.acwr > ACWR_THRESHOLD else 0.0,
            "illness": ILLNESS_IMPACT.get(health_state, 0.0),
            "race_proximity": race_factor * weights.race_proximity,
        }

        raw = sum(breakdown.values()) / SCORE_NORMALIZER
        score = max(0.0, min(1.0, raw))

        bump = 0.0
        if feedback_bias is not None:
            bump = min(0.15, feedback_bias.fatigue_bump)
            score = max(0.0, min(1.0, score + bump))
        breakdown["feedback"] = bump

        interpretation, reason = self._interpret_score(score)
        logger.debug("Fatigue score %.3f (%s) breakdown=%s", score, interpretation, breakdown)

        return FatigueResult(
            score=score,
            breakdown=breakdown,
            aggregates=aggregates,
            interpretation=interpretation,
            reason=reason,
        )

    def base_adjustments(self, result: FatigueResult) -> PlanAdjustments:
        """
        Adjustment knobs for the fatigue band.

        Args:
            result: Fatigue result for this cycle

        Returns:
            PlanAdjustments with band-specific knobs set
        """
        if result.score > HIGH_FATIGUE:
            return PlanAdjustments(
                volume_cut_pct=20,
                intensity_down=True,
                add_rest_day=True,
                reason=result.reason,
            )
        if result.score < LOW_FATIGUE:
            return PlanAdjustments(
                volume_boost_pct=10,
                add_hill_session=True,
                reason=result.reason,
            )
        return PlanAdjustments(reason=result.reason)

    def _interpret_score(self, score: float) -> tuple[str, str]:
        """
        Interpret fatigue score into a band and reason.

        Args:
            score: Fatigue score (0.0-1.0)

        Returns:
            (interpretation, reason)
        """
        if score > HIGH_FATIGUE:
            return (
                "High Fatigue",
                "High fatigue detected (sleep/HRV/RPE signals). "
                "Reducing volume to protect adaptation.",
            )
        elif score < LOW_FATIGUE:
            return (
                "Fresh",
                "Strong readiness (recovery looks good). Safe to add specificity.",
            )
        else:
            return (
                "Balanced",
                "Balanced state; maintain plan and bias toward specificity near race.",
            )
