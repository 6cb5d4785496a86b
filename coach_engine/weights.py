"""
Weight learning.

After each planning cycle the fatigue weights are nudged toward an
outcome score synthesized from how the week actually went. The update is
a slow exponential moving average so one noisy week cannot swing the
scorer.
"""

import logging
from typing import Optional, Sequence

from coach_engine.config import get_settings
from coach_engine.schemas import WEIGHT_MAX, WEIGHT_MIN, ActivityRecord, Weights
from coach_engine.signals import DEFAULT_RPE


logger = logging.getLogger(__name__)

INERTIA = 0.9
LEARNING_RATE = 0.1

# Completion credit per session
COMPLETED_CREDIT = 1.0
ZERO_DISTANCE_CREDIT = 0.3
UNKNOWN_DISTANCE_CREDIT = 0.7


class WeightLearner:
    """
    Exponential-moving-average update of the fatigue weights.

    w' = clamp(w * 0.9 + outcome * 0.1, 0.2, 1.0), applied identically to
    all four weights once per cycle.
    """

    def __init__(
        self,
        completion_weight: Optional[float] = None,
        effort_weight: Optional[float] = None,
    ):
        """
        Initialize learner.

        Args:
            completion_weight: Share of the outcome from session completion
            effort_weight: Share of the outcome from perceived effort
        """
        settings = get_settings()
        self.completion_weight = (
            settings.OUTCOME_COMPLETION_WEIGHT
            if completion_weight is None
            else completion_weight
        )
        self.effort_weight = (
            settings.OUTCOME_EFFORT_WEIGHT if effort_weight is None else effort_weight
        )

    def update(self, weights: Weights, outcome_score: float) -> Weights:
        """
        Blend every weight toward the outcome score.

        Args:
            weights: Current weights (left untouched)
            outcome_score: Outcome in [-1, 1]; clamped if outside

        Returns:
            New Weights instance
        """
        outcome = max(-1.0, min(1.0, outcome_score))

        def blend(w: float) -> float:
            return max(WEIGHT_MIN, min(WEIGHT_MAX, w * INERTIA + outcome * LEARNING_RATE))

        updated = Weights(
            sleep=blend(weights.sleep),
            hrv=blend(weights.hrv),
            rpe=blend(weights.rpe),
            race_proximity=blend(weights.race_proximity),
        )
        logger.debug("Weights updated with outcome %.3f: %s", outcome, updated)
        return updated

    def outcome_score(self, activities: Sequence[ActivityRecord]) -> float:
        """
        Synthesize the cycle outcome from completion and perceived effort.

        completion = mean credit per session (1 completed, 0.3 zero distance,
        0.7 distance not recorded); perceived_ok = (10 - avg RPE) / 10;
        outcome = clamp((completion*0.6 + perceived_ok*0.4) * 2 - 1, -1, 1)

        Args:
            activities: Sessions logged during the cycle

        Returns:
            Outcome score in [-1, 1]
        """
        if activities:
            credits = []
            for activity in activities:
                if activity.distance_km is None:
                    credits.append(UNKNOWN_DISTANCE_CREDIT)
                elif activity.distance_km > 0:
                    credits.append(COMPLETED_CREDIT)
                else:
                    credits.append(ZERO_DISTANCE_CREDIT)
            completion = sum(credits) / len(credits)
        else:
            # Nothing logged counts as nothing completed
            completion = 0.0

        rpes = [max(1.0, min(10.0, a.rpe)) for a in activities if a.rpe is not None]
        rpe_avg = sum(rpes) / len(rpes) if rpes else DEFAULT_RPE
        perceived_ok = (10.0 - rpe_avg) / 10.0

        blended = completion * self.completion_weight + perceived_ok * self.effort_weight
        return max(-1.0, min(1.0, blended * 2.0 - 1.0))
