"""
Baseline race selection and distance projection.

Picks the performance that anchors Riegel-style projections: an official
race result when one exists, otherwise a race-like training run. The
chosen baseline is scaled to the standard distances for a quick overview.
"""

import logging
from datetime import date
from typing import List, Optional, Sequence, Union

from pydantic import BaseModel, Field

from coach_engine.config import get_settings
from coach_engine.schemas import (
    ActivityRecord,
    BaselineRace,
    EngineStatus,
    RaceResult,
    Unavailable,
)


logger = logging.getLogger(__name__)

STANDARD_DISTANCES = [5.0, 10.0, 15.0, 21.0975, 42.195]

DISTANCE_NAMES = {
    5.0: "5K",
    10.0: "10K",
    15.0: "15K",
    21.0975: "Half Marathon",
    42.195: "Marathon",
}

# Eligibility windows
RACE_MIN_KM = 3.0
TRAINING_MIN_KM = 5.0
MAX_KM = 200.0
MIN_PACE = 3.0
MAX_PACE = 10.0
SAME_EFFORT_TOLERANCE_KM = 0.5

# Race-like training runs
LONG_EFFORT_KM = 20.0
SIGNIFICANT_EFFORT_KM = 10.0
SIGNIFICANT_EFFORT_MIN = 45.0

RECENCY_WEIGHT = 0.6
PACE_WEIGHT = 0.4

# (max age in days, confidence)
RECENCY_BANDS = ((30, 1.0), (60, 0.95), (90, 0.85), (180, 0.75))
STALE_CONFIDENCE = 0.6


class RaceProjection(BaseModel):
    """Baseline scaled to one standard distance."""

    target_distance_km: float = Field(..., gt=0.0)
    distance_name: str
    predicted_time_min: float = Field(..., gt=0.0)
    predicted_time: str = Field(..., description="h:mm:ss")
    confidence: float = Field(..., ge=0.0, le=1.0)


def recency_confidence(performance_date: date, today: date) -> float:
    """Confidence in a performance by age (1.0 within 30 days, 0.6 past 180)."""
    days_ago = (today - performance_date).days
    for max_days, confidence in RECENCY_BANDS:
        if days_ago <= max_days:
            return confidence
    return STALE_CONFIDENCE


def project_time(
    base_distance_km: float,
    base_time_min: float,
    target_distance_km: float,
    exponent: Optional[float] = None,
) -> float:
    """Riegel projection: T2 = T1 * (D2 / D1) ** exponent."""
    if exponent is None:
        exponent = get_settings().RIEGEL_EXPONENT
    return base_time_min * (target_distance_km / base_distance_km) ** exponent


def format_time(minutes: float) -> str:
    """Format minutes as h:mm:ss (or m:ss under an hour)."""
    total_seconds = int(minutes * 60)
    hours, remainder = divmod(total_seconds, 3600)
    mins, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{mins:02d}:{secs:02d}"
    return f"{mins}:{secs:02d}"


def format_pace(pace_min_per_km: float) -> str:
    """Format a pace as m:ss."""
    total_seconds = int(pace_min_per_km * 60)
    mins, secs = divmod(total_seconds, 60)
    return f"{mins}:{secs:02d}"


def distance_name(distance_km: float) -> str:
    for km, name in DISTANCE_NAMES.items():
        if abs(distance_km - km) < 0.1:
            return name
    return f"{distance_km:.1f}km"


def _is_race_like(activity: ActivityRecord) -> bool:
    km = activity.distance_km
    if km >= LONG_EFFORT_KM:
        return True
    if any(abs(km - d) < SAME_EFFORT_TOLERANCE_KM for d in STANDARD_DISTANCES):
        return True
    return km >= SIGNIFICANT_EFFORT_KM and activity.duration_min >= SIGNIFICANT_EFFORT_MIN


def _matches(a_date: date, a_km: float, b_date: date, b_km: float) -> bool:
    return a_date == b_date and abs(a_km - b_km) < SAME_EFFORT_TOLERANCE_KM


def _race_candidates(
    race_results: Sequence[RaceResult],
    activities: Sequence[ActivityRecord],
    today: date,
) -> List[BaselineRace]:
    candidates = []
    for result in race_results:
        if not RACE_MIN_KM <= result.distance_km <= MAX_KM:
            continue

        time_min = result.time_min
        if time_min is None:
            # Fall back to the logged activity for the race day
            for activity in activities:
                if (
                    activity.distance_km is not None
                    and activity.duration_min
                    and _matches(
                        activity.activity_date,
                        activity.distance_km,
                        result.race_date,
                        result.distance_km,
                    )
                ):
                    time_min = activity.duration_min
                    break
        if not time_min:
            continue

        candidates.append(
            BaselineRace(
                distance_km=result.distance_km,
                time_min=time_min,
                pace_min_per_km=time_min / result.distance_km,
                race_date=result.race_date,
                is_real_race=True,
                confidence=recency_confidence(result.race_date, today),
                source=f"race:{result.name or result.race_date.isoformat()}",
            )
        )
    return candidates


def _training_candidates(
    activities: Sequence[ActivityRecord],
    races: Sequence[BaselineRace],
    today: date,
) -> List[BaselineRace]:
    candidates = []
    for activity in activities:
        km = activity.distance_km
        if not km or not activity.duration_min:
            continue
        if not TRAINING_MIN_KM <= km <= MAX_KM:
            continue

        pace = activity.duration_min / km
        if not MIN_PACE <= pace <= MAX_PACE:
            continue
        if any(
            _matches(r.race_date, r.distance_km, activity.activity_date, km) for r in races
        ):
            continue
        if not _is_race_like(activity):
            continue

        candidates.append(
            BaselineRace(
                distance_km=km,
                time_min=activity.duration_min,
                pace_min_per_km=pace,
                race_date=activity.activity_date,
                is_real_race=False,
                confidence=recency_confidence(activity.activity_date, today),
                source=f"log:{activity.name or 'Run'} - {km:g}km",
            )
        )
    return candidates


def _candidate_score(candidate: BaselineRace) -> float:
    # Pace term normalised so the fastest eligible pace scores 1.0
    return (
        candidate.confidence * RECENCY_WEIGHT
        + MIN_PACE / candidate.pace_min_per_km * PACE_WEIGHT
    )


def find_best_baseline(
    race_results: Sequence[RaceResult],
    activities: Sequence[ActivityRecord],
    today: date,
) -> Union[BaselineRace, Unavailable]:
    """
    Select the best baseline performance from all history.

    Official race results always rank above training-derived candidates.
    Within each group candidates are ranked by
    0.6 * recency confidence + 0.4 * normalised pace.

    Args:
        race_results: Official race results
        activities: Logged training sessions
        today: Reference date for recency

    Returns:
        BaselineRace, or Unavailable(insufficient_data) when nothing qualifies
    """
    races = _race_candidates(race_results, activities, today)
    training = _training_candidates(activities, races, today)
    logger.debug(
        "Baseline candidates: %d race, %d training", len(races), len(training)
    )

    pool = races or training
    if not pool:
        return Unavailable(
            status=EngineStatus.INSUFFICIENT_DATA,
            reason=(
                "No baseline performance found. Log a race result or a race-like "
                "effort (20 km+, a standard distance, or 10 km+ in 45 min+)."
            ),
        )

    best = max(pool, key=_candidate_score)
    logger.info(
        "Baseline selected: %.2f km in %.1f min (%s)",
        best.distance_km,
        best.time_min,
        best.source,
    )
    return best


def generate_projections(
    baseline: BaselineRace, exponent: Optional[float] = None
) -> List[RaceProjection]:
    """
    Project the baseline to every standard distance except its own.

    Args:
        baseline: Anchor performance
        exponent: Riegel exponent (settings default when omitted)

    Returns:
        One RaceProjection per standard distance
    """
    projections = []
    for target in STANDARD_DISTANCES:
        if abs(target - baseline.distance_km) < SAME_EFFORT_TOLERANCE_KM:
            continue
        predicted = project_time(baseline.distance_km, baseline.time_min, target, exponent)
        projections.append(
            RaceProjection(
                target_distance_km=target,
                distance_name=distance_name(target),
                predicted_time_min=predicted,
                predicted_time=format_time(predicted),
                confidence=baseline.confidence,
            )
        )
    return projections
