"""
Race lesson derivation.

Mines the complete race-feedback history for recurring patterns (missed
A-races under high effort, fueling trouble, heat, hilly trails, pacing)
and emits weighted lessons. Lessons are always recomputed from the full
history; the new set replaces the old one.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field

from coach_engine.plan_schemas import PlanAdjustments
from coach_engine.schemas import (
    EngineStatus,
    LessonKey,
    RaceCondition,
    RaceFeedback,
    RaceIssue,
    RaceLesson,
    RacePriority,
    Surface,
    Unavailable,
)
from coach_engine.validator import clamp01


logger = logging.getLogger(__name__)

# (starting weight, cap) per lesson; each further occurrence adds LESSON_STEP
LESSON_WEIGHTS: Dict[LessonKey, Tuple[float, float]] = {
    LessonKey.TAPER_BIAS_UP: (0.25, 0.45),
    LessonKey.FUELING_FOCUS: (0.20, 0.40),
    LessonKey.HEAT_ACCLIMATION: (0.20, 0.40),
    LessonKey.HILLS_SPECIFICITY: (0.20, 0.40),
    LessonKey.PACING_CONTROL: (0.15, 0.35),
}
LESSON_STEP = 0.05

LESSON_SUMMARIES: Dict[LessonKey, str] = {
    LessonKey.TAPER_BIAS_UP: "Consider a deeper taper for A-races (protect freshness 25-45%).",
    LessonKey.FUELING_FOCUS: "Rehearse fueling & hydration (carb/hr, fluids, gut training).",
    LessonKey.HEAT_ACCLIMATION: "Plan heat acclimation (sauna/overdress) + hydration for warm races.",
    LessonKey.HILLS_SPECIFICITY: "Increase hill work / vert specificity before hilly trail races.",
    LessonKey.PACING_CONTROL: "Practice conservative starts; cadence/form checks to avoid cramps.",
}

HIGH_RACE_RPE = 8.0
HILLY_ELEVATION_M = 1000.0
BASE_TAPER_CUT = 0.2
TAPER_LESSON_SCALE = 0.2

# Taper scale curve
TAPER_SPAN_DAYS = 21
TAPER_EASE_EXPONENT = 1.6
TAPER_PRIORITY_BASE = {
    RacePriority.A: 0.5,
    RacePriority.B: 0.35,
    RacePriority.C: 0.2,
}
ULTRAISH_BUMP = 0.05
LEARNED_BUMP_CAP = 0.1
LEARNED_BUMP_SCALE = 0.15
TAPER_SCALE_CAP = 0.6

MIN_SIMILAR_RACES = 3
SIMILAR_DISTANCE_TOLERANCE = 0.2

FUELING_ISSUES = {RaceIssue.FUELING, RaceIssue.GI, RaceIssue.HYDRATION}
PACING_ISSUES = {RaceIssue.PACING, RaceIssue.CRAMPS}
HEAT_CONDITIONS = {RaceCondition.HEAT, RaceCondition.HUMIDITY}


def _is_hilly(race: RaceFeedback) -> bool:
    return race.surface == Surface.TRAIL or race.elevation_m >= HILLY_ELEVATION_M


def _is_heat(race: RaceFeedback) -> bool:
    return any(c in HEAT_CONDITIONS for c in race.conditions)


def _has_fueling_issue(race: RaceFeedback) -> bool:
    return any(i in FUELING_ISSUES for i in race.issues)


def _high_effort(race: RaceFeedback) -> bool:
    # Unreported effort never counts as high
    return race.rpe is not None and race.rpe >= HIGH_RACE_RPE


def lesson_weight(lessons: Sequence[RaceLesson], key: LessonKey) -> float:
    """Weight of the lesson with ``key`` (0 when absent)."""
    for lesson in lessons:
        if lesson.key == key:
            return lesson.weight
    return 0.0


class ExperienceProfile(BaseModel):
    """Summary counts over the race history."""

    total: int = 0
    a_races: int = 0
    heat: int = 0
    hilly: int = 0
    fueling_issues: int = 0
    last_race: Optional[RaceFeedback] = None
    lessons: List[RaceLesson] = Field(default_factory=list)


class TaperHistoryInsights(BaseModel):
    """Outcome of analysing tapers before similar past races."""

    similar_races: int = Field(..., ge=MIN_SIMILAR_RACES)
    successful_races: int = Field(..., ge=0)
    success_rate: float = Field(..., ge=0.0, le=1.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    data_quality: str
    recommendations: List[str] = Field(default_factory=list)


class LessonDeriver:
    """
    Derives weighted lessons from race feedback history.

    Each rule is evaluated independently: the first occurrence yields the
    starting weight, every further occurrence adds 0.05, and each lesson
    has its own cap.
    """

    def __init__(
        self,
        lesson_weights: Optional[Dict[LessonKey, Tuple[float, float]]] = None,
        step: float = LESSON_STEP,
    ):
        """
        Initialize deriver.

        Args:
            lesson_weights: Override of (starting weight, cap) per lesson
            step: Weight added per additional occurrence
        """
        self.lesson_weights = dict(LESSON_WEIGHTS)
        if lesson_weights:
            self.lesson_weights.update(lesson_weights)
        self.step = step

    def derive(self, history: Sequence[RaceFeedback]) -> List[RaceLesson]:
        """
        Recompute the full lesson set from the complete history.

        Args:
            history: All race feedback on record

        Returns:
            List of RaceLesson (one per rule that fired)
        """
        matches = {
            LessonKey.TAPER_BIAS_UP: [
                h for h in history
                if h.priority == RacePriority.A and not h.achieved and _high_effort(h)
            ],
            LessonKey.FUELING_FOCUS: [h for h in history if _has_fueling_issue(h)],
            LessonKey.HEAT_ACCLIMATION: [h for h in history if _is_heat(h)],
            LessonKey.HILLS_SPECIFICITY: [h for h in history if _is_hilly(h)],
            LessonKey.PACING_CONTROL: [
                h for h in history if any(i in PACING_ISSUES for i in h.issues)
            ],
        }

        lessons = []
        for key, races in matches.items():
            if not races:
                continue
            start, cap = self.lesson_weights[key]
            weight = min(start + self.step * (len(races) - 1), cap)
            lessons.append(
                RaceLesson(key=key, weight=round(weight, 4), summary=LESSON_SUMMARIES[key])
            )

        logger.info(
            "Derived %d lessons from %d races: %s",
            len(lessons),
            len(history),
            ", ".join(f"{l.key.value}={l.weight:.2f}" for l in lessons) or "none",
        )
        return lessons

    def record_feedback(
        self, history: Sequence[RaceFeedback], feedback: RaceFeedback
    ) -> Tuple[List[RaceFeedback], List[RaceLesson]]:
        """
        Upsert feedback by (id, date), sort newest first, recompute lessons.

        Args:
            history: Existing history (left untouched)
            feedback: New or corrected feedback

        Returns:
            (updated history, recomputed lessons)
        """
        updated = [h for h in history if h.key != feedback.key]
        updated.append(feedback)
        updated.sort(key=lambda h: h.race_date, reverse=True)
        return updated, self.derive(updated)


def apply_lessons(
    adjustments: PlanAdjustments, lessons: Sequence[RaceLesson]
) -> PlanAdjustments:
    """
    Layer lesson-derived knobs onto plan adjustments.

    taper_bias_up deepens the taper cut: clamp01(base + round2(w) * 0.2);
    heat, hills and fueling lessons switch on their preparation knobs.

    Args:
        adjustments: Adjustments from the fatigue band
        lessons: Current lessons

    Returns:
        New PlanAdjustments
    """
    update = {}
    taper_weight = lesson_weight(lessons, LessonKey.TAPER_BIAS_UP)
    if taper_weight > 0:
        base_cut = (
            adjustments.taper_cut_pct
            if adjustments.taper_cut_pct is not None
            else BASE_TAPER_CUT
        )
        update["taper_cut_pct"] = clamp01(
            base_cut + round(taper_weight, 2) * TAPER_LESSON_SCALE
        )
    if lesson_weight(lessons, LessonKey.HEAT_ACCLIMATION) > 0:
        update["heat_prep"] = True
    if lesson_weight(lessons, LessonKey.HILLS_SPECIFICITY) > 0:
        update["hills_specificity"] = True
    if lesson_weight(lessons, LessonKey.FUELING_FOCUS) > 0:
        update["fueling_rehearsal"] = True
    return adjustments.model_copy(update=update)


def _ease_out(t: float) -> float:
    return 1.0 - (1.0 - t) ** TAPER_EASE_EXPONENT


def taper_scale(
    days_to_race: float,
    priority: RacePriority,
    lessons: Sequence[RaceLesson] = (),
    distance_km: float = 0.0,
    elevation_m: float = 0.0,
    surface: Optional[Surface] = None,
) -> float:
    """
    Total taper cut for the current day, in [0, 0.6].

    Distance to race is mapped through an ease-out curve over the final
    21 days, scaled by priority, bumped for ultra-ish races and by the
    learned taper lesson.

    Args:
        days_to_race: Days until race day
        priority: Race priority tier
        lessons: Current lessons
        distance_km: Race distance
        elevation_m: Race elevation gain
        surface: Race surface

    Returns:
        Taper cut fraction
    """
    days = max(0, int(days_to_race))
    x = clamp01(1.0 - days / TAPER_SPAN_DAYS)
    base = _ease_out(x) * TAPER_PRIORITY_BASE[priority]

    ultraish = distance_km >= 50 or elevation_m >= 2000 or surface == Surface.TRAIL
    specificity_bump = ULTRAISH_BUMP if ultraish else 0.0

    taper_weight = lesson_weight(lessons, LessonKey.TAPER_BIAS_UP)
    learned_bump = (
        min(LEARNED_BUMP_CAP, taper_weight * LEARNED_BUMP_SCALE) if taper_weight > 0 else 0.0
    )

    return min(clamp01(base + specificity_bump + learned_bump), TAPER_SCALE_CAP)


def experience_profile(
    history: Sequence[RaceFeedback], lessons: Sequence[RaceLesson] = ()
) -> ExperienceProfile:
    """Counts over the race history plus the most recent race."""
    ordered = sorted(history, key=lambda h: h.race_date, reverse=True)
    return ExperienceProfile(
        total=len(ordered),
        a_races=sum(1 for h in ordered if h.priority == RacePriority.A),
        heat=sum(1 for h in ordered if _is_heat(h)),
        hilly=sum(1 for h in ordered if _is_hilly(h)),
        fueling_issues=sum(1 for h in ordered if _has_fueling_issue(h)),
        last_race=ordered[0] if ordered else None,
        lessons=list(lessons),
    )


def taper_history_analysis(
    history: Sequence[RaceFeedback],
    priority: RacePriority,
    distance_km: float,
) -> Union[TaperHistoryInsights, Unavailable]:
    """
    Analyse how the athlete fared after tapers for similar races.

    Similar means same priority and distance within 20%. Fewer than three
    similar races is not enough to say anything.

    Args:
        history: Race feedback history
        priority: Priority of the upcoming race
        distance_km: Distance of the upcoming race

    Returns:
        TaperHistoryInsights, or Unavailable(insufficient_data)
    """
    similar = [
        h for h in history
        if h.priority == priority
        and abs(h.distance_km - distance_km) <= distance_km * SIMILAR_DISTANCE_TOLERANCE
    ]
    if len(similar) < MIN_SIMILAR_RACES:
        return Unavailable(
            status=EngineStatus.INSUFFICIENT_DATA,
            reason=(
                f"Need at least {MIN_SIMILAR_RACES} similar races for taper analysis "
                f"(found {len(similar)})"
            ),
        )

    successful = [h for h in similar if h.achieved and not _high_effort(h)]
    strained = [h for h in similar if not h.achieved and _high_effort(h)]

    recommendations = []
    if len(strained) / len(similar) > 0.3:
        recommendations.append(
            "You often arrive at similar races tired. Consider extending your taper by 1-2 days."
        )
    elif len(successful) / len(similar) > 0.7:
        recommendations.append(
            "Your taper duration appears well-calibrated for your physiology."
        )
    else:
        recommendations.append(
            "Mixed results after tapers; keep logging race feedback to refine the taper."
        )

    if len(similar) >= 10:
        data_quality = "excellent"
    elif len(similar) >= 5:
        data_quality = "good"
    else:
        data_quality = "limited"

    return TaperHistoryInsights(
        similar_races=len(similar),
        successful_races=len(successful),
        success_rate=len(successful) / len(similar),
        confidence=min(1.0, len(similar) / 10),
        data_quality=data_quality,
        recommendations=recommendations,
    )
