"""
Weekly plan seeding and mutation.

The mutator applies, in fixed order, a taper multiplier from race
proximity, the fatigue branch (downgrade quality / boost volume), the
global volume multiplier, and finally any accumulated race lessons. A
mutation that would leave the week structurally invalid is abandoned and
the previous plan is returned unchanged.
"""

import logging
import math
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, Field, ValidationError

from coach_engine.config import get_settings
from coach_engine.fatigue import HIGH_FATIGUE, LOW_FATIGUE, FatigueResult
from coach_engine.lessons import apply_lessons, lesson_weight
from coach_engine.plan_schemas import (
    DAYS_PER_WEEK,
    WEEKDAY_ORDER,
    DayPlan,
    DayType,
    PlanAdjustments,
    PlanDecision,
    WeekPlan,
    day_title,
    monday_of,
)
from coach_engine.schemas import (
    EngineStatus,
    LessonKey,
    RaceLesson,
    RacePriority,
    Unavailable,
)


logger = logging.getLogger(__name__)

# Seed distribution
LONG_SHARE = 0.3
QUALITY_SHARE = 0.2
EASY_DAYS = 4
MIN_EASY_KM = 5

# Taper multipliers by weeks out (step 1)
TAPER_STEPS = ((1, 0.6), (2, 0.75), (3, 0.85))

HIGH_FATIGUE_CAP = 0.8
LOW_FATIGUE_FLOOR = 1.1
LOW_FATIGUE_MIN_WEEKS_OUT = 4
DOWNGRADE_FACTOR = 0.6
QUALITY_BOOST = 1.1
LONG_BOOST = 1.05

TAPER_LESSON_WINDOW_WEEKS = 3
MAX_TOTAL_CUT = 0.6

# Per-priority taper volume factors by weeks out
PRIORITY_TAPER = {
    RacePriority.A: {3: 0.85, 2: 0.80, 1: 0.70, 0: 0.55},
    RacePriority.B: {2: 0.85, 1: 0.75, 0: 0.60},
    RacePriority.C: {1: 0.90, 0: 0.70},
}

DayStep = Callable[[List[Dict[str, Any]]], List[Dict[str, Any]]]


def round_km(value: float) -> int:
    """Round half up to whole kilometres."""
    return int(math.floor(value + 0.5))


def seed_plan(weekly_km: float = 50, week_start: Optional[date] = None) -> WeekPlan:
    """
    Seed a base week for a target weekly distance.

    Four easy days, one quality (Tuesday), one rest (Thursday) and one
    long run (Saturday). Long is ~30% and quality ~20% of the total.

    Args:
        weekly_km: Target weekly distance
        week_start: Any date in the planned week (defaults to this week)

    Returns:
        WeekPlan with 7 days, Monday first
    """
    long_km = round_km(weekly_km * LONG_SHARE)
    quality_km = round_km(weekly_km * QUALITY_SHARE)
    easy_km = round_km((weekly_km - long_km - quality_km) / EASY_DAYS)
    sunday_km = max(MIN_EASY_KM, round_km(easy_km * 0.8))

    layout = [
        (DayType.EASY, easy_km, None, None),
        (DayType.QUALITY, quality_km, None, "Controlled; keep form"),
        (DayType.EASY, easy_km, None, None),
        (DayType.REST, 0, None, None),
        (DayType.EASY, easy_km, f"Easy {easy_km} km + strides", None),
        (DayType.LONG, long_km, None, "Fuel & hydrate"),
        (DayType.EASY, sunday_km, None, None),
    ]
    days = [
        DayPlan(
            day=weekday,
            day_type=day_type,
            distance_km=km,
            title=title or day_title(day_type, km),
            notes=notes,
        )
        for weekday, (day_type, km, title, notes) in zip(WEEKDAY_ORDER, layout)
    ]
    return WeekPlan(week_start=monday_of(week_start or date.today()), days=days)


def taper_multiplier(race_weeks_out: float) -> float:
    """Taper volume multiplier: <=1 week 0.6, <=2 0.75, <=3 0.85, else 1.0."""
    for weeks, multiplier in TAPER_STEPS:
        if race_weeks_out <= weeks:
            return multiplier
    return 1.0


def taper_volume_factor(weeks_out: Optional[int], priority: RacePriority) -> float:
    """
    Priority-specific taper factor for a race week.

    A-races taper over the final 3 weeks, B over 2 and C over 1.

    Args:
        weeks_out: 0 = race week, 1 = week before, ...; None = no race
        priority: Race priority tier

    Returns:
        Multiplicative factor on the base week's volume
    """
    if weeks_out is None or weeks_out > 6:
        return 1.0
    table = PRIORITY_TAPER[priority]
    for threshold in sorted(table):
        if weeks_out <= threshold:
            return table[threshold]
    return 1.0


def volume_multiplier(fatigue_score: float, race_weeks_out: float) -> float:
    """Volume multiplier after the taper and fatigue steps."""
    multiplier = taper_multiplier(race_weeks_out)
    if fatigue_score > HIGH_FATIGUE:
        multiplier = min(multiplier, HIGH_FATIGUE_CAP)
    elif fatigue_score < LOW_FATIGUE and race_weeks_out > LOW_FATIGUE_MIN_WEEKS_OUT:
        multiplier = max(multiplier, LOW_FATIGUE_FLOOR)
    return multiplier


class PlanMutationResult(BaseModel):
    """Result of one mutation cycle."""

    plan: WeekPlan = Field(..., description="Mutated plan, or the prior plan if rejected")
    applied: bool = Field(..., description="Whether the mutation was applied")
    volume_multiplier: float = Field(..., ge=0.0)
    adjustments: PlanAdjustments = Field(default_factory=PlanAdjustments)
    decisions: List[PlanDecision] = Field(default_factory=list)
    unavailable: Optional[Unavailable] = Field(
        None, description="Why the mutation was rejected"
    )


class PlanMutator:
    """
    Mutates a 7-day plan once per planning cycle.

    The mutator:
    1. Computes a taper multiplier from race proximity
    2. High fatigue: caps the multiplier and postpones the first quality day
    3. Low fatigue with the race far away: lifts the multiplier and bumps quality/long
    4. Applies the multiplier to every non-rest day and regenerates titles
    5. Layers race lessons on top (deeper taper, heat/hills/fueling notes)
    Any step that breaks the week shape aborts the whole mutation.
    """

    def __init__(
        self,
        default_horizon_weeks: Optional[float] = None,
        extra_steps: Sequence[DayStep] = (),
    ):
        """
        Initialize the mutator.

        Args:
            default_horizon_weeks: Race proximity used when no race is on record
            extra_steps: Additional day-list transforms run after the lesson step
        """
        if default_horizon_weeks is None:
            default_horizon_weeks = get_settings().DEFAULT_RACE_HORIZON_WEEKS
        self.default_horizon_weeks = default_horizon_weeks
        self.extra_steps = list(extra_steps)

    def mutate(
        self,
        base_plan: WeekPlan,
        fatigue: Union[FatigueResult, float],
        race_weeks_out: Optional[float],
        lessons: Sequence[RaceLesson] = (),
        adjustments: Optional[PlanAdjustments] = None,
    ) -> PlanMutationResult:
        """
        Mutate the plan for this cycle.

        Args:
            base_plan: Current plan (left untouched)
            fatigue: FatigueResult or raw fatigue score
            race_weeks_out: Weeks until the next race (None = default horizon)
            lessons: Current race lessons
            adjustments: Fatigue-band adjustments to merge lessons into

        Returns:
            PlanMutationResult with the new plan, or the prior plan when rejected
        """
        decisions: List[PlanDecision] = []
        score = fatigue.score if isinstance(fatigue, FatigueResult) else float(fatigue)
        score = max(0.0, min(1.0, score))
        weeks = self.default_horizon_weeks if race_weeks_out is None else race_weeks_out

        if adjustments is None:
            adjustments = PlanAdjustments()
        adjustments = apply_lessons(adjustments, lessons)

        problem = self._shape_problem([d.model_dump() for d in base_plan.days])
        if problem:
            return self._reject(
                base_plan, adjustments, f"Base plan is invalid: {problem}", decisions
            )

        days = [d.model_dump() for d in base_plan.days]

        steps: List[DayStep] = []
        multiplier = taper_multiplier(weeks)
        _record(
            decisions,
            "Taper multiplier from race proximity",
            [f"race_weeks_out={weeks:g}"],
            "Volume is reduced progressively over the final three weeks before a race.",
            f"Taper multiplier set to {multiplier:.2f}",
        )

        if score > HIGH_FATIGUE:
            multiplier = min(multiplier, HIGH_FATIGUE_CAP)
            steps.append(self._postpone_quality)
            _record(
                decisions,
                "High fatigue protection",
                [f"fatigue={score:.2f}"],
                "Fatigue above 0.7 caps volume and postpones the first quality session.",
                f"Multiplier capped at {multiplier:.2f}; first quality day downgraded to easy",
            )
        elif score < LOW_FATIGUE and weeks > LOW_FATIGUE_MIN_WEEKS_OUT:
            multiplier = max(multiplier, LOW_FATIGUE_FLOOR)
            steps.append(self._boost_specific_days)
            _record(
                decisions,
                "Low fatigue progression",
                [f"fatigue={score:.2f}", f"race_weeks_out={weeks:g}"],
                "Fresh athlete with the race more than four weeks away can absorb more load.",
                f"Multiplier raised to {multiplier:.2f}; quality +10%, long +5%",
            )

        steps.append(lambda ds: self._apply_multiplier(ds, multiplier))
        steps.append(
            lambda ds: self._apply_lessons(ds, adjustments, lessons, weeks, multiplier, decisions)
        )
        steps.extend(self.extra_steps)

        for step in steps:
            days = step(days)
            problem = self._shape_problem(days)
            if problem:
                return self._reject(base_plan, adjustments, problem, decisions)

        try:
            plan = WeekPlan(
                week_start=base_plan.week_start,
                days=[DayPlan(**d) for d in days],
                revision=base_plan.revision,
            )
        except ValidationError as e:
            return self._reject(base_plan, adjustments, str(e), decisions)

        logger.info(
            "Plan for week %s mutated: fatigue=%.2f multiplier=%.2f total=%.0f km",
            plan.week_start,
            score,
            multiplier,
            plan.total_distance(),
        )
        return PlanMutationResult(
            plan=plan,
            applied=True,
            volume_multiplier=multiplier,
            adjustments=adjustments,
            decisions=list(decisions),
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _postpone_quality(self, days: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Downgrade the first quality day to an easy day with ~40% less distance."""
        for d in days:
            if d["day_type"] == DayType.QUALITY:
                km = max(MIN_EASY_KM, round_km(d["distance_km"] * DOWNGRADE_FACTOR))
                d["day_type"] = DayType.EASY
                d["distance_km"] = km
                d["title"] = day_title(DayType.EASY, km)
                d["notes"] = "Quality postponed due to fatigue"
                break
        return days

    def _boost_specific_days(self, days: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        for d in days:
            if d["day_type"] == DayType.QUALITY:
                d["distance_km"] = round_km(d["distance_km"] * QUALITY_BOOST)
            elif d["day_type"] == DayType.LONG:
                d["distance_km"] = round_km(d["distance_km"] * LONG_BOOST)
        return days

    def _apply_multiplier(
        self, days: List[Dict[str, Any]], multiplier: float
    ) -> List[Dict[str, Any]]:
        """Scale non-rest days; rest days are pinned to zero."""
        for d in days:
            if d["day_type"] == DayType.REST:
                d["distance_km"] = 0
                continue
            d["distance_km"] = max(0, round_km(d["distance_km"] * multiplier))
            d["title"] = day_title(d["day_type"], d["distance_km"])
        return days

    def _apply_lessons(
        self,
        days: List[Dict[str, Any]],
        adjustments: PlanAdjustments,
        lessons: Sequence[RaceLesson],
        weeks: float,
        multiplier: float,
        decisions: List[PlanDecision],
    ) -> List[Dict[str, Any]]:
        """Layer race lessons on top of the fatigue/taper result."""
        taper_weight = lesson_weight(lessons, LessonKey.TAPER_BIAS_UP)
        if taper_weight > 0 and weeks <= TAPER_LESSON_WINDOW_WEEKS:
            extra_cut = round(taper_weight, 2) * 0.2
            factor = 1.0 - extra_cut
            # Never cut more than 60% in total
            if multiplier * factor < 1.0 - MAX_TOTAL_CUT:
                factor = min(1.0, (1.0 - MAX_TOTAL_CUT) / multiplier)
            for d in days:
                if d["day_type"] != DayType.REST:
                    d["distance_km"] = max(0, round_km(d["distance_km"] * factor))
                    d["title"] = day_title(d["day_type"], d["distance_km"])
            _record(
                decisions,
                "Deeper taper from race lessons",
                [f"taper_bias_up={taper_weight:.2f}", f"race_weeks_out={weeks:g}"],
                "Past A-races were missed under high effort, so freshness is protected further.",
                f"Extra taper factor {factor:.2f} on non-rest days",
            )

        if adjustments.heat_prep:
            self._annotate_first(days, DayType.EASY, "Heat prep: overdress or sauna after the run")
        if adjustments.hills_specificity:
            self._annotate_first(days, DayType.LONG, "Include climbs for vert specificity")
        if adjustments.fueling_rehearsal:
            self._annotate_first(days, DayType.LONG, "Rehearse race fueling (carb/hr, fluids)")
        if lesson_weight(lessons, LessonKey.PACING_CONTROL) > 0:
            self._annotate_first(days, DayType.QUALITY, "Start conservatively; check cadence")
        return days

    @staticmethod
    def _annotate_first(days: List[Dict[str, Any]], day_type: DayType, note: str) -> None:
        for d in days:
            if d["day_type"] == day_type:
                d["notes"] = f"{d['notes']}; {note}" if d.get("notes") else note
                return

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _shape_problem(days: List[Dict[str, Any]]) -> Optional[str]:
        """Describe why a day list is not a valid week, or None if it is."""
        if len(days) != DAYS_PER_WEEK:
            return f"expected {DAYS_PER_WEEK} days, got {len(days)}"
        for expected, d in zip(WEEKDAY_ORDER, days):
            if d.get("day") != expected:
                return f"day order broken at {expected.value}"
            if d.get("day_type") == DayType.REST and d.get("distance_km", 0) != 0:
                return f"rest day {expected.value} has distance {d['distance_km']}"
        return None

    def _reject(
        self,
        base_plan: WeekPlan,
        adjustments: PlanAdjustments,
        problem: str,
        decisions: List[PlanDecision],
    ) -> PlanMutationResult:
        logger.warning("Plan mutation rejected, keeping previous plan: %s", problem)
        return PlanMutationResult(
            plan=base_plan,
            applied=False,
            volume_multiplier=1.0,
            adjustments=adjustments,
            decisions=list(decisions),
            unavailable=Unavailable(
                status=EngineStatus.INVALID_MUTATION,
                reason=f"Plan unchanged: {problem}",
            ),
        )


def _record(
    decisions: List[PlanDecision],
    decision_point: str,
    input_factors: List[str],
    reasoning: str,
    outcome: str,
) -> None:
    decisions.append(
        PlanDecision(
            decision_point=decision_point,
            input_factors=input_factors,
            reasoning=reasoning,
            outcome=outcome,
        )
    )
