"""
Adaptive coaching orchestrator.

Wires the engine components to the store and weather ports:

    SignalAggregator -> FatigueScorer -> PlanMutator -> PlanStore
                                          WeightLearner -> athlete state
    RaceTimePredictor -> PhysiologicalSimulator
    race outcome -> CalibrationLoop -> ModelStore
    race feedback -> LessonDeriver -> athlete state

Concurrency: plan mutation replaces the stored week plan, so two cycles for
the same athlete and week must never interleave. Callers running the coach
from several threads or processes must hold a per-(athlete, week) lock for
the whole mutate-then-persist cycle. Within one process PlanCycleGuard does
this; across processes the revision compare-and-swap in the plan store
rejects the late writer. Both cases return Unavailable(concurrent_mutation).
"""

import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field

from coach_engine.baseline import RaceProjection, find_best_baseline, generate_projections
from coach_engine.calibration import (
    CalibrationLoop,
    CorrectionCalibrationResult,
    DecayCalibrationResult,
    UltraCalibrationInput,
    initialize_performance_model,
    update_baseline_in_model,
)
from coach_engine.config import Settings, get_settings
from coach_engine.errors import CoachEngineError, PlanRevisionConflict
from coach_engine.fatigue import FatigueResult, FatigueScorer
from coach_engine.lessons import TAPER_SPAN_DAYS, LessonDeriver, taper_scale
from coach_engine.plan_schemas import PlanAdjustments, PlanDecision, WeekPlan, monday_of
from coach_engine.planner import PlanMutator, seed_plan, taper_volume_factor
from coach_engine.ports import resolve_conditions
from coach_engine.prediction import (
    ULTRA_CORRECTION_KM,
    RacePrediction,
    RaceTimePredictor,
    training_stats,
)
from coach_engine.schemas import (
    AthleteState,
    BaselineRace,
    EngineStatus,
    HealthState,
    RaceFeedback,
    RaceLesson,
    RacePriority,
    TargetRace,
    Unavailable,
    WeatherReading,
    Weights,
)
from coach_engine.signals import FeedbackBias, SignalAggregator, weekly_distance_totals
from coach_engine.simulation import (
    NutritionInputs,
    PacingSegment,
    PhysiologicalSimulation,
    PhysiologicalSimulator,
    Strategy,
)
from coach_engine.trace import CycleTrace, CycleTraceBuilder
from coach_engine.ultra import distance_band
from coach_engine.weights import WeightLearner


logger = logging.getLogger(__name__)

SIGNAL_WINDOW_DAYS = 14
HISTORY_WINDOW_DAYS = 365


# ============================================================================
# Results
# ============================================================================

class TaperOutlook(BaseModel):
    """Race-specific taper guidance for the week being planned."""

    race_id: str
    priority: RacePriority
    days_to_race: int = Field(..., ge=0)
    priority_volume_factor: float = Field(
        ..., gt=0.0, le=1.0, description="Per-priority factor on the base week's volume"
    )
    taper_cut: float = Field(
        ..., ge=0.0, le=0.6, description="Total taper cut incl. race-specific and learned bumps"
    )


def taper_outlook(
    race: Optional[TargetRace], today: date, lessons: Sequence[RaceLesson] = ()
) -> Optional[TaperOutlook]:
    """Taper guidance once a race is inside the taper window, else None."""
    if race is None:
        return None
    days = (race.race_date - today).days
    if days < 0 or days > TAPER_SPAN_DAYS:
        return None
    return TaperOutlook(
        race_id=race.id,
        priority=race.priority,
        days_to_race=days,
        priority_volume_factor=taper_volume_factor(days // 7, race.priority),
        taper_cut=taper_scale(
            days,
            race.priority,
            lessons,
            distance_km=race.distance_km,
            elevation_m=race.elevation_gain_m,
            surface=race.surface,
        ),
    )


class PlanningCycleResult(BaseModel):
    """Outcome of one planning cycle."""

    athlete_id: str
    week_start: date
    plan: WeekPlan = Field(..., description="Stored plan, or the unchanged plan if rejected")
    applied: bool
    fatigue: FatigueResult
    feedback_bias: FeedbackBias
    adjustments: PlanAdjustments
    volume_multiplier: float
    race_weeks_out: Optional[float] = None
    taper: Optional[TaperOutlook] = None
    lessons: List[RaceLesson] = Field(default_factory=list)
    decisions: List[PlanDecision] = Field(default_factory=list)
    weights: Weights = Field(..., description="Weights after this cycle's update")
    outcome_score: float = Field(..., ge=-1.0, le=1.0)
    unavailable: Optional[Unavailable] = Field(
        None, description="Set when the mutation was rejected and the plan kept"
    )
    trace: CycleTrace


class RaceOutcomeResult(BaseModel):
    """Everything learned from one finished race."""

    race_id: str
    decay: Union[DecayCalibrationResult, Unavailable]
    corrections: Optional[CorrectionCalibrationResult] = None
    lessons: Optional[List[RaceLesson]] = None


# ============================================================================
# Concurrency guard
# ============================================================================

class PlanCycleGuard:
    """Non-blocking per-(athlete, week) mutual exclusion for planning cycles."""

    def __init__(self):
        self._locks: Dict[Tuple[str, date], threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, athlete_id: str, week_start: date) -> threading.Lock:
        with self._registry_lock:
            return self._locks.setdefault((athlete_id, week_start), threading.Lock())

    @contextmanager
    def hold(self, athlete_id: str, week_start: date) -> Iterator[bool]:
        """
        Try to take the lock for one athlete and week.

        Yields:
            True when the lock was acquired, False if another cycle holds it
        """
        lock = self._lock_for(athlete_id, week_start)
        acquired = lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()

    def is_held(self, athlete_id: str, week_start: date) -> bool:
        return self._lock_for(athlete_id, week_start).locked()


# ============================================================================
# Orchestrator
# ============================================================================

class AdaptiveCoach:
    """
    Runs planning cycles, race predictions, simulations and calibrations
    for athletes against an injected store.

    The store must implement ActivityStore, PlanStore, RaceStore and
    ModelStore (see ports.py); the weather oracle is optional.
    """

    def __init__(
        self,
        store,
        weather=None,
        settings: Optional[Settings] = None,
        mutator: Optional[PlanMutator] = None,
        guard: Optional[PlanCycleGuard] = None,
    ):
        """
        Initialize coach.

        Args:
            store: Object implementing the four store ports
            weather: Optional WeatherOracle
            settings: Settings (defaults to global)
            mutator: Plan mutator (default built from settings)
            guard: Shared cycle guard when several coaches serve one process
        """
        self.store = store
        self.weather = weather
        self.settings = settings or get_settings()
        self.aggregator = SignalAggregator()
        self.scorer = FatigueScorer(self.settings.DEFAULT_RACE_HORIZON_WEEKS)
        self.mutator = mutator or PlanMutator(self.settings.DEFAULT_RACE_HORIZON_WEEKS)
        self.learner = WeightLearner(
            self.settings.OUTCOME_COMPLETION_WEIGHT, self.settings.OUTCOME_EFFORT_WEIGHT
        )
        self.deriver = LessonDeriver()
        self.predictor = RaceTimePredictor(self.settings.RIEGEL_EXPONENT)
        self.simulator = PhysiologicalSimulator()
        self.calibration = CalibrationLoop(self.settings.CORRECTION_ALPHA_CAP)
        self.guard = guard or PlanCycleGuard()

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def run_planning_cycle(
        self,
        athlete_id: str,
        today: date,
        health: HealthState = HealthState.NORMAL,
        race: Optional[TargetRace] = None,
    ) -> Union[PlanningCycleResult, Unavailable]:
        """
        Run one planning cycle for the week containing ``today``.

        Args:
            athlete_id: Athlete to plan for
            today: Reference date
            health: Current illness state
            race: Target race (default: next race in the store)

        Returns:
            PlanningCycleResult, or Unavailable when another cycle for the
            same week is in flight, the stored plan changed underneath, or a
            store call failed
        """
        week_start = monday_of(today)
        with self.guard.hold(athlete_id, week_start) as acquired:
            if not acquired:
                logger.warning(
                    "Planning cycle for %s week %s already in progress", athlete_id, week_start
                )
                return Unavailable(
                    status=EngineStatus.CONCURRENT_MUTATION,
                    reason=f"A plan update for the week of {week_start} is already in progress.",
                )
            try:
                return self._planning_cycle(athlete_id, today, week_start, health, race)
            except PlanRevisionConflict as e:
                logger.warning("Plan write rejected: %s", e)
                return Unavailable(
                    status=EngineStatus.CONCURRENT_MUTATION,
                    reason=(
                        f"The plan for the week of {week_start} changed while it was being "
                        "updated. Run the cycle again on the latest plan."
                    ),
                )
            except CoachEngineError as e:
                return self._store_unavailable("planning cycle", e)

    def _planning_cycle(
        self,
        athlete_id: str,
        today: date,
        week_start: date,
        health: HealthState,
        race: Optional[TargetRace],
    ) -> PlanningCycleResult:
        state = self.store.get_athlete_state(athlete_id) or AthleteState(athlete_id=athlete_id)
        activities = self.store.list_activities(athlete_id, week_start - timedelta(weeks=4), today)
        feedback = self.store.list_run_feedback(athlete_id, today - timedelta(days=7), today)
        if race is None:
            race = self.store.next_race(athlete_id, today)

        base_plan = self.store.get_plan(athlete_id, week_start)
        if base_plan is None:
            base_plan = seed_plan(week_start=week_start)
            logger.info("Seeded plan for %s week %s", athlete_id, week_start)

        recent = [
            a for a in activities if a.activity_date > today - timedelta(days=SIGNAL_WINDOW_DAYS)
        ]
        aggregates = self.aggregator.aggregate(
            recent, weekly_distance_totals(activities, week_start), base_plan.total_distance()
        )
        bias = self.aggregator.recent_feedback_bias(feedback, today)
        weeks_out = race.weeks_out(today) if race is not None else None
        fatigue = self.scorer.score(aggregates, health, state.weights, weeks_out, bias)
        taper = taper_outlook(race, today, state.lessons)

        adjustments = self.scorer.base_adjustments(fatigue)
        if bias.quality_cap is not None:
            adjustments = adjustments.model_copy(
                update={"quality_sessions": min(adjustments.quality_sessions, bias.quality_cap)}
            )

        mutation = self.mutator.mutate(base_plan, fatigue, weeks_out, state.lessons, adjustments)

        previous_week = [
            a for a in activities
            if week_start - timedelta(days=7) <= a.activity_date < week_start
        ]
        outcome = self.learner.outcome_score(previous_week)
        weights = self.learner.update(state.weights, outcome)
        saved = self.store.save_cycle(
            athlete_id,
            mutation.plan if mutation.applied else None,
            base_plan.revision,
            state.model_copy(
                update={
                    "weights": weights,
                    "cycle_count": state.cycle_count + 1,
                    "updated_at": datetime.now(),
                }
            ),
        )
        plan = saved if saved is not None else base_plan

        trace = CycleTraceBuilder(athlete_id, week_start)
        trace.record_fatigue(
            fatigue.score,
            fatigue.interpretation,
            fatigue.breakdown,
            aggregates.model_dump(),
            weeks_out,
        )
        trace.record_mutation(
            mutation.applied,
            mutation.volume_multiplier,
            mutation.adjustments,
            state.lessons,
            plan.total_distance(),
        )
        for decision in mutation.decisions:
            trace.add_plan_decision(
                decision.decision_point, decision.input_factors, decision.reasoning, decision.outcome
            )
        trace.record_weights(state.weights, weights, outcome)
        if mutation.unavailable is not None:
            trace.add_note(mutation.unavailable.reason)
        if taper is not None:
            trace.add_note(
                f"{taper.priority.value}-race taper, {taper.days_to_race} days out: "
                f"volume factor {taper.priority_volume_factor:.2f}, "
                f"total cut {taper.taper_cut:.0%}"
            )
        if bias.quality_cap is not None:
            trace.add_note(
                f"Recent run feedback (RPE {bias.rpe_avg}, soreness {bias.soreness_avg}) "
                f"limits quality sessions to {bias.quality_cap}"
            )

        logger.info(
            "Planning cycle %d for %s: fatigue=%.2f applied=%s planned=%.0f km",
            state.cycle_count + 1,
            athlete_id,
            fatigue.score,
            mutation.applied,
            plan.total_distance(),
        )
        return PlanningCycleResult(
            athlete_id=athlete_id,
            week_start=week_start,
            plan=plan,
            applied=mutation.applied,
            fatigue=fatigue,
            feedback_bias=bias,
            adjustments=mutation.adjustments,
            volume_multiplier=mutation.volume_multiplier,
            race_weeks_out=weeks_out,
            taper=taper,
            lessons=state.lessons,
            decisions=mutation.decisions,
            weights=weights,
            outcome_score=outcome,
            unavailable=mutation.unavailable,
            trace=trace.trace,
        )

    def score_fatigue(
        self, athlete_id: str, today: date, health: HealthState = HealthState.NORMAL
    ) -> Union[FatigueResult, Unavailable]:
        """
        Score the athlete's current fatigue without touching the plan.

        Uses the same signals, feedback bias and race proximity as a
        planning cycle.
        """
        try:
            state = self.store.get_athlete_state(athlete_id) or AthleteState(athlete_id=athlete_id)
            week_start = monday_of(today)
            activities = self.store.list_activities(
                athlete_id, week_start - timedelta(weeks=4), today
            )
            feedback = self.store.list_run_feedback(athlete_id, today - timedelta(days=7), today)
            plan = self.store.get_plan(athlete_id, week_start) or seed_plan(week_start=week_start)
            race = self.store.next_race(athlete_id, today)
        except CoachEngineError as e:
            return self._store_unavailable("fatigue scoring", e)

        recent = [
            a for a in activities if a.activity_date > today - timedelta(days=SIGNAL_WINDOW_DAYS)
        ]
        aggregates = self.aggregator.aggregate(
            recent, weekly_distance_totals(activities, week_start), plan.total_distance()
        )
        weeks_out = race.weeks_out(today) if race is not None else None
        return self.scorer.score(
            aggregates,
            health,
            state.weights,
            weeks_out,
            self.aggregator.recent_feedback_bias(feedback, today),
        )

    def readiness(
        self, athlete_id: str, today: date, health: HealthState = HealthState.NORMAL
    ) -> Union[float, Unavailable]:
        """Readiness (0-100) as the complement of the current fatigue score."""
        fatigue = self.score_fatigue(athlete_id, today, health)
        if isinstance(fatigue, Unavailable):
            return fatigue
        return round((1.0 - fatigue.score) * 100, 1)

    # ------------------------------------------------------------------
    # Races
    # ------------------------------------------------------------------

    def best_baseline(self, athlete_id: str, today: date) -> Union[BaselineRace, Unavailable]:
        """Best anchor performance from the last year of results and training."""
        try:
            activities = self.store.list_activities(
                athlete_id, today - timedelta(days=HISTORY_WINDOW_DAYS), today
            )
            results = self.store.list_race_results(athlete_id)
        except CoachEngineError as e:
            return self._store_unavailable("baseline selection", e)
        return find_best_baseline(results, activities, today)

    def race_projections(
        self, athlete_id: str, today: date
    ) -> Union[List[RaceProjection], Unavailable]:
        """
        Project the best baseline to the standard race distances.

        Uses the calibrated decay exponent once the performance model has
        been calibrated, the configured Riegel exponent before that.
        """
        baseline = self.best_baseline(athlete_id, today)
        if isinstance(baseline, Unavailable):
            return baseline
        try:
            model = self.store.get_performance_model(athlete_id)
        except CoachEngineError as e:
            return self._store_unavailable("race projections", e)
        exponent = self.settings.RIEGEL_EXPONENT
        if model is not None and model.calibration_count > 0:
            exponent = model.performance_decay
        return generate_projections(baseline, exponent)

    def predict_race(
        self,
        athlete_id: str,
        today: date,
        race_id: Optional[str] = None,
        readiness: Optional[float] = None,
        conditions: Optional[WeatherReading] = None,
        location: Optional[str] = None,
    ) -> Union[RacePrediction, Unavailable]:
        """
        Predict the finish time of a stored race.

        Args:
            athlete_id: Athlete
            today: Reference date
            race_id: Race to predict (default: next race)
            readiness: Readiness 0-100 (default: derived from current fatigue)
            conditions: Race-day conditions (default: weather oracle or settings)
            location: Location hint for the weather oracle

        Returns:
            RacePrediction, or Unavailable
        """
        try:
            race = self._race(athlete_id, today, race_id)
            if isinstance(race, Unavailable):
                return race
            activities = self.store.list_activities(
                athlete_id, today - timedelta(days=HISTORY_WINDOW_DAYS), today
            )
            results = self.store.list_race_results(athlete_id)
            baseline = find_best_baseline(results, activities, today)
            model = self._anchored_model(
                athlete_id, baseline if isinstance(baseline, BaselineRace) else None
            )
            corrections = self.store.get_correction_factors(
                athlete_id, distance_band(race.distance_km)
            )
        except CoachEngineError as e:
            return self._store_unavailable("race prediction", e)

        if readiness is None:
            readiness = self.readiness(athlete_id, today)
            if isinstance(readiness, Unavailable):
                return readiness
        if conditions is None:
            conditions = resolve_conditions(self.weather, race.race_date, location, self.settings)

        return self.predictor.predict(
            race,
            baseline if isinstance(baseline, BaselineRace) else None,
            training_stats(activities, today),
            readiness,
            conditions=conditions,
            model=model if model is not None and model.calibration_count > 0 else None,
            corrections=corrections,
            today=today,
        )

    def simulate_race(
        self,
        athlete_id: str,
        today: date,
        nutrition: Optional[NutritionInputs] = None,
        race_id: Optional[str] = None,
        strategy: Optional[Strategy] = None,
        pacing_segments: Optional[Sequence[PacingSegment]] = None,
        duration_min: Optional[float] = None,
        readiness: Optional[float] = None,
        location: Optional[str] = None,
    ) -> Union[PhysiologicalSimulation, Unavailable]:
        """
        Simulate race day for a stored race.

        The finish time defaults to the race prediction; conditions come
        from the weather oracle, falling back to the configured defaults.
        """
        try:
            race = self._race(athlete_id, today, race_id)
        except CoachEngineError as e:
            return self._store_unavailable("race simulation", e)
        if isinstance(race, Unavailable):
            return race

        conditions = resolve_conditions(self.weather, race.race_date, location, self.settings)
        if readiness is None:
            readiness = self.readiness(athlete_id, today)
            if isinstance(readiness, Unavailable):
                return readiness

        if duration_min is None:
            prediction = self.predict_race(
                athlete_id, today, race.id, readiness=readiness, conditions=conditions
            )
            if isinstance(prediction, Unavailable):
                return prediction
            duration_min = prediction.predicted_time_min

        return self.simulator.simulate(
            race.distance_km,
            duration_min,
            nutrition or NutritionInputs(),
            conditions.temperature_c,
            conditions.humidity_pct,
            readiness,
            strategy=strategy,
            pacing_segments=pacing_segments,
        )

    def record_race_outcome(
        self,
        athlete_id: str,
        outcome: UltraCalibrationInput,
        feedback: Optional[RaceFeedback] = None,
    ) -> Union[RaceOutcomeResult, Unavailable]:
        """
        Learn from a finished race.

        Calibrates the decay exponent, the correction factors of the race's
        distance band (races beyond the marathon) and, when feedback is
        supplied, recomputes the race lessons.

        Args:
            athlete_id: Athlete
            outcome: Predicted vs. actual result and race conditions
            feedback: Optional race feedback for lesson mining

        Returns:
            RaceOutcomeResult, or Unavailable on store failure
        """
        try:
            model = self.store.get_performance_model(athlete_id)
            if model is None:
                before = outcome.race_date - timedelta(days=1)
                results = [
                    r for r in self.store.list_race_results(athlete_id)
                    if r.race_date < outcome.race_date
                ]
                activities = self.store.list_activities(
                    athlete_id, before - timedelta(days=HISTORY_WINDOW_DAYS), before
                )
                baseline = find_best_baseline(results, activities, before)
                model = initialize_performance_model(
                    baseline if isinstance(baseline, BaselineRace) else None, athlete_id
                )

            decay = self.calibration.calibrate_decay(model, outcome)
            if isinstance(decay, DecayCalibrationResult):
                self.store.save_performance_model(decay.model)
                self.store.add_calibration_record(decay.record)
            elif model.has_baseline:
                self.store.save_performance_model(model)

            corrections = None
            if outcome.distance_km > ULTRA_CORRECTION_KM:
                current = self.store.get_correction_factors(
                    athlete_id, distance_band(outcome.distance_km)
                )
                corrections = self.calibration.calibrate_corrections(current, outcome, athlete_id)
                self.store.save_correction_factors(corrections.factors)
                self.store.add_calibration_record(corrections.record)
        except CoachEngineError as e:
            return self._store_unavailable("race calibration", e)

        lessons = None
        if feedback is not None:
            lessons = self.record_race_feedback(athlete_id, feedback)
            if isinstance(lessons, Unavailable):
                return lessons

        return RaceOutcomeResult(
            race_id=outcome.race_id, decay=decay, corrections=corrections, lessons=lessons
        )

    def record_race_feedback(
        self, athlete_id: str, feedback: RaceFeedback
    ) -> Union[List[RaceLesson], Unavailable]:
        """
        Upsert race feedback and replace the athlete's lessons.

        Returns:
            The recomputed lesson set, or Unavailable on store failure
        """
        try:
            history = self.store.list_race_feedback(athlete_id)
            updated, lessons = self.deriver.record_feedback(history, feedback)
            self.store.replace_race_feedback(athlete_id, updated)
            state = self.store.get_athlete_state(athlete_id) or AthleteState(athlete_id=athlete_id)
            self.store.save_athlete_state(
                state.model_copy(update={"lessons": lessons, "updated_at": datetime.now()})
            )
        except CoachEngineError as e:
            return self._store_unavailable("race feedback", e)
        return lessons

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _race(
        self, athlete_id: str, today: date, race_id: Optional[str]
    ) -> Union[TargetRace, Unavailable]:
        if race_id is not None:
            race = self.store.get_race(athlete_id, race_id)
            missing = f"Race '{race_id}' is not on record."
        else:
            race = self.store.next_race(athlete_id, today)
            missing = "No upcoming race on record."
        if race is None:
            return Unavailable(status=EngineStatus.INSUFFICIENT_DATA, reason=missing)
        return race

    def _anchored_model(self, athlete_id: str, baseline: Optional[BaselineRace]):
        """Load the performance model, creating or re-anchoring it on a newer baseline."""
        model = self.store.get_performance_model(athlete_id)
        if baseline is None:
            return model
        if model is None:
            model = initialize_performance_model(baseline, athlete_id)
        elif model.baseline_date is None or baseline.race_date > model.baseline_date:
            model = update_baseline_in_model(model, baseline)
        else:
            return model
        self.store.save_performance_model(model)
        return model

    @staticmethod
    def _store_unavailable(operation: str, error: Exception) -> Unavailable:
        logger.warning("Store failure during %s: %s", operation, error)
        return Unavailable(
            status=EngineStatus.EXTERNAL_UNAVAILABLE,
            reason=f"Data store unavailable for {operation}: {error}",
        )
