"""
Planning API Routes

Endpoints for athlete import, fatigue scoring and weekly planning cycles.
"""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, status

from coach_engine.api.dependencies import get_coach, get_store, raise_unavailable
from coach_engine.api.models.requests import FatigueRequest, PlanningCycleRequest
from coach_engine.api.models.responses import (
    ImportResponse,
    PlanningCycleResponse,
    ReadinessResponse,
)
from coach_engine.coach import AdaptiveCoach
from coach_engine.database import SqlCoachStore
from coach_engine.plan_schemas import WeekPlan, monday_of
from coach_engine.schemas import AthleteSnapshot, Unavailable

router = APIRouter()


@router.post("/athletes/import", response_model=ImportResponse)
def import_athlete(
    snapshot: AthleteSnapshot,
    store: SqlCoachStore = Depends(get_store),
    coach: AdaptiveCoach = Depends(get_coach),
) -> ImportResponse:
    """
    Import an athlete's activities, feedback, results and races.

    Race feedback entries are recorded one by one so the athlete's lessons
    reflect the whole imported history.
    """
    athlete_id = snapshot.athlete_id
    written = store.add_activities(athlete_id, snapshot.activities)
    store.add_run_feedback(athlete_id, snapshot.run_feedback)
    for result in snapshot.race_results:
        store.add_race_result(athlete_id, result)
    for race in snapshot.races:
        store.upsert_race(athlete_id, race)

    lessons = []
    for feedback in snapshot.race_feedback:
        lessons = coach.record_race_feedback(athlete_id, feedback)
        if isinstance(lessons, Unavailable):
            raise_unavailable(lessons)

    return ImportResponse(
        athlete_id=athlete_id,
        activities=written,
        run_feedback=len(snapshot.run_feedback),
        race_results=len(snapshot.race_results),
        races=len(snapshot.races),
        race_feedback=len(snapshot.race_feedback),
        lessons=lessons,
    )


@router.post("/fatigue", response_model=ReadinessResponse)
def score_fatigue(
    request: FatigueRequest, coach: AdaptiveCoach = Depends(get_coach)
) -> ReadinessResponse:
    """Score current fatigue and readiness without changing the plan."""
    result = coach.score_fatigue(request.athlete_id, request.today or date.today(), request.health)
    if isinstance(result, Unavailable):
        raise_unavailable(result)
    return ReadinessResponse(readiness=round((1.0 - result.score) * 100, 1), fatigue=result)


@router.post("/plans/cycle", response_model=PlanningCycleResponse)
def run_planning_cycle(
    request: PlanningCycleRequest, coach: AdaptiveCoach = Depends(get_coach)
) -> PlanningCycleResponse:
    """
    Run one planning cycle for the week containing ``today``.

    Workflow:
    1. Aggregate recent signals and score fatigue
    2. Mutate the stored week plan (taper, fatigue protection, lessons)
    3. Store the plan and update the learned weights

    A rejected mutation keeps the stored plan and is reported as a warning;
    a concurrent cycle for the same week returns 409.
    """
    result = coach.run_planning_cycle(
        request.athlete_id, request.today or date.today(), request.health
    )
    if isinstance(result, Unavailable):
        raise_unavailable(result)

    warnings = list(result.trace.notes)
    if result.fatigue.score > 0.7:
        warnings.append(f"High fatigue ({result.fatigue.score:.2f}) - volume reduced this week")

    return PlanningCycleResponse(
        athlete_id=result.athlete_id,
        week_start=result.week_start,
        applied=result.applied,
        plan=result.plan,
        fatigue=result.fatigue,
        adjustments=result.adjustments,
        volume_multiplier=result.volume_multiplier,
        race_weeks_out=result.race_weeks_out,
        taper=result.taper,
        decisions=result.decisions,
        weights=result.weights,
        warnings=warnings,
        trace=result.trace,
    )


@router.get("/plans/{athlete_id}/{week_start}", response_model=WeekPlan)
def get_plan(
    athlete_id: str, week_start: date, store: SqlCoachStore = Depends(get_store)
) -> WeekPlan:
    """Stored plan for the week containing ``week_start``."""
    plan = store.get_plan(athlete_id, monday_of(week_start))
    if plan is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No plan stored for {athlete_id} in the week of {monday_of(week_start)}",
        )
    return plan
