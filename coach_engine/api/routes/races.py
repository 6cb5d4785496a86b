"""
Race API Routes

Endpoints for race prediction, race-day simulation, what-if analysis,
post-race calibration and race lessons.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from coach_engine.api.dependencies import get_coach, get_store, raise_unavailable
from coach_engine.api.models.requests import (
    PredictionRequest,
    RaceFeedbackRequest,
    RaceOutcomeRequest,
    RaceSimulationRequest,
    WhatIfRequest,
)
from coach_engine.api.models.responses import (
    LessonsResponse,
    ProjectionsResponse,
    WhatIfResponse,
)
from coach_engine.coach import AdaptiveCoach, RaceOutcomeResult
from coach_engine.database import SqlCoachStore
from coach_engine.lessons import experience_profile
from coach_engine.prediction import RacePrediction
from coach_engine.schemas import Unavailable
from coach_engine.sensitivity import SimulationSensitivityAnalyzer
from coach_engine.simulation import PhysiologicalSimulation

router = APIRouter()


@router.post("/races/predict", response_model=RacePrediction)
def predict_race(
    request: PredictionRequest, coach: AdaptiveCoach = Depends(get_coach)
) -> RacePrediction:
    """Predict the finish time of a stored race."""
    result = coach.predict_race(
        request.athlete_id,
        request.today or date.today(),
        race_id=request.race_id,
        readiness=request.readiness,
        conditions=request.conditions,
        location=request.location,
    )
    if isinstance(result, Unavailable):
        raise_unavailable(result)
    return result


@router.post("/races/simulate", response_model=PhysiologicalSimulation)
def simulate_race(
    request: RaceSimulationRequest, coach: AdaptiveCoach = Depends(get_coach)
) -> PhysiologicalSimulation:
    """Simulate glycogen, fatigue, hydration and GI risk for a stored race."""
    result = coach.simulate_race(
        request.athlete_id,
        request.today or date.today(),
        nutrition=request.nutrition,
        race_id=request.race_id,
        strategy=request.strategy,
        pacing_segments=request.pacing_segments,
        duration_min=request.duration_min,
        readiness=request.readiness,
        location=request.location,
    )
    if isinstance(result, Unavailable):
        raise_unavailable(result)
    return result


@router.post("/races/what-if", response_model=WhatIfResponse)
def what_if(request: WhatIfRequest) -> WhatIfResponse:
    """
    Perform sensitivity analysis on a race-day simulation.

    Each modification is applied to the baseline independently.

    Raises:
        HTTPException: 400 if a modification names an unsupported input or value
    """
    analyzer = SimulationSensitivityAnalyzer(request.baseline)
    try:
        scenarios = analyzer.compare_all(request.modifications)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid modification: {str(e)}",
        )

    impact = analyzer.baseline_simulation.performance_impact
    worst = max(scenarios, key=lambda s: s.penalty_delta_pct)
    best = min(scenarios, key=lambda s: s.penalty_delta_pct)
    summary = (
        f"Baseline penalty {impact.total_penalty_pct}%. "
        f"Largest improvement: {best.modified_assumption} ({best.penalty_delta_pct:+d}%); "
        f"largest cost: {worst.modified_assumption} ({worst.penalty_delta_pct:+d}%)."
    )
    return WhatIfResponse(
        baseline_penalty_pct=impact.total_penalty_pct,
        baseline_adjusted_time_min=impact.adjusted_time_min,
        scenarios=scenarios,
        summary=summary,
    )


@router.post("/races/outcome", response_model=RaceOutcomeResult)
def record_race_outcome(
    request: RaceOutcomeRequest, coach: AdaptiveCoach = Depends(get_coach)
) -> RaceOutcomeResult:
    """Calibrate the performance model and correction factors from a finished race."""
    result = coach.record_race_outcome(request.athlete_id, request.outcome, request.feedback)
    if isinstance(result, Unavailable):
        raise_unavailable(result)
    return result


@router.post("/races/feedback", response_model=LessonsResponse)
def record_race_feedback(
    request: RaceFeedbackRequest,
    coach: AdaptiveCoach = Depends(get_coach),
    store: SqlCoachStore = Depends(get_store),
) -> LessonsResponse:
    """Record race feedback and return the recomputed lessons."""
    lessons = coach.record_race_feedback(request.athlete_id, request.feedback)
    if isinstance(lessons, Unavailable):
        raise_unavailable(lessons)
    history = store.list_race_feedback(request.athlete_id)
    return LessonsResponse(
        athlete_id=request.athlete_id,
        lessons=lessons,
        profile=experience_profile(history, lessons),
    )


@router.get("/athletes/{athlete_id}/lessons", response_model=LessonsResponse)
def get_lessons(athlete_id: str, store: SqlCoachStore = Depends(get_store)) -> LessonsResponse:
    """Current race lessons and experience counts."""
    state = store.get_athlete_state(athlete_id)
    lessons = state.lessons if state else []
    return LessonsResponse(
        athlete_id=athlete_id,
        lessons=lessons,
        profile=experience_profile(store.list_race_feedback(athlete_id), lessons),
    )


@router.get("/athletes/{athlete_id}/projections", response_model=ProjectionsResponse)
def get_projections(
    athlete_id: str,
    today: Optional[date] = None,
    coach: AdaptiveCoach = Depends(get_coach),
) -> ProjectionsResponse:
    """Best baseline projected to the standard race distances."""
    result = coach.race_projections(athlete_id, today or date.today())
    if isinstance(result, Unavailable):
        raise_unavailable(result)
    return ProjectionsResponse(athlete_id=athlete_id, projections=result)
