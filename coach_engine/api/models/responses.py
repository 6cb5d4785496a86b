"""
API Response Models

Pydantic models for API responses.
"""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field

from coach_engine.baseline import RaceProjection
from coach_engine.coach import TaperOutlook
from coach_engine.fatigue import FatigueResult
from coach_engine.lessons import ExperienceProfile
from coach_engine.plan_schemas import PlanAdjustments, PlanDecision, WeekPlan
from coach_engine.schemas import RaceLesson, Weights
from coach_engine.sensitivity import SimulationSensitivityResult
from coach_engine.trace import CycleTrace


class ImportResponse(BaseModel):
    """Response for POST /api/athletes/import."""

    athlete_id: str
    activities: int = Field(..., description="Activities written")
    run_feedback: int
    race_results: int
    races: int
    race_feedback: int
    lessons: List[RaceLesson] = Field(default_factory=list)


class PlanningCycleResponse(BaseModel):
    """Response for POST /api/plans/cycle."""

    athlete_id: str
    week_start: date
    applied: bool = Field(..., description="Whether the mutated plan was stored")
    plan: WeekPlan
    fatigue: FatigueResult
    adjustments: PlanAdjustments
    volume_multiplier: float
    race_weeks_out: Optional[float] = None
    taper: Optional[TaperOutlook] = Field(None, description="Set inside the taper window")
    decisions: List[PlanDecision] = Field(default_factory=list)
    weights: Weights
    warnings: List[str] = Field(default_factory=list, description="Warning messages")
    trace: CycleTrace = Field(..., description="Full planning trace")


class ReadinessResponse(BaseModel):
    """Response for POST /api/fatigue."""

    readiness: float = Field(..., ge=0.0, le=100.0)
    fatigue: FatigueResult


class WhatIfResponse(BaseModel):
    """Response for POST /api/races/what-if."""

    baseline_penalty_pct: int
    baseline_adjusted_time_min: float
    scenarios: List[SimulationSensitivityResult]
    summary: str = Field(..., description="Human-readable summary")


class LessonsResponse(BaseModel):
    """Response for GET /api/athletes/{athlete_id}/lessons."""

    athlete_id: str
    lessons: List[RaceLesson]
    profile: ExperienceProfile


class ProjectionsResponse(BaseModel):
    """Response for GET /api/athletes/{athlete_id}/projections."""

    athlete_id: str
    projections: List[RaceProjection]
