"""
API Request Models

Pydantic models for API request validation.
"""

from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from coach_engine.calibration import UltraCalibrationInput
from coach_engine.schemas import HealthState, RaceFeedback, WeatherReading
from coach_engine.sensitivity import SimulationRequest
from coach_engine.simulation import NutritionInputs, PacingSegment, Strategy


class FatigueRequest(BaseModel):
    """Request model for fatigue scoring and planning cycles."""

    athlete_id: str = Field(..., min_length=1, description="Athlete ID")
    today: Optional[date] = Field(None, description="Reference date (default: server date)")
    health: HealthState = Field(default=HealthState.NORMAL, description="Illness state")


class PlanningCycleRequest(FatigueRequest):
    """Request model for a weekly planning cycle."""


class PredictionRequest(BaseModel):
    """Request model for race prediction."""

    athlete_id: str = Field(..., min_length=1)
    today: Optional[date] = None
    race_id: Optional[str] = Field(None, description="Race ID (default: next race)")
    readiness: Optional[float] = Field(
        None, ge=0.0, le=100.0, description="Readiness (default: from current fatigue)"
    )
    conditions: Optional[WeatherReading] = Field(
        None, description="Race-day conditions (default: forecast or configured defaults)"
    )
    location: Optional[str] = None


class RaceSimulationRequest(BaseModel):
    """Request model for race-day simulation of a stored race."""

    athlete_id: str = Field(..., min_length=1)
    today: Optional[date] = None
    race_id: Optional[str] = None
    nutrition: NutritionInputs = Field(default_factory=NutritionInputs)
    strategy: Optional[Strategy] = None
    pacing_segments: Optional[List[PacingSegment]] = None
    duration_min: Optional[float] = Field(
        None, gt=0.0, description="Finish time (default: race prediction)"
    )
    readiness: Optional[float] = Field(None, ge=0.0, le=100.0)
    location: Optional[str] = None


class WhatIfRequest(BaseModel):
    """Request model for race-day sensitivity analysis."""

    baseline: SimulationRequest = Field(..., description="Baseline simulation inputs")
    modifications: Dict[str, Any] = Field(
        ...,
        min_length=1,
        description="Input path -> new value (e.g., {'nutrition.fueling_g_per_hr': 80})",
    )


class RaceOutcomeRequest(BaseModel):
    """Request model for post-race calibration."""

    athlete_id: str = Field(..., min_length=1)
    outcome: UltraCalibrationInput
    feedback: Optional[RaceFeedback] = None


class RaceFeedbackRequest(BaseModel):
    """Request model for recording race feedback."""

    athlete_id: str = Field(..., min_length=1)
    feedback: RaceFeedback
