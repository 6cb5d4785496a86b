"""
Data schemas for weekly training plans.

This module contains Pydantic models for representing the 7-day plan the
engine mutates each cycle, the explicit adjustment knobs applied to it,
and the decision records that feed the reasoning trace.
"""

from datetime import date, timedelta
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


DAYS_PER_WEEK = 7


class DayType(str, Enum):
    """Session categories within a week."""

    REST = "rest"
    EASY = "easy"
    QUALITY = "quality"  # Tempo / threshold
    LONG = "long"


class Weekday(str, Enum):
    """Days of the week, Monday first."""

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


WEEKDAY_ORDER = list(Weekday)


def day_title(day_type: DayType, distance_km: float) -> str:
    """Display title for a day, regenerated whenever distance changes."""
    if day_type == DayType.REST:
        return "Rest / Mobility"
    label = {
        DayType.EASY: "Easy",
        DayType.QUALITY: "Tempo",
        DayType.LONG: "Long",
    }[day_type]
    return f"{label} {distance_km:g} km"


def monday_of(day: date) -> date:
    """Monday of the week containing ``day``."""
    return day - timedelta(days=day.weekday())


class DayPlan(BaseModel):
    """
    A single day within a week plan.

    Rest days always carry zero distance.
    """

    day: Weekday = Field(..., description="Day of the week")
    day_type: DayType = Field(..., description="Session category")
    distance_km: float = Field(..., ge=0.0, description="Target distance")
    title: str = Field(..., min_length=1, description="Display title")
    notes: Optional[str] = Field(None, description="Coaching notes for the session")

    @model_validator(mode="after")
    def validate_rest_distance(self):
        """Rest days must have zero distance."""
        if self.day_type == DayType.REST and self.distance_km != 0:
            raise ValueError(
                f"Rest day {self.day.value} must have 0 km (got {self.distance_km})"
            )
        return self


class WeekPlan(BaseModel):
    """
    Seven-day plan, Monday first.

    Replaced (never appended) on each planning cycle. ``revision`` increases
    with every stored replacement and guards against lost updates.
    """

    week_start: date = Field(..., description="Monday of the planned week")
    days: List[DayPlan] = Field(..., description="Exactly 7 days, Monday first")
    revision: int = Field(default=0, ge=0, description="Store revision this plan was read at")

    @field_validator("week_start")
    @classmethod
    def validate_week_start(cls, v: date) -> date:
        """Week must start on a Monday."""
        if v.weekday() != 0:
            raise ValueError(f"week_start must be a Monday (got {v.strftime('%A')})")
        return v

    @field_validator("days")
    @classmethod
    def validate_days(cls, v: List[DayPlan]) -> List[DayPlan]:
        """Ensure exactly one entry per weekday in Monday-first order."""
        if len(v) != DAYS_PER_WEEK:
            raise ValueError(f"Week plan must have exactly 7 days (got {len(v)})")
        for expected, day_plan in zip(WEEKDAY_ORDER, v):
            if day_plan.day != expected:
                raise ValueError(
                    f"Days must be Monday-first in order; expected {expected.value}, "
                    f"got {day_plan.day.value}"
                )
        return v

    def total_distance(self) -> float:
        """Total planned distance for the week (km)."""
        return sum(d.distance_km for d in self.days)

    def days_of_type(self, day_type: DayType) -> List[DayPlan]:
        """All days with the given type."""
        return [d for d in self.days if d.day_type == day_type]


class PlanAdjustments(BaseModel):
    """
    Every adjustment knob the planner understands, with defaults.

    Built from the fatigue band and merged with lesson-derived knobs before
    the plan is mutated.
    """

    volume_cut_pct: float = Field(default=0.0, ge=0.0, le=100.0)
    volume_boost_pct: float = Field(default=0.0, ge=0.0, le=100.0)
    intensity_down: bool = False
    add_rest_day: bool = False
    add_hill_session: bool = False
    quality_sessions: int = Field(default=2, ge=0, le=3)
    taper_cut_pct: Optional[float] = Field(
        None, ge=0.0, le=1.0, description="Extra taper cut fraction from lessons"
    )
    hills_specificity: bool = False
    fueling_rehearsal: bool = False
    heat_prep: bool = False
    reason: str = Field(default="", description="Why these adjustments were chosen")


class PlanDecision(BaseModel):
    """
    Documents a specific decision made while mutating a plan.

    Used for reasoning trace to explain why certain choices were made.
    """

    decision_point: str = Field(
        ..., min_length=5, description="The decision that was made"
    )
    input_factors: List[str] = Field(
        ..., min_length=1, description="Factors that influenced this decision"
    )
    reasoning: str = Field(
        ..., min_length=20, description="Explanation of why this decision was made"
    )
    outcome: str = Field(
        ..., min_length=10, description="The resulting choice or action taken"
    )
