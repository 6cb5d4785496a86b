"""
Collaborator ports.

The engine never touches storage or the network directly. The host wires
implementations of these protocols into the orchestrator; database.py
provides the SQLAlchemy-backed store used by the CLI and the API.

Ports raise CoachEngineError subclasses on failure; the orchestrator turns
them into Unavailable results.
"""

import logging
from datetime import date
from typing import List, Optional, Protocol

from coach_engine.calibration import CalibrationRecord
from coach_engine.config import Settings, get_settings
from coach_engine.errors import ExternalServiceError
from coach_engine.plan_schemas import WeekPlan
from coach_engine.schemas import (
    ActivityRecord,
    AthleteState,
    CorrectionFactors,
    DistanceBand,
    PerformanceModel,
    RaceFeedback,
    RaceResult,
    RunFeedback,
    TargetRace,
    WeatherReading,
)


logger = logging.getLogger(__name__)


class ActivityStore(Protocol):
    """Read-only access to logged sessions."""

    def list_activities(self, athlete_id: str, start: date, end: date) -> List[ActivityRecord]:
        """Activities in [start, end], oldest first."""
        ...

    def list_run_feedback(self, athlete_id: str, start: date, end: date) -> List[RunFeedback]:
        ...


class PlanStore(Protocol):
    """Current week plan and learning state; plans are replaced, never appended."""

    def get_plan(self, athlete_id: str, week_start: date) -> Optional[WeekPlan]:
        ...

    def save_plan(self, athlete_id: str, plan: WeekPlan, expected_revision: int) -> WeekPlan:
        """
        Replace the stored plan for ``plan.week_start``.

        Raises:
            PlanRevisionConflict: If the stored revision is not ``expected_revision``
        """
        ...

    def get_athlete_state(self, athlete_id: str) -> Optional[AthleteState]:
        ...

    def save_athlete_state(self, state: AthleteState) -> None:
        ...

    def save_cycle(
        self,
        athlete_id: str,
        plan: Optional[WeekPlan],
        expected_revision: int,
        state: AthleteState,
    ) -> Optional[WeekPlan]:
        """
        Write a cycle's plan (None = unchanged) and state in one transaction.

        Raises:
            PlanRevisionConflict: If the stored revision is not ``expected_revision``
        """
        ...


class RaceStore(Protocol):
    """Race metadata, results and feedback history."""

    def next_race(self, athlete_id: str, today: date) -> Optional[TargetRace]:
        ...

    def get_race(self, athlete_id: str, race_id: str) -> Optional[TargetRace]:
        ...

    def list_race_results(self, athlete_id: str) -> List[RaceResult]:
        ...

    def list_race_feedback(self, athlete_id: str) -> List[RaceFeedback]:
        """Feedback history, newest first."""
        ...

    def replace_race_feedback(self, athlete_id: str, history: List[RaceFeedback]) -> None:
        ...


class ModelStore(Protocol):
    """Read-modify-write access to calibrated models."""

    def get_performance_model(self, athlete_id: str) -> Optional[PerformanceModel]:
        ...

    def save_performance_model(self, model: PerformanceModel) -> None:
        ...

    def get_correction_factors(
        self, athlete_id: str, band: DistanceBand
    ) -> Optional[CorrectionFactors]:
        ...

    def save_correction_factors(self, factors: CorrectionFactors) -> None:
        """Upsert by (athlete, band)."""
        ...

    def add_calibration_record(self, record: CalibrationRecord) -> None:
        ...


class WeatherOracle(Protocol):
    """Optional forecast source."""

    def forecast(self, location: Optional[str], on: date) -> WeatherReading:
        """
        Raises:
            ExternalServiceError: If the forecast cannot be obtained
        """
        ...


def resolve_conditions(
    oracle: Optional[WeatherOracle],
    on: date,
    location: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> WeatherReading:
    """
    Conditions for a date, falling back to configured defaults.

    Oracle absence or failure never propagates: the defaults are returned
    with ``source="default"`` and a warning is logged.

    Args:
        oracle: Weather oracle (None when not configured)
        on: Date of interest
        location: Free-form location passed through to the oracle
        settings: Settings supplying the fallback values

    Returns:
        WeatherReading
    """
    settings = settings or get_settings()
    fallback = WeatherReading(
        temperature_c=settings.DEFAULT_TEMPERATURE_C,
        humidity_pct=settings.DEFAULT_HUMIDITY_PCT,
        source="default",
    )
    if oracle is None:
        return fallback

    try:
        return oracle.forecast(location, on)
    except (ExternalServiceError, TimeoutError, ConnectionError) as e:
        logger.warning("Weather unavailable for %s (%s); using defaults", on, e)
        return fallback
