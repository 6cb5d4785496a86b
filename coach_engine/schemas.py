"""
Pydantic models for the adaptive coaching engine.

This module defines the core data structures for:
- Activity and health records: what the athlete logged
- Learned state: fatigue weights, race lessons, athlete state
- Race records: target races, race feedback, baselines, conditions
- Calibrated models: performance model and per-band correction factors
- Import snapshots handed over by the host
- Typed "unavailable" results returned instead of raising on sparse data

Plan structures live in plan_schemas.py; component results live next to
the component that produces them.
"""

from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# ============================================================================
# Enumerations
# ============================================================================

class HealthState(str, Enum):
    """Self-reported illness state."""
    NORMAL = "normal"
    SICK = "sick"
    RETURNING = "returning"


class RacePriority(str, Enum):
    """Race importance level."""
    A = "A"  # Key race
    B = "B"  # Important
    C = "C"  # Training race


class Surface(str, Enum):
    """Dominant race surface."""
    ROAD = "road"
    TRAIL = "trail"
    TRACK = "track"
    MIXED = "mixed"
    MOUNTAIN = "mountain"


class RaceGoal(str, Enum):
    """What the athlete was racing for."""
    FINISH = "finish"
    PB = "pb"
    PODIUM = "podium"


class RaceCondition(str, Enum):
    """Environmental conditions noted in race feedback."""
    HEAT = "heat"
    COLD = "cold"
    WIND = "wind"
    HILLS = "hills"
    ALTITUDE = "altitude"
    HUMIDITY = "humidity"


class RaceIssue(str, Enum):
    """Problems reported in race feedback."""
    GI = "gi"
    CRAMPS = "cramps"
    BLISTERS = "blisters"
    PACING = "pacing"
    FUELING = "fueling"
    HYDRATION = "hydration"
    SLEEP = "sleep"


class LessonKey(str, Enum):
    """Categorical lesson keys mined from race history."""
    TAPER_BIAS_UP = "taper_bias_up"
    FUELING_FOCUS = "fueling_focus"
    HEAT_ACCLIMATION = "heat_acclimation"
    HILLS_SPECIFICITY = "hills_specificity"
    PACING_CONTROL = "pacing_control"


class PaceConfidence(str, Enum):
    """Confidence of a personalised pace profile."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class EngineStatus(str, Enum):
    """Reason categories for an unavailable result."""
    INSUFFICIENT_DATA = "insufficient_data"
    INVALID_MUTATION = "invalid_mutation"
    EXTERNAL_UNAVAILABLE = "external_unavailable"
    CONCURRENT_MUTATION = "concurrent_mutation"
    NOT_READY = "not_ready"


class DistanceBand(str, Enum):
    """Distance bands used to key correction factors."""
    MARATHON = "marathon"
    FIFTY_K = "50k"
    FIFTY_MILE = "50m"
    HUNDRED_K = "100k"
    HUNDRED_MILE = "100m"
    MULTI_DAY = "multi-day"


# ============================================================================
# Typed unavailable result
# ============================================================================

class Unavailable(BaseModel):
    """
    Explicit "not ready / insufficient" result.

    Returned by public entry points for expected data-sparsity conditions
    (new athlete, no races yet, stale plan) instead of raising.
    """

    status: EngineStatus = Field(..., description="Why the result is unavailable")
    reason: str = Field(..., min_length=1, description="Human-readable reason")

    @property
    def available(self) -> bool:
        return False


# ============================================================================
# Activity & Health Inputs
# ============================================================================

class ActivityRecord(BaseModel):
    """
    A logged training session with optional health signals.

    Health fields are not range-checked here; SignalAggregator clamps them
    at ingestion so the engine stays available on noisy device data.
    """

    activity_date: date = Field(..., description="Session date")
    distance_km: Optional[float] = Field(
        None, ge=0.0, description="Distance covered; None when not recorded"
    )
    duration_min: Optional[float] = Field(None, ge=0.0, description="Moving time")
    rpe: Optional[float] = Field(None, description="Perceived exertion (1-10)")
    sleep_hours: Optional[float] = Field(None, description="Sleep the night before")
    hrv: Optional[float] = Field(None, description="Morning HRV (ms)")
    heart_rate_avg: Optional[float] = Field(None, description="Average heart rate (bpm)")
    elevation_gain_m: Optional[float] = Field(None, ge=0.0)
    name: Optional[str] = Field(None, description="Activity title")

    model_config = {"frozen": True}

    @property
    def pace_min_per_km(self) -> Optional[float]:
        """Pace in min/km when both distance and duration are known."""
        if not self.distance_km or not self.duration_min:
            return None
        return self.duration_min / self.distance_km


class RunFeedback(BaseModel):
    """Post-run subjective feedback."""

    feedback_date: date
    rpe: float = Field(..., ge=1.0, le=10.0)
    soreness: float = Field(..., ge=1.0, le=10.0)
    notes: Optional[str] = None


class RaceResult(BaseModel):
    """Official race result (distance and finishing time)."""

    race_date: date
    name: Optional[str] = None
    distance_km: float = Field(..., gt=0.0)
    time_min: Optional[float] = Field(None, gt=0.0)


# ============================================================================
# Learned State
# ============================================================================

DEFAULT_WEIGHTS = {
    "sleep": 0.8,
    "hrv": 0.7,
    "rpe": 0.6,
    "race_proximity": 0.9,
}

WEIGHT_MIN = 0.2
WEIGHT_MAX = 1.0


class Weights(BaseModel):
    """Learned fatigue-scorer weights, each bounded to [0.2, 1.0]."""

    sleep: float = Field(default=DEFAULT_WEIGHTS["sleep"], ge=WEIGHT_MIN, le=WEIGHT_MAX)
    hrv: float = Field(default=DEFAULT_WEIGHTS["hrv"], ge=WEIGHT_MIN, le=WEIGHT_MAX)
    rpe: float = Field(default=DEFAULT_WEIGHTS["rpe"], ge=WEIGHT_MIN, le=WEIGHT_MAX)
    race_proximity: float = Field(
        default=DEFAULT_WEIGHTS["race_proximity"], ge=WEIGHT_MIN, le=WEIGHT_MAX
    )

    model_config = {"frozen": True}


class RaceLesson(BaseModel):
    """A weighted lesson derived from race history."""

    key: LessonKey
    weight: float = Field(..., ge=0.0, le=0.45)
    summary: str = Field(..., min_length=5)


class AthleteState(BaseModel):
    """Per-athlete persisted learning state."""

    athlete_id: str = Field(..., min_length=1)
    weights: Weights = Field(default_factory=Weights)
    lessons: List[RaceLesson] = Field(default_factory=list)
    cycle_count: int = Field(default=0, ge=0)
    updated_at: datetime = Field(default_factory=datetime.now)


# ============================================================================
# Race Records
# ============================================================================

class RouteAnalysis(BaseModel):
    """Route-derived (elevation/pace) race time estimate."""

    total_time_min: float = Field(..., ge=0.0)
    total_distance_km: float = Field(..., ge=0.0)
    elevation_gain_m: float = Field(default=0.0, ge=0.0)
    personalized_pace: bool = Field(
        default=False, description="Whether an athlete-specific pace profile was used"
    )
    pace_confidence: Optional[PaceConfidence] = None
    ultra_adjusted: bool = Field(
        default=False, description="Whether ultra fatigue correction is already included"
    )


class TargetRace(BaseModel):
    """Upcoming race metadata from the race store."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    race_date: date
    distance_km: float = Field(..., gt=0.0)
    elevation_gain_m: float = Field(default=0.0, ge=0.0)
    surface: Surface = Surface.ROAD
    priority: RacePriority = RacePriority.A
    route_analysis: Optional[RouteAnalysis] = None
    expected_time_min: Optional[float] = Field(
        None, gt=0.0, description="Manually entered expected finish time"
    )

    def weeks_out(self, today: date) -> float:
        """Weeks until race day (never negative)."""
        return max(0.0, (self.race_date - today).days / 7.0)


class RaceFeedback(BaseModel):
    """
    Race result feedback used for lesson mining.

    Identified by (id, date); recording the same pair again replaces the
    earlier entry.
    """

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    race_date: date
    distance_km: float = Field(..., gt=0.0)
    elevation_m: float = Field(default=0.0, ge=0.0)
    surface: Surface = Surface.ROAD
    priority: RacePriority = RacePriority.B
    goal: RaceGoal = RaceGoal.FINISH
    achieved: bool = True
    rpe: Optional[float] = Field(None, ge=1.0, le=10.0, description="Missing counts as easy")
    conditions: List[RaceCondition] = Field(default_factory=list)
    issues: List[RaceIssue] = Field(default_factory=list)
    finish_time_min: Optional[float] = Field(None, gt=0.0)
    notes: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.id}:{self.race_date.isoformat()}"


class WeatherReading(BaseModel):
    """Race-day (or current) conditions from the weather oracle or defaults."""

    temperature_c: float = Field(..., description="Air temperature (°C)")
    humidity_pct: float = Field(..., description="Relative humidity (%)")
    wind_kph: float = Field(default=0.0, ge=0.0)
    precipitation_mm: float = Field(default=0.0, ge=0.0)
    source: str = Field(default="default", description="'forecast', 'manual' or 'default'")


class BaselineRace(BaseModel):
    """Anchor performance for distance-scaling projections."""

    distance_km: float = Field(..., gt=0.0)
    time_min: float = Field(..., gt=0.0)
    pace_min_per_km: float = Field(..., gt=0.0)
    race_date: date
    is_real_race: bool = Field(..., description="Official race result vs. training inference")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Recency-based confidence")
    source: str = Field(default="", description="Where the baseline came from")

    @model_validator(mode="after")
    def validate_pace(self):
        """Pace must agree with time and distance."""
        expected = self.time_min / self.distance_km
        if abs(expected - self.pace_min_per_km) > 0.01:
            raise ValueError(
                f"Pace {self.pace_min_per_km:.2f} does not match "
                f"time/distance ({expected:.2f} min/km)"
            )
        return self


# ============================================================================
# Calibrated Models
# ============================================================================

DECAY_MIN = 1.03
DECAY_MAX = 1.12
DECAY_DEFAULT = 1.06


class CalibrationEntry(BaseModel):
    """One entry in the performance model's calibration history."""

    race_id: str
    race_date: date
    distance_km: float = Field(..., gt=0.0)
    predicted_time_min: float = Field(..., gt=0.0)
    actual_time_min: float = Field(..., gt=0.0)
    delta_pct: float
    decay_before: float
    decay_after: float
    quality: float = Field(..., ge=0.0, le=1.0)


class PerformanceModel(BaseModel):
    """Global Riegel-style model anchored to a baseline performance."""

    athlete_id: str = Field(default="default")
    baseline_distance_km: Optional[float] = Field(None, gt=0.0)
    baseline_time_min: Optional[float] = Field(None, gt=0.0)
    baseline_date: Optional[date] = None
    baseline_is_real: bool = Field(default=False, description="Baseline is an official race result")
    performance_decay: float = Field(default=DECAY_DEFAULT, ge=DECAY_MIN, le=DECAY_MAX)
    calibration_count: int = Field(default=0, ge=0)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    last_calibration_date: Optional[date] = None
    calibration_history: List[CalibrationEntry] = Field(default_factory=list)

    @property
    def has_baseline(self) -> bool:
        return self.baseline_distance_km is not None and self.baseline_time_min is not None


CORRECTION_FACTOR_MIN = 0.5
CORRECTION_FACTOR_MAX = 2.0


class CorrectionFactors(BaseModel):
    """Per-distance-band multipliers learned from ultra outcomes."""

    athlete_id: str = Field(default="default")
    distance_band: DistanceBand
    base_fatigue_factor: float = Field(default=1.0, ge=1.0, le=2.0)
    trail_factor: float = Field(
        default=1.0, ge=CORRECTION_FACTOR_MIN, le=CORRECTION_FACTOR_MAX
    )
    mountain_factor: float = Field(
        default=1.0, ge=CORRECTION_FACTOR_MIN, le=CORRECTION_FACTOR_MAX
    )
    night_factor: float = Field(
        default=1.0, ge=CORRECTION_FACTOR_MIN, le=CORRECTION_FACTOR_MAX
    )
    heat_factor: float = Field(
        default=1.0, ge=CORRECTION_FACTOR_MIN, le=CORRECTION_FACTOR_MAX
    )
    aid_station_multiplier: float = Field(
        default=1.0, ge=CORRECTION_FACTOR_MIN, le=CORRECTION_FACTOR_MAX
    )
    calibration_count: int = Field(default=0, ge=0)
    confidence: float = Field(default=50.0, ge=0.0, le=95.0)
    last_quality: Optional[float] = Field(None, ge=0.0, le=1.0)
    race_history: List[Dict[str, float]] = Field(
        default_factory=list, description="Recent (predicted, actual, quality) triples"
    )

    @field_validator("race_history")
    @classmethod
    def validate_history_length(cls, v: List[Dict[str, float]]) -> List[Dict[str, float]]:
        """Keep only the most recent 10 entries."""
        return v[-10:]


# ============================================================================
# Import snapshot
# ============================================================================

class AthleteSnapshot(BaseModel):
    """Everything a host hands over for one athlete, e.g. from a JSON export."""

    athlete_id: str = Field(..., min_length=1)
    activities: List[ActivityRecord] = Field(default_factory=list)
    run_feedback: List[RunFeedback] = Field(default_factory=list)
    race_results: List[RaceResult] = Field(default_factory=list)
    races: List[TargetRace] = Field(default_factory=list)
    race_feedback: List[RaceFeedback] = Field(default_factory=list)
