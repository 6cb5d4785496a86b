"""
Race time prediction.

Chooses the best available estimate for a target race, in priority order:

1. Route analysis (elevation/pace derived), with the ultra fatigue
   correction for races beyond the marathon
2. A manually entered expected time
3. Riegel projection from the baseline performance

and then applies the performance modifiers (readiness, training
consistency, long runs, weather, course) to produce the final time with a
confidence tier.
"""

import logging
import math
from datetime import date, timedelta
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, Field

from coach_engine.baseline import format_pace, format_time, project_time
from coach_engine.config import get_settings
from coach_engine.schemas import (
    ActivityRecord,
    BaselineRace,
    CorrectionFactors,
    EngineStatus,
    PaceConfidence,
    PerformanceModel,
    RouteAnalysis,
    Surface,
    TargetRace,
    Unavailable,
    WeatherReading,
)
from coach_engine.ultra import MARATHON_KM, UltraFinishEstimate, estimate_ultra_finish_time
from coach_engine.validator import InputValidator


logger = logging.getLogger(__name__)

ULTRA_CORRECTION_KM = 42.0
ULTRA_CONFIDENCE_KM = 50.0
SIMILAR_DISTANCE_RATIO = 0.5
ROUTE_DISTANCE_TOLERANCE = 0.1
ROUTE_PACE_RANGE = (3.0, 15.0)

STATS_WINDOW_DAYS = 56
DEFAULT_TRAINING_PACE = 6.0
DEFAULT_LONGEST_RUN_KM = 10.0
FITNESS_REFERENCE_WEEKLY_KM = 50.0
OPTIMAL_FITNESS = 0.85

TERRAIN_FACTORS = {
    Surface.TRAIL: 1.12,
    Surface.MOUNTAIN: 1.12,
    Surface.MIXED: 1.06,
}


# ============================================================================
# Result models
# ============================================================================

class CalculationMethod(str, Enum):
    """How the base prediction was obtained."""
    ROUTE = "route"
    MANUAL = "manual"
    PROJECTION = "projection"


class ConfidenceTier(str, Enum):
    """Confidence in the calculation method for this race."""
    VERY_HIGH = "very-high"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    VERY_LOW = "very-low"


class TrainingStats(BaseModel):
    """Recent training summary used by the performance modifiers."""

    avg_pace_min_per_km: float = Field(default=DEFAULT_TRAINING_PACE, gt=0.0)
    longest_run_km: float = Field(default=DEFAULT_LONGEST_RUN_KM, ge=0.0)
    fitness_level: float = Field(default=0.5, ge=0.0, le=1.0)
    weekly_km: List[float] = Field(
        default_factory=list, description="Weekly totals, oldest first"
    )


class PaceSegment(BaseModel):
    """Expected pace for one kilometre of the race."""

    segment: int = Field(..., ge=1)
    pace_min_per_km: float = Field(..., gt=0.0)
    cumulative_fatigue: float = Field(..., ge=0.0, le=1.0)
    hr_zone: int = Field(..., ge=1, le=5)


class RacePrediction(BaseModel):
    """Predicted finish time for a target race."""

    race_id: str
    race_name: str
    distance_km: float
    base_time_min: float = Field(..., gt=0.0, description="Method output before modifiers")
    predicted_time_min: float = Field(..., gt=0.0)
    predicted_time: str
    avg_pace_min_per_km: float
    pace_formatted: str
    method: CalculationMethod
    calculation_confidence: ConfidenceTier
    confidence: str = Field(..., description="Overall confidence: high, medium or low")
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    factors: Dict[str, float] = Field(default_factory=dict)
    pace_breakdown: List[PaceSegment] = Field(default_factory=list)
    ultra: Optional[UltraFinishEstimate] = None
    readiness: float
    weeks_to_race: Optional[float] = None
    conditions: WeatherReading
    message: str


# ============================================================================
# Training summary
# ============================================================================

def training_stats(
    activities: Sequence[ActivityRecord],
    today: date,
    window_days: int = STATS_WINDOW_DAYS,
) -> TrainingStats:
    """
    Summarise the last eight weeks of training.

    Args:
        activities: Logged sessions (any order)
        today: Reference date
        window_days: Look-back window

    Returns:
        TrainingStats (defaults when nothing was logged)
    """
    start = today - timedelta(days=window_days)
    recent = [a for a in activities if start <= a.activity_date <= today]
    if not recent:
        return TrainingStats()

    paced = [
        a.pace_min_per_km
        for a in recent
        if a.distance_km and a.distance_km >= 5 and a.pace_min_per_km
    ]
    avg_pace = sum(paced) / len(paced) if paced else DEFAULT_TRAINING_PACE
    longest = max([a.distance_km or 0.0 for a in recent] + [DEFAULT_LONGEST_RUN_KM])

    weeks = window_days // 7
    weekly = [0.0] * weeks
    for activity in recent:
        index = (today - activity.activity_date).days // 7
        if index < weeks:
            weekly[weeks - 1 - index] += activity.distance_km or 0.0

    avg_weekly = sum(weekly) / weeks
    return TrainingStats(
        avg_pace_min_per_km=avg_pace,
        longest_run_km=longest,
        fitness_level=min(1.0, avg_weekly / FITNESS_REFERENCE_WEEKLY_KM),
        weekly_km=weekly,
    )


# ============================================================================
# Modifiers
# ============================================================================

def heat_index_c(temperature_c: float, humidity_pct: float) -> float:
    """Heat index in °C (Rothfusz regression above 80°F and 40% RH)."""
    t_f = temperature_c * 9 / 5 + 32
    if t_f >= 80 and humidity_pct >= 40:
        r = humidity_pct
        hi_f = (
            -42.379
            + 2.04901523 * t_f
            + 10.14333127 * r
            - 0.22475541 * t_f * r
            - 6.83783e-3 * t_f * t_f
            - 5.481717e-2 * r * r
            + 1.22874e-3 * t_f * t_f * r
            + 8.5282e-4 * t_f * r * r
            - 1.99e-6 * t_f * t_f * r * r
        )
        return (hi_f - 32) * 5 / 9
    return temperature_c + humidity_pct / 100 * (2 if temperature_c >= 20 else 0.5)


def heat_pace_nudge(heat_index: float) -> float:
    """Fractional slowdown for a heat index: 0, 3, 6 or 10 percent."""
    if heat_index < 27:
        return 0.0
    if heat_index < 32:
        return 0.03
    if heat_index < 41:
        return 0.06
    return 0.10


def weather_factor(conditions: WeatherReading) -> float:
    heat = heat_pace_nudge(heat_index_c(conditions.temperature_c, conditions.humidity_pct))
    wind = (conditions.wind_kph - 15) / 100 * 0.02 if conditions.wind_kph > 15 else 0.0
    if conditions.precipitation_mm > 15:
        rain = 0.03
    elif conditions.precipitation_mm > 5:
        rain = 0.01
    else:
        rain = 0.0
    return 1 + heat + wind + rain


def fitness_factor(readiness: float) -> float:
    deviation = readiness / 100 - OPTIMAL_FITNESS
    if deviation > 0:
        return 1 - deviation * 0.3
    return 1 - deviation * 0.5


def consistency_factor(weekly_km: Sequence[float]) -> float:
    if len(weekly_km) < 4:
        return 1.05
    mean = sum(weekly_km) / len(weekly_km)
    if mean <= 0:
        return 1.06
    std = math.sqrt(sum((w - mean) ** 2 for w in weekly_km) / len(weekly_km))
    cv = std / mean
    if cv < 0.2:
        return 1.0
    if cv < 0.3:
        return 1.02
    if cv < 0.4:
        return 1.04
    return 1.06


def long_run_factor(longest_run_km: float, race_distance_km: float) -> float:
    ratio = longest_run_km / race_distance_km
    if ratio >= 0.7:
        return 0.98
    if ratio >= 0.6:
        return 1.0
    if ratio >= 0.5:
        return 1.02
    if ratio >= 0.4:
        return 1.05
    return 1.08


def _pace_breakdown(avg_pace: float, distance_km: float) -> List[PaceSegment]:
    segments = math.ceil(distance_km)
    breakdown = []
    for i in range(segments):
        progress = i / segments
        if distance_km > ULTRA_CORRECTION_KM:
            fatigue = progress ** 1.5 * 0.4
        else:
            fatigue = progress ** 1.2 * 0.2
        breakdown.append(
            PaceSegment(
                segment=i + 1,
                pace_min_per_km=avg_pace * (1 + fatigue * 0.3),
                cumulative_fatigue=fatigue,
                hr_zone=min(5, round(3 + fatigue * 1.5)),
            )
        )
    return breakdown


# ============================================================================
# Predictor
# ============================================================================

class RaceTimePredictor:
    """
    Predicts a race finish time using the best available method.

    Method confidence:
    - route: very-high with a high-confidence personalised pace, else high
    - manual: medium
    - projection: very-low for far extrapolation to ultras, low for ultras
      or dissimilar distances, medium for a similar distance anchored on a
      real race, low otherwise
    """

    def __init__(
        self,
        riegel_exponent: Optional[float] = None,
        validator: Optional[InputValidator] = None,
    ):
        """
        Initialize predictor.

        Args:
            riegel_exponent: Decay exponent used when no calibrated model is supplied
            validator: Input range validator
        """
        self.riegel_exponent = riegel_exponent or get_settings().RIEGEL_EXPONENT
        self.validator = validator or InputValidator()

    def predict(
        self,
        target_race: TargetRace,
        baseline: Optional[BaselineRace],
        training_stats: TrainingStats,
        readiness: float,
        conditions: Optional[WeatherReading] = None,
        model: Optional[PerformanceModel] = None,
        corrections: Optional[CorrectionFactors] = None,
        today: Optional[date] = None,
    ) -> Union[RacePrediction, Unavailable]:
        """
        Predict the finish time for a target race.

        Args:
            target_race: Race to predict
            baseline: Best baseline performance (None if none found)
            training_stats: Recent training summary
            readiness: Readiness score (0-100, clamped)
            conditions: Race-day conditions (settings defaults when omitted)
            model: Calibrated performance model; its decay replaces the default exponent
            corrections: Learned correction factors for the race's distance band
            today: Reference date for weeks-to-race

        Returns:
            RacePrediction, or Unavailable(insufficient_data) if no method applies
        """
        readiness = self.validator.clamp_input("readiness", readiness)
        if conditions is None:
            settings = get_settings()
            conditions = WeatherReading(
                temperature_c=settings.DEFAULT_TEMPERATURE_C,
                humidity_pct=settings.DEFAULT_HUMIDITY_PCT,
            )

        ultra: Optional[UltraFinishEstimate] = None
        route = target_race.route_analysis

        if route is not None and self._route_is_valid(route, target_race.distance_km):
            method = CalculationMethod.ROUTE
            base_time = route.total_time_min
            if target_race.distance_km > ULTRA_CORRECTION_KM and not route.ultra_adjusted:
                ultra = estimate_ultra_finish_time(
                    base_time_min=route.total_time_min,
                    distance_km=target_race.distance_km,
                    elevation_gain_m=route.elevation_gain_m or target_race.elevation_gain_m,
                    temperature_c=conditions.temperature_c,
                    humidity=conditions.humidity_pct,
                    readiness=readiness,
                    longest_ultra_km=max(training_stats.longest_run_km, MARATHON_KM),
                    surface=target_race.surface,
                    corrections=corrections,
                )
                base_time = ultra.adjusted_time_min
            if route.personalized_pace and route.pace_confidence == PaceConfidence.HIGH:
                tier = ConfidenceTier.VERY_HIGH
            else:
                tier = ConfidenceTier.HIGH
        elif target_race.expected_time_min:
            method = CalculationMethod.MANUAL
            base_time = target_race.expected_time_min
            tier = ConfidenceTier.MEDIUM
        elif baseline is not None:
            method = CalculationMethod.PROJECTION
            exponent = model.performance_decay if model is not None else self.riegel_exponent
            base_time = project_time(
                baseline.distance_km, baseline.time_min, target_race.distance_km, exponent
            )
            tier = self._projection_tier(target_race, baseline)
        else:
            logger.warning("No prediction method available for race %s", target_race.id)
            return Unavailable(
                status=EngineStatus.INSUFFICIENT_DATA,
                reason=(
                    f"Cannot predict {target_race.name}: no route analysis, "
                    "expected time or baseline performance."
                ),
            )

        factors = self._modifiers(method, target_race, training_stats, readiness, conditions)
        total_factor = math.prod(factors.values())
        predicted = base_time * total_factor
        avg_pace = predicted / target_race.distance_km

        weeks_to_race = None
        if today is not None:
            weeks_to_race = (target_race.race_date - today).days / 7
        confidence = self._overall_confidence(
            weeks_to_race, training_stats.fitness_level, readiness
        )
        confidence_score = {"high": 0.9, "medium": 0.75}.get(confidence, 0.6)

        logger.info(
            "Predicted %s: %.1f min via %s (%s)",
            target_race.name,
            predicted,
            method.value,
            tier.value,
        )

        return RacePrediction(
            race_id=target_race.id,
            race_name=target_race.name,
            distance_km=target_race.distance_km,
            base_time_min=base_time,
            predicted_time_min=predicted,
            predicted_time=format_time(predicted),
            avg_pace_min_per_km=avg_pace,
            pace_formatted=format_pace(avg_pace),
            method=method,
            calculation_confidence=tier,
            confidence=confidence,
            confidence_score=confidence_score,
            factors=factors,
            pace_breakdown=_pace_breakdown(avg_pace, target_race.distance_km),
            ultra=ultra,
            readiness=readiness,
            weeks_to_race=weeks_to_race,
            conditions=conditions,
            message=self._message(readiness, predicted, confidence),
        )

    def _route_is_valid(self, route: RouteAnalysis, race_distance_km: float) -> bool:
        """Route estimate must be positive, match the race distance and have a sane pace."""
        if route.total_time_min <= 0 or route.total_distance_km <= 0:
            return False
        diff = abs(route.total_distance_km - race_distance_km) / race_distance_km
        if diff > ROUTE_DISTANCE_TOLERANCE:
            logger.warning(
                "Route distance %.1f km differs from race distance %.1f km",
                route.total_distance_km,
                race_distance_km,
            )
            return False
        pace = route.total_time_min / route.total_distance_km
        low, high = ROUTE_PACE_RANGE
        if not low <= pace <= high:
            logger.warning("Route pace %.2f min/km looks unrealistic", pace)
            return False
        return True

    def _projection_tier(self, race: TargetRace, baseline: BaselineRace) -> ConfidenceTier:
        ratio = race.distance_km / baseline.distance_km
        similar = abs(ratio - 1.0) < SIMILAR_DISTANCE_RATIO
        is_ultra = race.distance_km > ULTRA_CONFIDENCE_KM

        if is_ultra and not similar:
            return ConfidenceTier.VERY_LOW
        if is_ultra or not similar:
            return ConfidenceTier.LOW
        if baseline.is_real_race:
            return ConfidenceTier.MEDIUM
        return ConfidenceTier.LOW

    def _modifiers(
        self,
        method: CalculationMethod,
        race: TargetRace,
        stats: TrainingStats,
        readiness: float,
        conditions: WeatherReading,
    ) -> Dict[str, float]:
        """Multiplicative time factors; route estimates already include terrain."""
        if method == CalculationMethod.ROUTE:
            return {
                "weather": weather_factor(conditions),
                "readiness": 1 + (80 - readiness) / 800,
            }
        return {
            "fitness": fitness_factor(readiness),
            "consistency": consistency_factor(stats.weekly_km),
            "long_run": long_run_factor(stats.longest_run_km, race.distance_km),
            "weather": weather_factor(conditions),
            "course": 1 + race.elevation_gain_m / race.distance_km / 100 * 0.02,
            "terrain": TERRAIN_FACTORS.get(race.surface, 1.0),
        }

    def _overall_confidence(
        self, weeks_to_race: Optional[float], fitness_level: float, readiness: float
    ) -> str:
        in_window = weeks_to_race is not None and 4 <= weeks_to_race <= 16
        time_score = 1.0 if in_window else 0.7
        overall = (time_score + fitness_level + readiness / 100) / 3
        if overall >= 0.75:
            return "high"
        if overall >= 0.5:
            return "medium"
        return "low"

    def _message(self, readiness: float, predicted: float, confidence: str) -> str:
        projected = f"projected {format_time(predicted)} with {confidence} confidence."
        if readiness >= 80:
            return f"Peak form - {projected} Strong fitness and recovery."
        if readiness >= 60:
            return f"Solid form - {projected} Manage fatigue in final weeks."
        return f"Building form - {projected} Prioritize recovery."
