"""
Calibration loop.

After a race with a known finish time, two independent tracks pull the
models toward reality:

- Global decay: back-solve the Riegel exponent the result implies and
  blend it into the performance model.
- Per-band corrections: smooth the ultra fatigue, terrain, night, heat and
  aid-station multipliers for the race's distance band.

Both use the same shrinking blend weight alpha = min(0.4, 1 / (count + 2)),
so repeated evidence converges instead of oscillating. A calibration
quality score is stored with every update; it never gates the update.
"""

import logging
import math
from datetime import date, datetime
from typing import List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from coach_engine.config import get_settings
from coach_engine.schemas import (
    DECAY_DEFAULT,
    DECAY_MAX,
    DECAY_MIN,
    BaselineRace,
    CalibrationEntry,
    CorrectionFactors,
    DistanceBand,
    EngineStatus,
    PaceConfidence,
    PerformanceModel,
    Surface,
    Unavailable,
)
from coach_engine.ultra import MARATHON_KM, MOUNTAIN_GRADE_M_PER_KM, distance_band


logger = logging.getLogger(__name__)

MIN_CALIBRATION_KM = 5.0
MAX_DELTA_PCT = 50.0
MIN_DISTANCE_RATIO_GAP = 0.05
HISTORY_LIMIT = 10
SIGNIFICANT_DECAY_CHANGE = 0.02
TREND_TOLERANCE = 0.005

FATIGUE_FACTOR_MIN = 1.0
FATIGUE_FACTOR_MAX = 2.0
MULTIPLIER_MIN = 0.5
MULTIPLIER_MAX = 2.0
HEAT_CALIBRATION_C = 25.0
CONFIDENCE_CAP = 95.0


# ============================================================================
# Inputs and results
# ============================================================================

class CalibrationInput(BaseModel):
    """Predicted vs. actual outcome of one race."""

    race_id: str = Field(..., min_length=1)
    race_name: str = Field(default="")
    race_date: date
    distance_km: float = Field(..., gt=0.0)
    predicted_time_min: float = Field(..., gt=0.0)
    actual_time_min: float = Field(..., gt=0.0)

    @property
    def delta_pct(self) -> float:
        return (self.actual_time_min - self.predicted_time_min) / self.predicted_time_min * 100


class UltraCalibrationInput(CalibrationInput):
    """Race outcome plus the conditions the correction factors key on."""

    surface: Surface = Surface.ROAD
    elevation_gain_m: float = Field(default=0.0, ge=0.0)
    temperature_c: Optional[float] = None
    night_section: bool = False
    aid_station_predicted_min: Optional[float] = Field(None, ge=0.0)
    aid_station_actual_min: Optional[float] = Field(None, ge=0.0)
    personalized_pace: bool = False
    pace_confidence: Optional[PaceConfidence] = None
    fatigue_factor_used: float = Field(
        default=1.0, ge=1.0, description="Ultra fatigue factor in the prediction"
    )


class CalibrationRecord(BaseModel):
    """Audit entry for one calibration on either track."""

    athlete_id: str
    race_id: str
    track: str = Field(..., description="'decay' or 'corrections'")
    distance_band: Optional[DistanceBand] = None
    distance_km: float
    predicted_time_min: float
    actual_time_min: float
    delta_pct: float
    value_before: float
    value_after: float
    quality: float = Field(..., ge=0.0, le=1.0)
    notes: str = ""
    created_at: datetime = Field(default_factory=datetime.now)


class DecayTrend(BaseModel):
    direction: str = Field(..., description="'improving', 'declining' or 'stable'")
    message: str


class DecayCalibrationResult(BaseModel):
    model: PerformanceModel
    record: CalibrationRecord
    implied_decay: float
    alpha: float
    improvement_pct: float
    trend: DecayTrend
    projected_time_min: Optional[float] = Field(
        None, description="Calibrated model's projection for the race distance"
    )


class CorrectionCalibrationResult(BaseModel):
    factors: CorrectionFactors
    record: CalibrationRecord
    actual_fatigue_factor: float
    alpha: float
    updated_fields: List[str] = Field(default_factory=list)
    insights: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class ModelQuality(BaseModel):
    score: float
    category: str = Field(..., description="'excellent', 'good', 'fair' or 'initial'")
    description: str


# ============================================================================
# Helpers
# ============================================================================

def smoothing_alpha(calibration_count: int, cap: Optional[float] = None) -> float:
    """Blend weight for the next update; shrinks as evidence accumulates."""
    if cap is None:
        cap = get_settings().CORRECTION_ALPHA_CAP
    return min(cap, 1 / (calibration_count + 2))


def clamp_decay(decay: float) -> float:
    return max(DECAY_MIN, min(DECAY_MAX, decay))


def decay_quality(delta_pct: float, distance_km: float, calibration_count: int) -> float:
    """Calibration quality for the decay track, bounded to [0.5, 1]."""
    magnitude = abs(delta_pct)
    if magnitude < 5:
        quality = 0.95
    elif magnitude < 10:
        quality = 0.85
    elif magnitude < 15:
        quality = 0.75
    else:
        quality = 0.6

    if distance_km >= MARATHON_KM:
        quality = min(1.0, quality * 1.1)
    elif distance_km < 10:
        quality *= 0.9

    if calibration_count == 0:
        quality *= 0.9

    return max(0.5, min(1.0, quality))


def correction_quality(
    delta_pct: float,
    distance_km: float,
    personalized_pace: bool,
    pace_confidence: Optional[PaceConfidence],
) -> float:
    """Calibration quality for the correction track, bounded to [0.3, 1]."""
    magnitude = abs(delta_pct)
    if magnitude < 3:
        quality = 0.95
    elif magnitude < 5:
        quality = 0.9
    elif magnitude < 10:
        quality = 0.8
    elif magnitude < 15:
        quality = 0.7
    elif magnitude < 25:
        quality = 0.6
    else:
        quality = 0.5

    if distance_km >= 100:
        quality = min(1.0, quality * 1.15)
    elif distance_km >= 50:
        quality *= 1.05

    if personalized_pace:
        quality *= 1.1

    if pace_confidence == PaceConfidence.HIGH:
        quality *= 1.05
    elif pace_confidence == PaceConfidence.LOW:
        quality *= 0.9

    return max(0.3, min(1.0, quality))


def _decay_notes(delta_pct: float, decay_change: float) -> str:
    if delta_pct < -10:
        notes = "Significantly faster than predicted - excellent performance"
    elif delta_pct < -5:
        notes = "Faster than predicted - strong performance"
    elif delta_pct > 10:
        notes = "Slower than predicted - possible fatigue or adverse conditions"
    elif delta_pct > 5:
        notes = "Slower than predicted - consider recovery status"
    else:
        notes = "Close to prediction - model is well calibrated"
    if abs(decay_change) > SIGNIFICANT_DECAY_CHANGE:
        notes += ". Significant model adjustment made."
    return notes


def _blend(current: float, target: float, alpha: float, low: float, high: float) -> float:
    return max(low, min(high, (1 - alpha) * current + alpha * target))


# ============================================================================
# Performance model lifecycle
# ============================================================================

def initialize_performance_model(
    baseline: Optional[BaselineRace] = None, athlete_id: str = "default"
) -> PerformanceModel:
    """Fresh model anchored to the first baseline (or empty without one)."""
    if baseline is None:
        return PerformanceModel(athlete_id=athlete_id)
    return PerformanceModel(
        athlete_id=athlete_id,
        baseline_distance_km=baseline.distance_km,
        baseline_time_min=baseline.time_min,
        baseline_date=baseline.race_date,
        baseline_is_real=baseline.is_real_race,
        performance_decay=DECAY_DEFAULT,
        confidence=baseline.confidence,
    )


def update_baseline_in_model(model: PerformanceModel, baseline: BaselineRace) -> PerformanceModel:
    """Re-anchor the model on a new baseline; the learned decay is kept."""
    if baseline.is_real_race and not model.baseline_is_real:
        logger.info("Baseline upgraded from training inference to race result")
    return model.model_copy(
        update={
            "baseline_distance_km": baseline.distance_km,
            "baseline_time_min": baseline.time_min,
            "baseline_date": baseline.race_date,
            "baseline_is_real": baseline.is_real_race,
            "confidence": max(model.confidence, baseline.confidence),
        }
    )


def predict_time_with_model(model: PerformanceModel, distance_km: float) -> Optional[float]:
    """Project the model's baseline to a distance with the calibrated decay."""
    if not model.has_baseline:
        return None
    ratio = distance_km / model.baseline_distance_km
    return model.baseline_time_min * ratio ** model.performance_decay


def decay_description(decay: float) -> str:
    if decay < 1.055:
        return "Excellent endurance - pace holds well at longer distances"
    if decay < 1.065:
        return "Strong endurance - good pace sustainability"
    if decay < 1.075:
        return "Good endurance - typical pace decline at distance"
    if decay < 1.085:
        return "Building endurance - focus on long runs"
    return "Developing endurance - increase weekly volume gradually"


def decay_trend(current: float, previous: float) -> DecayTrend:
    delta = current - previous
    if abs(delta) < TREND_TOLERANCE:
        return DecayTrend(direction="stable", message="Endurance profile stable")
    change = abs(delta / previous) * 100
    if delta < 0:
        return DecayTrend(
            direction="improving",
            message=f"Endurance improving - decay reduced by {change:.1f}%",
        )
    return DecayTrend(
        direction="declining",
        message=f"Endurance declining - decay increased by {change:.1f}%",
    )


def model_quality(model: PerformanceModel) -> ModelQuality:
    score = 40.0 if model.baseline_is_real else 20.0
    score += min(30, model.calibration_count * 10)
    score += model.confidence * 30

    if model.calibration_count >= 3 and model.baseline_is_real:
        return ModelQuality(
            score=score,
            category="excellent",
            description="High confidence predictions based on multiple race calibrations",
        )
    if model.calibration_count >= 1 and model.baseline_is_real:
        return ModelQuality(
            score=score,
            category="good",
            description="Reliable predictions from real race data",
        )
    if model.has_baseline:
        return ModelQuality(
            score=score,
            category="fair",
            description="Fair predictions from training data - will improve with race results",
        )
    return ModelQuality(
        score=score,
        category="initial",
        description="Initial model - predictions will improve as you log races",
    )


# ============================================================================
# Calibration loop
# ============================================================================

class CalibrationLoop:
    """
    Updates the performance model and correction factors from race outcomes.

    new = (1 - alpha) * old + alpha * observed, alpha = min(cap, 1 / (count + 2))
    """

    def __init__(self, alpha_cap: Optional[float] = None):
        """
        Initialize loop.

        Args:
            alpha_cap: Upper bound on the blend weight (settings default 0.4)
        """
        self.alpha_cap = alpha_cap if alpha_cap is not None else get_settings().CORRECTION_ALPHA_CAP

    def should_calibrate(
        self, model: PerformanceModel, calibration_input: CalibrationInput
    ) -> Tuple[bool, str]:
        """
        Decide whether a race outcome can calibrate the decay exponent.

        Returns:
            (ready, reason)
        """
        if not model.has_baseline:
            return False, "No baseline available"
        if calibration_input.distance_km < MIN_CALIBRATION_KM:
            return False, "Race distance too short for calibration"
        if abs(calibration_input.delta_pct) > MAX_DELTA_PCT:
            return False, "Time deviation too large - possible data error"
        ratio = calibration_input.distance_km / model.baseline_distance_km
        if abs(ratio - 1.0) < MIN_DISTANCE_RATIO_GAP:
            return False, "Race distance matches the baseline - decay cannot be inferred"
        return True, "Ready for calibration"

    def calibrate_decay(
        self, model: PerformanceModel, calibration_input: CalibrationInput
    ) -> Union[DecayCalibrationResult, Unavailable]:
        """
        Blend the decay exponent implied by a race result into the model.

        The implied exponent solves actual = baseline_time * ratio ** decay
        for the model's baseline, so repeating the same outcome converges to
        a fixed value.

        Args:
            model: Current performance model (left untouched)
            calibration_input: Predicted vs. actual outcome

        Returns:
            DecayCalibrationResult, or Unavailable(not_ready)
        """
        ready, reason = self.should_calibrate(model, calibration_input)
        if not ready:
            logger.warning("Decay calibration skipped for %s: %s", calibration_input.race_id, reason)
            return Unavailable(status=EngineStatus.NOT_READY, reason=reason)

        ratio = calibration_input.distance_km / model.baseline_distance_km
        implied = math.log(calibration_input.actual_time_min / model.baseline_time_min) / math.log(
            ratio
        )
        alpha = smoothing_alpha(model.calibration_count, self.alpha_cap)
        old_decay = model.performance_decay
        new_decay = clamp_decay((1 - alpha) * old_decay + alpha * implied)

        delta_pct = calibration_input.delta_pct
        quality = decay_quality(delta_pct, calibration_input.distance_km, model.calibration_count)
        notes = _decay_notes(delta_pct, new_decay - old_decay)

        entry = CalibrationEntry(
            race_id=calibration_input.race_id,
            race_date=calibration_input.race_date,
            distance_km=calibration_input.distance_km,
            predicted_time_min=calibration_input.predicted_time_min,
            actual_time_min=calibration_input.actual_time_min,
            delta_pct=delta_pct,
            decay_before=old_decay,
            decay_after=new_decay,
            quality=quality,
        )
        updated = model.model_copy(
            update={
                "performance_decay": new_decay,
                "calibration_count": model.calibration_count + 1,
                "confidence": min(1.0, model.confidence + 0.05),
                "last_calibration_date": calibration_input.race_date,
                "calibration_history": (model.calibration_history + [entry])[-HISTORY_LIMIT:],
            }
        )

        logger.info(
            "Decay calibrated on %s: %.4f -> %.4f (implied %.4f, alpha %.2f, quality %.2f)",
            calibration_input.race_id,
            old_decay,
            new_decay,
            implied,
            alpha,
            quality,
        )

        return DecayCalibrationResult(
            model=updated,
            record=CalibrationRecord(
                athlete_id=model.athlete_id,
                race_id=calibration_input.race_id,
                track="decay",
                distance_km=calibration_input.distance_km,
                predicted_time_min=calibration_input.predicted_time_min,
                actual_time_min=calibration_input.actual_time_min,
                delta_pct=delta_pct,
                value_before=old_decay,
                value_after=new_decay,
                quality=quality,
                notes=notes,
            ),
            implied_decay=implied,
            alpha=alpha,
            improvement_pct=abs((new_decay - old_decay) / old_decay) * 100,
            trend=decay_trend(new_decay, old_decay),
            projected_time_min=predict_time_with_model(updated, calibration_input.distance_km),
        )

    def calibrate_corrections(
        self,
        factors: Optional[CorrectionFactors],
        ultra_input: UltraCalibrationInput,
        athlete_id: str = "default",
    ) -> CorrectionCalibrationResult:
        """
        Smooth the correction factors of the race's distance band.

        The base fatigue factor is always updated; terrain, night, heat and
        aid-station multipliers only when the condition was present.

        Args:
            factors: Current factors for the band (None starts from neutral)
            ultra_input: Race outcome and conditions
            athlete_id: Owner when no factors exist yet

        Returns:
            CorrectionCalibrationResult
        """
        band = distance_band(ultra_input.distance_km)
        if factors is None:
            factors = CorrectionFactors(athlete_id=athlete_id, distance_band=band)

        predicted = ultra_input.predicted_time_min
        actual = ultra_input.actual_time_min
        delta_pct = ultra_input.delta_pct
        alpha = smoothing_alpha(factors.calibration_count, self.alpha_cap)

        aid_delta = 0.0
        if (
            ultra_input.aid_station_actual_min is not None
            and ultra_input.aid_station_predicted_min is not None
        ):
            aid_delta = ultra_input.aid_station_actual_min - ultra_input.aid_station_predicted_min
        # Fatigue implied by moving time only
        actual_ff = max(
            FATIGUE_FACTOR_MIN,
            min(FATIGUE_FACTOR_MAX, ultra_input.fatigue_factor_used * (actual - aid_delta) / predicted),
        )

        updates = {
            "base_fatigue_factor": _blend(
                factors.base_fatigue_factor, actual_ff, alpha, FATIGUE_FACTOR_MIN, FATIGUE_FACTOR_MAX
            )
        }

        def nudge(current: float, step: float) -> float:
            return _blend(current, current * step, alpha, MULTIPLIER_MIN, MULTIPLIER_MAX)

        mountain = (
            ultra_input.surface == Surface.MOUNTAIN
            or ultra_input.elevation_gain_m / ultra_input.distance_km >= MOUNTAIN_GRADE_M_PER_KM
        )
        if ultra_input.surface == Surface.TRAIL:
            updates["trail_factor"] = nudge(factors.trail_factor, 1.02 if delta_pct > 0 else 0.99)
        if mountain:
            updates["mountain_factor"] = nudge(
                factors.mountain_factor, 1.03 if delta_pct > 0 else 0.98
            )
        if ultra_input.night_section:
            updates["night_factor"] = nudge(factors.night_factor, 1.05 if delta_pct > 10 else 1.0)
        if ultra_input.temperature_c is not None and ultra_input.temperature_c > HEAT_CALIBRATION_C:
            updates["heat_factor"] = nudge(factors.heat_factor, 1.03 if delta_pct > 5 else 1.0)
        if (
            ultra_input.aid_station_actual_min is not None
            and ultra_input.aid_station_predicted_min
        ):
            ratio = ultra_input.aid_station_actual_min / ultra_input.aid_station_predicted_min
            updates["aid_station_multiplier"] = _blend(
                factors.aid_station_multiplier, ratio, alpha, MULTIPLIER_MIN, MULTIPLIER_MAX
            )

        quality = correction_quality(
            delta_pct,
            ultra_input.distance_km,
            ultra_input.personalized_pace,
            ultra_input.pace_confidence,
        )
        history = factors.race_history + [
            {
                "predicted_time_min": predicted,
                "actual_time_min": actual,
                "delta_pct": delta_pct,
                "quality": quality,
            }
        ]

        data = factors.model_dump()
        data.update(updates)
        data.update(
            {
                "calibration_count": factors.calibration_count + 1,
                "confidence": min(CONFIDENCE_CAP, factors.confidence + quality * 5),
                "last_quality": quality,
                "race_history": history,
            }
        )
        updated = CorrectionFactors(**data)

        insights, recommendations = self._correction_insights(
            ultra_input, delta_pct, actual_ff, aid_delta
        )
        logger.info(
            "Correction factors for %s calibrated on %s (%s, quality %.2f)",
            band.value,
            ultra_input.race_id,
            ", ".join(sorted(updates)),
            quality,
        )

        return CorrectionCalibrationResult(
            factors=updated,
            record=CalibrationRecord(
                athlete_id=updated.athlete_id,
                race_id=ultra_input.race_id,
                track="corrections",
                distance_band=band,
                distance_km=ultra_input.distance_km,
                predicted_time_min=predicted,
                actual_time_min=actual,
                delta_pct=delta_pct,
                value_before=factors.base_fatigue_factor,
                value_after=updated.base_fatigue_factor,
                quality=quality,
                notes="; ".join(insights),
            ),
            actual_fatigue_factor=actual_ff,
            alpha=alpha,
            updated_fields=sorted(updates),
            insights=insights,
            recommendations=recommendations,
        )

    def _correction_insights(
        self,
        ultra_input: UltraCalibrationInput,
        delta_pct: float,
        actual_ff: float,
        aid_delta: float,
    ) -> Tuple[List[str], List[str]]:
        insights = []
        recommendations = []

        if delta_pct > 20:
            insights.append(
                f"Prediction was {delta_pct:.1f}% faster than actual - significant underestimate"
            )
            recommendations.append(
                "Future predictions for similar distances will be adjusted upward"
            )
            if ultra_input.distance_km > 80:
                insights.append("Ultra fatigue accumulated faster than the model expected")
                recommendations.append("Consider more conservative pacing in first half")
        elif delta_pct > 10:
            insights.append(f"Prediction was {delta_pct:.1f}% optimistic")
            recommendations.append("Model will increase fatigue factor for this distance band")
        elif delta_pct < -10:
            insights.append(f"You finished {abs(delta_pct):.1f}% faster than predicted!")
            recommendations.append("Model will adjust fatigue curve - you handle ultras well")
        else:
            insights.append(f"Prediction within {abs(delta_pct):.1f}% - excellent accuracy")

        if actual_ff > ultra_input.fatigue_factor_used * 1.2:
            insights.append(
                f"Actual fatigue factor {actual_ff:.2f} exceeded the predicted "
                f"{ultra_input.fatigue_factor_used:.2f}"
            )
        if ultra_input.night_section and delta_pct > 15:
            insights.append("Night section likely cost more time than expected")
        if (
            ultra_input.temperature_c is not None
            and ultra_input.temperature_c > HEAT_CALIBRATION_C
            and delta_pct > 10
        ):
            insights.append(
                f"Heat ({ultra_input.temperature_c:.0f}°C) likely contributed to the slower time"
            )
        if ultra_input.aid_station_predicted_min and (
            abs(aid_delta) / ultra_input.aid_station_predicted_min > 0.3
        ):
            insights.append(
                f"Aid station time differed by {aid_delta:+.0f} min from the estimate"
            )

        return insights, recommendations
