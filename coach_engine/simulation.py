"""
Race-day physiological simulation.

Deterministic per-kilometre model of glycogen depletion, fatigue
accumulation and hydration/sodium balance. Three pacing strategies are
simulated side by side, or a single run follows explicit pacing segments.
Derived outputs are the hydration state, GI distress risk, the finish-time
performance penalty and coaching insights.
"""

import logging
import math
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from coach_engine.validator import InputValidator


logger = logging.getLogger(__name__)

GLYCOGEN_START = 100.0
BASE_GLYCOGEN_BURN = 2.5  # % per km
BASE_FATIGUE_RATE = 1.2  # % per km
BONK_THRESHOLD = 25.0
BONK_PENALTY_SCALE = 5.0
EXHAUSTION_FATIGUE = 95.0
EXHAUSTION_GLYCOGEN = 5.0

BASE_SWEAT_RATE_ML_HR = 600.0
SODIUM_MG_PER_ML_SWEAT = 0.9
HYDRATION_RESERVE_ML = 2000.0
HYDRATION_EXPONENT = 1.2
SODIUM_TOLERANCE_MG = 5000.0
SODIUM_MOD_CAP = 0.15

DEFAULT_INTENSITY_PCT = 70.0
STRATEGY_EARLY_PHASE = 0.3


class Strategy(str, Enum):
    """Canonical pacing strategies."""
    CONSERVATIVE = "conservative"
    TARGET = "target"
    AGGRESSIVE = "aggressive"


# (pace factor, fatigue factor, energy burn) for the early phase and the rest
STRATEGY_CURVES: Dict[Strategy, Tuple[Tuple[float, float, float], Tuple[float, float, float]]] = {
    Strategy.CONSERVATIVE: ((0.96, 0.90, 0.90), (1.01, 0.95, 1.00)),
    Strategy.TARGET: ((1.0, 1.0, 1.0), (1.0, 1.0, 1.0)),
    Strategy.AGGRESSIVE: ((1.05, 1.10, 1.12), (0.99, 1.25, 1.05)),
}


def strategy_factors(strategy: Strategy, progress: float) -> Tuple[float, float, float]:
    """(pace, fatigue, energy burn) multipliers at a point of the race."""
    early, late = STRATEGY_CURVES[strategy]
    return early if progress < STRATEGY_EARLY_PHASE else late


# ============================================================================
# Inputs and results
# ============================================================================

class NutritionInputs(BaseModel):
    """Hourly race-day intake."""

    fueling_g_per_hr: float = Field(default=60.0, description="Carbohydrate intake (g/h)")
    fluid_ml_per_hr: float = Field(default=600.0, description="Fluid intake (ml/h)")
    sodium_mg_per_hr: float = Field(default=500.0, description="Sodium intake (mg/h)")


class PacingSegment(BaseModel):
    """Target pace up to the segment's end distance."""

    distance_km: float = Field(..., gt=0.0, description="Segment end (cumulative km)")
    target_pace_min_per_km: float = Field(..., gt=0.0)


class EnergyState(BaseModel):
    """Glycogen and fatigue at one kilometre mark."""

    distance_km: int = Field(..., ge=0)
    glycogen_pct: float = Field(..., ge=0.0, le=100.0)
    fatigue_pct: float = Field(..., ge=0.0, le=100.0)


class EnergyDynamics(BaseModel):
    """Per-strategy energy time series and time to exhaustion."""

    states: Dict[Strategy, List[EnergyState]]
    time_to_exhaustion_km: Dict[Strategy, float]
    selected_strategy: Strategy = Strategy.TARGET
    pacing_segments_used: bool = False

    @property
    def selected(self) -> List[EnergyState]:
        return self.states[self.selected_strategy]


class HydrationState(BaseModel):
    hydration_pct: float = Field(..., ge=0.0, le=100.0)
    sodium_balance_mg: float
    sweat_rate_ml_per_hr: float = Field(..., ge=0.0)


class GIRiskLevel(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    VERY_HIGH = "very-high"


class GIRiskAssessment(BaseModel):
    risk_pct: float = Field(..., ge=0.0, le=100.0)
    level: GIRiskLevel
    message: str


class ImpactStatus(str, Enum):
    OPTIMAL = "optimal"
    ACCEPTABLE = "acceptable"
    WARNING = "warning"
    DANGER = "danger"


class PerformanceImpact(BaseModel):
    """Finish-time penalty from heat, hydration, fueling and fatigue."""

    total_penalty_pct: int = Field(..., ge=0)
    base_time_min: float
    adjusted_time_min: float
    time_delta_min: float
    factors: Dict[str, int]
    status: ImpactStatus


class PhysiologicalSimulation(BaseModel):
    """Complete simulation output."""

    distance_km: float
    duration_min: float
    temperature_c: float
    humidity_pct: float
    readiness: float
    nutrition: NutritionInputs
    energy: EnergyDynamics
    hydration: HydrationState
    gi_risk: GIRiskAssessment
    performance_impact: PerformanceImpact
    insights: List[str] = Field(default_factory=list)


# ============================================================================
# Pure helpers
# ============================================================================

def simple_heat_index(temperature_c: float, humidity_pct: float) -> float:
    return temperature_c + humidity_pct / 100 * 5


def sweat_rate(temperature_c: float, humidity_pct: float) -> float:
    """Sweat rate in ml/h, 600 ml/h scaled up by the heat index above 20."""
    heat_index = simple_heat_index(temperature_c, humidity_pct)
    return BASE_SWEAT_RATE_ML_HR * max(1.0, 1 + (heat_index - 20) / 30)


def hydration_state(
    duration_min: float,
    fluid_ml_per_hr: float,
    sodium_mg_per_hr: float,
    temperature_c: float,
    humidity_pct: float,
) -> HydrationState:
    """Hydration and sodium balance at the finish."""
    rate = sweat_rate(temperature_c, humidity_pct)
    hours = duration_min / 60
    sweat_loss = rate * hours
    balance = fluid_ml_per_hr * hours - sweat_loss
    hydration = max(0.0, min(100.0, 100 + balance / HYDRATION_RESERVE_ML * 100))
    sodium_balance = sodium_mg_per_hr * hours - sweat_loss * SODIUM_MG_PER_ML_SWEAT
    return HydrationState(
        hydration_pct=round(hydration, 1),
        sodium_balance_mg=round(sodium_balance),
        sweat_rate_ml_per_hr=round(rate),
    )


def gi_risk(
    fueling_g_per_hr: float,
    heat_index: float,
    intensity_pct: float,
    fluid_ml_per_hr: float,
) -> GIRiskAssessment:
    """
    GI distress risk from fueling rate, heat, intensity and fluid volume.

    Returns:
        GIRiskAssessment with risk clamped to 0-100
    """
    risk = 0.0
    if fueling_g_per_hr > 90:
        risk += 30
    elif fueling_g_per_hr > 70:
        risk += 15

    if heat_index > 30:
        risk += 25
    elif heat_index > 25:
        risk += 10

    if intensity_pct > 85:
        risk += 20
    elif intensity_pct > 75:
        risk += 10

    if fluid_ml_per_hr > 1000:
        risk += 15
    elif fluid_ml_per_hr > 800:
        risk += 5

    risk = max(0.0, min(100.0, risk))
    if risk < 20:
        level = GIRiskLevel.LOW
        message = "Low GI distress risk. Current nutrition strategy looks solid."
    elif risk < 40:
        level = GIRiskLevel.MODERATE
        message = "Moderate GI risk. Monitor fueling and adjust if discomfort occurs."
    elif risk < 70:
        level = GIRiskLevel.HIGH
        message = "High GI risk. Consider reducing fueling rate or testing in training."
    else:
        level = GIRiskLevel.VERY_HIGH
        message = "Very high GI risk. Strong recommendation to reduce fueling/fluid intake."

    return GIRiskAssessment(risk_pct=round(risk), level=level, message=message)


def performance_impact(
    base_time_min: float,
    temperature_c: float,
    hydration_pct: float,
    fueling_g_per_hr: float,
    fatigue_pct: float,
    humidity_pct: Optional[float] = None,
) -> PerformanceImpact:
    """
    Finish-time penalty from thresholded heat, hydration, fueling and fatigue terms.

    Args:
        base_time_min: Predicted time before penalties
        temperature_c: Race temperature
        hydration_pct: Finish hydration
        fueling_g_per_hr: Carbohydrate intake
        fatigue_pct: Average fatigue over the race
        humidity_pct: Relative humidity

    Returns:
        PerformanceImpact
    """
    heat = 0.0
    if temperature_c > 20:
        heat = (temperature_c - 20) / 10 * 0.03
        if humidity_pct and humidity_pct > 70:
            heat += 0.02

    hydration = (90 - hydration_pct) / 5 * 0.02 if hydration_pct < 90 else 0.0
    fueling = (40 - fueling_g_per_hr) / 40 * 0.06 if fueling_g_per_hr < 40 else 0.0
    fatigue = (fatigue_pct - 80) / 20 * 0.05 if fatigue_pct > 80 else 0.0

    total_pct = round((heat + hydration + fueling + fatigue) * 100)
    adjusted = base_time_min * (1 + total_pct / 100)

    if total_pct <= 2:
        status = ImpactStatus.OPTIMAL
    elif total_pct <= 5:
        status = ImpactStatus.ACCEPTABLE
    elif total_pct <= 10:
        status = ImpactStatus.WARNING
    else:
        status = ImpactStatus.DANGER

    return PerformanceImpact(
        total_penalty_pct=total_pct,
        base_time_min=base_time_min,
        adjusted_time_min=round(adjusted, 1),
        time_delta_min=round(adjusted - base_time_min, 1),
        factors={
            "heat": round(heat * 100),
            "hydration": round(hydration * 100),
            "fueling": round(fueling * 100),
            "fatigue": round(fatigue * 100),
        },
        status=status,
    )


def pace_intensity(distance_km: float, segments: Sequence[PacingSegment], avg_pace: float) -> float:
    """Relative intensity of the segment covering ``distance_km`` (faster than average > 1)."""
    previous_end = 0.0
    for segment in segments:
        if previous_end <= distance_km <= segment.distance_km:
            return avg_pace / segment.target_pace_min_per_km
        previous_end = segment.distance_km
    return 1.0


# ============================================================================
# Simulator
# ============================================================================

class PhysiologicalSimulator:
    """
    Per-kilometre glycogen / fatigue / hydration simulator.

    Each kilometre:
    - glycogen -= 2.5 × burn × pace × heat × readiness, += fueling replenishment
    - fatigue += 1.2 × pace × strategy fatigue × heat × humidity × readiness
      / hydration^1.2 / sodium modifier, plus ((25 − glycogen)/25)² × 5 once
      glycogen is below 25%
    - time to exhaustion is the first km with fatigue ≥ 95 or glycogen ≤ 5

    Inputs are clamped to physiological ranges at entry.
    """

    def __init__(self, validator: Optional[InputValidator] = None):
        self.validator = validator or InputValidator()

    def simulate(
        self,
        distance_km: float,
        duration_min: float,
        nutrition: NutritionInputs,
        temperature_c: float,
        humidity_pct: float,
        readiness: float,
        strategy: Optional[Strategy] = None,
        pacing_segments: Optional[Sequence[PacingSegment]] = None,
    ) -> PhysiologicalSimulation:
        """
        Run the race-day simulation.

        Args:
            distance_km: Race distance
            duration_min: Predicted finish time
            nutrition: Hourly fueling, fluid and sodium intake
            temperature_c: Race temperature
            humidity_pct: Relative humidity
            readiness: Readiness score (0-100)
            strategy: Strategy whose run drives the derived outputs (default target)
            pacing_segments: Explicit pacing; replaces the strategy curves with one run

        Returns:
            PhysiologicalSimulation
        """
        if distance_km <= 0:
            raise ValueError("distance_km must be positive")

        clamp = self.validator.clamp_input
        temperature_c = clamp("temperature_c", temperature_c)
        humidity_pct = clamp("humidity_pct", humidity_pct)
        readiness = clamp("readiness", readiness)
        pace = clamp("pace_min_per_km", duration_min / distance_km)
        duration_min = pace * distance_km
        nutrition = NutritionInputs(
            fueling_g_per_hr=clamp("fueling_g_per_hr", nutrition.fueling_g_per_hr),
            fluid_ml_per_hr=clamp("fluid_ml_per_hr", nutrition.fluid_ml_per_hr),
            sodium_mg_per_hr=clamp("sodium_mg_per_hr", nutrition.sodium_mg_per_hr),
        )

        if pacing_segments:
            states, tte = self._run(
                distance_km, duration_min, nutrition, temperature_c, humidity_pct,
                readiness, segments=pacing_segments,
            )
            energy = EnergyDynamics(
                states={Strategy.TARGET: states},
                time_to_exhaustion_km={Strategy.TARGET: tte},
                selected_strategy=Strategy.TARGET,
                pacing_segments_used=True,
            )
        else:
            all_states = {}
            all_tte = {}
            for candidate in Strategy:
                all_states[candidate], all_tte[candidate] = self._run(
                    distance_km, duration_min, nutrition, temperature_c, humidity_pct,
                    readiness, strategy=candidate,
                )
            energy = EnergyDynamics(
                states=all_states,
                time_to_exhaustion_km=all_tte,
                selected_strategy=strategy or Strategy.TARGET,
            )

        hydration = hydration_state(
            duration_min,
            nutrition.fluid_ml_per_hr,
            nutrition.sodium_mg_per_hr,
            temperature_c,
            humidity_pct,
        )
        risk = gi_risk(
            nutrition.fueling_g_per_hr,
            simple_heat_index(temperature_c, humidity_pct),
            DEFAULT_INTENSITY_PCT,
            nutrition.fluid_ml_per_hr,
        )
        selected = energy.selected
        avg_fatigue = sum(s.fatigue_pct for s in selected) / len(selected)
        impact = performance_impact(
            duration_min,
            temperature_c,
            hydration.hydration_pct,
            nutrition.fueling_g_per_hr,
            avg_fatigue,
            humidity_pct,
        )

        logger.debug(
            "Simulated %.1f km: TTE %s, penalty %d%%, GI %s",
            distance_km,
            energy.time_to_exhaustion_km,
            impact.total_penalty_pct,
            risk.level.value,
        )

        return PhysiologicalSimulation(
            distance_km=distance_km,
            duration_min=duration_min,
            temperature_c=temperature_c,
            humidity_pct=humidity_pct,
            readiness=readiness,
            nutrition=nutrition,
            energy=energy,
            hydration=hydration,
            gi_risk=risk,
            performance_impact=impact,
            insights=self._insights(energy, hydration, risk, impact, nutrition),
        )

    def _run(
        self,
        distance_km: float,
        duration_min: float,
        nutrition: NutritionInputs,
        temperature_c: float,
        humidity_pct: float,
        readiness: float,
        strategy: Strategy = Strategy.TARGET,
        segments: Optional[Sequence[PacingSegment]] = None,
    ) -> Tuple[List[EnergyState], float]:
        """Simulate one run; returns the per-km states and time to exhaustion (km)."""
        avg_pace = duration_min / distance_km
        rate = sweat_rate(temperature_c, humidity_pct)

        heat_multiplier = 1 + max(0.0, (temperature_c - 20) / 10) * 0.03
        humidity_bonus = 0.02 if humidity_pct > 70 else 0.0
        readiness_multiplier = 1 + max(0.0, (70 - readiness) / 500)

        glycogen = GLYCOGEN_START
        fatigue = 0.0
        exhaustion_km: Optional[float] = None
        states = []

        for km in range(math.ceil(distance_km) + 1):
            progress = km / distance_km
            elapsed_hours = progress * duration_min / 60

            if segments:
                intensity = pace_intensity(km, segments, avg_pace)
                pace_factor, fatigue_factor, burn_factor = intensity, 1.0, 1.0
                km_pace = avg_pace / intensity
            else:
                pace_factor, fatigue_factor, burn_factor = strategy_factors(strategy, progress)
                km_pace = avg_pace

            sweat_loss = rate * elapsed_hours
            fluid_in = nutrition.fluid_ml_per_hr * elapsed_hours
            hydration_pct = max(
                0.0, min(100.0, 100 + (fluid_in - sweat_loss) / HYDRATION_RESERVE_ML * 100)
            )
            # Floor keeps a fully dehydrated runner finite
            hydration_mod = max(0.05, hydration_pct / 100) ** HYDRATION_EXPONENT

            sodium_balance = (
                nutrition.sodium_mg_per_hr * elapsed_hours
                - sweat_loss * SODIUM_MG_PER_ML_SWEAT
            )
            sodium_mod = 1 - min(abs(sodium_balance) / SODIUM_TOLERANCE_MG, SODIUM_MOD_CAP)

            burn = (
                BASE_GLYCOGEN_BURN
                * burn_factor
                * pace_factor
                * heat_multiplier
                * readiness_multiplier
            )
            # g/h converted to glycogen % for the time spent on this km
            replenish = nutrition.fueling_g_per_hr / 60 * km_pace / 4
            glycogen = max(0.0, min(GLYCOGEN_START, glycogen - burn + replenish))

            if km > 0:
                fatigue += (
                    BASE_FATIGUE_RATE
                    * pace_factor
                    * fatigue_factor
                    * heat_multiplier
                    * (1 + humidity_bonus)
                    * readiness_multiplier
                    / hydration_mod
                    / sodium_mod
                )
                if glycogen < BONK_THRESHOLD:
                    fatigue += ((BONK_THRESHOLD - glycogen) / BONK_THRESHOLD) ** 2 * BONK_PENALTY_SCALE
                fatigue = min(100.0, fatigue)

            states.append(
                EnergyState(
                    distance_km=km,
                    glycogen_pct=round(glycogen, 1),
                    fatigue_pct=round(fatigue, 1),
                )
            )

            if exhaustion_km is None and (
                fatigue >= EXHAUSTION_FATIGUE or glycogen <= EXHAUSTION_GLYCOGEN
            ):
                exhaustion_km = float(km)

        return states, exhaustion_km if exhaustion_km is not None else distance_km

    def _insights(
        self,
        energy: EnergyDynamics,
        hydration: HydrationState,
        risk: GIRiskAssessment,
        impact: PerformanceImpact,
        nutrition: NutritionInputs,
    ) -> List[str]:
        insights = []
        tte = energy.time_to_exhaustion_km

        if Strategy.CONSERVATIVE in tte and Strategy.AGGRESSIVE in tte:
            diff = tte[Strategy.CONSERVATIVE] - tte[Strategy.AGGRESSIVE]
            if diff > 5:
                insights.append(
                    f"Conservative start extends time-to-exhaustion by +{round(diff)} km "
                    "compared to aggressive."
                )

            delta = tte[energy.selected_strategy] - tte[Strategy.TARGET]
            if energy.selected_strategy == Strategy.AGGRESSIVE and delta < -5:
                insights.append(
                    f"Aggressive start shortens TTE by {abs(round(delta))} km. "
                    "High risk of bonking - ensure adequate fueling."
                )
            elif energy.selected_strategy == Strategy.CONSERVATIVE and delta > 5:
                insights.append(
                    f"Conservative pacing extends endurance by +{round(delta)} km. "
                    "Ideal for hot conditions or ultras."
                )

        final_glycogen = energy.selected[-1].glycogen_pct
        fueling = nutrition.fueling_g_per_hr
        if final_glycogen > 20:
            insights.append(
                f"Current fueling ({fueling:g} g/h) maintains {round(final_glycogen)}% "
                "glycogen at finish."
            )
        elif final_glycogen < 10:
            insights.append(
                "Warning: Glycogen stores critically low at finish. Increase fueling to "
                f"{fueling + 15:g}-{fueling + 25:g} g/h."
            )

        if hydration.hydration_pct > 90:
            insights.append(
                f"Hydration {round(hydration.hydration_pct)}% prevents cardiac drift; "
                f"GI risk remains {risk.level.value}."
            )
        elif hydration.hydration_pct < 85:
            recommended = round(nutrition.fluid_ml_per_hr + (90 - hydration.hydration_pct) * 10)
            insights.append(
                f"Hydration {round(hydration.hydration_pct)}% may cause performance decline. "
                f"Increase to {recommended} ml/hr."
            )

        if impact.total_penalty_pct <= 3:
            insights.append(
                f"Overall conditions add +{impact.total_penalty_pct}% time penalty "
                f"(~{round(impact.time_delta_min)} min)."
            )
        else:
            insights.append(
                f"Challenging conditions add +{impact.total_penalty_pct}% penalty. "
                "Focus on heat and hydration management."
            )

        if impact.factors["heat"] > 4:
            insights.append(
                f"Heat penalty is {impact.factors['heat']}%. Pour water on head/neck and "
                "reduce intensity in exposed sections."
            )

        if risk.level in (GIRiskLevel.HIGH, GIRiskLevel.VERY_HIGH):
            insights.append(risk.message)

        if hydration.sodium_balance_mg < -500:
            insights.append(
                f"Sodium deficit of {abs(round(hydration.sodium_balance_mg))} mg may cause "
                "cramping. Increase electrolyte intake."
            )

        return insights
