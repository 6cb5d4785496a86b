"""
Ultra-distance fatigue model.

Estimates how much slower than a flat-effort projection an athlete will
run beyond the marathon, from distance, time on feet, climbing, heat,
night sections and inexperience at the distance. Learned per-band
correction factors scale the individual penalties once the athlete has
raced the band before.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field

from coach_engine.schemas import CorrectionFactors, DistanceBand, Surface


MARATHON_KM = 42.195
ULTRA_THRESHOLD_KM = 50.0
EXTREME_ULTRA_KM = 100.0

BASE_FATIGUE_RATE = 0.008
ULTRA_FATIGUE_EXPONENT = 1.35
EXTREME_ULTRA_EXPONENT = 1.5

TIME_FATIGUE_THRESHOLD_HOURS = 6.0
TIME_FATIGUE_RATE = 0.02

ELEVATION_FATIGUE_PER_1000M = 0.08
STEEP_GRADE = 0.05

HEAT_THRESHOLD_C = 20.0
HEAT_FATIGUE_RATE = 0.015
HUMIDITY_THRESHOLD = 60.0
HUMIDITY_FATIGUE_RATE = 0.008

NIGHT_PACE_PENALTY = 0.12
NIGHT_TECHNICAL_PENALTY = 0.18

GLYCOGEN_DEPLETION_RATE = 0.012

INEXPERIENCE_PENALTY_BASE = 0.15
INEXPERIENCE_DECAY = 0.7

MAX_COMBINED_FATIGUE = 0.6

COMPONENT_WEIGHTS = {
    "distance": 0.30,
    "time": 0.25,
    "elevation": 0.20,
    "heat": 0.15,
    "night": 0.05,
    "inexperience": 0.05,
}

# Upper bound (km) of each distance band
DISTANCE_BANDS = (
    (MARATHON_KM, DistanceBand.MARATHON),
    (55.0, DistanceBand.FIFTY_K),
    (85.0, DistanceBand.FIFTY_MILE),
    (110.0, DistanceBand.HUNDRED_K),
    (170.0, DistanceBand.HUNDRED_MILE),
)

# Mountain terrain when climbing exceeds this many metres per km
MOUNTAIN_GRADE_M_PER_KM = 40.0


def distance_band(distance_km: float) -> DistanceBand:
    """Correction-factor band for a race distance."""
    for upper, band in DISTANCE_BANDS:
        if distance_km <= upper:
            return band
    return DistanceBand.MULTI_DAY


class UltraFatigueResult(BaseModel):
    """Breakdown of accumulated ultra fatigue."""

    fatigue_factor: float = Field(..., ge=1.0, le=1.0 + MAX_COMBINED_FATIGUE)
    pace_decay_pct: float = Field(..., ge=0.0)
    glycogen_depletion_pct: float = Field(..., ge=0.0, le=100.0)
    night_penalty_pct: float = Field(..., ge=0.0)
    heat_accumulation_factor: float = Field(..., ge=1.0)
    confidence: float = Field(..., ge=20.0, le=95.0)
    breakdown: Dict[str, float] = Field(default_factory=dict)


class UltraFinishEstimate(BaseModel):
    """Adjusted finish time and the penalties that produced it."""

    base_time_min: float
    adjusted_time_min: float
    fatigue_penalty_min: float
    aid_station_min: float
    night_penalty_min: float
    weather_penalty_min: float
    total_adjustment_pct: float
    band: DistanceBand
    corrections_applied: bool = False


def _distance_fatigue(distance_km: float) -> float:
    marathon_fatigue = MARATHON_KM * BASE_FATIGUE_RATE * 0.5
    if distance_km <= MARATHON_KM:
        return distance_km * BASE_FATIGUE_RATE * 0.5

    if distance_km <= ULTRA_THRESHOLD_KM:
        return marathon_fatigue + (distance_km - MARATHON_KM) * BASE_FATIGUE_RATE

    ultra_fatigue = (ULTRA_THRESHOLD_KM - MARATHON_KM) * BASE_FATIGUE_RATE
    if distance_km <= EXTREME_ULTRA_KM:
        portion = distance_km - ULTRA_THRESHOLD_KM
        return marathon_fatigue + ultra_fatigue + (portion / 50) ** ULTRA_FATIGUE_EXPONENT * 0.15

    hundred_k_fatigue = (
        ((EXTREME_ULTRA_KM - ULTRA_THRESHOLD_KM) / 50) ** ULTRA_FATIGUE_EXPONENT * 0.15
    )
    beyond = distance_km - EXTREME_ULTRA_KM
    return (
        marathon_fatigue
        + ultra_fatigue
        + hundred_k_fatigue
        + (beyond / 60) ** EXTREME_ULTRA_EXPONENT * 0.20
    )


def _time_fatigue(hours: float) -> float:
    if hours <= TIME_FATIGUE_THRESHOLD_HOURS:
        return hours * TIME_FATIGUE_RATE * 0.3
    base = TIME_FATIGUE_THRESHOLD_HOURS * TIME_FATIGUE_RATE * 0.3
    return base + ((hours - TIME_FATIGUE_THRESHOLD_HOURS) / 10) ** 1.3 * 0.12


def _elevation_fatigue(elevation_gain_m: float, distance_km: float) -> float:
    base = elevation_gain_m / 1000 * ELEVATION_FATIGUE_PER_1000M
    steep = elevation_gain_m / (distance_km * 1000) > STEEP_GRADE
    return base * (1.2 if steep else 1.0)


def _heat_fatigue(temperature_c: float, humidity: float, hours: float) -> float:
    heat = 0.0
    if temperature_c > HEAT_THRESHOLD_C:
        heat += (temperature_c - HEAT_THRESHOLD_C) * HEAT_FATIGUE_RATE
    if humidity > HUMIDITY_THRESHOLD:
        heat += (humidity - HUMIDITY_THRESHOLD) * HUMIDITY_FATIGUE_RATE * 0.01
    return heat * min(2.0, 1 + hours * 0.03)


def _night_penalty(distance_km: float) -> float:
    if distance_km < ULTRA_THRESHOLD_KM:
        return NIGHT_PACE_PENALTY * 0.5
    return NIGHT_PACE_PENALTY + (NIGHT_TECHNICAL_PENALTY * 0.3 if distance_km > 80 else 0.0)


def _inexperience_penalty(distance_km: float, longest_km: float) -> float:
    if longest_km >= distance_km:
        return 0.0
    gap_ratio = (distance_km - longest_km) / distance_km
    return INEXPERIENCE_PENALTY_BASE * gap_ratio ** INEXPERIENCE_DECAY


def _experience_discount(distance_km: float, longest_km: float, ultra_count: int) -> float:
    """Fatigue discount for athletes who have already raced long."""
    if longest_km <= MARATHON_KM:
        return 1.0

    ratio = longest_km / distance_km
    if ratio >= 1.2:
        discount = 0.50
    elif ratio >= 1.0:
        discount = 0.60
    elif ratio >= 0.8:
        discount = 0.75
    elif ratio >= 0.6:
        discount = 0.85
    elif longest_km > ULTRA_THRESHOLD_KM:
        discount = 0.90
    else:
        discount = 1.0

    if ultra_count >= 10:
        discount *= 0.85
    elif ultra_count >= 5:
        discount *= 0.90
    elif ultra_count >= 3:
        discount *= 0.95

    return max(0.35, discount)


def _confidence(distance_km: float, longest_km: float, readiness: float) -> float:
    confidence = 80.0
    ratio = longest_km / distance_km
    if ratio >= 1.0:
        confidence += 15
    elif ratio >= 0.7:
        confidence += 5
    elif ratio >= 0.5:
        confidence -= 10
    else:
        confidence -= 25

    if distance_km > 100:
        confidence -= 10
    if distance_km > 160:
        confidence -= 15
    if readiness < 60:
        confidence -= 10
    return max(20.0, min(95.0, confidence))


def ultra_fatigue(
    distance_km: float,
    elapsed_hours: float,
    elevation_gain_m: float = 0.0,
    temperature_c: float = 20.0,
    humidity: float = 50.0,
    readiness: float = 75.0,
    longest_ultra_km: float = MARATHON_KM,
    ultra_count: int = 0,
    night_section: bool = False,
) -> UltraFatigueResult:
    """
    Combined ultra fatigue for a race.

    Weighted components (distance 30%, time 25%, elevation 20%, heat 15%,
    night 5%, inexperience 5%) are scaled by readiness, discounted for
    experience, and capped so the fatigue factor never exceeds 1.6.

    Returns:
        UltraFatigueResult
    """
    components = {
        "distance": _distance_fatigue(distance_km),
        "time": _time_fatigue(elapsed_hours),
        "elevation": _elevation_fatigue(elevation_gain_m, distance_km),
        "heat": _heat_fatigue(temperature_c, humidity, elapsed_hours),
        "night": _night_penalty(distance_km) if night_section else 0.0,
        "inexperience": _inexperience_penalty(distance_km, longest_ultra_km),
    }

    readiness_multiplier = 1 + max(0.0, (75 - readiness) / 200)
    base = sum(components[k] * w for k, w in COMPONENT_WEIGHTS.items()) * readiness_multiplier
    combined = base * _experience_discount(distance_km, longest_ultra_km, ultra_count)

    fatigue_factor = 1 + min(combined, MAX_COMBINED_FATIGUE)
    glycogen = min(
        100.0, distance_km * GLYCOGEN_DEPLETION_RATE * 100 * (1 + components["heat"] * 0.5)
    )

    return UltraFatigueResult(
        fatigue_factor=fatigue_factor,
        pace_decay_pct=(fatigue_factor - 1) * 100,
        glycogen_depletion_pct=glycogen,
        night_penalty_pct=components["night"] * 100,
        heat_accumulation_factor=1 + components["heat"],
        confidence=_confidence(distance_km, longest_ultra_km, readiness),
        breakdown={k: v * 100 for k, v in components.items()},
    )


def estimate_ultra_finish_time(
    base_time_min: float,
    distance_km: float,
    elevation_gain_m: float = 0.0,
    temperature_c: float = 20.0,
    humidity: float = 50.0,
    readiness: float = 75.0,
    night_section: Optional[bool] = None,
    aid_station_count: Optional[int] = None,
    aid_station_avg_min: Optional[float] = None,
    longest_ultra_km: float = MARATHON_KM,
    surface: Surface = Surface.ROAD,
    corrections: Optional[CorrectionFactors] = None,
) -> UltraFinishEstimate:
    """
    Adjust a flat-effort finish time for ultra fatigue and logistics.

    Night running defaults to races over 80 km and aid stations to one
    every 10 km. When learned correction factors for the distance band are
    supplied they scale the fatigue, night, weather and aid-station
    penalties.

    Args:
        base_time_min: Unadjusted finish time
        distance_km: Race distance
        elevation_gain_m: Total climbing
        temperature_c: Expected temperature
        humidity: Expected relative humidity
        readiness: Readiness score (0-100)
        night_section: Whether part of the race is run at night
        aid_station_count: Number of aid stations
        aid_station_avg_min: Average stop per aid station
        longest_ultra_km: Athlete's longest completed race
        surface: Dominant race surface
        corrections: Learned correction factors for the band

    Returns:
        UltraFinishEstimate
    """
    if night_section is None:
        night_section = distance_km > 80
    if aid_station_count is None:
        aid_station_count = int(distance_km // 10)

    fatigue = ultra_fatigue(
        distance_km=distance_km,
        elapsed_hours=base_time_min / 60,
        elevation_gain_m=elevation_gain_m,
        temperature_c=temperature_c,
        humidity=humidity,
        readiness=readiness,
        longest_ultra_km=longest_ultra_km,
        night_section=night_section,
    )

    fatigue_penalty = base_time_min * (fatigue.fatigue_factor - 1)
    if aid_station_avg_min is None:
        aid_station_avg_min = 5.0 if distance_km > 100 else 4.0 if distance_km > 50 else 3.0
    aid_minutes = aid_station_count * aid_station_avg_min
    night_penalty = (
        base_time_min * fatigue.night_penalty_pct / 100 if night_section else 0.0
    )
    weather_penalty = base_time_min * (fatigue.heat_accumulation_factor - 1) * 0.5

    if corrections is not None:
        terrain = 1.0
        if surface == Surface.TRAIL:
            terrain = corrections.trail_factor
        elif (
            surface == Surface.MOUNTAIN
            or elevation_gain_m / distance_km >= MOUNTAIN_GRADE_M_PER_KM
        ):
            terrain = corrections.mountain_factor
        fatigue_penalty *= corrections.base_fatigue_factor * terrain
        night_penalty *= corrections.night_factor
        if temperature_c > 25:
            weather_penalty *= corrections.heat_factor
        aid_minutes *= corrections.aid_station_multiplier

    adjusted = base_time_min + fatigue_penalty + aid_minutes + night_penalty + weather_penalty

    return UltraFinishEstimate(
        base_time_min=base_time_min,
        adjusted_time_min=adjusted,
        fatigue_penalty_min=fatigue_penalty,
        aid_station_min=aid_minutes,
        night_penalty_min=night_penalty,
        weather_penalty_min=weather_penalty,
        total_adjustment_pct=(adjusted - base_time_min) / base_time_min * 100,
        band=distance_band(distance_km),
        corrections_applied=corrections is not None,
    )
