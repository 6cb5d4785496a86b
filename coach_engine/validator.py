"""
Input range validation for physiological inputs.

The engine clamps out-of-range values at ingestion so that it always
produces a result. Callers that want to warn the athlete about suspicious
data use the strict check, which reports every issue without altering
anything.
"""

import logging
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


# (minimum, maximum, unit) per known input
INPUT_RANGES: Dict[str, Tuple[float, float, str]] = {
    "sleep_hours": (0.0, 24.0, "h"),
    "hrv": (5.0, 250.0, "ms"),
    "rpe": (1.0, 10.0, ""),
    "soreness": (1.0, 10.0, ""),
    "temperature_c": (-30.0, 50.0, "°C"),
    "humidity_pct": (0.0, 100.0, "%"),
    "readiness": (0.0, 100.0, ""),
    "pace_min_per_km": (2.5, 15.0, "min/km"),
    "fueling_g_per_hr": (0.0, 150.0, "g/h"),
    "fluid_ml_per_hr": (0.0, 2000.0, "ml/h"),
    "sodium_mg_per_hr": (0.0, 3000.0, "mg/h"),
}


class RangeIssue(BaseModel):
    """A single out-of-range input found by the strict check."""

    field: str = Field(..., description="Input name")
    value: float = Field(..., description="Value supplied by the caller")
    minimum: float
    maximum: float
    message: str


def clamp(value: float, minimum: float, maximum: float) -> float:
    """Clamp ``value`` into [minimum, maximum]."""
    return max(minimum, min(maximum, value))


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


class InputValidator:
    """
    Range checks for physiological inputs.

    ``clamp_input`` is used by the aggregator and simulator entry points;
    ``check_strict`` is the non-clamping variant for callers that want to
    surface warnings.
    """

    def __init__(self, ranges: Optional[Dict[str, Tuple[float, float, str]]] = None):
        """
        Initialize validator.

        Args:
            ranges: Override table of (min, max, unit) per input name
        """
        self.ranges = dict(INPUT_RANGES)
        if ranges:
            self.ranges.update(ranges)

    def clamp_input(self, name: str, value: Optional[float]) -> Optional[float]:
        """
        Clamp a single named input into its physiological range.

        Args:
            name: Input name (key of the range table)
            value: Raw value; None passes through unchanged

        Returns:
            Clamped value (or None)

        Raises:
            KeyError: If the input name has no known range
        """
        if value is None:
            return None
        minimum, maximum, unit = self.ranges[name]
        clamped = clamp(value, minimum, maximum)
        if clamped != value:
            logger.debug(
                "Clamped %s from %s to %s%s", name, value, clamped, unit
            )
        return clamped

    def check_strict(self, **inputs: Optional[float]) -> List[RangeIssue]:
        """
        Report every out-of-range input without altering any of them.

        Unknown input names are ignored; None values are skipped.

        Returns:
            List of RangeIssue (empty when everything is in range)
        """
        issues = []
        for name, value in inputs.items():
            if value is None or name not in self.ranges:
                continue
            minimum, maximum, unit = self.ranges[name]
            if value < minimum or value > maximum:
                issues.append(
                    RangeIssue(
                        field=name,
                        value=value,
                        minimum=minimum,
                        maximum=maximum,
                        message=(
                            f"{name.replace('_', ' ')} = {value:g}{unit} is outside "
                            f"the expected range {minimum:g}-{maximum:g}{unit}"
                        ),
                    )
                )
        return issues
