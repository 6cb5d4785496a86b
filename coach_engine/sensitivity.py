"""
Sensitivity analysis for race-day "what-if" scenarios.

Re-runs the physiological simulation with one modified input and reports
how the outcome moves:
- Finish-time penalty and adjusted time
- Time to exhaustion and glycogen at the finish
- Hydration and GI distress risk
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from coach_engine.simulation import (
    NutritionInputs,
    PhysiologicalSimulation,
    PhysiologicalSimulator,
    Strategy,
)


SUPPORTED_ASSUMPTIONS = (
    "nutrition.fueling_g_per_hr",
    "nutrition.fluid_ml_per_hr",
    "nutrition.sodium_mg_per_hr",
    "temperature_c",
    "humidity_pct",
    "readiness",
    "strategy",
)


class SimulationRequest(BaseModel):
    """Inputs of one race-day simulation."""

    distance_km: float = Field(..., gt=0.0)
    duration_min: float = Field(..., gt=0.0)
    nutrition: NutritionInputs = Field(default_factory=NutritionInputs)
    temperature_c: float = Field(default=20.0)
    humidity_pct: float = Field(default=50.0)
    readiness: float = Field(default=75.0)
    strategy: Strategy = Strategy.TARGET


class SimulationSensitivityResult(BaseModel):
    """
    Baseline vs. modified simulation for a single input change.
    """

    modified_assumption: str = Field(
        ..., description="The input that was modified (e.g., 'nutrition.fueling_g_per_hr')"
    )
    original_value: Any = Field(..., description="Original value before modification")
    new_value: Any = Field(..., description="New value after modification")

    original_penalty_pct: int
    new_penalty_pct: int
    penalty_delta_pct: int = Field(..., description="new - original finish-time penalty")
    adjusted_time_delta_min: float = Field(
        ..., description="Change in penalty-adjusted finish time (min)"
    )

    time_to_exhaustion_delta_km: float
    final_glycogen_delta_pct: float
    hydration_delta_pct: float

    original_gi_risk: str
    new_gi_risk: str
    gi_risk_changed: bool = False
    new_insights: List[str] = Field(
        default_factory=list, description="Insights that only appear in the modified run"
    )


class SimulationSensitivityAnalyzer:
    """
    Analyzes how single input changes affect the race-day simulation.

    Supports "what-if" exploration such as:
    - "What if I take 80 g/h of carbs instead of 60?"
    - "What if race day is 28°C instead of 20°C?"
    - "What if I go out aggressively?"
    """

    def __init__(
        self,
        baseline_request: SimulationRequest,
        simulator: Optional[PhysiologicalSimulator] = None,
        baseline_simulation: Optional[PhysiologicalSimulation] = None,
    ):
        """
        Initialize the sensitivity analyzer.

        Args:
            baseline_request: Original simulation inputs
            simulator: Simulator to use (default instance if omitted)
            baseline_simulation: Already computed baseline run (simulated if omitted)
        """
        self.baseline_request = baseline_request
        self.simulator = simulator or PhysiologicalSimulator()
        self.baseline_simulation = baseline_simulation or self._run(baseline_request)

    def modify_assumption(self, assumption_key: str, new_value: Any) -> SimulationSensitivityResult:
        """
        Modify a single input and compare against the baseline.

        Args:
            assumption_key: Dot-notation path to the input (see SUPPORTED_ASSUMPTIONS)
            new_value: New value for the input

        Returns:
            SimulationSensitivityResult

        Raises:
            ValueError: If assumption_key is not a supported input
        """
        if assumption_key not in SUPPORTED_ASSUMPTIONS:
            raise ValueError(
                f"Unsupported assumption: {assumption_key}. "
                f"Choose one of: {', '.join(SUPPORTED_ASSUMPTIONS)}"
            )
        if assumption_key == "strategy":
            new_value = Strategy(new_value)
        else:
            new_value = float(new_value)

        modified = self.baseline_request.model_copy(deep=True)
        original_value = self._get_nested_field(self.baseline_request, assumption_key)
        self._set_nested_field(modified, assumption_key, new_value)

        baseline = self.baseline_simulation
        simulation = self._run(modified)

        return SimulationSensitivityResult(
            modified_assumption=assumption_key,
            original_value=original_value,
            new_value=new_value,
            original_penalty_pct=baseline.performance_impact.total_penalty_pct,
            new_penalty_pct=simulation.performance_impact.total_penalty_pct,
            penalty_delta_pct=(
                simulation.performance_impact.total_penalty_pct
                - baseline.performance_impact.total_penalty_pct
            ),
            adjusted_time_delta_min=round(
                simulation.performance_impact.adjusted_time_min
                - baseline.performance_impact.adjusted_time_min,
                1,
            ),
            time_to_exhaustion_delta_km=self._selected_tte(simulation) - self._selected_tte(baseline),
            final_glycogen_delta_pct=round(
                simulation.energy.selected[-1].glycogen_pct - baseline.energy.selected[-1].glycogen_pct,
                1,
            ),
            hydration_delta_pct=round(
                simulation.hydration.hydration_pct - baseline.hydration.hydration_pct, 1
            ),
            original_gi_risk=baseline.gi_risk.level.value,
            new_gi_risk=simulation.gi_risk.level.value,
            gi_risk_changed=baseline.gi_risk.level != simulation.gi_risk.level,
            new_insights=[i for i in simulation.insights if i not in baseline.insights],
        )

    def compare_all(self, modifications: Dict[str, Any]) -> List[SimulationSensitivityResult]:
        """Run modify_assumption for every (key, value) pair independently."""
        return [self.modify_assumption(key, value) for key, value in modifications.items()]

    def _run(self, request: SimulationRequest) -> PhysiologicalSimulation:
        return self.simulator.simulate(
            request.distance_km,
            request.duration_min,
            request.nutrition,
            request.temperature_c,
            request.humidity_pct,
            request.readiness,
            strategy=request.strategy,
        )

    @staticmethod
    def _selected_tte(simulation: PhysiologicalSimulation) -> float:
        energy = simulation.energy
        return energy.time_to_exhaustion_km[energy.selected_strategy]

    def _get_nested_field(self, obj: Any, path: str) -> Any:
        """
        Get a nested field value using dot notation.

        Raises:
            ValueError: If path is invalid
        """
        current = obj
        for part in path.split("."):
            if not hasattr(current, part):
                raise ValueError(f"Invalid path: {path} (failed at '{part}')")
            current = getattr(current, part)
        return current

    def _set_nested_field(self, obj: Any, path: str, value: Any) -> None:
        """
        Set a nested field value using dot notation.

        Raises:
            ValueError: If path is invalid
        """
        parts = path.split(".")
        current = obj
        for part in parts[:-1]:
            if not hasattr(current, part):
                raise ValueError(f"Invalid path: {path} (failed at '{part}')")
            current = getattr(current, part)

        final_field = parts[-1]
        if not hasattr(current, final_field):
            raise ValueError(f"Invalid path: {path} (no field '{final_field}')")
        setattr(current, final_field, value)
