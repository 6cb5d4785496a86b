"""
Tests for race-day sensitivity analysis and "what-if" scenarios.

Covers:
- Single input modification against a fixed baseline
- Fueling, heat and pacing changes move the outcome the expected way
- GI risk level changes
- Immutability of the baseline request
"""

import pytest

from coach_engine.simulation import NutritionInputs, Strategy
from coach_engine.sensitivity import SimulationRequest, SimulationSensitivityAnalyzer


@pytest.fixture
def under_fuelled_marathon():
    """Marathon in 3:30 on 30 g/h of carbohydrate at 20°C."""
    return SimulationRequest(
        distance_km=42.195,
        duration_min=210.0,
        nutrition=NutritionInputs(fueling_g_per_hr=30.0),
        temperature_c=20.0,
        humidity_pct=50.0,
        readiness=80.0,
    )


@pytest.fixture
def analyzer(under_fuelled_marathon):
    return SimulationSensitivityAnalyzer(under_fuelled_marathon)


def test_more_fueling_keeps_more_glycogen(analyzer):
    """Test that doubling carbohydrate intake raises finish glycogen."""
    result = analyzer.modify_assumption("nutrition.fueling_g_per_hr", 60)

    assert result.original_value == 30.0
    assert result.new_value == 60.0
    assert result.final_glycogen_delta_pct > 20
    assert result.penalty_delta_pct <= 0
    assert result.time_to_exhaustion_delta_km >= 0


def test_heat_increases_penalty(analyzer):
    result = analyzer.modify_assumption("temperature_c", 30)

    assert result.new_penalty_pct > result.original_penalty_pct
    assert result.adjusted_time_delta_min > 0
    assert result.hydration_delta_pct < 0


def test_aggressive_start_shortens_endurance(analyzer):
    result = analyzer.modify_assumption("strategy", "aggressive")

    assert result.new_value == Strategy.AGGRESSIVE
    assert result.original_value == Strategy.TARGET
    assert result.final_glycogen_delta_pct < 0
    assert result.time_to_exhaustion_delta_km <= 0


def test_heavy_fueling_changes_gi_risk(analyzer):
    result = analyzer.modify_assumption("nutrition.fueling_g_per_hr", 100)

    assert result.original_gi_risk == "low"
    assert result.new_gi_risk == "moderate"
    assert result.gi_risk_changed is True


def test_unchanged_value_has_no_effect(analyzer):
    result = analyzer.modify_assumption("readiness", 80)

    assert result.penalty_delta_pct == 0
    assert result.final_glycogen_delta_pct == 0
    assert result.new_insights == []
    assert result.gi_risk_changed is False


def test_baseline_request_not_mutated(analyzer, under_fuelled_marathon):
    """Test that modifications never touch the baseline inputs."""
    before = under_fuelled_marathon.model_copy(deep=True)

    analyzer.modify_assumption("nutrition.fueling_g_per_hr", 90)
    analyzer.modify_assumption("humidity_pct", 90)

    assert analyzer.baseline_request == before


def test_unsupported_assumption(analyzer):
    with pytest.raises(ValueError, match="Unsupported assumption"):
        analyzer.modify_assumption("distance_km", 50)


def test_non_numeric_value_rejected(analyzer):
    with pytest.raises(ValueError):
        analyzer.modify_assumption("temperature_c", "hot")


def test_compare_all(analyzer):
    results = analyzer.compare_all(
        {"nutrition.fueling_g_per_hr": 60, "temperature_c": 28, "strategy": "conservative"}
    )

    assert [r.modified_assumption for r in results] == [
        "nutrition.fueling_g_per_hr",
        "temperature_c",
        "strategy",
    ]


def test_reuses_supplied_baseline(under_fuelled_marathon, analyzer):
    reused = SimulationSensitivityAnalyzer(
        under_fuelled_marathon, baseline_simulation=analyzer.baseline_simulation
    )

    assert reused.baseline_simulation is analyzer.baseline_simulation
