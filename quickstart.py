#!/usr/bin/env python3
"""
Quick start script to demonstrate the Adaptive Coach.

This script shows the complete workflow against an in-memory store:
1. Import the sample athlete snapshot
2. Score fatigue from recent signals
3. Run a weekly planning cycle
4. Predict the next race
5. Simulate race day and explore "what-if" scenarios
6. Calibrate the model from a race outcome
"""

import json
from datetime import date
from pathlib import Path

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from coach_engine.calibration import UltraCalibrationInput
from coach_engine.coach import AdaptiveCoach
from coach_engine.database import init_database
from coach_engine.schemas import AthleteSnapshot, Unavailable
from coach_engine.sensitivity import SimulationRequest, SimulationSensitivityAnalyzer
from coach_engine.simulation import NutritionInputs

console = Console()

# Monday after the sample athlete's last logged run
TODAY = date(2026, 6, 1)


def print_header(title: str):
    """Print a formatted header."""
    console.print(f"\n[bold cyan]{title}[/bold cyan]")
    console.print("=" * len(title))


def main():
    """Run the complete demonstration workflow."""
    console.print("\n[bold magenta]🏃 Adaptive Coach[/bold magenta]")
    console.print("[dim]Demonstration of complete workflow[/dim]\n")

    # ===== STEP 1: Import Athlete =====
    print_header("Step 1: Import Athlete")

    snapshot_path = Path("tests/fixtures/athlete_snapshot.json")
    with open(snapshot_path) as f:
        snapshot = AthleteSnapshot(**json.load(f))

    store = init_database("sqlite://")
    coach = AdaptiveCoach(store)
    athlete = snapshot.athlete_id

    store.add_activities(athlete, snapshot.activities)
    store.add_run_feedback(athlete, snapshot.run_feedback)
    for result in snapshot.race_results:
        store.add_race_result(athlete, result)
    for race in snapshot.races:
        store.upsert_race(athlete, race)
    lessons = []
    for feedback in snapshot.race_feedback:
        lessons = coach.record_race_feedback(athlete, feedback)

    console.print(f"✓ Imported: [green]{athlete}[/green]")
    console.print(f"  Activities: {len(snapshot.activities)}")
    console.print(f"  Target races: {', '.join(r.name for r in snapshot.races)}")
    console.print(f"  Lessons: {', '.join(lesson.key.value for lesson in lessons)}")

    # ===== STEP 2: Score Fatigue =====
    print_header("Step 2: Score Fatigue")

    fatigue = coach.score_fatigue(athlete, TODAY)

    table = Table(title="Fatigue Breakdown", box=box.ROUNDED)
    table.add_column("Component", style="cyan")
    table.add_column("Contribution", justify="right", style="yellow")
    for component, contribution in fatigue.breakdown.items():
        table.add_row(component.replace("_", " ").title(), f"{contribution:+.3f}")
    console.print(table)

    console.print(f"\n[bold]Fatigue: {fatigue.score:.2f}[/bold] ({fatigue.interpretation})")
    console.print(f"Readiness: {coach.readiness(athlete, TODAY)}")

    # ===== STEP 3: Planning Cycle =====
    print_header("Step 3: Planning Cycle")

    cycle = coach.run_planning_cycle(athlete, TODAY)
    if isinstance(cycle, Unavailable):
        console.print(f"[red]✗ {cycle.status.value}: {cycle.reason}[/red]")
        return

    console.print(f"✓ Week of [green]{cycle.week_start}[/green] (revision {cycle.plan.revision})")
    for day in cycle.plan.days:
        distance = f"{day.distance_km:g} km" if day.distance_km else "-"
        console.print(f"  {day.day.value}: {day.title} ({distance})")
    console.print(f"  Total: {cycle.plan.total_distance():.0f} km")
    for decision in cycle.decisions:
        console.print(f"  [dim]{decision.decision_point}: {decision.outcome}[/dim]")

    # ===== STEP 4: Race Prediction =====
    print_header("Step 4: Race Prediction")

    prediction = coach.predict_race(athlete, TODAY)
    console.print(f"✓ {prediction.race_name}: [green]{prediction.predicted_time}[/green]")
    console.print(f"  Pace: {prediction.pace_formatted}")
    console.print(f"  Method: {prediction.method.value}, confidence {prediction.confidence}")

    # ===== STEP 5: Race-Day Simulation =====
    print_header("Step 5: Race-Day Simulation")

    nutrition = NutritionInputs(fueling_g_per_hr=40.0)
    simulation = coach.simulate_race(athlete, TODAY, nutrition=nutrition)
    impact = simulation.performance_impact
    console.print(f"  GI risk: {simulation.gi_risk.level.value}")
    console.print(f"  Hydration: {simulation.hydration.hydration_pct:.0f}%")
    console.print(f"  Penalty: +{impact.total_penalty_pct}% ({impact.status.value})")

    console.print("\n[dim]Testing 'what-if' scenarios...[/dim]\n")

    analyzer = SimulationSensitivityAnalyzer(
        SimulationRequest(
            distance_km=simulation.distance_km,
            duration_min=simulation.duration_min,
            nutrition=nutrition,
            temperature_c=simulation.temperature_c,
            humidity_pct=simulation.humidity_pct,
        ),
        baseline_simulation=simulation,
    )

    console.print("[bold]Scenario 1: More Carbohydrate (40 → 80 g/h)[/bold]")
    scenario1 = analyzer.modify_assumption("nutrition.fueling_g_per_hr", 80)
    console.print(f"  Penalty change: {scenario1.penalty_delta_pct:+d}%")
    console.print(f"  Final glycogen: {scenario1.final_glycogen_delta_pct:+.1f}%")

    console.print("\n[bold]Scenario 2: Hot Race Day (30°C)[/bold]")
    scenario2 = analyzer.modify_assumption("temperature_c", 30)
    console.print(f"  Penalty change: {scenario2.penalty_delta_pct:+d}%")
    console.print(f"  Time change: {scenario2.adjusted_time_delta_min:+.1f} min")

    # ===== STEP 6: Calibration =====
    print_header("Step 6: Post-Race Calibration")

    outcome = UltraCalibrationInput(
        race_id=prediction.race_id,
        race_date=store.get_race(athlete, prediction.race_id).race_date,
        distance_km=prediction.distance_km,
        predicted_time_min=prediction.predicted_time_min,
        actual_time_min=prediction.predicted_time_min * 1.03,
    )
    calibration = coach.record_race_outcome(athlete, outcome)
    decay = calibration.decay
    if isinstance(decay, Unavailable):
        console.print(f"[yellow]⚠ {decay.reason}[/yellow]")
    else:
        console.print(
            f"✓ Decay exponent {decay.record.value_before:.4f} → "
            f"[green]{decay.record.value_after:.4f}[/green]"
        )

    # ===== COMPLETION =====
    console.print("\n")
    panel = Panel(
        "[green]✓[/green] Demonstration complete!\n\n"
        "The coach successfully:\n"
        "  1. Scored fatigue from sleep, HRV, RPE and load\n"
        "  2. Adapted and stored this week's plan\n"
        "  3. Predicted and simulated the next race\n"
        "  4. Calibrated the model from the outcome\n\n"
        "Every planning decision is recorded in the cycle trace.",
        title="[bold green]Success[/bold green]",
        border_style="green",
    )
    console.print(panel)

    console.print("\n[bold cyan]Next Steps:[/bold cyan]")
    console.print("  • Import your own history: coach-engine import-athlete --file <snapshot.json>")
    console.print("  • Plan a week: coach-engine plan-week --athlete <id>")
    console.print("  • Start the API: uvicorn coach_engine.api.main:app")
    console.print("  • Run tests: pytest\n")


if __name__ == "__main__":
    try:
        main()
    except Exception as e:
        console.print(f"\n[red]Error: {e}[/red]")
        console.print("\n[dim]Run from the project root after: pip install -e .[/dim]")
        raise
