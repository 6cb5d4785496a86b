"""
Command-line interface for the adaptive coaching engine.

Provides commands for:
- Importing an athlete's history into the store
- Fatigue scoring and weekly plan updates
- Race prediction, race-day simulation and "what-if" analysis
- Post-race calibration and race lessons
"""

import json
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from coach_engine.baseline import RaceProjection, format_time
from coach_engine.calibration import (
    DecayCalibrationResult,
    UltraCalibrationInput,
    decay_description,
    model_quality,
)
from coach_engine.coach import AdaptiveCoach, PlanningCycleResult
from coach_engine.config import get_settings
from coach_engine.database import init_database
from coach_engine.fatigue import FatigueResult
from coach_engine.lessons import experience_profile, taper_history_analysis
from coach_engine.logging_config import setup_logging
from coach_engine.plan_schemas import DayType
from coach_engine.prediction import RacePrediction
from coach_engine.schemas import (
    AthleteSnapshot,
    HealthState,
    RaceFeedback,
    RacePriority,
    Unavailable,
    WeatherReading,
)
from coach_engine.sensitivity import (
    SUPPORTED_ASSUMPTIONS,
    SimulationRequest,
    SimulationSensitivityAnalyzer,
    SimulationSensitivityResult,
)
from coach_engine.simulation import NutritionInputs, PhysiologicalSimulation, Strategy
from coach_engine.trace import CycleTraceBuilder

# Initialize Typer app and Rich console
app = typer.Typer(
    help="Adaptive Coach - fatigue-aware weekly plans, race predictions and race-day simulation"
)
console = Console()


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Override COACH_LOG_LEVEL for this run"
    ),
):
    settings = get_settings()
    if log_level:
        settings = settings.model_copy(update={"LOG_LEVEL": log_level})
    setup_logging(settings)


# ===== HELPERS =====


def _today(value: Optional[datetime]) -> date:
    return value.date() if value else date.today()


def _coach(db: Optional[str]) -> AdaptiveCoach:
    return AdaptiveCoach(init_database(db))


def _exit_unavailable(result: Unavailable) -> None:
    console.print(
        Panel(
            result.reason,
            title=f"[yellow]Unavailable: {result.status.value}[/yellow]",
            border_style="yellow",
            padding=(1, 2),
        )
    )
    raise typer.Exit(2)


def _load_json(path: Path) -> dict:
    try:
        with open(path, "r") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]✗ Failed to read {path}: {e}[/red]")
        raise typer.Exit(1)


# ===== DISPLAY HELPER FUNCTIONS =====


def _display_fatigue(result: FatigueResult):
    """
    Display fatigue score with color-coded band and component breakdown.

    Args:
        result: FatigueResult from the scorer
    """
    score = result.score
    if score > 0.7:
        color = "red"
    elif score < 0.3:
        color = "green"
    else:
        color = "yellow"

    console.print(
        f"\n[bold]Fatigue Score: [{color}]{score:.2f}[/{color}] ({result.interpretation})[/bold]"
    )
    console.print(f"  {result.reason}\n")

    signals = result.aggregates
    console.print(
        f"  Sleep {signals.sleep_avg:.1f} h | HRV {signals.hrv_avg:.0f} ms | "
        f"RPE {signals.rpe_avg:.1f} | ACWR {signals.acwr:.2f}\n"
    )

    table = Table(title="Fatigue Breakdown", box=box.ROUNDED)
    table.add_column("Component", style="cyan")
    table.add_column("Contribution", justify="right", style="yellow")
    for component, contribution in result.breakdown.items():
        table.add_row(component.replace("_", " ").title(), f"{contribution:+.3f}")
    console.print(table)


def _display_cycle(result: PlanningCycleResult):
    """
    Display the week plan produced by a planning cycle.

    Args:
        result: PlanningCycleResult from the coach
    """
    if result.applied:
        console.print(
            f"\n✓ Plan updated for week of [green]{result.week_start}[/green] "
            f"(revision {result.plan.revision}, multiplier {result.volume_multiplier:.2f})"
        )
    else:
        console.print(f"\n[yellow]⚠ Plan unchanged: {result.unavailable.reason}[/yellow]")

    table = Table(show_header=True, header_style="bold cyan", box=box.ROUNDED)
    table.add_column("Day", style="cyan")
    table.add_column("Type")
    table.add_column("Distance", justify="right")
    table.add_column("Session")
    table.add_column("Notes", style="dim")

    styles = {
        DayType.REST: "dim",
        DayType.EASY: "green",
        DayType.QUALITY: "magenta",
        DayType.LONG: "blue",
    }
    for day in result.plan.days:
        style = styles[day.day_type]
        table.add_row(
            day.day.value,
            f"[{style}]{day.day_type.value}[/{style}]",
            f"{day.distance_km:g} km" if day.distance_km else "-",
            day.title,
            day.notes or "",
        )
    console.print(table)
    console.print(f"\n[bold]Total:[/bold] {result.plan.total_distance():.0f} km")
    if result.taper is not None:
        taper = result.taper
        console.print(
            f"[bold]Taper:[/bold] {taper.priority.value}-race in {taper.days_to_race} days, "
            f"volume ×{taper.priority_volume_factor:.2f}, total cut {taper.taper_cut:.0%}"
        )

    console.print(
        f"[dim]Weights after learning (outcome {result.outcome_score:+.2f}): "
        + ", ".join(f"{k} {v:.2f}" for k, v in result.weights.model_dump().items())
        + "[/dim]"
    )


def _display_prediction(prediction: RacePrediction):
    console.print(
        f"\n[bold]{prediction.race_name}[/bold] ({prediction.distance_km:g} km)"
    )
    console.print(
        f"  Predicted: [green]{prediction.predicted_time}[/green] "
        f"({prediction.pace_formatted})"
    )
    console.print(
        f"  Method: {prediction.method.value} ({prediction.calculation_confidence.value} "
        f"confidence), overall {prediction.confidence}"
    )
    console.print(
        f"  Conditions: {prediction.conditions.temperature_c:.0f}°C, "
        f"{prediction.conditions.humidity_pct:.0f}% humidity ({prediction.conditions.source})"
    )

    table = Table(title="Time Modifiers", box=box.ROUNDED)
    table.add_column("Factor", style="cyan")
    table.add_column("Multiplier", justify="right", style="yellow")
    for factor, value in prediction.factors.items():
        table.add_row(factor.replace("_", " ").title(), f"×{value:.3f}")
    console.print(table)

    if prediction.ultra is not None:
        ultra = prediction.ultra
        console.print(
            f"\n[bold]Ultra correction ({ultra.band.value}):[/bold] "
            f"+{ultra.fatigue_penalty_min:.0f} min fatigue, +{ultra.aid_station_min:.0f} min aid, "
            f"+{ultra.night_penalty_min:.0f} min night, +{ultra.weather_penalty_min:.0f} min weather"
        )

    console.print(f"\n{prediction.message}")


def _display_projections(projections: List[RaceProjection]):
    table = Table(title="Projections From Baseline", box=box.ROUNDED)
    table.add_column("Distance", style="cyan")
    table.add_column("Time", justify="right", style="green")
    table.add_column("Confidence", justify="right")
    for projection in projections:
        table.add_row(
            projection.distance_name,
            projection.predicted_time,
            f"{projection.confidence:.0%}",
        )
    console.print(table)


def _display_simulation(simulation: PhysiologicalSimulation):
    energy = simulation.energy
    impact = simulation.performance_impact

    console.print(
        f"\n[bold]Race-day simulation[/bold]: {simulation.distance_km:g} km in "
        f"{simulation.duration_min:.0f} min at {simulation.temperature_c:.0f}°C / "
        f"{simulation.humidity_pct:.0f}%"
    )

    table = Table(title="Time to Exhaustion", box=box.ROUNDED)
    table.add_column("Strategy", style="cyan")
    table.add_column("TTE (km)", justify="right")
    table.add_column("Final Glycogen", justify="right")
    table.add_column("Final Fatigue", justify="right")
    for strategy, states in energy.states.items():
        marker = " ◀" if strategy == energy.selected_strategy else ""
        table.add_row(
            f"{strategy.value}{marker}",
            f"{energy.time_to_exhaustion_km[strategy]:g}",
            f"{states[-1].glycogen_pct:.0f}%",
            f"{states[-1].fatigue_pct:.0f}%",
        )
    console.print(table)

    console.print(
        f"\n  Hydration: {simulation.hydration.hydration_pct:.0f}% "
        f"(sweat {simulation.hydration.sweat_rate_ml_per_hr:.0f} ml/h, "
        f"sodium {simulation.hydration.sodium_balance_mg:+.0f} mg)"
    )
    console.print(f"  GI risk: {simulation.gi_risk.level.value} ({simulation.gi_risk.risk_pct:.0f}%)")
    console.print(
        f"  Penalty: +{impact.total_penalty_pct}% → {impact.adjusted_time_min:.0f} min "
        f"([bold]{impact.status.value}[/bold])"
    )

    if simulation.insights:
        console.print("\n[bold]Insights:[/bold]")
        for insight in simulation.insights:
            console.print(f"  • {insight}")


def _display_sensitivity_result(scenario: SimulationSensitivityResult):
    """
    Display sensitivity analysis scenario results with deltas.

    Args:
        scenario: SimulationSensitivityResult from analyzer
    """
    console.print("\n[bold]SCENARIO RESULTS[/bold]")
    console.print(
        f"Modified: {scenario.modified_assumption} "
        f"({scenario.original_value} → {scenario.new_value})\n"
    )

    delta = scenario.penalty_delta_pct
    color = "green" if delta < 0 else "red" if delta > 0 else "white"
    console.print(
        f"Penalty: {scenario.original_penalty_pct}% → {scenario.new_penalty_pct}% "
        f"[{color}]({delta:+d}%, {scenario.adjusted_time_delta_min:+.1f} min)[/{color}]"
    )
    console.print(f"Time to exhaustion: {scenario.time_to_exhaustion_delta_km:+.0f} km")
    console.print(f"Final glycogen: {scenario.final_glycogen_delta_pct:+.1f}%")
    console.print(f"Hydration: {scenario.hydration_delta_pct:+.1f}%")
    if scenario.gi_risk_changed:
        console.print(
            f"[yellow]GI risk: {scenario.original_gi_risk} → {scenario.new_gi_risk}[/yellow]"
        )
    for insight in scenario.new_insights:
        console.print(f"  • {insight}")


# ===== COMMANDS =====


@app.command()
def import_athlete(
    file: Path = typer.Option(
        ..., "--file", "-f", help="Athlete snapshot JSON file", exists=True
    ),
    db: Optional[str] = typer.Option(None, "--db", help="Database URL (default: settings)"),
):
    """
    Import activities, feedback, races and race feedback for one athlete.
    """
    try:
        snapshot = AthleteSnapshot(**_load_json(file))
    except ValidationError as e:
        console.print(f"[red]✗ Invalid athlete snapshot: {e}[/red]")
        raise typer.Exit(1)

    store = init_database(db)
    coach = AdaptiveCoach(store)
    athlete_id = snapshot.athlete_id

    count = store.add_activities(athlete_id, snapshot.activities)
    store.add_run_feedback(athlete_id, snapshot.run_feedback)
    for result in snapshot.race_results:
        store.add_race_result(athlete_id, result)
    for race in snapshot.races:
        store.upsert_race(athlete_id, race)

    lessons = []
    for feedback in snapshot.race_feedback:
        lessons = coach.record_race_feedback(athlete_id, feedback)
        if isinstance(lessons, Unavailable):
            _exit_unavailable(lessons)

    console.print(f"✓ Imported athlete [green]{athlete_id}[/green]")
    console.print(f"  Activities: {count}")
    console.print(f"  Run feedback: {len(snapshot.run_feedback)}")
    console.print(f"  Race results: {len(snapshot.race_results)}")
    console.print(f"  Target races: {len(snapshot.races)}")
    console.print(f"  Race feedback: {len(snapshot.race_feedback)} ({len(lessons)} lessons)")


@app.command()
def score_fatigue(
    athlete: str = typer.Option(..., "--athlete", "-a", help="Athlete ID"),
    on: Optional[datetime] = typer.Option(None, "--date", formats=["%Y-%m-%d"]),
    health: HealthState = typer.Option(HealthState.NORMAL, "--health", help="Illness state"),
    db: Optional[str] = typer.Option(None, "--db", help="Database URL (default: settings)"),
):
    """
    Score current fatigue from recent signals without changing the plan.
    """
    result = _coach(db).score_fatigue(athlete, _today(on), health)
    if isinstance(result, Unavailable):
        _exit_unavailable(result)
    _display_fatigue(result)


@app.command()
def plan_week(
    athlete: str = typer.Option(..., "--athlete", "-a", help="Athlete ID"),
    on: Optional[datetime] = typer.Option(None, "--date", formats=["%Y-%m-%d"]),
    health: HealthState = typer.Option(HealthState.NORMAL, "--health", help="Illness state"),
    db: Optional[str] = typer.Option(None, "--db", help="Database URL (default: settings)"),
    save_plan: bool = typer.Option(True, "--save-plan/--no-save", help="Save plan to JSON file"),
    save_trace: bool = typer.Option(
        True, "--save-trace/--no-trace", help="Save planning trace to file"
    ),
    trace_format: str = typer.Option(
        "markdown", "--trace-format", "-f", help="Trace output format (json or markdown)"
    ),
):
    """
    Run one planning cycle for the week containing --date.

    Workflow:
    1. Aggregate signals and score fatigue
    2. Mutate the week plan (taper, fatigue protection, lessons)
    3. Persist the plan and the learned weights
    4. Save plan and planning trace
    """
    settings = get_settings()
    result = _coach(db).run_planning_cycle(athlete, _today(on), health)
    if isinstance(result, Unavailable):
        _exit_unavailable(result)

    _display_fatigue(result.fatigue)
    _display_cycle(result)

    if save_plan:
        plan_dir = Path(settings.PLAN_DIR)
        plan_dir.mkdir(parents=True, exist_ok=True)
        plan_path = plan_dir / f"plan_{athlete}_{result.week_start.isoformat()}.json"
        with open(plan_path, "w") as f:
            json.dump(result.plan.model_dump(mode="json"), f, indent=2, default=str)
        console.print(f"\n✓ Plan saved: [cyan]{plan_path}[/cyan]")

    if save_trace:
        builder = CycleTraceBuilder(athlete, result.week_start)
        builder.trace = result.trace
        try:
            trace_path = builder.save_to_file(Path(settings.TRACE_DIR), format=trace_format)
        except ValueError as e:
            console.print(f"[red]✗ {e}[/red]")
            raise typer.Exit(1)
        console.print(f"✓ Trace saved: [cyan]{trace_path}[/cyan]")

    console.print()


@app.command()
def predict(
    athlete: str = typer.Option(..., "--athlete", "-a", help="Athlete ID"),
    race_id: Optional[str] = typer.Option(None, "--race", "-r", help="Race ID (default: next race)"),
    on: Optional[datetime] = typer.Option(None, "--date", formats=["%Y-%m-%d"]),
    readiness: Optional[float] = typer.Option(
        None, "--readiness", help="Readiness 0-100 (default: from current fatigue)"
    ),
    temperature: Optional[float] = typer.Option(None, "--temperature", help="Race-day °C"),
    humidity: Optional[float] = typer.Option(None, "--humidity", help="Race-day humidity %"),
    db: Optional[str] = typer.Option(None, "--db", help="Database URL (default: settings)"),
):
    """
    Predict the finish time of a target race.
    """
    settings = get_settings()
    conditions = None
    if temperature is not None or humidity is not None:
        conditions = WeatherReading(
            temperature_c=temperature if temperature is not None else settings.DEFAULT_TEMPERATURE_C,
            humidity_pct=humidity if humidity is not None else settings.DEFAULT_HUMIDITY_PCT,
            source="manual",
        )

    coach = _coach(db)
    result = coach.predict_race(
        athlete, _today(on), race_id=race_id, readiness=readiness, conditions=conditions
    )
    if isinstance(result, Unavailable):
        _exit_unavailable(result)
    _display_prediction(result)

    projections = coach.race_projections(athlete, _today(on))
    if not isinstance(projections, Unavailable):
        _display_projections(projections)


@app.command()
def simulate(
    athlete: str = typer.Option(..., "--athlete", "-a", help="Athlete ID"),
    race_id: Optional[str] = typer.Option(None, "--race", "-r", help="Race ID (default: next race)"),
    on: Optional[datetime] = typer.Option(None, "--date", formats=["%Y-%m-%d"]),
    fueling: float = typer.Option(60.0, "--fueling", help="Carbohydrate intake (g/h)"),
    fluid: float = typer.Option(600.0, "--fluid", help="Fluid intake (ml/h)"),
    sodium: float = typer.Option(500.0, "--sodium", help="Sodium intake (mg/h)"),
    strategy: Strategy = typer.Option(Strategy.TARGET, "--strategy", help="Pacing strategy"),
    duration: Optional[float] = typer.Option(
        None, "--duration", help="Finish time in minutes (default: prediction)"
    ),
    readiness: Optional[float] = typer.Option(None, "--readiness", help="Readiness 0-100"),
    db: Optional[str] = typer.Option(None, "--db", help="Database URL (default: settings)"),
):
    """
    Simulate race-day glycogen, fatigue and hydration for a target race.
    """
    result = _coach(db).simulate_race(
        athlete,
        _today(on),
        nutrition=NutritionInputs(
            fueling_g_per_hr=fueling, fluid_ml_per_hr=fluid, sodium_mg_per_hr=sodium
        ),
        race_id=race_id,
        strategy=strategy,
        duration_min=duration,
        readiness=readiness,
    )
    if isinstance(result, Unavailable):
        _exit_unavailable(result)
    _display_simulation(result)


@app.command()
def calibrate(
    athlete: str = typer.Option(..., "--athlete", "-a", help="Athlete ID"),
    outcome: Path = typer.Option(
        ..., "--outcome", "-o", help="Race outcome JSON file", exists=True
    ),
    db: Optional[str] = typer.Option(None, "--db", help="Database URL (default: settings)"),
):
    """
    Calibrate the performance model and correction factors from a race outcome.

    The outcome file holds the predicted and actual times plus race
    conditions; an optional "feedback" object is recorded for race lessons.
    """
    data = _load_json(outcome)
    feedback_data = data.pop("feedback", None)
    try:
        calibration_input = UltraCalibrationInput(**data)
        feedback = RaceFeedback(**feedback_data) if feedback_data else None
    except ValidationError as e:
        console.print(f"[red]✗ Invalid race outcome: {e}[/red]")
        raise typer.Exit(1)

    result = _coach(db).record_race_outcome(athlete, calibration_input, feedback)
    if isinstance(result, Unavailable):
        _exit_unavailable(result)

    console.print(
        f"\n[bold]{calibration_input.race_name or calibration_input.race_id}[/bold]: "
        f"predicted {calibration_input.predicted_time_min:.0f} min, actual "
        f"{calibration_input.actual_time_min:.0f} min ({calibration_input.delta_pct:+.1f}%)"
    )

    if isinstance(result.decay, DecayCalibrationResult):
        decay = result.decay
        quality = model_quality(decay.model)
        console.print(
            f"✓ Decay exponent {decay.record.value_before:.4f} → "
            f"[green]{decay.record.value_after:.4f}[/green] (α {decay.alpha:.2f})"
        )
        console.print(f"  {decay_description(decay.model.performance_decay)}")
        console.print(f"  {decay.trend.message}")
        if decay.projected_time_min is not None:
            console.print(
                f"  Next {calibration_input.distance_km:g} km projection: "
                f"{format_time(decay.projected_time_min)}"
            )
        console.print(f"  Model quality: {quality.category} - {quality.description}")
    else:
        console.print(f"[yellow]⚠ Decay not calibrated: {result.decay.reason}[/yellow]")

    if result.corrections is not None:
        corrections = result.corrections
        console.print(
            f"✓ {corrections.factors.distance_band.value} factors updated: "
            f"{', '.join(corrections.updated_fields)}"
        )
        for insight in corrections.insights:
            console.print(f"  • {insight}")
        for recommendation in corrections.recommendations:
            console.print(f"  → {recommendation}")

    if result.lessons is not None:
        console.print(f"✓ Race lessons recomputed ({len(result.lessons)} active)")


@app.command()
def lessons(
    athlete: str = typer.Option(..., "--athlete", "-a", help="Athlete ID"),
    feedback: Optional[Path] = typer.Option(
        None, "--feedback", help="Race feedback JSON file to record first", exists=True
    ),
    distance: Optional[float] = typer.Option(
        None, "--distance", help="Upcoming race distance for taper history analysis"
    ),
    db: Optional[str] = typer.Option(None, "--db", help="Database URL (default: settings)"),
):
    """
    Show race lessons, experience counts and taper history.
    """
    store = init_database(db)
    coach = AdaptiveCoach(store)

    if feedback is not None:
        try:
            entry = RaceFeedback(**_load_json(feedback))
        except ValidationError as e:
            console.print(f"[red]✗ Invalid race feedback: {e}[/red]")
            raise typer.Exit(1)
        recorded = coach.record_race_feedback(athlete, entry)
        if isinstance(recorded, Unavailable):
            _exit_unavailable(recorded)
        console.print(f"✓ Recorded feedback for [green]{entry.name}[/green]")

    state = store.get_athlete_state(athlete)
    history = store.list_race_feedback(athlete)
    active = state.lessons if state else []
    profile = experience_profile(history, active)

    console.print(
        f"\n[bold]Race history:[/bold] {profile.total} races ({profile.a_races} A), "
        f"{profile.heat} hot, {profile.hilly} hilly, {profile.fueling_issues} with fueling issues"
    )

    if not active:
        console.print("\n[dim]No lessons yet - record race feedback to learn from races.[/dim]")
    else:
        table = Table(title="Race Lessons", box=box.ROUNDED)
        table.add_column("Lesson", style="cyan")
        table.add_column("Weight", justify="right", style="yellow")
        table.add_column("Summary")
        for lesson in active:
            table.add_row(lesson.key.value, f"{lesson.weight:.2f}", lesson.summary)
        console.print(table)

    race = store.next_race(athlete, date.today())
    target_km = distance or (race.distance_km if race else None)
    if target_km is not None:
        priority = race.priority if race else RacePriority.B
        analysis = taper_history_analysis(history, priority, target_km)
        if isinstance(analysis, Unavailable):
            console.print(f"\n[dim]Taper history: {analysis.reason}[/dim]")
        else:
            console.print(
                f"\n[bold]Taper history:[/bold] {analysis.successful_races}/"
                f"{analysis.similar_races} similar races went well ({analysis.data_quality} data)"
            )
            for recommendation in analysis.recommendations:
                console.print(f"  → {recommendation}")


@app.command()
def what_if(
    distance: float = typer.Option(..., "--distance", "-d", help="Race distance (km)"),
    duration: float = typer.Option(..., "--duration", help="Expected finish time (min)"),
    fueling: float = typer.Option(60.0, "--fueling", help="Carbohydrate intake (g/h)"),
    fluid: float = typer.Option(600.0, "--fluid", help="Fluid intake (ml/h)"),
    sodium: float = typer.Option(500.0, "--sodium", help="Sodium intake (mg/h)"),
    temperature: float = typer.Option(20.0, "--temperature", help="Race-day °C"),
    humidity: float = typer.Option(50.0, "--humidity", help="Race-day humidity %"),
    readiness: float = typer.Option(75.0, "--readiness", help="Readiness 0-100"),
    strategy: Strategy = typer.Option(Strategy.TARGET, "--strategy", help="Pacing strategy"),
    change: Optional[List[str]] = typer.Option(
        None, "--change", "-c", help="key=value modification; repeatable. Interactive if omitted"
    ),
):
    """
    Sensitivity analysis ("what-if" scenarios) for race-day simulation.

    Explore how fueling, hydration, weather, readiness and pacing changes
    move the finish-time penalty and time to exhaustion.
    """
    console.print("\n[bold cyan]Race-Day Sensitivity Analysis[/bold cyan]\n")

    request = SimulationRequest(
        distance_km=distance,
        duration_min=duration,
        nutrition=NutritionInputs(
            fueling_g_per_hr=fueling, fluid_ml_per_hr=fluid, sodium_mg_per_hr=sodium
        ),
        temperature_c=temperature,
        humidity_pct=humidity,
        readiness=readiness,
        strategy=strategy,
    )
    analyzer = SimulationSensitivityAnalyzer(request)
    baseline = analyzer.baseline_simulation

    console.print("[bold]Baseline:[/bold]")
    console.print(f"  Penalty: +{baseline.performance_impact.total_penalty_pct}%")
    console.print(
        f"  TTE: {baseline.energy.time_to_exhaustion_km[baseline.energy.selected_strategy]:g} km"
    )
    console.print(f"  GI risk: {baseline.gi_risk.level.value}")

    if change:
        for item in change:
            key, sep, value = item.partition("=")
            if not sep:
                console.print(f"[red]✗ Expected key=value, got '{item}'[/red]")
                raise typer.Exit(1)
            try:
                _display_sensitivity_result(analyzer.modify_assumption(key.strip(), value.strip()))
            except ValueError as e:
                console.print(f"[red]✗ Error: {e}[/red]")
                raise typer.Exit(1)
        return

    # Interactive loop
    scenario_count = 0
    while True:
        assumption = Prompt.ask(
            "\nWhat input would you like to modify?",
            choices=list(SUPPORTED_ASSUMPTIONS) + ["exit"],
        )
        if assumption == "exit":
            break

        new_value = Prompt.ask(f"Enter new {assumption} value")
        try:
            _display_sensitivity_result(analyzer.modify_assumption(assumption, new_value))
            scenario_count += 1
        except ValueError as e:
            console.print(f"[red]✗ Error: {e}[/red]")
            continue

        if not Confirm.ask("\nRun another scenario?", default=True):
            break

    console.print(f"\n[dim]Summary: Explored {scenario_count} scenario(s)[/dim]\n")


if __name__ == "__main__":
    app()
