"""
Planning-cycle trace generation and export.

Each planning cycle records what the engine saw (signals, fatigue
breakdown, race proximity), what it decided (taper, fatigue protection,
lesson layering) and what it learned (weight update). Traces are exported
to JSON and Markdown for athlete and coach review.
"""

import json
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from coach_engine.plan_schemas import PlanAdjustments, PlanDecision
from coach_engine.schemas import RaceLesson, Weights


class CycleTrace(BaseModel):
    """Audit trail of one planning cycle."""

    athlete_id: str
    week_start: date
    timestamp: datetime = Field(default_factory=datetime.now)
    result: str = Field(default="applied", description="'applied', 'rejected' or 'unavailable'")
    fatigue_score: Optional[float] = None
    fatigue_interpretation: Optional[str] = None
    fatigue_breakdown: Dict[str, float] = Field(default_factory=dict)
    signals: Dict[str, float] = Field(default_factory=dict)
    race_weeks_out: Optional[float] = None
    volume_multiplier: Optional[float] = None
    adjustments: Optional[PlanAdjustments] = None
    lessons: List[RaceLesson] = Field(default_factory=list)
    decisions: List[PlanDecision] = Field(default_factory=list)
    weights_before: Optional[Weights] = None
    weights_after: Optional[Weights] = None
    outcome_score: Optional[float] = None
    planned_km: Optional[float] = None
    notes: List[str] = Field(default_factory=list)


class CycleTraceBuilder:
    """
    Builds and exports planning-cycle traces.

    The trace shows:
    - Which signals fed the fatigue score and how each contributed
    - Which plan decisions were taken and why
    - How the learned weights moved after the cycle
    """

    def __init__(self, athlete_id: str, week_start: date):
        """
        Initialize trace builder.

        Args:
            athlete_id: Athlete the cycle ran for
            week_start: Monday of the planned week
        """
        self.trace = CycleTrace(athlete_id=athlete_id, week_start=week_start)

    def record_fatigue(
        self,
        score: float,
        interpretation: str,
        breakdown: Dict[str, float],
        signals: Dict[str, float],
        race_weeks_out: Optional[float],
    ) -> None:
        self.trace.fatigue_score = score
        self.trace.fatigue_interpretation = interpretation
        self.trace.fatigue_breakdown = dict(breakdown)
        self.trace.signals = dict(signals)
        self.trace.race_weeks_out = race_weeks_out

    def record_mutation(
        self,
        applied: bool,
        volume_multiplier: float,
        adjustments: PlanAdjustments,
        lessons: List[RaceLesson],
        planned_km: float,
    ) -> None:
        self.trace.result = "applied" if applied else "rejected"
        self.trace.volume_multiplier = volume_multiplier
        self.trace.adjustments = adjustments
        self.trace.lessons = list(lessons)
        self.trace.planned_km = planned_km

    def record_weights(self, before: Weights, after: Weights, outcome_score: float) -> None:
        self.trace.weights_before = before
        self.trace.weights_after = after
        self.trace.outcome_score = outcome_score

    def add_plan_decision(
        self,
        decision_point: str,
        input_factors: List[str],
        reasoning: str,
        outcome: str,
    ) -> None:
        """
        Add a plan decision to the trace.

        Args:
            decision_point: The decision that was made
            input_factors: Factors that influenced this decision
            reasoning: Explanation of why this decision was made
            outcome: The resulting choice or action taken
        """
        self.trace.decisions.append(
            PlanDecision(
                decision_point=decision_point,
                input_factors=input_factors,
                reasoning=reasoning,
                outcome=outcome,
            )
        )

    def add_note(self, note: str) -> None:
        self.trace.notes.append(note)

    def set_result(self, result: str) -> None:
        """
        Set the cycle result.

        Args:
            result: One of "applied", "rejected", "unavailable"
        """
        self.trace.result = result

    def export_to_json(self) -> dict:
        """
        Export trace to JSON-serializable dictionary.

        Returns:
            Dictionary representation of the trace
        """
        return self.trace.model_dump(mode="json")

    def export_to_markdown(self) -> str:
        """
        Export trace to human-readable Markdown format.

        Returns:
            Markdown-formatted trace report
        """
        trace = self.trace
        lines = []

        lines.append("# Planning Cycle Trace")
        lines.append("")
        lines.append(f"**Timestamp:** {trace.timestamp.strftime('%Y-%m-%d %H:%M:%S')}")
        lines.append(f"**Athlete:** `{trace.athlete_id}`")
        lines.append(f"**Week:** {trace.week_start.isoformat()}")
        lines.append(f"**Result:** **{trace.result.upper()}**")
        if trace.race_weeks_out is not None:
            lines.append(f"**Race In:** {trace.race_weeks_out:.1f} weeks")
        lines.append("")
        lines.append("---")
        lines.append("")

        # Fatigue
        lines.append("## Fatigue Score")
        lines.append("")
        if trace.fatigue_score is None:
            lines.append("*Fatigue was not scored this cycle*")
        else:
            lines.append(
                f"**Score:** {trace.fatigue_score:.3f} → **{trace.fatigue_interpretation}**"
            )
            lines.append("")
            if trace.signals:
                lines.append("| Signal | Value |")
                lines.append("|--------|-------|")
                for name, value in trace.signals.items():
                    lines.append(f"| {name.replace('_', ' ').title()} | {value:.2f} |")
                lines.append("")
            lines.append("| Component | Contribution |")
            lines.append("|-----------|--------------|")
            for component, contribution in trace.fatigue_breakdown.items():
                lines.append(
                    f"| {component.replace('_', ' ').title()} | {contribution:+.3f} |"
                )
        lines.append("")
        lines.append("---")
        lines.append("")

        # Plan decisions
        lines.append("## Plan Decisions")
        lines.append("")
        if trace.volume_multiplier is not None:
            lines.append(f"**Volume Multiplier:** {trace.volume_multiplier:.2f}")
        if trace.planned_km is not None:
            lines.append(f"**Planned Volume:** {trace.planned_km:.0f} km")
        lines.append("")

        if not trace.decisions:
            lines.append("*No plan decisions recorded*")
            lines.append("")
        for i, decision in enumerate(trace.decisions, 1):
            lines.append(f"### Decision {i}: {decision.decision_point}")
            lines.append("")
            lines.append(f"**Input Factors:** {', '.join(decision.input_factors)}")
            lines.append("")
            lines.append(f"**Reasoning:** {decision.reasoning}")
            lines.append("")
            lines.append(f"**Outcome:** {decision.outcome}")
            lines.append("")

        if trace.lessons:
            lines.append("### Active Race Lessons")
            lines.append("")
            for lesson in trace.lessons:
                lines.append(f"- `{lesson.key.value}` ({lesson.weight:.2f}): {lesson.summary}")
            lines.append("")

        lines.append("---")
        lines.append("")

        # Weight learning
        if trace.weights_before is not None and trace.weights_after is not None:
            lines.append("## Weight Learning")
            lines.append("")
            lines.append(f"**Outcome Score:** {trace.outcome_score:+.2f}")
            lines.append("")
            lines.append("| Weight | Before | After |")
            lines.append("|--------|--------|-------|")
            before = trace.weights_before.model_dump()
            after = trace.weights_after.model_dump()
            for name in before:
                lines.append(f"| {name.replace('_', ' ').title()} | {before[name]:.3f} | {after[name]:.3f} |")
            lines.append("")
            lines.append("---")
            lines.append("")

        if trace.notes:
            lines.append("## Notes")
            lines.append("")
            for note in trace.notes:
                lines.append(f"- {note}")
            lines.append("")

        lines.append("*This trace records every input and decision of the planning cycle.*")

        return "\n".join(lines)

    def save_to_file(self, output_dir: Path, format: str = "json") -> Path:
        """
        Save trace to file in specified format.

        Args:
            output_dir: Directory to save trace file
            format: Output format ("json" or "markdown")

        Returns:
            Path to saved file

        Raises:
            ValueError: If format is not supported
        """
        output_dir.mkdir(parents=True, exist_ok=True)

        timestamp_str = self.trace.timestamp.strftime("%Y%m%d_%H%M%S")
        athlete_id = self.trace.athlete_id.replace(" ", "_")
        stem = f"cycle_{athlete_id}_{self.trace.week_start.isoformat()}_{timestamp_str}"

        if format == "json":
            filepath = output_dir / f"{stem}.json"
            with open(filepath, "w") as f:
                json.dump(self.export_to_json(), f, indent=2, default=str)

        elif format == "markdown":
            filepath = output_dir / f"{stem}.md"
            with open(filepath, "w") as f:
                f.write(self.export_to_markdown())

        else:
            raise ValueError(f"Unsupported format: {format}. Use 'json' or 'markdown'")

        return filepath


def load_trace_from_file(filepath: Path) -> CycleTrace:
    """
    Load a cycle trace from JSON file.

    Args:
        filepath: Path to trace JSON file

    Returns:
        CycleTrace object

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If JSON is invalid
    """
    if not filepath.exists():
        raise FileNotFoundError(f"Trace file not found: {filepath}")

    with open(filepath, "r") as f:
        data = json.load(f)

    try:
        return CycleTrace(**data)
    except ValidationError as e:
        raise ValueError(f"Invalid trace file: {e}") from e
