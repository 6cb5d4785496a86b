"""
SQLAlchemy persistence for the coaching engine.

Provides persistent storage for:
- Athletes and their learned state (weights, lessons, cycle count)
- Logged activities, post-run feedback and race results
- Target races and race feedback history
- The current week plan per athlete and week (replace-written with a
  revision compare-and-swap)
- Performance models, per-band correction factors and calibration records

SqlCoachStore implements every store port in ports.py on top of these
tables.
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Iterable, Iterator, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from coach_engine.calibration import CalibrationRecord
from coach_engine.config import get_settings
from coach_engine.errors import ExternalServiceError, PlanRevisionConflict
from coach_engine.plan_schemas import WeekPlan
from coach_engine.schemas import (
    ActivityRecord,
    AthleteState,
    CalibrationEntry,
    CorrectionFactors,
    DistanceBand,
    PerformanceModel,
    RaceFeedback,
    RaceLesson,
    RacePriority,
    RaceResult,
    RouteAnalysis,
    RunFeedback,
    Surface,
    TargetRace,
    Weights,
)


logger = logging.getLogger(__name__)

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Athlete(Base):
    """
    Athlete with persisted learning state.

    Attributes:
        id: Primary key
        athlete_id: External identifier used by every port
        weights: Learned fatigue weights as JSON
        lessons: Current race lessons as JSON
        cycle_count: Completed planning cycles
        created_at: Account creation timestamp
        updated_at: Last state write
    """

    __tablename__ = "athletes"

    id = Column(Integer, primary_key=True)
    athlete_id = Column(String, unique=True, nullable=False, index=True)
    weights = Column(JSON, nullable=True)
    lessons = Column(JSON, nullable=True)
    cycle_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, nullable=False)

    # Relationships
    activities = relationship("ActivityRow", back_populates="athlete", cascade="all, delete-orphan")
    plans = relationship("WeekPlanRow", back_populates="athlete", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Athlete(athlete_id='{self.athlete_id}', cycles={self.cycle_count})>"


class ActivityRow(Base):
    """
    Logged training session with optional health signals.

    Immutable once written; the engine only reads it.
    """

    __tablename__ = "activity_records"

    id = Column(Integer, primary_key=True)
    athlete_id = Column(Integer, ForeignKey("athletes.id"), nullable=False, index=True)
    activity_date = Column(Date, nullable=False, index=True)
    name = Column(String, nullable=True)
    distance_km = Column(Float, nullable=True)
    duration_min = Column(Float, nullable=True)
    elevation_gain_m = Column(Float, nullable=True)
    rpe = Column(Float, nullable=True)
    sleep_hours = Column(Float, nullable=True)
    hrv = Column(Float, nullable=True)
    heart_rate_avg = Column(Float, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    # Relationships
    athlete = relationship("Athlete", back_populates="activities")

    def __repr__(self):
        return f"<ActivityRow(date='{self.activity_date}', km={self.distance_km})>"


class RunFeedbackRow(Base):
    """Post-run RPE and soreness."""

    __tablename__ = "run_feedback"

    id = Column(Integer, primary_key=True)
    athlete_id = Column(Integer, ForeignKey("athletes.id"), nullable=False, index=True)
    feedback_date = Column(Date, nullable=False, index=True)
    rpe = Column(Float, nullable=False)
    soreness = Column(Float, nullable=False)
    notes = Column(String, nullable=True)


class RaceResultRow(Base):
    """Official race result used for baseline selection."""

    __tablename__ = "race_results"

    id = Column(Integer, primary_key=True)
    athlete_id = Column(Integer, ForeignKey("athletes.id"), nullable=False, index=True)
    race_date = Column(Date, nullable=False, index=True)
    name = Column(String, nullable=True)
    distance_km = Column(Float, nullable=False)
    time_min = Column(Float, nullable=True)


class TargetRaceRow(Base):
    """
    Upcoming (or past) race metadata.

    Attributes:
        race_id: External race identifier, unique per athlete
        route_analysis: Route-derived estimate as JSON (nullable)
        expected_time_min: Manually entered expected finish time
    """

    __tablename__ = "target_races"
    __table_args__ = (UniqueConstraint("athlete_id", "race_id", name="uq_target_race"),)

    id = Column(Integer, primary_key=True)
    athlete_id = Column(Integer, ForeignKey("athletes.id"), nullable=False, index=True)
    race_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    race_date = Column(Date, nullable=False, index=True)
    distance_km = Column(Float, nullable=False)
    elevation_gain_m = Column(Float, default=0.0, nullable=False)
    surface = Column(String, default=Surface.ROAD.value, nullable=False)
    priority = Column(String, default=RacePriority.A.value, nullable=False)
    route_analysis = Column(JSON, nullable=True)
    expected_time_min = Column(Float, nullable=True)


class RaceFeedbackRow(Base):
    """Race feedback entry, unique by (athlete, race id, race date)."""

    __tablename__ = "race_feedback"
    __table_args__ = (
        UniqueConstraint("athlete_id", "race_id", "race_date", name="uq_race_feedback"),
    )

    id = Column(Integer, primary_key=True)
    athlete_id = Column(Integer, ForeignKey("athletes.id"), nullable=False, index=True)
    race_id = Column(String, nullable=False)
    race_date = Column(Date, nullable=False, index=True)
    feedback_data = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)


class WeekPlanRow(Base):
    """
    The current plan for one athlete and week.

    Superseded in place by each mutation cycle; ``revision`` increases by
    one on every write and guards against lost updates.
    """

    __tablename__ = "week_plans"
    __table_args__ = (UniqueConstraint("athlete_id", "week_start", name="uq_week_plan"),)

    id = Column(Integer, primary_key=True)
    athlete_id = Column(Integer, ForeignKey("athletes.id"), nullable=False, index=True)
    week_start = Column(Date, nullable=False, index=True)
    revision = Column(Integer, default=0, nullable=False)
    plan_data = Column(JSON, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, nullable=False)

    # Relationships
    athlete = relationship("Athlete", back_populates="plans")

    def __repr__(self):
        return f"<WeekPlanRow(week_start='{self.week_start}', revision={self.revision})>"


class PerformanceModelRow(Base):
    """Riegel-style performance model, one per athlete."""

    __tablename__ = "performance_models"

    id = Column(Integer, primary_key=True)
    athlete_id = Column(Integer, ForeignKey("athletes.id"), nullable=False, unique=True)
    baseline_distance_km = Column(Float, nullable=True)
    baseline_time_min = Column(Float, nullable=True)
    baseline_date = Column(Date, nullable=True)
    baseline_is_real = Column(Boolean, default=False, nullable=False)
    performance_decay = Column(Float, nullable=False)
    calibration_count = Column(Integer, default=0, nullable=False)
    confidence = Column(Float, default=0.5, nullable=False)
    last_calibration_date = Column(Date, nullable=True)
    calibration_history = Column(JSON, nullable=True)
    updated_at = Column(DateTime, default=_utcnow, nullable=False)


class CorrectionFactorsRow(Base):
    """Per-band correction multipliers; upserted, never deleted."""

    __tablename__ = "correction_factors"
    __table_args__ = (
        UniqueConstraint("athlete_id", "distance_band", name="uq_correction_band"),
    )

    id = Column(Integer, primary_key=True)
    athlete_id = Column(Integer, ForeignKey("athletes.id"), nullable=False, index=True)
    distance_band = Column(String, nullable=False)
    base_fatigue_factor = Column(Float, nullable=False)
    trail_factor = Column(Float, nullable=False)
    mountain_factor = Column(Float, nullable=False)
    night_factor = Column(Float, nullable=False)
    heat_factor = Column(Float, nullable=False)
    aid_station_multiplier = Column(Float, nullable=False)
    calibration_count = Column(Integer, default=0, nullable=False)
    confidence = Column(Float, nullable=False)
    last_quality = Column(Float, nullable=True)
    race_history = Column(JSON, nullable=True)
    updated_at = Column(DateTime, default=_utcnow, nullable=False)


class CalibrationRecordRow(Base):
    """Audit trail of calibrations on both tracks."""

    __tablename__ = "calibration_records"

    id = Column(Integer, primary_key=True)
    athlete_id = Column(Integer, ForeignKey("athletes.id"), nullable=False, index=True)
    race_id = Column(String, nullable=False)
    track = Column(String, nullable=False)
    distance_band = Column(String, nullable=True)
    distance_km = Column(Float, nullable=False)
    predicted_time_min = Column(Float, nullable=False)
    actual_time_min = Column(Float, nullable=False)
    delta_pct = Column(Float, nullable=False)
    value_before = Column(Float, nullable=False)
    value_after = Column(Float, nullable=False)
    quality = Column(Float, nullable=False)
    notes = Column(String, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)


# Database connection and session management

def get_engine(database_url: Optional[str] = None):
    """
    Create SQLAlchemy engine.

    Args:
        database_url: Database connection string (default: settings DATABASE_URL)

    Returns:
        SQLAlchemy Engine instance
    """
    database_url = database_url or get_settings().DATABASE_URL
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection so every session sees the same in-memory database
        return create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, echo=False)


def get_session_factory(engine):
    """
    Create session factory.

    Args:
        engine: SQLAlchemy Engine instance

    Returns:
        Session factory (sessionmaker)
    """
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def init_database(database_url: Optional[str] = None) -> "SqlCoachStore":
    """
    Initialize database, create all tables and return a store on it.

    Args:
        database_url: Database connection string

    Returns:
        SqlCoachStore bound to the database
    """
    engine = get_engine(database_url)
    Base.metadata.create_all(engine)
    return SqlCoachStore(get_session_factory(engine))


# Row <-> model conversion

def _activity(row: ActivityRow) -> ActivityRecord:
    return ActivityRecord(
        activity_date=row.activity_date,
        name=row.name,
        distance_km=row.distance_km,
        duration_min=row.duration_min,
        elevation_gain_m=row.elevation_gain_m,
        rpe=row.rpe,
        sleep_hours=row.sleep_hours,
        hrv=row.hrv,
        heart_rate_avg=row.heart_rate_avg,
    )


def _target_race(row: TargetRaceRow) -> TargetRace:
    return TargetRace(
        id=row.race_id,
        name=row.name,
        race_date=row.race_date,
        distance_km=row.distance_km,
        elevation_gain_m=row.elevation_gain_m,
        surface=Surface(row.surface),
        priority=RacePriority(row.priority),
        route_analysis=(
            RouteAnalysis.model_validate(row.route_analysis) if row.route_analysis else None
        ),
        expected_time_min=row.expected_time_min,
    )


CORRECTION_FIELDS = (
    "base_fatigue_factor",
    "trail_factor",
    "mountain_factor",
    "night_factor",
    "heat_factor",
    "aid_station_multiplier",
    "calibration_count",
    "confidence",
    "last_quality",
)


class SqlCoachStore:
    """
    Activity, plan, race and model store backed by SQLAlchemy.

    Every public method runs in its own short transaction. Driver and
    schema failures surface as ExternalServiceError.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def _session(self, operation: str, write: bool = False) -> Iterator[Session]:
        try:
            with self.session_factory() as session:
                if write:
                    with session.begin():
                        yield session
                else:
                    yield session
        except SQLAlchemyError as e:
            logger.error("Database error during %s: %s", operation, e)
            raise ExternalServiceError(f"Database error during {operation}: {e}") from e

    def _athlete(self, session: Session, athlete_id: str, create: bool = False) -> Optional[Athlete]:
        athlete = session.query(Athlete).filter_by(athlete_id=athlete_id).one_or_none()
        if athlete is None and create:
            athlete = Athlete(athlete_id=athlete_id, cycle_count=0)
            session.add(athlete)
            session.flush()
        return athlete

    # ------------------------------------------------------------------
    # Host-side writes
    # ------------------------------------------------------------------

    def add_activities(self, athlete_id: str, activities: Iterable[ActivityRecord]) -> int:
        """Append logged activities; returns the number written."""
        with self._session("add_activities", write=True) as session:
            athlete = self._athlete(session, athlete_id, create=True)
            count = 0
            for activity in activities:
                session.add(ActivityRow(athlete_id=athlete.id, **activity.model_dump()))
                count += 1
        return count

    def add_run_feedback(self, athlete_id: str, feedback: Iterable[RunFeedback]) -> None:
        with self._session("add_run_feedback", write=True) as session:
            athlete = self._athlete(session, athlete_id, create=True)
            for entry in feedback:
                session.add(RunFeedbackRow(athlete_id=athlete.id, **entry.model_dump()))

    def add_race_result(self, athlete_id: str, result: RaceResult) -> None:
        with self._session("add_race_result", write=True) as session:
            athlete = self._athlete(session, athlete_id, create=True)
            session.add(RaceResultRow(athlete_id=athlete.id, **result.model_dump()))

    def upsert_race(self, athlete_id: str, race: TargetRace) -> None:
        """Insert or replace race metadata by race id."""
        with self._session("upsert_race", write=True) as session:
            athlete = self._athlete(session, athlete_id, create=True)
            row = (
                session.query(TargetRaceRow)
                .filter_by(athlete_id=athlete.id, race_id=race.id)
                .one_or_none()
            )
            if row is None:
                row = TargetRaceRow(athlete_id=athlete.id, race_id=race.id)
                session.add(row)
            row.name = race.name
            row.race_date = race.race_date
            row.distance_km = race.distance_km
            row.elevation_gain_m = race.elevation_gain_m
            row.surface = race.surface.value
            row.priority = race.priority.value
            row.route_analysis = (
                race.route_analysis.model_dump(mode="json") if race.route_analysis else None
            )
            row.expected_time_min = race.expected_time_min

    # ------------------------------------------------------------------
    # ActivityStore
    # ------------------------------------------------------------------

    def list_activities(self, athlete_id: str, start: date, end: date) -> List[ActivityRecord]:
        with self._session("list_activities") as session:
            athlete = self._athlete(session, athlete_id)
            if athlete is None:
                return []
            rows = (
                session.query(ActivityRow)
                .filter(
                    ActivityRow.athlete_id == athlete.id,
                    ActivityRow.activity_date >= start,
                    ActivityRow.activity_date <= end,
                )
                .order_by(ActivityRow.activity_date, ActivityRow.id)
                .all()
            )
            return [_activity(r) for r in rows]

    def list_run_feedback(self, athlete_id: str, start: date, end: date) -> List[RunFeedback]:
        with self._session("list_run_feedback") as session:
            athlete = self._athlete(session, athlete_id)
            if athlete is None:
                return []
            rows = (
                session.query(RunFeedbackRow)
                .filter(
                    RunFeedbackRow.athlete_id == athlete.id,
                    RunFeedbackRow.feedback_date >= start,
                    RunFeedbackRow.feedback_date <= end,
                )
                .order_by(RunFeedbackRow.feedback_date)
                .all()
            )
            return [
                RunFeedback(
                    feedback_date=r.feedback_date, rpe=r.rpe, soreness=r.soreness, notes=r.notes
                )
                for r in rows
            ]

    # ------------------------------------------------------------------
    # PlanStore
    # ------------------------------------------------------------------

    def get_plan(self, athlete_id: str, week_start: date) -> Optional[WeekPlan]:
        with self._session("get_plan") as session:
            athlete = self._athlete(session, athlete_id)
            if athlete is None:
                return None
            row = (
                session.query(WeekPlanRow)
                .filter_by(athlete_id=athlete.id, week_start=week_start)
                .one_or_none()
            )
            if row is None:
                return None
            plan = WeekPlan.model_validate(row.plan_data)
            return plan.model_copy(update={"revision": row.revision})

    def save_plan(self, athlete_id: str, plan: WeekPlan, expected_revision: int) -> WeekPlan:
        """
        Replace the stored plan if its revision still matches.

        Raises:
            PlanRevisionConflict: If another writer got there first
        """
        with self._session("save_plan", write=True) as session:
            saved = self._write_plan(session, athlete_id, plan, expected_revision)

        logger.debug(
            "Plan for %s week %s saved at revision %d", athlete_id, plan.week_start, saved.revision
        )
        return saved

    def save_cycle(
        self,
        athlete_id: str,
        plan: Optional[WeekPlan],
        expected_revision: int,
        state: AthleteState,
    ) -> Optional[WeekPlan]:
        """
        Persist one planning cycle: the plan (if any) and the athlete state
        commit together or not at all.

        Raises:
            PlanRevisionConflict: If another writer got there first
        """
        saved = None
        with self._session("save_cycle", write=True) as session:
            if plan is not None:
                saved = self._write_plan(session, athlete_id, plan, expected_revision)
            self._write_state(session, state)

        logger.debug(
            "Cycle %d for %s saved (plan revision %s)",
            state.cycle_count,
            athlete_id,
            saved.revision if saved is not None else "unchanged",
        )
        return saved

    def _write_plan(
        self, session: Session, athlete_id: str, plan: WeekPlan, expected_revision: int
    ) -> WeekPlan:
        athlete = self._athlete(session, athlete_id, create=True)
        row = (
            session.query(WeekPlanRow)
            .filter_by(athlete_id=athlete.id, week_start=plan.week_start)
            .with_for_update()
            .one_or_none()
        )
        current = row.revision if row is not None else 0
        if current != expected_revision:
            raise PlanRevisionConflict(athlete_id, expected_revision, current)

        saved = plan.model_copy(update={"revision": current + 1})
        if row is None:
            row = WeekPlanRow(athlete_id=athlete.id, week_start=plan.week_start)
            session.add(row)
        row.revision = saved.revision
        row.plan_data = saved.model_dump(mode="json")
        row.updated_at = _utcnow()
        return saved

    def get_athlete_state(self, athlete_id: str) -> Optional[AthleteState]:
        with self._session("get_athlete_state") as session:
            athlete = self._athlete(session, athlete_id)
            if athlete is None:
                return None
            return AthleteState(
                athlete_id=athlete_id,
                weights=Weights(**athlete.weights) if athlete.weights else Weights(),
                lessons=[RaceLesson.model_validate(x) for x in athlete.lessons or []],
                cycle_count=athlete.cycle_count,
                updated_at=athlete.updated_at,
            )

    def save_athlete_state(self, state: AthleteState) -> None:
        with self._session("save_athlete_state", write=True) as session:
            self._write_state(session, state)

    def _write_state(self, session: Session, state: AthleteState) -> None:
        athlete = self._athlete(session, state.athlete_id, create=True)
        athlete.weights = state.weights.model_dump()
        athlete.lessons = [lesson.model_dump(mode="json") for lesson in state.lessons]
        athlete.cycle_count = state.cycle_count
        athlete.updated_at = state.updated_at

    # ------------------------------------------------------------------
    # RaceStore
    # ------------------------------------------------------------------

    def next_race(self, athlete_id: str, today: date) -> Optional[TargetRace]:
        with self._session("next_race") as session:
            athlete = self._athlete(session, athlete_id)
            if athlete is None:
                return None
            row = (
                session.query(TargetRaceRow)
                .filter(TargetRaceRow.athlete_id == athlete.id, TargetRaceRow.race_date >= today)
                .order_by(TargetRaceRow.race_date)
                .first()
            )
            return _target_race(row) if row is not None else None

    def get_race(self, athlete_id: str, race_id: str) -> Optional[TargetRace]:
        with self._session("get_race") as session:
            athlete = self._athlete(session, athlete_id)
            if athlete is None:
                return None
            row = (
                session.query(TargetRaceRow)
                .filter_by(athlete_id=athlete.id, race_id=race_id)
                .one_or_none()
            )
            return _target_race(row) if row is not None else None

    def list_race_results(self, athlete_id: str) -> List[RaceResult]:
        with self._session("list_race_results") as session:
            athlete = self._athlete(session, athlete_id)
            if athlete is None:
                return []
            rows = (
                session.query(RaceResultRow)
                .filter_by(athlete_id=athlete.id)
                .order_by(RaceResultRow.race_date)
                .all()
            )
            return [
                RaceResult(
                    race_date=r.race_date, name=r.name, distance_km=r.distance_km, time_min=r.time_min
                )
                for r in rows
            ]

    def list_race_feedback(self, athlete_id: str) -> List[RaceFeedback]:
        with self._session("list_race_feedback") as session:
            athlete = self._athlete(session, athlete_id)
            if athlete is None:
                return []
            rows = (
                session.query(RaceFeedbackRow)
                .filter_by(athlete_id=athlete.id)
                .order_by(RaceFeedbackRow.race_date.desc(), RaceFeedbackRow.id.desc())
                .all()
            )
            return [RaceFeedback.model_validate(r.feedback_data) for r in rows]

    def replace_race_feedback(self, athlete_id: str, history: List[RaceFeedback]) -> None:
        """Replace the whole feedback history (already de-duplicated by the caller)."""
        with self._session("replace_race_feedback", write=True) as session:
            athlete = self._athlete(session, athlete_id, create=True)
            session.query(RaceFeedbackRow).filter_by(athlete_id=athlete.id).delete()
            for feedback in history:
                session.add(
                    RaceFeedbackRow(
                        athlete_id=athlete.id,
                        race_id=feedback.id,
                        race_date=feedback.race_date,
                        feedback_data=feedback.model_dump(mode="json"),
                    )
                )

    # ------------------------------------------------------------------
    # ModelStore
    # ------------------------------------------------------------------

    def get_performance_model(self, athlete_id: str) -> Optional[PerformanceModel]:
        with self._session("get_performance_model") as session:
            athlete = self._athlete(session, athlete_id)
            if athlete is None:
                return None
            row = session.query(PerformanceModelRow).filter_by(athlete_id=athlete.id).one_or_none()
            if row is None:
                return None
            return PerformanceModel(
                athlete_id=athlete_id,
                baseline_distance_km=row.baseline_distance_km,
                baseline_time_min=row.baseline_time_min,
                baseline_date=row.baseline_date,
                baseline_is_real=row.baseline_is_real,
                performance_decay=row.performance_decay,
                calibration_count=row.calibration_count,
                confidence=row.confidence,
                last_calibration_date=row.last_calibration_date,
                calibration_history=[
                    CalibrationEntry.model_validate(e) for e in row.calibration_history or []
                ],
            )

    def save_performance_model(self, model: PerformanceModel) -> None:
        with self._session("save_performance_model", write=True) as session:
            athlete = self._athlete(session, model.athlete_id, create=True)
            row = session.query(PerformanceModelRow).filter_by(athlete_id=athlete.id).one_or_none()
            if row is None:
                row = PerformanceModelRow(athlete_id=athlete.id)
                session.add(row)
            row.baseline_distance_km = model.baseline_distance_km
            row.baseline_time_min = model.baseline_time_min
            row.baseline_date = model.baseline_date
            row.baseline_is_real = model.baseline_is_real
            row.performance_decay = model.performance_decay
            row.calibration_count = model.calibration_count
            row.confidence = model.confidence
            row.last_calibration_date = model.last_calibration_date
            row.calibration_history = [
                e.model_dump(mode="json") for e in model.calibration_history
            ]
            row.updated_at = _utcnow()

    def get_correction_factors(
        self, athlete_id: str, band: DistanceBand
    ) -> Optional[CorrectionFactors]:
        with self._session("get_correction_factors") as session:
            athlete = self._athlete(session, athlete_id)
            if athlete is None:
                return None
            row = (
                session.query(CorrectionFactorsRow)
                .filter_by(athlete_id=athlete.id, distance_band=band.value)
                .one_or_none()
            )
            if row is None:
                return None
            values = {name: getattr(row, name) for name in CORRECTION_FIELDS}
            return CorrectionFactors(
                athlete_id=athlete_id,
                distance_band=band,
                race_history=row.race_history or [],
                **values,
            )

    def save_correction_factors(self, factors: CorrectionFactors) -> None:
        with self._session("save_correction_factors", write=True) as session:
            athlete = self._athlete(session, factors.athlete_id, create=True)
            row = (
                session.query(CorrectionFactorsRow)
                .filter_by(athlete_id=athlete.id, distance_band=factors.distance_band.value)
                .one_or_none()
            )
            if row is None:
                row = CorrectionFactorsRow(
                    athlete_id=athlete.id, distance_band=factors.distance_band.value
                )
                session.add(row)
            for name in CORRECTION_FIELDS:
                setattr(row, name, getattr(factors, name))
            row.race_history = factors.race_history
            row.updated_at = _utcnow()

    def add_calibration_record(self, record: CalibrationRecord) -> None:
        with self._session("add_calibration_record", write=True) as session:
            athlete = self._athlete(session, record.athlete_id, create=True)
            data = record.model_dump()
            data.pop("athlete_id")
            if record.distance_band is not None:
                data["distance_band"] = record.distance_band.value
            session.add(CalibrationRecordRow(athlete_id=athlete.id, **data))

    def list_calibration_records(self, athlete_id: str) -> List[CalibrationRecord]:
        with self._session("list_calibration_records") as session:
            athlete = self._athlete(session, athlete_id)
            if athlete is None:
                return []
            rows = (
                session.query(CalibrationRecordRow)
                .filter_by(athlete_id=athlete.id)
                .order_by(CalibrationRecordRow.created_at, CalibrationRecordRow.id)
                .all()
            )
            return [
                CalibrationRecord(
                    athlete_id=athlete_id,
                    race_id=r.race_id,
                    track=r.track,
                    distance_band=DistanceBand(r.distance_band) if r.distance_band else None,
                    distance_km=r.distance_km,
                    predicted_time_min=r.predicted_time_min,
                    actual_time_min=r.actual_time_min,
                    delta_pct=r.delta_pct,
                    value_before=r.value_before,
                    value_after=r.value_after,
                    quality=r.quality,
                    notes=r.notes or "",
                    created_at=r.created_at,
                )
                for r in rows
            ]
