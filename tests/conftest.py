"""
Shared fixtures: an in-memory store, a sample athlete snapshot and
activity builders.
"""

import json
from datetime import date, timedelta
from pathlib import Path

import pytest

from coach_engine.coach import AdaptiveCoach
from coach_engine.config import Settings
from coach_engine.database import init_database
from coach_engine.schemas import ActivityRecord, AthleteSnapshot

FIXTURES = Path(__file__).parent / "fixtures"

# Monday after the last fixture activity (weeks of 46, 50, 50 and 52 km)
TODAY = date(2026, 6, 1)


def make_activities(end: date, days: int = 14, **fields) -> list:
    """One activity per day for ``days`` days ending on ``end``."""
    values = {
        "distance_km": 10.0,
        "duration_min": 55.0,
        "rpe": 5.0,
        "sleep_hours": 7.5,
        "hrv": 60.0,
    }
    values.update(fields)
    return [
        ActivityRecord(activity_date=end - timedelta(days=i), **values)
        for i in range(days)
    ]


@pytest.fixture
def settings():
    return Settings(DATABASE_URL="sqlite://")


@pytest.fixture
def store():
    """Fresh in-memory SQL store."""
    return init_database("sqlite://")


@pytest.fixture
def snapshot():
    with open(FIXTURES / "athlete_snapshot.json") as f:
        return AthleteSnapshot(**json.load(f))


@pytest.fixture
def loaded_store(store, snapshot):
    """Store holding the sample athlete's history (lessons not yet derived)."""
    athlete_id = snapshot.athlete_id
    store.add_activities(athlete_id, snapshot.activities)
    store.add_run_feedback(athlete_id, snapshot.run_feedback)
    for result in snapshot.race_results:
        store.add_race_result(athlete_id, result)
    for race in snapshot.races:
        store.upsert_race(athlete_id, race)
    return store


@pytest.fixture
def coach(loaded_store, settings):
    return AdaptiveCoach(loaded_store, settings=settings)
