"""
Tests for settings and logging setup.
"""

import json
import logging

import pytest
from pydantic import ValidationError

from coach_engine.config import Settings
from coach_engine.logging_config import JSONFormatter, setup_logging


def test_defaults():
    settings = Settings(DATABASE_URL="sqlite://")

    assert settings.DEFAULT_RACE_HORIZON_WEEKS == 8
    assert settings.OUTCOME_COMPLETION_WEIGHT == 0.6
    assert settings.RIEGEL_EXPONENT == 1.06


def test_env_prefix(monkeypatch):
    monkeypatch.setenv("COACH_DEFAULT_TEMPERATURE_C", "28")

    assert Settings().DEFAULT_TEMPERATURE_C == 28.0


def test_outcome_blend_must_sum_to_one():
    with pytest.raises(ValidationError, match="sum to 1.0"):
        Settings(OUTCOME_COMPLETION_WEIGHT=0.7, OUTCOME_EFFORT_WEIGHT=0.7)


def test_json_formatter():
    record = logging.LogRecord(
        "coach_engine.coach", logging.INFO, __file__, 10, "cycle %s", ("ok",), None
    )

    data = json.loads(JSONFormatter().format(record))

    assert data["level"] == "INFO"
    assert data["logger"] == "coach_engine.coach"
    assert data["message"] == "cycle ok"


def test_setup_logging_json():
    root = setup_logging(Settings(LOG_LEVEL="debug", LOG_FORMAT="json"))

    assert root.level == logging.DEBUG
    assert isinstance(root.handlers[0].formatter, JSONFormatter)
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
