"""
Centralized configuration for the coaching engine.

Values come from environment variables (prefix ``COACH_``) or a local
``.env`` file. Component modules keep their own named constants; the
settings object only supplies the defaults that a deployment is expected
to tune.
"""

from functools import lru_cache
from typing import List

from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    """Engine settings with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="COACH_",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    DATABASE_URL: str = Field(default="sqlite:///coach_engine.db")

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="text", description="'text' or 'json'")
    ENVIRONMENT: str = Field(default="development")

    # API
    API_HOST: str = Field(default="127.0.0.1")
    API_PORT: int = Field(default=8000, ge=1, le=65535)
    CORS_ORIGINS: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="JSON list in the environment",
    )

    # Planning
    DEFAULT_RACE_HORIZON_WEEKS: int = Field(
        default=8, ge=0, description="Race proximity assumed when no race is on record"
    )

    # Weather fallbacks when the oracle is unavailable
    DEFAULT_TEMPERATURE_C: float = Field(default=20.0, ge=-30.0, le=50.0)
    DEFAULT_HUMIDITY_PCT: float = Field(default=50.0, ge=0.0, le=100.0)

    # Weight learning outcome blend
    OUTCOME_COMPLETION_WEIGHT: float = Field(default=0.6, ge=0.0, le=1.0)
    OUTCOME_EFFORT_WEIGHT: float = Field(default=0.4, ge=0.0, le=1.0)

    # Calibration
    CORRECTION_ALPHA_CAP: float = Field(default=0.4, gt=0.0, le=1.0)
    RIEGEL_EXPONENT: float = Field(default=1.06, ge=1.03, le=1.12)

    # Output locations
    TRACE_DIR: str = Field(default="reasoning_logs")
    PLAN_DIR: str = Field(default="plans")

    @model_validator(mode="after")
    def validate_outcome_blend(self):
        """Outcome blend weights must sum to 1."""
        total = self.OUTCOME_COMPLETION_WEIGHT + self.OUTCOME_EFFORT_WEIGHT
        if abs(total - 1.0) > 0.01:
            raise ValueError(
                f"Outcome blend weights must sum to 1.0 (got {total:.2f})"
            )
        return self


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()


settings = get_settings()
