"""
Shared API dependencies.

The store and coach are process-wide so that every request shares one
PlanCycleGuard; tests swap them through app.dependency_overrides.
"""

from functools import lru_cache

from fastapi import HTTPException, status

from coach_engine.coach import AdaptiveCoach
from coach_engine.config import get_settings
from coach_engine.database import SqlCoachStore, init_database
from coach_engine.schemas import EngineStatus, Unavailable


UNAVAILABLE_STATUS_CODES = {
    EngineStatus.CONCURRENT_MUTATION: status.HTTP_409_CONFLICT,
    EngineStatus.INSUFFICIENT_DATA: status.HTTP_422_UNPROCESSABLE_ENTITY,
    EngineStatus.NOT_READY: status.HTTP_422_UNPROCESSABLE_ENTITY,
    EngineStatus.INVALID_MUTATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    EngineStatus.EXTERNAL_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@lru_cache()
def get_store() -> SqlCoachStore:
    return init_database(get_settings().DATABASE_URL)


@lru_cache()
def get_coach() -> AdaptiveCoach:
    return AdaptiveCoach(get_store())


def raise_unavailable(result: Unavailable) -> None:
    """
    Convert an Unavailable result into an HTTPException.

    Raises:
        HTTPException: Always; status code depends on the unavailable category
    """
    raise HTTPException(
        status_code=UNAVAILABLE_STATUS_CODES[result.status],
        detail={"status": result.status.value, "reason": result.reason},
    )
