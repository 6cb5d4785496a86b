"""
Coaching API application.

Serves planning cycles, fatigue scoring, race prediction, race-day
simulation and post-race learning over HTTP. Engine results that are
Unavailable are mapped to status codes in dependencies.py; store and
revision errors that escape a route are mapped here to the same
``{"error": {"status", "reason"}}`` body.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from coach_engine.api.routes import planning, races
from coach_engine.config import get_settings
from coach_engine.errors import CoachEngineError, PlanRevisionConflict
from coach_engine.logging_config import setup_logging
from coach_engine.schemas import EngineStatus

API_VERSION = "1.0.0"

settings = get_settings()
setup_logging(settings)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Coach API %s starting (%s, store %s)",
        API_VERSION,
        settings.ENVIRONMENT,
        settings.DATABASE_URL.split("://", 1)[0],
    )
    yield
    logger.info("Coach API stopped")


app = FastAPI(
    title="Adaptive Coach API",
    description=(
        "Weekly plans adapted to fatigue and race lessons, race time predictions, "
        "race-day physiology simulation and post-race calibration"
    ),
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(planning.router, prefix="/api", tags=["Planning"])
app.include_router(races.router, prefix="/api", tags=["Races"])


@app.get("/")
async def root() -> Dict[str, Any]:
    """Service overview and entry points."""
    return {
        "name": "Adaptive Coach API",
        "version": API_VERSION,
        "planning": ["/api/athletes/import", "/api/fatigue", "/api/plans/cycle"],
        "races": ["/api/races/predict", "/api/races/simulate", "/api/races/outcome"],
        "docs": "/docs",
    }


@app.get("/health")
async def health_check() -> Dict[str, str]:
    return {
        "status": "healthy",
        "service": "coach-engine-api",
        "environment": settings.ENVIRONMENT,
    }


def _engine_error(code: int, engine_status: EngineStatus, reason: str) -> JSONResponse:
    return JSONResponse(
        status_code=code,
        content={"error": {"status": engine_status.value, "reason": reason}, "message": reason},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail, "message": str(exc.detail)},
    )


@app.exception_handler(CoachEngineError)
async def engine_error_handler(request: Request, exc: CoachEngineError):
    """Store failures outside the coach (direct store reads) and stale plan writes."""
    if isinstance(exc, PlanRevisionConflict):
        logger.warning("Plan revision conflict on %s: %s", request.url.path, exc)
        return _engine_error(status.HTTP_409_CONFLICT, EngineStatus.CONCURRENT_MUTATION, str(exc))
    logger.error("Store unavailable on %s: %s", request.url.path, exc)
    return _engine_error(
        status.HTTP_503_SERVICE_UNAVAILABLE, EngineStatus.EXTERNAL_UNAVAILABLE, str(exc)
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal Server Error", "message": str(exc)},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT, log_level="info")
