# =============================================================================
# FastAPI Application Entry Point
# =============================================================================
#
# Run with:  uvicorn research_team.main:app
#
# The research team itself is created lazily by the get_research_team
# dependency on the first request, so the app starts (and /health answers)
# even before an LLM API key is configured.
# =============================================================================

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from research_team.api import documents, turns
from research_team.api.deps import reset_research_team
from research_team.config import settings
from research_team.models.responses import HealthResponse

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    """Apply the configured log level to the root logger."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)

    yield  # --- Application runs ---

    reset_research_team()
    logger.info("Shutting down %s.", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    debug=settings.debug,
    lifespan=lifespan,
)

app.include_router(documents.router)
app.include_router(turns.router)


@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health() -> HealthResponse:
    return HealthResponse(version=settings.app_version, service=settings.app_name)
