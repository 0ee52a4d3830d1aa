"""
Pairlog FastAPI Application.

Ingestion API for coding assistant telemetry.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware

from pairlog.api.routes import analytics
from pairlog.api.schemas import HealthResponse
from pairlog.config import settings
from pairlog.logging_config import setup_logging
from pairlog.startup import check_readiness, run_all_startup_checks

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.

    Runs startup checks before the application starts serving requests so
    that a missing database or schema fails fast.
    """
    setup_logging(context="api")

    logger.info("Running startup checks...")
    run_all_startup_checks()
    logger.info("Startup checks passed")

    logger.info("Application startup complete")
    yield
    logger.info("Application shutdown complete")


app = FastAPI(
    lifespan=lifespan,
    title="Pairlog API",
    description="Telemetry ingestion for solo and pair-programming assistant sessions",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint - API health check."""
    return {
        "status": "ok",
        "message": "Pairlog API is running",
        "version": "0.1.0",
    }


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    from pairlog.db.connection import check_connection

    db_status = "healthy" if check_connection() else "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        database=db_status,
    )


@app.get("/ready")
async def ready(response: Response) -> dict:
    """
    Readiness probe endpoint for load balancers.

    Returns 200 OK if ready to serve requests, 503 Service Unavailable otherwise.
    Includes startup metrics and current health status.
    """
    is_ready, details = check_readiness()
    if not is_ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return details


app.include_router(analytics.router)
