"""Crypto Signal Engine - FastAPI application."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import health_router, signal_router
from app.api.routes import set_aggregator, set_series_reader
from app.series_reader import get_reader
from signal_engine.aggregator import SignalAggregator
from signal_engine.config import get_settings
from signal_engine.log import configure_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.
    
    Builds the cache and aggregator on startup (a malformed threshold
    table fails here) and shuts the cache down on exit.
    """
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)

    aggregator = SignalAggregator.from_settings(settings)
    set_aggregator(aggregator)
    set_series_reader(get_reader(settings))
    logger.info(
        "service_started",
        service=settings.service_name,
        version=settings.service_version,
        algorithm_version=settings.algorithm_version,
        configured_metrics=len(aggregator.thresholds.metrics),
    )

    yield

    aggregator.cache.shutdown()
    set_aggregator(None)
    set_series_reader(None)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.
    
    Returns:
        Configured FastAPI application instance
    """
    settings = get_settings()

    app = FastAPI(
        title="Crypto Signal Engine",
        description=(
            "Spike detection and moving-average trend signals for blockchain "
            "and market metrics. Metrics without reliable data are reported "
            "as unavailable, never with substituted values."
        ),
        version=settings.service_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health_router)
    app.include_router(signal_router, prefix=settings.api_prefix)

    return app


# Application instance
app = create_app()


@app.get("/")
async def root() -> dict:
    """Root endpoint with service information."""
    settings = get_settings()
    return {
        "service": settings.service_name,
        "version": settings.service_version,
        "algorithm_version": settings.algorithm_version,
        "description": "Spike detection and trend signal engine",
        "status": "operational",
    }
