"""API module."""

from app.api.health import router as health_router
from app.api.routes import router as signal_router

__all__ = ["health_router", "signal_router"]
