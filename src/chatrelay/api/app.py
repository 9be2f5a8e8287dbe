"""
ChatRelay FastAPI Application.

HTTP surface for delivering channel messages and managing sessions.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from chatrelay import __version__
from chatrelay.api.routes import channels, sessions
from chatrelay.db.connection import check_connection
from chatrelay.engine.claude_cli import ClaudeCLIEngine
from chatrelay.logging_config import setup_logging
from chatrelay.queue.reaper import get_reaper_stats, start_reaper, stop_reaper
from chatrelay.services.relay import MessageRelay

logger = logging.getLogger(__name__)


def create_app(
    relay: Optional[MessageRelay] = None, run_reaper: bool = True
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        relay: Relay service to serve; defaults to one backed by the Claude CLI
        run_reaper: Start the stale-processing reaper with the application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Lifespan context manager for FastAPI application.

        Creates the relay service and manages the reaper thread.
        """
        # Initialize logging first
        setup_logging(context="api")

        if getattr(app.state, "relay", None) is None:
            app.state.relay = MessageRelay(engine=ClaudeCLIEngine())
            logger.info("✓ Relay service initialized")

        if run_reaper:
            start_reaper(app.state.relay.session_factory)
            logger.info("✓ Stale processing reaper started")

        logger.info("Application startup complete")

        yield

        logger.info("Application shutdown initiated...")
        if run_reaper:
            try:
                stop_reaper(timeout=10)
            except Exception as e:
                logger.error(f"Error during shutdown: {e}", exc_info=True)

        logger.info("Application shutdown complete")

    app = FastAPI(
        lifespan=lifespan,
        title="ChatRelay API",
        description="Serialized chat-channel relay to a reasoning engine",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.relay = relay

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint - API health check."""
        return {
            "status": "ok",
            "message": "ChatRelay API is running",
            "version": __version__,
        }

    @app.get("/health")
    def health() -> dict[str, object]:
        """Health check endpoint."""
        db_status = "healthy" if check_connection() else "unhealthy"

        return {
            "status": "healthy" if db_status == "healthy" else "degraded",
            "database": db_status,
            "reaper": get_reaper_stats(),
        }

    app.include_router(channels.router, prefix="/channels", tags=["channels"])
    app.include_router(sessions.router, prefix="/sessions", tags=["sessions"])

    return app


app = create_app()
