"""
chatrelay - WhatsApp message relay

FastAPI application entry point for webhook ingress.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from chatrelay import __version__
from chatrelay.app.api.webhooks import create_webhook_router
from chatrelay.app.dependencies import get_settings, initialize_services, shutdown_services
from chatrelay.config import AppSettings
from chatrelay.transports import get_transport_registry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Registers the poll transport on startup, drops it on shutdown.
    """
    logger.info("Starting chatrelay webhook services...")
    try:
        await initialize_services()
        logger.info("chatrelay webhook services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise

    yield

    logger.info("Shutting down chatrelay webhook services...")
    try:
        await shutdown_services()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}", exc_info=True)


def create_app(settings: AppSettings | None = None) -> FastAPI:
    """Create the webhook application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="chatrelay",
        description="WhatsApp webhook ingress with auto-reply",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.include_router(create_webhook_router(settings.webhook_path))

    @app.get("/", tags=["root"])
    async def root() -> dict[str, str]:
        """Root endpoint with service info."""
        return {
            "service": settings.service_name,
            "version": __version__,
            "status": "running",
        }

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, Any]:
        """Health check with the registered transports."""
        return {
            "status": "healthy",
            "transports": get_transport_registry().registered_channels,
            "webhook_path": settings.webhook_path,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "chatrelay.app.main:app",
        host="0.0.0.0",
        port=settings.webhook_port,
        reload=settings.debug,
    )
