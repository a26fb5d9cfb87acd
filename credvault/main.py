"""
FastAPI application entrypoint for the credential service.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from credvault.api.api_keys import router as api_keys_router
from credvault.api.routes import router as api_router
from credvault.core.config import get_settings
from credvault.core.logging import configure_logging
from credvault.dependencies import get_usage_recorder

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run the API key usage worker for the lifetime of the application."""
    recorder = get_usage_recorder()
    recorder.start()
    try:
        yield
    finally:
        recorder.stop()
        if recorder.dropped:
            logger.warning("Dropped %d API key usage update(s)", recorder.dropped)


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="credvault",
        version="0.1.0",
        description="Access tokens, refresh tokens, API keys and OIDC federation.",
        lifespan=lifespan,
    )
    app.include_router(api_router, prefix="/api")
    app.include_router(api_keys_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
