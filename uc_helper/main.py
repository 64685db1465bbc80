"""FastAPI application for the Underdogs Cup helper."""

from contextlib import asynccontextmanager
from typing import Any, Dict

import structlog
from fastapi import FastAPI

from uc_helper import __version__
from uc_helper.core.config import get_global_settings
from uc_helper.core.database import DatabaseManager
from uc_helper.core.logging import setup_logging
from uc_helper.core.tetrio.client import TetrioAPIClient
from uc_helper.features.jobs.scheduler import SweepScheduler
from uc_helper.features.players.presence import PresenceSync, WebhookRenamer
from uc_helper.features.players.repository import PlayerRecordStore
from uc_helper.features.players.resolver import IdentityResolver
from uc_helper.features.players.router import router as players_router

settings = get_global_settings()
setup_logging(settings.log_level, json_output=settings.environment == "production")
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the long-lived components once and tear them down on exit."""
    logger.info("Starting up Underdogs Cup helper", environment=settings.environment)

    db = DatabaseManager(settings)
    client = TetrioAPIClient()
    await client.start_session()
    store = PlayerRecordStore(
        db.async_session_factory, timeout_seconds=settings.store_timeout_seconds
    )
    resolver = IdentityResolver(client, store, settings)

    renamer = None
    if settings.rename_webhook_url:
        renamer = WebhookRenamer(
            settings.rename_webhook_url, timeout_seconds=settings.api_timeout_seconds
        )
    else:
        logger.info("No rename webhook configured, nickname changes are only logged")
    presence = PresenceSync(renamer)
    resolver.subscribe(presence.handle)

    sweeper = SweepScheduler(resolver, settings)
    try:
        sweeper.start()
    except Exception as e:
        # The HTTP surface stays usable without the sweep
        logger.error(
            "Failed to start stale sweep scheduler",
            error=str(e),
            error_type=type(e).__name__,
        )

    app.state.db = db
    app.state.client = client
    app.state.store = store
    app.state.resolver = resolver
    app.state.presence = presence
    app.state.sweeper = sweeper

    yield

    logger.info("Shutting down Underdogs Cup helper")
    await sweeper.shutdown()
    if renamer is not None:
        await renamer.close()
    await client.close()
    await db.close()


tags_metadata = [
    {
        "name": "players",
        "description": "Link Discord users to TETR.IO accounts and look players up.",
    },
    {
        "name": "health",
        "description": "Health check endpoint.",
    },
]

app = FastAPI(
    title="Underdogs Cup helper",
    description="Identity linking and TETRA LEAGUE stats for the Underdogs Cup Discord bot.",
    version=__version__,
    openapi_tags=tags_metadata,
    lifespan=lifespan,
    debug=settings.debug,
)

app.include_router(players_router)


@app.get("/health", tags=["health"])
async def health_check() -> Dict[str, Any]:
    """Report that the service is running."""
    return {
        "status": "healthy",
        "message": "Application is running",
        "version": __version__,
        "debug": settings.debug,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "uc_helper.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
