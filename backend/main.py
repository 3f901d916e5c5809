"""
FastAPI application entry point for the connection health engine.

Exposes the /api/connections routes. Authentication and rate limiting
are expected from the hosting gateway.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from connection_health import __version__
from connection_health.api.routes import connections
from connection_health.config.settings import get_settings
from connection_health.database.session import init_store_schema
from connection_health.models.platform_connection import StoreKind

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting connection health API")

    settings = get_settings()
    configured = {
        StoreKind.PRIMARY: settings.primary_database_url,
        StoreKind.SECONDARY: settings.secondary_database_url,
    }
    for store, url in configured.items():
        if not url:
            logger.warning("Store database URL not set", extra={"store": store.value})
            continue
        # Local SQLite databases have no migrations; create tables on boot
        if url.startswith("sqlite"):
            init_store_schema(store, settings)

    app.state.stores_configured = [store.value for store, url in configured.items() if url]
    logger.info(
        "Connection health API ready",
        extra={"stores": app.state.stores_configured},
    )

    yield

    # Shutdown
    await connections.close_connection_engine()
    logger.info("Shutting down connection health API")


# Create FastAPI app
app = FastAPI(
    title="Connection Health API",
    description="OAuth connection health, refresh and repair for third-party platforms",
    version=__version__,
    lifespan=lifespan
)

app.include_router(connections.router)


@app.get("/health")
async def health_check():
    """Liveness check (no store or provider calls)."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV") == "development"
    )
