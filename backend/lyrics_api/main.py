"""
Synced Lyrics API - FastAPI Backend
"""
import logging
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI

from lyrics_api.config import settings
from lyrics_api.routers import lyrics

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Sentry error tracking (optional, enabled when SENTRY_DSN is set)
_sentry_dsn = os.getenv("SENTRY_DSN")
if _sentry_dsn:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=_sentry_dsn,
            traces_sample_rate=0.1,
            environment=os.getenv("SENTRY_ENVIRONMENT", "production"),
            release="lyrics-api@0.1.0",
            integrations=[FastApiIntegration(), SqlalchemyIntegration()],
        )
        logger.info("[Sentry] Initialized for API")
    except ImportError:
        logger.warning("[Sentry] sentry-sdk not installed, skipping")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    logger.info("Starting Synced Lyrics API (debug=%s)", settings.debug)

    from lyrics_api.services.database import init_db, close_db
    try:
        await init_db()
    except Exception as e:
        logger.warning("Database initialization warning: %s", e)

    yield

    # Shutdown
    logger.info("Shutting down...")
    from lyrics_api.services.lyrics import lyrics_service
    from lyrics_api.services.redis_client import redis_client
    from lyrics_api.services.storage import storage

    await lyrics_service.close()
    await storage.close()
    await redis_client.close()
    await close_db()


app = FastAPI(
    title="Synced Lyrics API",
    description="Word-synced, line-synced and TTML lyrics for YouTube videos",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(lyrics.router, prefix="/api/lyrics", tags=["Lyrics"])


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Synced Lyrics API"}


@app.get("/health")
async def health():
    """Detailed health check: verifies Redis and PostgreSQL connectivity."""
    checks = {"api": True}

    # Redis
    try:
        from lyrics_api.services.redis_client import redis_client
        client = await redis_client.get_client()
        await client.ping()
        checks["redis"] = True
    except Exception:
        checks["redis"] = False

    # PostgreSQL
    try:
        from sqlalchemy import text
        from lyrics_api.services.database import get_db
        async with get_db() as db:
            await db.execute(text("SELECT 1"))
        checks["postgres"] = True
    except Exception:
        checks["postgres"] = False

    status = "healthy" if all(checks.values()) else "degraded"
    return {"status": status, "version": "0.1.0", "services": checks}
