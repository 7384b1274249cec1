"""
Auto-Invest & DRIP Service — application entry-point.

Builds the FastAPI application: middleware, exception handlers, the v1
routers, and a lifespan that creates the schema on startup.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel

from autoinvest.api.v1.api import api_router
from autoinvest.core.config import settings
from autoinvest.core.exceptions import add_exception_handlers
from autoinvest.core.logging import setup_logging
from autoinvest.core.resilience import db_circuit_breaker
from autoinvest.db.session import AsyncSessionLocal, engine
from autoinvest.middleware import RequestIDMiddleware, RequestTimingMiddleware

setup_logging()
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# ────────────────────────────────────────────────────────────────────────────
# Application lifespan
# ────────────────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Create tables on startup (retrying with back-off) and dispose of the
    pool on shutdown.

    If the database never comes up the app still starts; ``/health`` then
    reports ``degraded`` and data endpoints fail until it recovers.
    """
    import autoinvest.db.base  # noqa: F401  registers every table model

    max_retries = 5
    retry_delay = 2  # seconds, doubled per attempt

    for attempt in range(1, max_retries + 1):
        try:
            logger.info("Connecting to database (attempt %d/%d)", attempt, max_retries)
            async with engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
            logger.info("Database tables ready")
            break
        except (SQLAlchemyError, OSError) as exc:
            if attempt < max_retries:
                logger.warning(
                    "Database connection failed (attempt %d/%d): %s; retrying in %ds",
                    attempt,
                    max_retries,
                    exc,
                    retry_delay,
                )
                await asyncio.sleep(retry_delay)
                retry_delay *= 2
            else:
                logger.error(
                    "Could not connect to database after %d attempts; starting in "
                    "DEGRADED mode. Last error: %s",
                    max_retries,
                    exc,
                )

    yield

    logger.info("Shutting down, disposing connection pool")
    await engine.dispose()


# ────────────────────────────────────────────────────────────────────────────
# FastAPI application instance
# ────────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=VERSION,
    description=(
        "Recurring auto-invest plans and dividend reinvestment (DRIP) for "
        "tokenized real-estate portfolios."
    ),
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

# Outermost first.
app.add_middleware(GZipMiddleware, minimum_size=500)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(RequestTimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_exception_handlers(app)

app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Readiness probe.

    Runs ``SELECT 1`` so a pod that lost its database stops receiving
    traffic, and reports the database circuit breaker state.
    """
    db_healthy = True
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Health check database probe failed: %s", exc)
        db_healthy = False

    return {
        "status": "ok" if db_healthy else "degraded",
        "version": VERSION,
        "database": db_healthy,
        "circuit_breaker": db_circuit_breaker.get_status(),
    }
