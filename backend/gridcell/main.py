"""Main FastAPI application hosting the aggregation engine."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from gridcell import __version__
from gridcell.config import get_settings
from gridcell.database import async_session_maker, close_db, init_db
from gridcell.routers import health_router, metrics_router
from gridcell.services.ingest import IngestService, build_engine

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting grid cell aggregator...")

    # Failing to reach the database here is fatal
    await init_db()
    logger.info("Database initialized")

    engine = build_engine(async_session_maker, settings)
    ingest = IngestService(engine, settings)
    await ingest.start()
    app.state.engine = engine
    app.state.ingest = ingest
    logger.info("Ingest started")

    yield

    # Shutdown
    logger.info("Shutting down grid cell aggregator...")
    await ingest.stop()
    app.state.ingest = None
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Grid cell aggregator",
    description="Aggregates geolocated receptions into per-antenna coverage grid cells",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(metrics_router)


@app.get("/")
async def root():
    """Service info."""
    return {
        "name": "gridcell-aggregator",
        "version": __version__,
        "health": "/health",
        "metrics": "/metrics",
    }
