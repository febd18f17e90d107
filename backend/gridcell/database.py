"""Database connection and session management."""

import asyncio
import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from gridcell.config import get_settings

logger = logging.getLogger(__name__)

ALEMBIC_INI = Path(__file__).parent.parent / "alembic.ini"

# Revision that creates grid_cells; deployments that predate Alembic are stamped here
BASELINE_REVISION = "a3f1c9d2e7b4"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def _schema_state(sync_conn) -> tuple[bool, bool]:
    """Return whether alembic_version and grid_cells exist."""
    tables = set(inspect(sync_conn).get_table_names())
    return "alembic_version" in tables, "grid_cells" in tables


async def init_db() -> None:
    """Bring the grid_cells schema up to the latest migration.

    A grid_cells table without an alembic_version table was created by an
    earlier auto-migrating deployment. It is stamped at the baseline first
    so the create is not attempted again.
    """
    if not ALEMBIC_INI.exists():
        raise FileNotFoundError(f"Alembic config not found: {ALEMBIC_INI}")
    alembic_cfg = Config(str(ALEMBIC_INI))

    async with engine.connect() as conn:
        versioned, has_grid_cells = await conn.run_sync(_schema_state)

    try:
        if has_grid_cells and not versioned:
            logger.info(f"Unversioned grid_cells table found, stamping {BASELINE_REVISION}")
            await asyncio.to_thread(command.stamp, alembic_cfg, BASELINE_REVISION)

        logger.info("Upgrading grid cell schema to head")
        await asyncio.to_thread(command.upgrade, alembic_cfg, "head")
    except Exception:
        logger.exception("Grid cell schema migration failed")
        raise


async def close_db() -> None:
    """Dispose of the engine's pooled connections."""
    await engine.dispose()
