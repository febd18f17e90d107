"""Antenna identity resolution."""

import logging
from typing import NamedTuple

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gridcell.errors import LookupFailure
from gridcell.models import Antenna
from gridcell.services.cache import KeyedCache

logger = logging.getLogger(__name__)


class AntennaKey(NamedTuple):
    network_id: str
    gateway_id: str
    antenna_index: int


class AntennaRegistry:
    """Resolves (network, gateway, antenna index) to a stable antenna id.

    Antennas are created on first use and never removed, so cached ids
    stay valid for the life of the process.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        cache: KeyedCache[AntennaKey, int] | None = None,
    ):
        self._session_maker = session_maker
        self._cache: KeyedCache[AntennaKey, int] = cache if cache is not None else KeyedCache()

    async def resolve(self, network_id: str, gateway_id: str, antenna_index: int = 0) -> int:
        """Return the antenna id, creating the antenna if it does not exist yet."""
        key = AntennaKey(network_id, gateway_id, antenna_index)
        antenna_id = self._cache.get(key)
        if antenna_id is not None:
            return antenna_id

        try:
            async with self._session_maker() as db:
                antenna_id = await self._find_or_create(db, key)
                await db.commit()
        except (SQLAlchemyError, OSError) as e:
            raise LookupFailure(f"Could not resolve antenna {key}: {e}") from e

        self._cache.set(key, antenna_id)
        logger.debug(f"Resolved antenna {key} to {antenna_id}")
        return antenna_id

    async def _find_or_create(self, db: AsyncSession, key: AntennaKey) -> int:
        query = select(Antenna.id).where(
            Antenna.network_id == key.network_id,
            Antenna.gateway_id == key.gateway_id,
            Antenna.antenna_index == key.antenna_index,
        )
        result = await db.execute(query)
        antenna_id = result.scalar()
        if antenna_id is not None:
            return antenna_id

        # Another writer may create the same antenna between our select and insert
        await db.execute(
            pg_insert(Antenna)
            .values(
                network_id=key.network_id,
                gateway_id=key.gateway_id,
                antenna_index=key.antenna_index,
            )
            .on_conflict_do_nothing(index_elements=["network_id", "gateway_id", "antenna_index"])
        )
        result = await db.execute(query)
        antenna_id = result.scalar()
        if antenna_id is None:
            raise LookupFailure(f"Antenna {key} missing after insert")
        return antenna_id
