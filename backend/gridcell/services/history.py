"""Streaming reads of historical packets."""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gridcell.errors import LookupFailure, StoreUnavailable
from gridcell.models import Packet

logger = logging.getLogger(__name__)

DEFAULT_STREAM_BATCH = 1000


@dataclass(frozen=True)
class HistoricalObservation:
    time: datetime
    latitude: float
    longitude: float
    rssi: float
    snr: float


class HistoryReader:
    """Replays an antenna's packets through a server-side cursor.

    Memory use is bounded by the fetch batch, not by the antenna's history.
    A stream cannot be resumed; re-run the query instead. Wrap iteration in
    ``contextlib.aclosing`` so the cursor is released on early exit.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        batch_size: int = DEFAULT_STREAM_BATCH,
    ):
        self._session_maker = session_maker
        self._batch_size = batch_size

    async def observations(
        self, antenna_id: int, after: datetime | None
    ) -> AsyncIterator[HistoricalObservation]:
        """Yield non-experiment packets for an antenna received after a cutoff."""
        query = select(
            Packet.time, Packet.latitude, Packet.longitude, Packet.rssi, Packet.snr
        ).where(Packet.antenna_id == antenna_id, Packet.experiment_id.is_(None))
        if after is not None:
            query = query.where(Packet.time > after)
        query = query.execution_options(yield_per=self._batch_size)

        async with self._session_maker() as db:
            try:
                result = await db.stream(query)
            except (SQLAlchemyError, OSError) as e:
                raise StoreUnavailable(
                    f"Could not open packet cursor for antenna {antenna_id}: {e}"
                ) from e

            logger.debug(f"Streaming packets for antenna {antenna_id} after {after}")
            try:
                async for row in result:
                    yield HistoricalObservation(
                        time=row.time,
                        latitude=row.latitude,
                        longitude=row.longitude,
                        rssi=row.rssi,
                        snr=row.snr,
                    )
            except (SQLAlchemyError, OSError) as e:
                raise LookupFailure(
                    f"Packet cursor for antenna {antenna_id} failed: {e}"
                ) from e
            finally:
                await result.close()
