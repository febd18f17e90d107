"""Rebuilding an antenna's grid cells from its packet history.

A rebuild first deletes the antenna's cells, so an interrupted rebuild
leaves the antenna visibly empty rather than half rebuilt. The replacement
rows are written in one transaction once the whole history has been read.
"""

import asyncio
import logging
import time
import weakref
from collections.abc import Iterable
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gridcell import metrics
from gridcell.errors import InvalidCoordinate, LookupFailure, PersistenceFailure
from gridcell.models import Antenna, Gateway, GatewayLocation
from gridcell.schemas.messages import GatewayMovedMessage
from gridcell.services.gateways import GatewayRangeFilter
from gridcell.services.grid_cells import GridCellKey, GridCellRecord, GridCellStore, grid_cell_key
from gridcell.services.history import HistoryReader

logger = logging.getLogger(__name__)

# TTN v2 gateway ids were global, the same gateway may be recorded under several networks
LEGACY_NETWORK_ID = "thethingsnetwork.org"


@dataclass
class RebuildResult:
    """Outcome of rebuilding one antenna."""

    antenna_id: int
    observations: int = 0
    discarded: int = 0
    cells: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ReprocessEngine:
    """Deletes and deterministically rebuilds grid cells per antenna."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        cells: GridCellStore,
        gateways: GatewayRangeFilter,
        history: HistoryReader,
    ):
        self._session_maker = session_maker
        self._cells = cells
        self._gateways = gateways
        self._history = history
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def lock(self, antenna_id: int) -> asyncio.Lock:
        """Lock serializing rebuilds of one antenna, held weakly like the cell locks."""
        lock = self._locks.get(antenna_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[antenna_id] = lock
        return lock

    async def handle_gateway_moved(self, message: GatewayMovedMessage) -> list[RebuildResult]:
        """Rebuild every antenna of a gateway that reported a new location."""
        metrics.MOVED_PROCESSED.inc()
        self._gateways.invalidate(message.network_id, message.gateway_id)

        if message.network_id == LEGACY_NETWORK_ID:
            antennas = await self._find_antennas(Antenna.gateway_id == message.gateway_id)
        else:
            antennas = await self._find_antennas(
                Antenna.network_id == message.network_id,
                Antenna.gateway_id == message.gateway_id,
            )
        logger.info(
            f"Gateway {message.network_id}/{message.gateway_id} moved, "
            f"rebuilding {len(antennas)} antennas"
        )
        return await self._rebuild_antennas(antennas)

    async def reprocess_gateway(self, network_id: str, gateway_id: str) -> list[RebuildResult]:
        """Rebuild all antennas with the same network and gateway id."""
        self._gateways.invalidate(network_id, gateway_id)
        antennas = await self._find_antennas(
            Antenna.network_id == network_id,
            Antenna.gateway_id == gateway_id,
        )
        return await self._rebuild_antennas(antennas)

    async def reprocess_all(self, offset: int = 0) -> list[RebuildResult]:
        """Rebuild every known gateway, skipping the first ``offset`` to resume a run."""
        gateways = await self._find_gateways(offset=offset)
        return await self._reprocess_listed(gateways, offset)

    async def reprocess_gateways(
        self, gateway_ids: Iterable[str], offset: int = 0
    ) -> list[RebuildResult]:
        """Rebuild the named gateways in every network they appear in."""
        gateways = await self._find_gateways(list(gateway_ids), offset=offset)
        return await self._reprocess_listed(gateways, offset)

    async def _reprocess_listed(
        self, gateways: list[tuple[str, str]], offset: int
    ) -> list[RebuildResult]:
        results: list[RebuildResult] = []
        total = len(gateways) + offset
        for i, (network_id, gateway_id) in enumerate(gateways, start=offset):
            logger.info(f"{i} / {total} {network_id} - {gateway_id}")
            results.extend(await self.reprocess_gateway(network_id, gateway_id))
        return results

    async def _rebuild_antennas(self, antennas: list[Antenna]) -> list[RebuildResult]:
        results = []
        for antenna in antennas:
            try:
                installed_at = await self.installed_at(antenna.network_id, antenna.gateway_id)
                results.append(await self.rebuild_antenna(antenna, installed_at))
            except (LookupFailure, PersistenceFailure) as e:
                logger.exception(f"Rebuild of antenna {antenna.id} failed")
                results.append(RebuildResult(antenna_id=antenna.id, error=str(e)))
        return results

    async def installed_at(self, network_id: str, gateway_id: str) -> datetime | None:
        """Most recent installation time of a gateway, None if it was never recorded."""
        try:
            async with self._session_maker() as db:
                result = await db.execute(
                    select(func.max(GatewayLocation.installed_at)).where(
                        GatewayLocation.network_id == network_id,
                        GatewayLocation.gateway_id == gateway_id,
                    )
                )
                return result.scalar()
        except (SQLAlchemyError, OSError) as e:
            raise LookupFailure(
                f"Could not read install time of {network_id}/{gateway_id}: {e}"
            ) from e

    async def rebuild_antenna(
        self, antenna: Antenna, installed_at: datetime | None
    ) -> RebuildResult:
        """Delete an antenna's cells and rebuild them from packets after ``installed_at``.

        Packets are folded in any order: bucket counts are sums and
        last_updated is a max, so the result is the same for any replay order.
        """
        async with self.lock(antenna.id):
            start = time.perf_counter()
            result = RebuildResult(antenna_id=antenna.id)
            logger.info(f"Rebuilding antenna {antenna.id} from packets after {installed_at}")

            await self._cells.invalidate_antenna(antenna.id)

            position = await self._gateways.position(antenna.network_id, antenna.gateway_id)
            if position is None or position.is_null_island:
                logger.info(
                    f"Gateway {antenna.network_id}/{antenna.gateway_id} has no known location, "
                    f"antenna {antenna.id} left without grid cells"
                )
                return result

            cells: dict[GridCellKey, GridCellRecord] = {}
            async with aclosing(self._history.observations(antenna.id, installed_at)) as packets:
                async for packet in packets:
                    result.observations += 1
                    metrics.OLD_DATA_PROCESSED.inc()

                    in_range = await self._gateways.within_range(
                        antenna.network_id, antenna.gateway_id, packet.latitude, packet.longitude
                    )
                    if not in_range:
                        result.discarded += 1
                        continue

                    try:
                        key = grid_cell_key(antenna.id, packet.latitude, packet.longitude)
                    except InvalidCoordinate:
                        result.discarded += 1
                        continue

                    cell = cells.get(key)
                    if cell is None:
                        cell = cells[key] = GridCellRecord.empty(key)
                    cell.add_observation(packet.time, packet.rssi, packet.snr)
                    metrics.CELLS_UPDATED.inc()

            if cells:
                result.cells = await self._cells.bulk_replace(antenna.id, cells)
            else:
                logger.info(f"No packets for antenna {antenna.id}")

            metrics.MOVED_DURATION.observe((time.perf_counter() - start) * 1000)
            logger.info(
                f"Antenna {antenna.id}: {result.observations} packets, "
                f"{result.discarded} discarded, {result.cells} grid cells"
            )
            return result

    async def _find_antennas(self, *criteria) -> list[Antenna]:
        try:
            async with self._session_maker() as db:
                result = await db.execute(select(Antenna).where(*criteria).order_by(Antenna.id))
                return list(result.scalars().all())
        except (SQLAlchemyError, OSError) as e:
            raise LookupFailure(f"Could not list antennas: {e}") from e

    async def _find_gateways(
        self, gateway_ids: list[str] | None = None, offset: int = 0
    ) -> list[tuple[str, str]]:
        query = select(Gateway.network_id, Gateway.gateway_id).order_by(Gateway.id)
        if gateway_ids is not None:
            query = query.where(Gateway.gateway_id.in_(gateway_ids))
        if offset:
            query = query.offset(offset)
        try:
            async with self._session_maker() as db:
                result = await db.execute(query)
                return [(row.network_id, row.gateway_id) for row in result.all()]
        except (SQLAlchemyError, OSError) as e:
            raise LookupFailure(f"Could not list gateways: {e}") from e
