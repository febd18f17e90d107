"""Wiring of the aggregation engine to the message bus."""

import asyncio
import logging
import os
import signal
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gridcell.collectors.mqtt import MqttSubscription
from gridcell.config import Settings
from gridcell.errors import MalformedMessage, StoreUnavailable
from gridcell.schemas.messages import GatewayMovedMessage, UplinkMessage
from gridcell.services.aggregator import LiveAggregator
from gridcell.services.antennas import AntennaRegistry
from gridcell.services.gateways import GatewayRangeFilter
from gridcell.services.grid_cells import GridCellStore
from gridcell.services.history import HistoryReader
from gridcell.services.reprocess import ReprocessEngine

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    """The aggregation components sharing one set of caches."""

    antennas: AntennaRegistry
    gateways: GatewayRangeFilter
    cells: GridCellStore
    aggregator: LiveAggregator
    reprocess: ReprocessEngine


def build_engine(
    session_maker: async_sessionmaker[AsyncSession], settings: Settings
) -> Engine:
    """Construct the engine; each component gets its own explicitly owned cache."""
    antennas = AntennaRegistry(session_maker)
    gateways = GatewayRangeFilter(session_maker, settings.gateway_maximum_range_km)
    cells = GridCellStore(session_maker, chunk_size=settings.reprocess_chunk_size)
    history = HistoryReader(session_maker, batch_size=settings.reprocess_stream_batch)
    return Engine(
        antennas=antennas,
        gateways=gateways,
        cells=cells,
        aggregator=LiveAggregator(antennas, gateways, cells),
        reprocess=ReprocessEngine(session_maker, cells, gateways, history),
    )


class IngestService:
    """Consumes uplink and gateway moved events without waiting on earlier work."""

    def __init__(self, engine: Engine, settings: Settings):
        self._engine = engine
        self._settings = settings
        self._inflight = asyncio.Semaphore(settings.max_inflight_observations)
        self._tasks: set[asyncio.Task] = set()
        self._uplinks = MqttSubscription(
            "uplinks", settings.mqtt_uplink_topic, self.handle_uplink, settings
        )
        self._moves = MqttSubscription(
            "gateway-moved", settings.mqtt_gateway_moved_topic, self.handle_gateway_moved, settings
        )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def start(self) -> None:
        await self._uplinks.start()
        await self._moves.start()
        logger.info("Started ingest service")

    async def stop(self) -> None:
        await self._uplinks.stop()
        await self._moves.stop()

        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Stopped ingest service")

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def handle_uplink(self, payload: bytes | str) -> None:
        """Decode an uplink and dispatch it; waits only when too many are in flight."""
        try:
            message = UplinkMessage.from_payload(payload)
        except MalformedMessage as e:
            logger.debug(f"Dropping malformed uplink: {e}")
            return

        await self._inflight.acquire()
        task = asyncio.create_task(self._aggregate(message))
        task.add_done_callback(lambda _: self._inflight.release())
        self._track(task)

    async def _aggregate(self, message: UplinkMessage) -> None:
        try:
            await asyncio.wait_for(
                self._engine.aggregator.aggregate(message),
                timeout=self._settings.observation_timeout_seconds,
            )
        except TimeoutError:
            logger.warning(
                f"Discarding uplink at ({message.latitude}, {message.longitude}): "
                f"not processed within {self._settings.observation_timeout_seconds}s"
            )
        except Exception:
            logger.exception("Unexpected error aggregating uplink")

    async def handle_gateway_moved(self, payload: bytes | str) -> None:
        """Decode a relocation event and dispatch the rebuild."""
        try:
            message = GatewayMovedMessage.from_payload(payload)
        except MalformedMessage as e:
            logger.debug(f"Dropping malformed gateway moved message: {e}")
            return

        self._track(asyncio.create_task(self._rebuild(message)))

    async def _rebuild(self, message: GatewayMovedMessage) -> None:
        try:
            results = await self._engine.reprocess.handle_gateway_moved(message)
        except StoreUnavailable:
            logger.critical(
                f"Lost the database while rebuilding {message.network_id}/{message.gateway_id}, "
                "shutting down",
                exc_info=True,
            )
            os.kill(os.getpid(), signal.SIGTERM)
            return
        except Exception:
            logger.exception(
                f"Rebuild for moved gateway {message.network_id}/{message.gateway_id} failed"
            )
            return

        failed = [result.antenna_id for result in results if not result.ok]
        if failed:
            logger.error(f"Rebuild failed for antennas {failed}")
