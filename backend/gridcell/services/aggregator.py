"""Live aggregation of uplink observations into grid cells."""

import enum
import logging
import time
from dataclasses import dataclass

from gridcell import metrics
from gridcell.errors import InvalidCoordinate, LookupFailure, PersistenceFailure, StaleGridCell
from gridcell.schemas.messages import GatewayReport, UplinkMessage
from gridcell.services.antennas import AntennaRegistry
from gridcell.services.gateways import GatewayRangeFilter
from gridcell.services.grid_cells import GridCellStore, grid_cell_key

logger = logging.getLogger(__name__)

SAVE_ATTEMPTS = 3


class Outcome(enum.StrEnum):
    """Result of applying one gateway's reception to the grid."""

    PERSISTED = "persisted"
    DISCARDED = "discarded"
    FAILED = "failed"


@dataclass
class GatewayResult:
    network_id: str
    gateway_id: str
    antenna_index: int
    outcome: Outcome
    reason: str | None = None
    antenna_id: int | None = None


class LiveAggregator:
    """Applies uplinks to the grid, one independent branch per reporting gateway."""

    def __init__(
        self,
        antennas: AntennaRegistry,
        gateways: GatewayRangeFilter,
        cells: GridCellStore,
    ):
        self._antennas = antennas
        self._gateways = gateways
        self._cells = cells

    async def aggregate(self, message: UplinkMessage) -> list[GatewayResult]:
        """Apply an uplink to the grid cell of every gateway that heard it.

        Experiment data and uplinks without a position fix produce no
        results. A failing gateway never prevents the others from being
        processed.
        """
        metrics.LIVE_PROCESSED.inc()

        if message.experiment:
            metrics.DISCARDED.labels(reason="experiment").inc()
            logger.debug(f"Ignoring experiment uplink ({message.experiment})")
            return []
        if message.is_null_island:
            metrics.DISCARDED.labels(reason="null_island").inc()
            return []

        results = []
        for report in message.gateways:
            start = time.perf_counter()
            results.append(await self._aggregate_gateway(message, report))
            metrics.LIVE_DURATION.observe((time.perf_counter() - start) * 1000)
        return results

    async def _aggregate_gateway(
        self, message: UplinkMessage, report: GatewayReport
    ) -> GatewayResult:
        network_id = report.network_id or message.network_id
        result = GatewayResult(
            network_id=network_id,
            gateway_id=report.gateway_id,
            antenna_index=report.antenna_index,
            outcome=Outcome.DISCARDED,
        )

        try:
            result.antenna_id = await self._antennas.resolve(
                network_id, report.gateway_id, report.antenna_index
            )

            in_range = await self._gateways.within_range(
                network_id, report.gateway_id, message.latitude, message.longitude
            )
            if not in_range:
                metrics.DISCARDED.labels(reason="out_of_range").inc()
                logger.debug(f"Observation out of range of {network_id}/{report.gateway_id}")
                result.reason = "out of range"
                return result

            key = grid_cell_key(result.antenna_id, message.latitude, message.longitude)
            async with self._cells.lock(key):
                await self._apply(result.antenna_id, message, report)
            metrics.CELLS_UPDATED.inc()

        except InvalidCoordinate as e:
            metrics.DISCARDED.labels(reason="invalid_coordinate").inc()
            logger.debug(f"Discarding uplink for {report.gateway_id}: {e}")
            result.reason = str(e)
            return result
        except LookupFailure as e:
            metrics.DISCARDED.labels(reason="lookup_failure").inc()
            logger.warning(f"Lookup failed for gateway {network_id}/{report.gateway_id}: {e}")
            result.outcome = Outcome.FAILED
            result.reason = str(e)
            return result
        except PersistenceFailure as e:
            logger.error(f"Failed to persist grid cell for {network_id}/{report.gateway_id}: {e}")
            result.outcome = Outcome.FAILED
            result.reason = str(e)
            return result

        result.outcome = Outcome.PERSISTED
        return result

    async def _apply(
        self, antenna_id: int, message: UplinkMessage, report: GatewayReport
    ) -> None:
        # A rebuild between read and save makes the read stale, start over from the new cell
        for attempt in range(1, SAVE_ATTEMPTS + 1):
            cell = await self._cells.get_or_create(antenna_id, message.latitude, message.longitude)
            cell.add_observation(message.observed_at, report.rssi, report.snr)
            try:
                await self._cells.save(cell)
                return
            except StaleGridCell:
                if attempt == SAVE_ATTEMPTS:
                    raise
                logger.debug(f"Grid cell {cell.key} rebuilt while updating, retrying")
