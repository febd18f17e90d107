"""Gateway distance filter."""

import logging
import math
from typing import NamedTuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gridcell.errors import LookupFailure
from gridcell.models import Gateway
from gridcell.services.cache import KeyedCache

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


class GatewayKey(NamedTuple):
    network_id: str
    gateway_id: str


class GatewayPosition(NamedTuple):
    latitude: float
    longitude: float

    @property
    def is_null_island(self) -> bool:
        return self.latitude == 0 and self.longitude == 0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometers."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


class GatewayRangeFilter:
    """Rejects observations implausibly far from the gateway that heard them.

    Device GPS glitches and bench tests would otherwise paint a stationary
    gateway's coverage across the map. Gateways without a known location
    reject everything.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        maximum_range_km: float,
        cache: KeyedCache[GatewayKey, GatewayPosition] | None = None,
    ):
        self._session_maker = session_maker
        self._maximum_range_km = maximum_range_km
        self._cache: KeyedCache[GatewayKey, GatewayPosition] = (
            cache if cache is not None else KeyedCache()
        )

    @property
    def maximum_range_km(self) -> float:
        return self._maximum_range_km

    async def position(self, network_id: str, gateway_id: str) -> GatewayPosition | None:
        """Last known gateway position, or None when the gateway is unknown."""
        key = GatewayKey(network_id, gateway_id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            async with self._session_maker() as db:
                result = await db.execute(
                    select(Gateway.latitude, Gateway.longitude)
                    .where(Gateway.network_id == network_id, Gateway.gateway_id == gateway_id)
                    .limit(1)
                )
                row = result.first()
        except (SQLAlchemyError, OSError) as e:
            raise LookupFailure(f"Could not look up gateway {key}: {e}") from e

        if row is None:
            return None

        # An unreported location is stored as NULL; treat it like null island
        position = GatewayPosition(row.latitude or 0.0, row.longitude or 0.0)
        self._cache.set(key, position)
        return position

    async def within_range(
        self, network_id: str, gateway_id: str, latitude: float, longitude: float
    ) -> bool:
        """Check whether an observation is close enough to its gateway to be trusted."""
        position = await self.position(network_id, gateway_id)
        if position is None:
            logger.info(f"Gateway {network_id}/{gateway_id} not found, discarding point")
            return False

        if position.is_null_island:
            return False

        distance = haversine_km(position.latitude, position.longitude, latitude, longitude)
        return distance <= self._maximum_range_km

    def invalidate(self, network_id: str, gateway_id: str) -> None:
        """Forget a gateway's cached position, e.g. after it moved."""
        self._cache.delete(GatewayKey(network_id, gateway_id))
