"""Shared fixtures for the aggregation engine tests."""

import pytest

from gridcell.services.cache import KeyedCache
from gridcell.services.gateways import GatewayKey, GatewayPosition, GatewayRangeFilter
from tests.helpers import InMemoryCellStore, failing_session_maker


@pytest.fixture
def cell_store():
    return InMemoryCellStore()


@pytest.fixture
def gateway_filter():
    """Range filter with two known gateways and one at null island, no database."""
    cache = KeyedCache()
    cache.set(GatewayKey("ttn", "gw-amsterdam"), GatewayPosition(52.37, 4.89))
    cache.set(GatewayKey("ttn", "gw-utrecht"), GatewayPosition(52.09, 5.12))
    cache.set(GatewayKey("ttn", "gw-unset"), GatewayPosition(0.0, 0.0))
    return GatewayRangeFilter(failing_session_maker(), maximum_range_km=100.0, cache=cache)
