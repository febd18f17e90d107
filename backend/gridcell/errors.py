"""Error hierarchy for the aggregation engine.

Every failure is local to one unit of work (one gateway branch of an uplink,
or one antenna rebuild) except :class:`StoreUnavailable`, which means the
process has lost its backing store.
"""


class AggregationError(Exception):
    """Base error for grid cell aggregation."""


class MalformedMessage(AggregationError):
    """Payload from the message bus could not be decoded."""


class LookupFailure(AggregationError):
    """Backing store could not resolve an antenna, gateway or grid cell."""


class InvalidCoordinate(AggregationError):
    """Coordinate is outside the Mercator range or is null island."""


class PersistenceFailure(AggregationError):
    """Writing grid cells to the backing store failed."""


class StoreUnavailable(AggregationError):
    """Backing store cannot be reached at all; fatal for the process."""


class StaleGridCell(PersistenceFailure):
    """Grid cell was read before its antenna was invalidated or rebuilt."""
