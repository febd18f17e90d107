"""Mock sessions and in-memory fakes for the aggregation engine tests."""

import asyncio
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from gridcell.errors import PersistenceFailure, StaleGridCell
from gridcell.services.grid_cells import GridCellRecord, grid_cell_key


def make_result(scalar=None, rows=None, rowcount=0):
    """Create a mock result of AsyncSession.execute()."""
    result = MagicMock()
    result.scalar = MagicMock(return_value=scalar)
    result.first = MagicMock(return_value=(rows or [None])[0])
    result.all = MagicMock(return_value=rows or [])
    result.scalars = MagicMock(return_value=MagicMock(all=MagicMock(return_value=rows or [])))
    result.rowcount = rowcount
    return result


def make_db(*results):
    """Create a mock DB session returning the given execute() results in order."""
    db = AsyncMock()
    db.__aenter__ = AsyncMock(return_value=db)
    db.__aexit__ = AsyncMock(return_value=False)
    db.commit = AsyncMock()
    if results:
        db.execute = AsyncMock(side_effect=list(results))
    else:
        db.execute = AsyncMock(return_value=make_result())

    transaction = MagicMock()
    transaction.__aenter__ = AsyncMock(return_value=transaction)
    transaction.__aexit__ = AsyncMock(return_value=False)
    db.begin = MagicMock(return_value=transaction)
    return db


def make_session_maker(db):
    """Wrap a mock session in something shaped like an async_sessionmaker."""
    return MagicMock(return_value=db)


def failing_session_maker(error: Exception | None = None):
    """Session maker whose sessions cannot be opened."""
    return MagicMock(side_effect=error or OSError("connection refused"))


class FakeStreamResult:
    """Stand-in for the AsyncResult returned by AsyncSession.stream()."""

    def __init__(self, rows, error: Exception | None = None):
        self._rows = rows
        self._error = error
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for row in self._rows:
            yield row
        if self._error is not None:
            raise self._error

    async def close(self):
        self.closed = True


def packet_row(latitude, longitude, rssi=-90.0, snr=5.0, time=None):
    return SimpleNamespace(
        time=time or datetime(2024, 3, 1, 12, 0, tzinfo=UTC),
        latitude=latitude,
        longitude=longitude,
        rssi=rssi,
        snr=snr,
    )


class InMemoryCellStore:
    """Grid cell store keeping rows in a dict, shaped like GridCellStore."""

    def __init__(self):
        self.rows = {}
        self.failing_antennas: set[int] = set()
        self.invalidated: list[int] = []
        self.replaced: dict[int, int] = {}
        self.generations: dict[int, int] = {}
        self._locks = {}

    def lock(self, key):
        return self._locks.setdefault(key, asyncio.Lock())

    async def get_or_create(self, antenna_id, latitude, longitude):
        key = grid_cell_key(antenna_id, latitude, longitude)
        record = self.rows.get(key) or GridCellRecord.empty(key)
        record = record.copy()
        record.generation = self.generations.get(antenna_id, 0)
        # Yield so concurrent writers interleave between read and write
        await asyncio.sleep(0)
        return record

    async def save(self, record):
        if record.antenna_id in self.failing_antennas:
            raise PersistenceFailure(f"Could not save grid cell {record.key}")
        if record.generation != self.generations.get(record.antenna_id, 0):
            raise StaleGridCell(f"Grid cell {record.key} changed since it was read")
        self.rows[record.key] = record.copy()

    async def invalidate_antenna(self, antenna_id):
        self.invalidated.append(antenna_id)
        self._advance(antenna_id)
        doomed = [key for key in self.rows if key.antenna_id == antenna_id]
        for key in doomed:
            del self.rows[key]
        return len(doomed)

    async def bulk_replace(self, antenna_id, records):
        if antenna_id in self.failing_antennas:
            raise PersistenceFailure(f"Could not write grid cells for antenna {antenna_id}")
        self._advance(antenna_id)
        for key, record in records.items():
            self.rows[key] = record.copy()
        self.replaced[antenna_id] = len(records)
        return len(records)

    def _advance(self, antenna_id):
        self.generations[antenna_id] = self.generations.get(antenna_id, 0) + 1

    def cells_of(self, antenna_id):
        return {key: record for key, record in self.rows.items() if key.antenna_id == antenna_id}


class FakeHistory:
    """Packet history source replaying a fixed list of observations."""

    def __init__(self, packets=(), error: Exception | None = None):
        self.packets = list(packets)
        self.error = error
        self.calls = []
        self.closed = 0

    async def observations(self, antenna_id, after):
        self.calls.append((antenna_id, after))
        try:
            if self.error is not None:
                raise self.error
            for observation in self.packets:
                yield observation
        finally:
            self.closed += 1
