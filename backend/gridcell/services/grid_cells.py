"""Grid cell persistence with a read-through, write-through cache.

The cache and the database are not updated atomically. A crash between the
two leaves them disagreeing until the process restarts (empty cache) or the
antenna is invalidated; the unique index on (antenna_id, x, y) stays the
final arbiter.

Deleting or replacing an antenna's cells bumps its generation. A record
read under an older generation is refused by `save`, so a live update can
never write pre-rebuild counts over a rebuilt cell.
"""

import asyncio
import logging
import weakref
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import NamedTuple

from sqlalchemy import delete, insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gridcell import metrics
from gridcell.errors import LookupFailure, PersistenceFailure, StaleGridCell
from gridcell.models import GRID_CELL_KEY_COLUMNS, GridCell
from gridcell.services.buckets import Bucket, classify
from gridcell.services.cache import KeyedCache
from gridcell.services.tiles import locate

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000


class GridCellKey(NamedTuple):
    antenna_id: int
    x: int
    y: int


def grid_cell_key(antenna_id: int, latitude: float, longitude: float) -> GridCellKey:
    """Key of the cell containing a coordinate. Raises InvalidCoordinate."""
    x, y = locate(latitude, longitude)
    return GridCellKey(antenna_id, x, y)


def _empty_counts() -> dict[Bucket, int]:
    return dict.fromkeys(Bucket, 0)


@dataclass
class GridCellRecord:
    """In-memory value of one grid cell row."""

    antenna_id: int
    x: int
    y: int
    last_updated: datetime | None = None
    counts: dict[Bucket, int] = field(default_factory=_empty_counts)
    # Antenna generation the value was read under
    generation: int = field(default=0, compare=False)

    @property
    def key(self) -> GridCellKey:
        return GridCellKey(self.antenna_id, self.x, self.y)

    @classmethod
    def empty(cls, key: GridCellKey) -> "GridCellRecord":
        return cls(antenna_id=key.antenna_id, x=key.x, y=key.y)

    @classmethod
    def from_model(cls, cell: GridCell) -> "GridCellRecord":
        return cls(
            antenna_id=cell.antenna_id,
            x=cell.x,
            y=cell.y,
            last_updated=cell.last_updated,
            counts={bucket: getattr(cell, bucket.value) or 0 for bucket in Bucket},
        )

    def increment(self, bucket: Bucket, observed_at: datetime) -> None:
        """Count one observation; last_updated only ever moves forward."""
        self.counts[bucket] += 1
        if self.last_updated is None or observed_at > self.last_updated:
            self.last_updated = observed_at

    def add_observation(self, observed_at: datetime, rssi: float, snr: float) -> Bucket:
        bucket = classify(rssi, snr)
        self.increment(bucket, observed_at)
        return bucket

    def copy(self) -> "GridCellRecord":
        return GridCellRecord(
            antenna_id=self.antenna_id,
            x=self.x,
            y=self.y,
            last_updated=self.last_updated,
            counts=dict(self.counts),
            generation=self.generation,
        )

    def as_values(self) -> dict:
        """Column values for an INSERT, without the surrogate id."""
        values = {
            "antenna_id": self.antenna_id,
            "x": self.x,
            "y": self.y,
            "last_updated": self.last_updated,
        }
        values.update({bucket.value: count for bucket, count in self.counts.items()})
        return values


def _chunks(rows: list[dict], size: int) -> Iterator[list[dict]]:
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


class GridCellStore:
    """Owns grid cell rows and the process-wide grid cell cache."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        cache: KeyedCache[GridCellKey, GridCellRecord] | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self._session_maker = session_maker
        self._cache: KeyedCache[GridCellKey, GridCellRecord] = (
            cache if cache is not None else KeyedCache()
        )
        self._chunk_size = chunk_size
        self._locks: weakref.WeakValueDictionary[GridCellKey, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._antenna_locks: weakref.WeakValueDictionary[int, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        # Bumped whenever an antenna's cells are deleted or replaced
        self._generations: dict[int, int] = {}

    def lock(self, key: GridCellKey) -> asyncio.Lock:
        """Lock serializing read-modify-write of one cell within this process.

        Held weakly: the lock disappears once nobody is waiting on it.
        """
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _antenna_lock(self, antenna_id: int) -> asyncio.Lock:
        lock = self._antenna_locks.get(antenna_id)
        if lock is None:
            lock = asyncio.Lock()
            self._antenna_locks[antenna_id] = lock
        return lock

    def generation(self, antenna_id: int) -> int:
        return self._generations.get(antenna_id, 0)

    def _advance(self, antenna_id: int) -> int:
        generation = self._generations[antenna_id] = self.generation(antenna_id) + 1
        return generation

    async def get_or_create(
        self, antenna_id: int, latitude: float, longitude: float
    ) -> GridCellRecord:
        """Return a copy of the cell containing the coordinate, creating it if needed.

        Raises InvalidCoordinate for coordinates that have no tile and
        LookupFailure when the database cannot be reached.
        """
        key = grid_cell_key(antenna_id, latitude, longitude)
        cached = self._cache.get(key)
        if cached is not None:
            return cached.copy()

        generation = self.generation(antenna_id)
        try:
            async with self._session_maker() as db:
                record = await self._find_or_create(db, key)
                await db.commit()
        except (SQLAlchemyError, OSError) as e:
            raise LookupFailure(f"Could not load grid cell {key}: {e}") from e

        record.generation = generation
        # A row read across an invalidation must not repopulate the cache
        if generation == self.generation(antenna_id):
            self._cache.set(key, record)
        return record.copy()

    async def _find_or_create(self, db: AsyncSession, key: GridCellKey) -> GridCellRecord:
        query = select(GridCell).where(
            GridCell.antenna_id == key.antenna_id,
            GridCell.x == key.x,
            GridCell.y == key.y,
        )
        result = await db.execute(query)
        cell = result.scalar()
        if cell is None:
            # Losing the race to another writer is fine, re-read whatever won
            created = await db.execute(
                pg_insert(GridCell)
                .values(**GridCellRecord.empty(key).as_values())
                .on_conflict_do_nothing(index_elements=list(GRID_CELL_KEY_COLUMNS))
            )
            if created.rowcount:
                metrics.CELLS_CREATED.inc()
            result = await db.execute(query)
            cell = result.scalar()
            if cell is None:
                raise LookupFailure(f"Grid cell {key} missing after insert")
        return GridCellRecord.from_model(cell)

    async def save(self, record: GridCellRecord) -> None:
        """Upsert one cell, then write the same value through to the cache.

        Raises StaleGridCell when the antenna was invalidated or rebuilt
        after the record was read; the caller must read the cell again.
        """
        values = record.as_values()
        stmt = pg_insert(GridCell).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(GRID_CELL_KEY_COLUMNS),
            set_={
                column: stmt.excluded[column]
                for column in values
                if column not in GRID_CELL_KEY_COLUMNS
            },
        )
        async with self._antenna_lock(record.antenna_id):
            if record.generation != self.generation(record.antenna_id):
                raise StaleGridCell(f"Grid cell {record.key} changed since it was read")
            try:
                async with self._session_maker() as db:
                    await db.execute(stmt)
                    await db.commit()
            except (SQLAlchemyError, OSError) as e:
                raise PersistenceFailure(f"Could not save grid cell {record.key}: {e}") from e

            self._cache.set(record.key, record.copy())

    async def invalidate_antenna(self, antenna_id: int) -> int:
        """Drop every cached and persisted cell of an antenna.

        Returns the number of rows deleted.
        """
        async with self._antenna_lock(antenna_id):
            self._advance(antenna_id)
            evicted = self._cache.evict(lambda key: key.antenna_id == antenna_id)
            try:
                async with self._session_maker() as db:
                    result = await db.execute(
                        delete(GridCell).where(GridCell.antenna_id == antenna_id)
                    )
                    await db.commit()
            except (SQLAlchemyError, OSError) as e:
                raise PersistenceFailure(
                    f"Could not delete grid cells of antenna {antenna_id}: {e}"
                ) from e

        deleted = result.rowcount or 0
        metrics.CELLS_DELETED.inc(deleted)
        logger.info(
            f"Invalidated antenna {antenna_id}: {deleted} rows deleted, "
            f"{evicted} cache entries evicted"
        )
        return deleted

    async def bulk_replace(
        self, antenna_id: int, records: Mapping[GridCellKey, GridCellRecord]
    ) -> int:
        """Replace all cells of an antenna in a single transaction.

        Rows are inserted in chunks to stay under the per-statement bind
        parameter limit. Any failure rolls back every chunk and the delete,
        and raises PersistenceFailure. Returns the number of rows written.
        """
        rows = [record.as_values() for record in records.values()]
        async with self._antenna_lock(antenna_id):
            generation = self._advance(antenna_id)
            self._cache.evict(lambda key: key.antenna_id == antenna_id)
            try:
                async with self._session_maker() as db:
                    async with db.begin():
                        await db.execute(
                            delete(GridCell).where(GridCell.antenna_id == antenna_id)
                        )
                        for chunk in _chunks(rows, self._chunk_size):
                            await db.execute(insert(GridCell).values(chunk))
            except (SQLAlchemyError, OSError) as e:
                raise PersistenceFailure(
                    f"Could not write {len(rows)} grid cells for antenna {antenna_id}: {e}"
                ) from e

            for key, record in records.items():
                cached = record.copy()
                cached.generation = generation
                self._cache.set(key, cached)

        metrics.CELLS_CREATED.inc(len(rows))
        return len(rows)
