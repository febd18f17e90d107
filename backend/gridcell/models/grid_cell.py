"""Grid cell model: one signal histogram per antenna per zoom-19 tile."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column

from gridcell.database import Base

# Columns forming the unique key; used as the ON CONFLICT target
GRID_CELL_KEY_COLUMNS = ("antenna_id", "x", "y")


class GridCell(Base):
    """Signal quality histogram for one antenna in one map tile."""

    __tablename__ = "grid_cells"
    __table_args__ = (
        Index("idx_grid_cell", "antenna_id", "x", "y", unique=True),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    antenna_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Tile coordinates, zoom is always 19
    x: Mapped[int] = mapped_column(Integer, nullable=False)
    y: Mapped[int] = mapped_column(Integer, nullable=False)

    last_updated: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Combined signal (rssi + negative snr) histogram, dBm
    bucket_high: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    bucket100: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    bucket105: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    bucket110: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    bucket115: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    bucket120: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    bucket125: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    bucket130: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    bucket135: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    bucket140: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    bucket145: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    bucket_low: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    bucket_no_signal: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
