"""Raw packet model, written by the ingest service and replayed on rebuilds."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Double, Float, Index
from sqlalchemy.orm import Mapped, mapped_column

from gridcell.database import Base


class Packet(Base):
    """A single reception of an uplink by one antenna."""

    __tablename__ = "packets"
    __table_args__ = (Index("idx_packets_antenna_time", "antenna_id", "time"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    antenna_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    latitude: Mapped[float] = mapped_column(Double, nullable=False)
    longitude: Mapped[float] = mapped_column(Double, nullable=False)

    rssi: Mapped[float] = mapped_column(Float, nullable=False)
    snr: Mapped[float] = mapped_column(Float, nullable=False)

    # Set for data collected as part of an experiment
    experiment_id: Mapped[int | None] = mapped_column(BigInteger)
