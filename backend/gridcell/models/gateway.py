"""Gateway models, maintained by the gateway location service."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Double, String
from sqlalchemy.orm import Mapped, mapped_column

from gridcell.database import Base


class Gateway(Base):
    """A gateway and its last known installed location."""

    __tablename__ = "gateways"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    network_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    gateway_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # NULL when the location has never been reported
    latitude: Mapped[float | None] = mapped_column(Double)
    longitude: Mapped[float | None] = mapped_column(Double)


class GatewayLocation(Base):
    """One entry in a gateway's installation history."""

    __tablename__ = "gateway_locations"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    network_id: Mapped[str] = mapped_column(String(255), nullable=False)
    gateway_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    installed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    latitude: Mapped[float | None] = mapped_column(Double)
    longitude: Mapped[float | None] = mapped_column(Double)
