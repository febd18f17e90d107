"""Antenna model: one receive antenna of one gateway in one network."""

from sqlalchemy import BigInteger, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from gridcell.database import Base


class Antenna(Base):
    """Stable identity that grid cells are keyed on."""

    __tablename__ = "antennas"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    network_id: Mapped[str] = mapped_column(String(255), nullable=False)
    gateway_id: Mapped[str] = mapped_column(String(255), nullable=False)
    # 0 when the network does not report antenna indexes
    antenna_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "network_id", "gateway_id", "antenna_index", name="idx_antenna_network_gateway"
        ),
    )
