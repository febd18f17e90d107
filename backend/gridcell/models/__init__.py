"""SQLAlchemy ORM models."""

from gridcell.models.antenna import Antenna
from gridcell.models.gateway import Gateway, GatewayLocation
from gridcell.models.grid_cell import GRID_CELL_KEY_COLUMNS, GridCell
from gridcell.models.packet import Packet

__all__ = [
    "GRID_CELL_KEY_COLUMNS",
    "Antenna",
    "Gateway",
    "GatewayLocation",
    "GridCell",
    "Packet",
]
