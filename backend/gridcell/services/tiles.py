"""Slippy-map tile indexing at the grid cell zoom level."""

import math

from gridcell.errors import InvalidCoordinate

ZOOM = 19

# Web Mercator is only defined up to ~85.0511 degrees; grid cells stop at 85
MAX_LATITUDE = 85.0


def tile(latitude: float, longitude: float, zoom: int = ZOOM) -> tuple[int, int]:
    """Return the (x, y) tile containing a coordinate.

    Callers must validate the coordinate first, see :func:`validate_coordinate`.
    """
    n = 1 << zoom
    lat_rad = math.radians(latitude)
    x = int(math.floor((longitude + 180.0) / 360.0 * n))
    mercator = math.log(math.tan(lat_rad) + 1 / math.cos(lat_rad))
    y = int(math.floor((1.0 - mercator / math.pi) / 2.0 * n))
    # longitude 180 would index one past the last column
    return min(x, n - 1), y


def validate_coordinate(latitude: float, longitude: float) -> None:
    """Raise InvalidCoordinate unless the coordinate can be mapped to a tile."""
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        raise InvalidCoordinate(f"Non-finite coordinate ({latitude}, {longitude})")
    if latitude < -MAX_LATITUDE or latitude > MAX_LATITUDE:
        raise InvalidCoordinate(f"Latitude {latitude} outside Mercator range")
    if longitude < -180.0 or longitude > 180.0:
        raise InvalidCoordinate(f"Longitude {longitude} out of range")
    if latitude == 0 and longitude == 0:
        raise InvalidCoordinate("Null island")


def locate(latitude: float, longitude: float) -> tuple[int, int]:
    """Validate a coordinate and return its zoom-19 tile."""
    validate_coordinate(latitude, longitude)
    return tile(latitude, longitude)
