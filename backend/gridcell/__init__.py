"""Grid cell aggregation engine for coverage maps."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("gridcell-aggregator")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
