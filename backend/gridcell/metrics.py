"""Prometheus counters and histograms for the live and rebuild paths."""

from prometheus_client import Counter, Histogram

# Milliseconds
DURATION_BUCKETS = (0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1, 1.5, 2, 5, 10, 100, 1000, 10000)

LIVE_PROCESSED = Counter(
    "gridcell_live",
    "The total number of live messages processed",
)
MOVED_PROCESSED = Counter(
    "gridcell_moved",
    "The total number of moved gateway messages processed",
)
DISCARDED = Counter(
    "gridcell_discarded",
    "Observations discarded before reaching a grid cell",
    ["reason"],
)
CELLS_CREATED = Counter(
    "gridcell_created",
    "The total number of grid cells created in the database",
)
CELLS_UPDATED = Counter(
    "gridcell_updated",
    "The total number of grid cell bucket increments",
)
CELLS_DELETED = Counter(
    "gridcell_deleted",
    "The total number of grid cells deleted",
)
OLD_DATA_PROCESSED = Counter(
    "gridcell_old_data",
    "The total number of historical packets replayed into grid cells",
)

LIVE_DURATION = Histogram(
    "gridcell_live_duration_milliseconds",
    "How long processing one gateway of a live message takes",
    buckets=DURATION_BUCKETS,
)
MOVED_DURATION = Histogram(
    "gridcell_moved_duration_milliseconds",
    "How long rebuilding one antenna takes",
    buckets=DURATION_BUCKETS,
)
