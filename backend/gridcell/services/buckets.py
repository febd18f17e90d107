"""Signal quality histogram buckets."""

import enum


class Bucket(enum.StrEnum):
    """Histogram bucket; the value is the grid_cells column name."""

    HIGH = "bucket_high"
    DBM_100 = "bucket100"
    DBM_105 = "bucket105"
    DBM_110 = "bucket110"
    DBM_115 = "bucket115"
    DBM_120 = "bucket120"
    DBM_125 = "bucket125"
    DBM_130 = "bucket130"
    DBM_135 = "bucket135"
    DBM_140 = "bucket140"
    DBM_145 = "bucket145"
    LOW = "bucket_low"
    # Never incremented by classify(); only for callers that know nothing was received
    NO_SIGNAL = "bucket_no_signal"


# Descending thresholds; a signal strictly above the threshold lands in the bucket
THRESHOLDS: tuple[tuple[float, Bucket], ...] = (
    (-95, Bucket.HIGH),
    (-100, Bucket.DBM_100),
    (-105, Bucket.DBM_105),
    (-110, Bucket.DBM_110),
    (-115, Bucket.DBM_115),
    (-120, Bucket.DBM_120),
    (-125, Bucket.DBM_125),
    (-130, Bucket.DBM_130),
    (-135, Bucket.DBM_135),
    (-140, Bucket.DBM_140),
    (-145, Bucket.DBM_145),
)


def combined_signal(rssi: float, snr: float) -> float:
    """RSSI, degraded by the SNR when the SNR is negative."""
    if snr < 0:
        return rssi + snr
    return rssi


def classify(rssi: float, snr: float) -> Bucket:
    """Return the single bucket an observation belongs in."""
    signal = combined_signal(rssi, snr)
    for threshold, bucket in THRESHOLDS:
        if signal > threshold:
            return bucket
    return Bucket.LOW
