"""Tests for signal bucket classification."""

import pytest

from gridcell.services.buckets import THRESHOLDS, Bucket, classify, combined_signal


class TestCombinedSignal:
    def test_negative_snr_degrades_rssi(self):
        assert combined_signal(-95, -2) == -97

    def test_non_negative_snr_ignored(self):
        assert combined_signal(-95, 0) == -95
        assert combined_signal(-95, 7.5) == -95


class TestClassify:
    """Tests for the 12-way partition of combined signal values."""

    def test_strong_signal_is_high(self):
        assert classify(-94, 1) == Bucket.HIGH

    def test_negative_snr_moves_to_lower_bucket(self):
        assert classify(-95, -2) == Bucket.DBM_100

    @pytest.mark.parametrize(
        "rssi,expected",
        [
            (-95, Bucket.DBM_100),
            (-100, Bucket.DBM_105),
            (-105, Bucket.DBM_110),
            (-110, Bucket.DBM_115),
            (-115, Bucket.DBM_120),
            (-120, Bucket.DBM_125),
            (-125, Bucket.DBM_130),
            (-130, Bucket.DBM_135),
            (-135, Bucket.DBM_140),
            (-140, Bucket.DBM_145),
            (-145, Bucket.LOW),
        ],
    )
    def test_boundaries_fall_to_lower_bucket(self, rssi, expected):
        assert classify(rssi, 0) == expected

    def test_just_above_boundary(self):
        assert classify(-94.999, 0) == Bucket.HIGH
        assert classify(-144.5, 0) == Bucket.DBM_145

    def test_very_weak_signal_is_low(self):
        assert classify(-200, -20) == Bucket.LOW

    def test_never_classifies_no_signal(self):
        seen = {classify(rssi / 2, 0) for rssi in range(-400, 0)}
        assert Bucket.NO_SIGNAL not in seen
        assert seen == set(Bucket) - {Bucket.NO_SIGNAL}

    def test_ladder_has_eleven_descending_thresholds(self):
        values = [threshold for threshold, _ in THRESHOLDS]
        assert len(values) == 11
        assert values == sorted(values, reverse=True)


class TestBucketColumns:
    def test_values_are_column_names(self):
        assert Bucket.HIGH == "bucket_high"
        assert Bucket.DBM_100 == "bucket100"
        assert Bucket.LOW == "bucket_low"
        assert Bucket.NO_SIGNAL == "bucket_no_signal"
        assert len(Bucket) == 13
