"""
Unit tests for the RSSI fingerprint database.
"""

import math

import pytest

from rtls_core.localization.fingerprint import FingerprintConfig, FingerprintDatabase
from rtls_core.localization.measurement_buffer import ReaderObservation
from rtls_core.proto import Algorithm, SolverTier


def _obs(reader_id: str, rssi: float) -> ReaderObservation:
    return ReaderObservation(reader_id, (0.0, 0.0, 0.0), rssi, 1.0, 1, 0.0, 0.0)


@pytest.fixture
def database() -> FingerprintDatabase:
    db = FingerprintDatabase()
    db.add("shelf-A1", (1.0, 1.0, 1.0), {"R1": -45.0, "R2": -60.0, "R3": -65.0})
    db.add("shelf-B4", (8.0, 7.0, 1.0), {"R1": -66.0, "R2": -50.0, "R3": -48.0})
    return db


class TestDistance:
    """Tests for RSSI vector distance."""

    def test_identical_vectors(self, database):
        assert database.distance({"R1": -50.0}, {"R1": -50.0}) == 0.0

    def test_shared_readers_rms(self, database):
        d = database.distance({"R1": -50.0, "R2": -60.0}, {"R1": -53.0, "R2": -64.0})
        assert d == pytest.approx(math.sqrt((9.0 + 16.0) / 2))

    def test_missing_reader_penalty(self, database):
        d = database.distance({"R1": -50.0, "R2": -60.0}, {"R1": -50.0, "R3": -60.0})
        assert d == pytest.approx(20.0)

    def test_no_shared_reader_is_infinite(self, database):
        assert database.distance({"R1": -50.0}, {"R9": -50.0}) == math.inf


class TestMatching:
    """Tests for nearest-neighbour matching."""

    def test_match_nearest(self, database):
        fp, distance = database.match({"R1": -47.0, "R2": -61.0, "R3": -64.0})

        assert fp.label == "shelf-A1"
        assert distance < 2.0

    def test_match_too_far(self, database):
        assert database.match({"R1": -20.0, "R7": -90.0, "R8": -90.0}) is None

    def test_empty_database(self):
        assert FingerprintDatabase().match({"R1": -50.0}) is None

    def test_locate(self, database):
        observations = [_obs("R1", -65.0), _obs("R2", -51.0), _obs("R3", -48.0)]

        estimate = database.locate("T1", observations, t_solve=5.0)

        assert estimate.pos == (8.0, 7.0, 1.0)
        assert estimate.algorithm == Algorithm.FINGERPRINT
        assert estimate.solver == SolverTier.FINGERPRINT
        assert estimate.accuracy_m >= FingerprintConfig().min_accuracy_m
        assert 0.9 < estimate.confidence <= 1.0

    def test_locate_miss_counts_drop(self, database):
        assert database.locate("T1", [_obs("R9", -50.0)], 0.0) is None
        assert database.metrics.get_drop_count('no_fingerprint_match') == 1


class TestCalibration:
    """Tests for fingerprint maintenance."""

    def test_record_calibration(self):
        db = FingerprintDatabase()

        fp = db.record_calibration("door", (0.0, 5.0, 1.0), [_obs("R1", -40.0), _obs("R2", -55.0)])

        assert fp.rssi_map == {"R1": -40.0, "R2": -55.0}
        assert len(db) == 1

    def test_add_replaces_label(self, database):
        database.add("shelf-A1", (2.0, 2.0, 1.0), {"R1": -40.0})

        assert len(database) == 2
        labels = {fp.label: fp for fp in database.fingerprints()}
        assert labels["shelf-A1"].position == (2.0, 2.0, 1.0)

    def test_remove_and_clear(self, database):
        assert database.remove("shelf-A1")
        assert not database.remove("shelf-A1")
        database.clear()
        assert len(database) == 0

    def test_empty_vector_rejected(self):
        with pytest.raises(ValueError):
            FingerprintDatabase().add("x", (0.0, 0.0, 0.0), {})
