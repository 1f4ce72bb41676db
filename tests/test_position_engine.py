"""
Unit tests for the position engine (tier selection + smoothing).
"""

import math

import pytest

from rtls_core.errors import InsufficientData
from rtls_core.localization import FingerprintDatabase, PositionEngine, PositionEngineConfig
from rtls_core.proto import Algorithm, Measurement, ReaderDescriptor, SolverTier, TagReading
from tests.conftest import simulate_measurements


def _reading_from(reader: ReaderDescriptor, rssi: float, t: float, tag_id: str = "T1") -> Measurement:
    reading = TagReading(tag_id=tag_id, reader_id=reader.reader_id, rssi=rssi, timestamp=t)
    return Measurement.from_reading(reading, reader)


@pytest.fixture
def engine() -> PositionEngine:
    return PositionEngine(PositionEngineConfig(random_seed=7))


@pytest.fixture
def room(square_readers):
    return square_readers[:4]


class TestScenarios:
    """End-to-end engine scenarios."""

    def test_three_reader_centroid(self, engine):
        """Readers at (0,0), (10,0), (5,10) reporting -45/-50/-48 dBm."""
        readers = [
            ReaderDescriptor("R1", "a", "fixed", (0.0, 0.0, 0.0)),
            ReaderDescriptor("R2", "b", "fixed", (10.0, 0.0, 0.0)),
            ReaderDescriptor("R3", "c", "fixed", (5.0, 10.0, 0.0)),
        ]
        measurements = [
            _reading_from(readers[0], -45.0, 100.0),
            _reading_from(readers[1], -50.0, 100.0),
            _reading_from(readers[2], -48.0, 100.0),
        ]

        estimate = engine.estimate("T1", measurements, t_now=100.0)

        assert math.dist(estimate.pos[:2], (5.0, 3.0)) < 5.0
        assert estimate.confidence > 0.5
        assert estimate.solver == SolverTier.WEIGHTED_CENTROID

    def test_single_reader_first_sight(self, engine, room):
        measurements = [_reading_from(room[0], -50.0, 100.0)]

        estimate = engine.estimate("T1", measurements, t_now=100.0)

        assert estimate.confidence == 0.3
        assert estimate.algorithm == Algorithm.TRILATERATION
        assert estimate.solver == SolverTier.PROXIMITY


class TestTierSelection:
    """Tests for solver tier selection."""

    def test_four_readers_least_squares(self, engine, room):
        tag_pos = (4.0, 6.0, 1.0)

        estimate = engine.estimate("T1", simulate_measurements("T1", room, tag_pos, 100.0), t_now=100.0)

        assert estimate.solver == SolverTier.LEAST_SQUARES
        assert math.dist(estimate.pos, tag_pos) < 0.01
        assert engine.metrics.get_counter('solver_least_squares') == 1

    def test_degenerate_geometry_falls_back(self, engine):
        readers = [ReaderDescriptor(f"R{i}", "row", "fixed", (3.0 * i, 0.0, 1.0)) for i in range(4)]

        estimate = engine.estimate("T1", simulate_measurements("T1", readers, (4.0, 3.0, 1.0), 0.0))

        assert estimate.solver == SolverTier.WEIGHTED_CENTROID
        assert engine.metrics.get_drop_count('degenerate_geometry') == 1

    def test_fingerprint_before_centroid(self, room):
        db = FingerprintDatabase()
        db.add("shelf", (7.0, 7.0, 1.0), {"R1": -60.0, "R2": -55.0})
        engine = PositionEngine(fingerprints=db)
        measurements = [_reading_from(room[0], -60.5, 0.0), _reading_from(room[1], -55.5, 0.0)]

        estimate = engine.estimate("T1", measurements)

        assert estimate.solver == SolverTier.FINGERPRINT
        assert estimate.pos == (7.0, 7.0, 1.0)

    def test_fingerprint_miss_falls_back_to_centroid(self, room):
        db = FingerprintDatabase()
        db.add("elsewhere", (7.0, 7.0, 1.0), {"R9": -60.0})
        engine = PositionEngine(fingerprints=db)
        measurements = [_reading_from(room[0], -60.0, 0.0), _reading_from(room[1], -55.0, 0.0)]

        assert engine.estimate("T1", measurements).solver == SolverTier.WEIGHTED_CENTROID


class TestRecencyAndState:
    """Tests for recency filtering, caching and per-tag state."""

    def test_no_measurements(self, engine):
        with pytest.raises(InsufficientData):
            engine.estimate("T1", [])
        assert engine.metrics.get_drop_count('insufficient_data') == 1

    def test_only_stale_measurements(self, engine, room):
        measurements = simulate_measurements("T1", room, (4.0, 6.0, 1.0), 100.0)

        with pytest.raises(InsufficientData):
            engine.estimate("T1", measurements, t_now=103.0)

    def test_old_samples_ignored(self, engine, room):
        old = [_reading_from(room[0], -40.0, 90.0)]
        fresh = simulate_measurements("T1", room, (4.0, 6.0, 1.0), 100.0)

        estimate = engine.estimate("T1", old + fresh, t_now=100.0)

        assert estimate.solver == SolverTier.LEAST_SQUARES
        assert math.dist(estimate.pos, (4.0, 6.0, 1.0)) < 0.01

    def test_cached_without_new_measurements(self, engine, room):
        measurements = simulate_measurements("T1", room, (4.0, 6.0, 1.0), 100.0)

        first = engine.estimate("T1", measurements, t_now=100.0)
        second = engine.estimate("T1", measurements, t_now=100.5)

        assert second is first
        assert engine.metrics.get_counter('position_estimates') == 1

    def test_smoothing_after_first_fix(self, engine, room):
        engine.estimate("T1", simulate_measurements("T1", room, (4.0, 6.0, 1.0), 100.0))
        estimate = engine.estimate("T1", simulate_measurements("T1", room, (4.2, 6.0, 1.0), 100.5))

        assert estimate.algorithm == Algorithm.KALMAN
        assert estimate.velocity is not None

    def test_forget_resets_filter(self, engine, room):
        engine.estimate("T1", simulate_measurements("T1", room, (4.0, 6.0, 1.0), 100.0))
        assert engine.has_state("T1")

        engine.forget("T1")

        assert not engine.has_state("T1")
        estimate = engine.estimate("T1", simulate_measurements("T1", room, (4.0, 6.0, 1.0), 200.0))
        assert estimate.algorithm == Algorithm.TRILATERATION

    def test_predict_position(self, engine, room):
        assert engine.predict_position("T1", 101.0) is None

        engine.estimate("T1", simulate_measurements("T1", room, (4.0, 6.0, 1.0), 100.0))

        assert math.dist(engine.predict_position("T1", 101.0), (4.0, 6.0, 1.0)) < 0.01
        assert engine.tracked_tags() == ["T1"]

    def test_kalman_disabled(self, room):
        engine = PositionEngine(PositionEngineConfig(enable_kalman=False))
        engine.estimate("T1", simulate_measurements("T1", room, (4.0, 6.0, 1.0), 100.0))
        estimate = engine.estimate("T1", simulate_measurements("T1", room, (4.0, 6.0, 1.0), 100.5))

        assert estimate.algorithm == Algorithm.TRILATERATION
        assert not engine.has_state("T1")

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            PositionEngineConfig(proximity_confidence=1.5)
