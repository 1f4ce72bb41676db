"""
Unit tests for the range-based solver tiers.

Tests cover:
- Planar and 3D least-squares trilateration
- Residual / accuracy relationship
- Degenerate geometry (collinear readers, inconsistent ranges)
- Weighted centroid and single-reader proximity fixes
"""

import math

import numpy as np
import pytest

from rtls_core.errors import DegenerateGeometry
from rtls_core.localization.trilateration import (
    TrilaterationConfig,
    Trilaterator,
    estimate_rssi_accuracy,
    proximity_fix,
    weighted_centroid,
)
from rtls_core.localization.measurement_buffer import ReaderObservation
from rtls_core.proto import Algorithm, SolverTier
from tests.conftest import observations_for


class TestLeastSquares:
    """Tests for Trilaterator.solve."""

    @pytest.mark.parametrize("tag_pos", [(4.0, 6.0, 1.0), (1.0, 1.0, 1.0), (9.5, 2.0, 1.0), (5.0, 5.0, 1.0)])
    def test_planar_exact_ranges(self, corner_positions, tag_pos):
        """Exact ranges from co-planar readers recover the tag in the plane."""
        solver = Trilaterator()

        estimate = solver.solve("T1", observations_for(corner_positions, tag_pos), t_solve=10.0)

        assert math.dist(estimate.pos, tag_pos) < 1e-6
        assert estimate.algorithm == Algorithm.TRILATERATION
        assert estimate.solver == SolverTier.LEAST_SQUARES
        assert estimate.num_readers == 4
        assert estimate.t_solve == 10.0

    def test_tag_plane_height(self, corner_positions):
        """Tags below the reader plane are solved at the configured height."""
        readers = [(x, y, 3.0) for x, y, _ in corner_positions]
        tag_pos = (3.0, 7.0, 1.0)
        solver = Trilaterator(TrilaterationConfig(tag_plane_z_m=1.0))

        estimate = solver.solve("T1", observations_for(readers, tag_pos), t_solve=0.0)

        assert math.dist(estimate.pos, tag_pos) < 1e-6

    def test_3d_solve(self):
        """Readers at two mounting heights resolve z."""
        readers = [(0.0, 0.0, 3.0), (10.0, 0.0, 0.5), (0.0, 10.0, 0.5), (10.0, 10.0, 3.0)]
        tag_pos = (4.0, 6.0, 1.5)

        estimate = Trilaterator().solve("T1", observations_for(readers, tag_pos), t_solve=0.0)

        assert math.dist(estimate.pos, tag_pos) < 1e-6

    def test_residual_never_exceeds_accuracy(self, corner_positions):
        """Noisy ranges: reported accuracy bounds the RMS residual."""
        rng = np.random.default_rng(3)
        solver = Trilaterator()

        for _ in range(25):
            tag_pos = (rng.uniform(1, 9), rng.uniform(1, 9), 1.0)
            observations = observations_for(corner_positions, tag_pos)
            for o in observations:
                o.distance_m = max(0.1, o.distance_m + rng.normal(0.0, 0.5))

            estimate = solver.solve("T1", observations, t_solve=0.0)

            assert estimate.residual_m is not None
            assert estimate.residual_m <= estimate.accuracy_m
            assert 0.0 <= estimate.confidence <= 1.0

    def test_confidence_from_accuracy(self, corner_positions):
        estimate = Trilaterator().solve("T1", observations_for(corner_positions, (5.0, 5.0, 1.0)), 0.0)

        # Exact ranges hit the accuracy floor
        assert estimate.accuracy_m == pytest.approx(0.1)
        assert estimate.confidence == pytest.approx(0.99)

    def test_collinear_readers_degenerate(self):
        readers = [(0.0, 0.0, 1.0), (3.0, 0.0, 1.0), (6.0, 0.0, 1.0), (9.0, 0.0, 1.0)]

        with pytest.raises(DegenerateGeometry):
            Trilaterator().solve("T1", observations_for(readers, (4.0, 3.0, 1.0)), 0.0)

    def test_inconsistent_ranges_rejected(self, corner_positions):
        observations = observations_for(corner_positions, (5.0, 5.0, 1.0))
        for o in observations:
            o.distance_m = 50.0

        with pytest.raises(DegenerateGeometry, match="residual"):
            Trilaterator().solve("T1", observations, 0.0)

    def test_too_few_readers(self, corner_positions):
        with pytest.raises(ValueError):
            Trilaterator().solve("T1", observations_for(corner_positions[:3], (5.0, 5.0, 1.0)), 0.0)

    def test_records_residual_histogram(self, corner_positions):
        solver = Trilaterator()
        solver.solve("T1", observations_for(corner_positions, (2.0, 3.0, 1.0)), 0.0)

        stats = solver.metrics.get_histogram_stats('trilateration_residual_m')
        assert stats['count'] == 1


class TestRangeFreeTiers:
    """Tests for weighted centroid and proximity fixes."""

    def test_centroid_weights_nearest_reader(self):
        obs = observations_for([(0.0, 0.0, 0.0), (10.0, 0.0, 0.0)], (2.0, 0.0, 0.0))

        estimate = weighted_centroid("T1", obs, 0.0)

        # Weights 1/4 and 1/64 pull the centroid towards R1
        assert estimate.x == pytest.approx(10.0 * (1 / 64) / (1 / 4 + 1 / 64))
        assert estimate.solver == SolverTier.WEIGHTED_CENTROID
        assert estimate.algorithm == Algorithm.TRILATERATION

    @pytest.mark.parametrize("n,confidence", [(2, 0.5), (3, 0.75), (4, 1.0), (6, 1.0)])
    def test_centroid_confidence_grows_with_readers(self, n, confidence):
        positions = [(float(i), 0.0, 0.0) for i in range(n)]
        estimate = weighted_centroid("T1", observations_for(positions, (0.5, 3.0, 0.0)), 0.0)

        assert estimate.confidence == pytest.approx(confidence)

    def test_proximity_on_range_circle(self):
        obs = observations_for([(2.0, 3.0, 1.0)], (5.0, 7.0, 1.0))[0]

        estimate = proximity_fix("T1", obs, 0.0, rng=np.random.default_rng(0))

        assert math.dist(estimate.pos, (2.0, 3.0, 1.0)) == pytest.approx(5.0)
        assert estimate.accuracy_m == pytest.approx(5.0)
        assert estimate.confidence == 0.3
        assert estimate.solver == SolverTier.PROXIMITY

    def test_rssi_accuracy_proxy(self):
        def obs(rssi):
            return ReaderObservation("R", (0.0, 0.0, 0.0), rssi, 1.0, 1, 0.0, 0.0)

        assert estimate_rssi_accuracy([obs(-50.0)]) == 5.0
        assert estimate_rssi_accuracy([obs(-50.0), obs(-50.0)]) == 0.5
        assert estimate_rssi_accuracy([obs(-40.0), obs(-80.0)]) == 10.0
