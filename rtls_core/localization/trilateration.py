"""
Range-Based Tag Solvers (RSSI).

Three tiers working from per-reader path-loss ranges:

- Trilaterator: weighted linear least squares for >= 4 readers
- weighted_centroid: 1/d^2 weighted reader centroid for 2-3 readers
- proximity_fix: single reader, tag placed on the range circle

Linearisation (reference reader r):

    2 (c_i - c_r) . p = r_r^2 - r_i^2 + |c_i|^2 - |c_r|^2

Readers sharing one mounting height cannot resolve z, so the system is
solved in x/y with z fixed to the configured tag plane.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from rtls_core.errors import DegenerateGeometry
from rtls_core.localization.linalg import solve_least_squares
from rtls_core.localization.measurement_buffer import ReaderObservation
from rtls_core.metrics import get_metrics
from rtls_core.proto.position_estimate import Algorithm, PositionEstimate, SolverTier


@dataclass
class TrilaterationConfig:
    """
    Configuration for the least-squares tier.

    Attributes:
        min_readers: Readers required for least squares
        planar_tolerance_m: Reader z spread below which the solve is 2D
        tag_plane_z_m: Tag height for 2D solves (None = reader plane height)
        min_geometry_score: Minimum reader spread score (0-1)
        max_residual_m: Fixes with a larger RMS residual are rejected
        accuracy_floor_m: Lower bound on reported accuracy
        confidence_scale_m: Accuracy at which confidence reaches 0
        pivot_tol: Relative pivot tolerance for elimination
    """

    min_readers: int = 4
    planar_tolerance_m: float = 0.05
    tag_plane_z_m: Optional[float] = None
    min_geometry_score: float = 0.05
    max_residual_m: float = 10.0
    accuracy_floor_m: float = 0.1
    confidence_scale_m: float = 10.0
    pivot_tol: float = 1e-10

    def __post_init__(self):
        """Validate configuration."""
        if self.min_readers < 3:
            raise ValueError(f"Least squares needs at least 3 readers: {self.min_readers}")
        if self.accuracy_floor_m <= 0:
            raise ValueError(f"Accuracy floor must be positive: {self.accuracy_floor_m}")
        if self.confidence_scale_m <= 0:
            raise ValueError(f"Confidence scale must be positive: {self.confidence_scale_m}")


class Trilaterator:
    """
    Weighted least-squares trilateration.

    Usage:
        solver = Trilaterator(TrilaterationConfig(tag_plane_z_m=1.0))
        try:
            estimate = solver.solve("T1", observations, t_solve)
        except DegenerateGeometry:
            ...  # fall back to a cheaper tier
    """

    def __init__(self, config: Optional[TrilaterationConfig] = None):
        self.config = config or TrilaterationConfig()
        self.metrics = get_metrics()

    def solve(
        self,
        tag_id: str,
        observations: Sequence[ReaderObservation],
        t_solve: float,
    ) -> PositionEstimate:
        """
        Solve tag position from ranged reader observations.

        Raises:
            ValueError: Fewer observations than min_readers
            DegenerateGeometry: Collinear/coincident readers, singular
                normal equations, or an inconsistent (high residual) fix
        """
        cfg = self.config
        if len(observations) < cfg.min_readers:
            raise ValueError(f"Need {cfg.min_readers} readers, got {len(observations)}")

        centers = np.array([o.position for o in observations], dtype=float)
        radii = np.array([o.distance_m for o in observations], dtype=float)

        # Readers too close to one height to resolve z are solved in the plane
        planar = float(np.ptp(centers[:, 2])) < cfg.planar_tolerance_m
        if not planar and self._compute_geometry_score(centers) < cfg.min_geometry_score:
            planar = True
        dims = 2 if planar else 3

        geometry_score = self._compute_geometry_score(centers[:, :dims])
        if geometry_score < cfg.min_geometry_score:
            raise DegenerateGeometry(f"poor reader geometry (score {geometry_score:.3f})")

        if planar:
            tag_z = cfg.tag_plane_z_m if cfg.tag_plane_z_m is not None else float(np.mean(centers[:, 2]))
        else:
            tag_z = None

        # Shortest range is the most reliable reference sphere
        ref = int(np.argmin(radii))
        others = [i for i in range(len(observations)) if i != ref]

        A = np.zeros((len(others), dims))
        b = np.zeros(len(others))
        weights = np.zeros(len(others))

        c_ref = centers[ref]
        r_ref = radii[ref]
        for row, i in enumerate(others):
            c_i = centers[i]
            A[row] = 2.0 * (c_i[:dims] - c_ref[:dims])
            b[row] = (
                r_ref ** 2 - radii[i] ** 2
                + float(np.dot(c_i[:dims], c_i[:dims]))
                - float(np.dot(c_ref[:dims], c_ref[:dims]))
            )
            if planar:
                # Small mounting differences inside the planar tolerance
                b[row] += (tag_z - c_i[2]) ** 2 - (tag_z - c_ref[2]) ** 2
            weights[row] = 1.0 / (radii[i] ** 2 + r_ref ** 2)

        solution = solve_least_squares(A, b, weights=weights, pivot_tol=cfg.pivot_tol)

        if planar:
            pos = np.array([solution[0], solution[1], tag_z])
        else:
            pos = solution

        if not np.all(np.isfinite(pos)):
            raise DegenerateGeometry("non-finite solution")

        residuals = np.linalg.norm(centers - pos, axis=1) - radii
        rms = float(np.sqrt(np.mean(residuals ** 2)))
        self.metrics.record_histogram('trilateration_residual_m', rms)

        if rms > cfg.max_residual_m:
            raise DegenerateGeometry(f"inconsistent ranges (rms residual {rms:.2f} m)")

        accuracy = max(rms, cfg.accuracy_floor_m)
        confidence = min(1.0, max(0.0, 1.0 - accuracy / cfg.confidence_scale_m))

        return PositionEstimate(
            tag_id=tag_id,
            t_solve=t_solve,
            pos=(float(pos[0]), float(pos[1]), float(pos[2])),
            accuracy_m=accuracy,
            confidence=confidence,
            algorithm=Algorithm.TRILATERATION,
            solver=SolverTier.LEAST_SQUARES,
            num_readers=len(observations),
            reader_ids=[o.reader_id for o in observations],
            residual_m=rms,
        )

    def _compute_geometry_score(self, points: np.ndarray) -> float:
        """
        Reader spread score (0-1).

        Square root of smallest/largest eigenvalue of the reader position
        covariance: 0 for collinear readers, 1 for an isotropic spread.
        """
        centered = points - points.mean(axis=0)
        cov = centered.T @ centered / len(points)
        eigvals = np.linalg.eigvalsh(cov)
        largest = float(eigvals[-1])
        if largest <= 0:
            return 0.0
        return math.sqrt(max(float(eigvals[0]), 0.0) / largest)


def estimate_rssi_accuracy(observations: Sequence[ReaderObservation]) -> float:
    """
    Accuracy proxy for range-free tiers from RSSI spread across readers.

    Variance of the per-reader mean RSSI scaled by 1/10, clamped to
    [0.5, 10] m; a single reader reports 5 m.
    """
    if len(observations) < 2:
        return 5.0
    values = [o.rssi for o in observations]
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return max(0.5, min(10.0, variance / 10.0))


def weighted_centroid(
    tag_id: str,
    observations: Sequence[ReaderObservation],
    t_solve: float,
    full_confidence_readers: int = 4,
) -> PositionEstimate:
    """
    Reader centroid weighted by 1/d^2.

    Confidence grows with reader count: min(1, n / full_confidence_readers).
    """
    if not observations:
        raise ValueError("Centroid needs at least one observation")

    weights = np.array([1.0 / (o.distance_m ** 2) for o in observations])
    centers = np.array([o.position for o in observations], dtype=float)
    pos = (weights[:, None] * centers).sum(axis=0) / weights.sum()

    return PositionEstimate(
        tag_id=tag_id,
        t_solve=t_solve,
        pos=(float(pos[0]), float(pos[1]), float(pos[2])),
        accuracy_m=estimate_rssi_accuracy(observations),
        confidence=min(1.0, len(observations) / full_confidence_readers),
        algorithm=Algorithm.TRILATERATION,
        solver=SolverTier.WEIGHTED_CENTROID,
        num_readers=len(observations),
        reader_ids=[o.reader_id for o in observations],
    )


def proximity_fix(
    tag_id: str,
    observation: ReaderObservation,
    t_solve: float,
    rng: Optional[np.random.Generator] = None,
    confidence: float = 0.3,
) -> PositionEstimate:
    """
    Single-reader fix: tag on the range circle at a random bearing.

    Accuracy equals the range since the bearing is unknown.
    """
    rng = rng if rng is not None else np.random.default_rng()
    bearing = float(rng.uniform(0.0, 2.0 * math.pi))
    x, y, z = observation.position
    d = observation.distance_m

    return PositionEstimate(
        tag_id=tag_id,
        t_solve=t_solve,
        pos=(x + d * math.cos(bearing), y + d * math.sin(bearing), float(z)),
        accuracy_m=d,
        confidence=confidence,
        algorithm=Algorithm.TRILATERATION,
        solver=SolverTier.PROXIMITY,
        num_readers=1,
        reader_ids=[observation.reader_id],
    )

