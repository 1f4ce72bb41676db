"""
Position Estimate Output Schema.

Output of the position engine for one tag: building-frame position with
accuracy and confidence, the algorithm that produced it, and (once the
kinematic filter has history) a velocity.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class Algorithm(str, Enum):
    """Algorithm tag exposed to callers."""

    TRILATERATION = "trilateration"
    FINGERPRINT = "fingerprint"
    KALMAN = "kalman"


class SolverTier(str, Enum):
    """Tier that produced the raw (pre-filter) fix."""

    LEAST_SQUARES = "least_squares"
    WEIGHTED_CENTROID = "weighted_centroid"
    FINGERPRINT = "fingerprint"
    PROXIMITY = "proximity"


@dataclass
class PositionEstimate:
    """
    Tag position estimate.

    Attributes:
        tag_id: ID of the tag
        t_solve: Reference time of the estimate (seconds)
        pos: Position (x, y, z) in building meters
        accuracy_m: Expected position error (m, lower is better)
        confidence: Confidence indicator (0-1, higher is better)
        algorithm: trilateration / fingerprint / kalman
        solver: Tier that produced the raw fix
        num_readers: Distinct readers contributing
        reader_ids: Contributing reader IDs

        # Optional solver diagnostics
        residual_m: RMS range residual (least squares only)

        # Optional kinematic info
        velocity: Velocity (vx, vy, vz) in m/s once the filter has history
        innovation_m: Innovation magnitude vs filter prediction (m)
    """

    tag_id: str
    t_solve: float
    pos: Tuple[float, float, float]
    accuracy_m: float
    confidence: float
    algorithm: Algorithm
    solver: SolverTier
    num_readers: int
    reader_ids: list

    residual_m: Optional[float] = None
    velocity: Optional[Tuple[float, float, float]] = None
    innovation_m: Optional[float] = None

    def __post_init__(self):
        """Validate position estimate."""
        if not 0 <= self.confidence <= 1:
            raise ValueError(f"Confidence must be in [0,1]: {self.confidence}")

        if self.accuracy_m < 0:
            raise ValueError(f"Accuracy cannot be negative: {self.accuracy_m}")

        if self.num_readers < 1:
            raise ValueError(f"Estimate needs at least one reader: {self.num_readers}")

    @property
    def x(self) -> float:
        return self.pos[0]

    @property
    def y(self) -> float:
        return self.pos[1]

    @property
    def z(self) -> float:
        return self.pos[2]

    @property
    def is_smoothed(self) -> bool:
        """True once the kinematic filter had prior state for this tag."""
        return self.algorithm == Algorithm.KALMAN

    @property
    def speed_m_s(self) -> Optional[float]:
        """Speed magnitude, None until a velocity exists."""
        if self.velocity is None:
            return None
        return math.sqrt(sum(v * v for v in self.velocity))

    def distance_to(self, point: Tuple[float, float, float]) -> float:
        """Euclidean distance from this estimate to a point."""
        return math.sqrt(sum((a - b) ** 2 for a, b in zip(self.pos, point)))

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'tag_id': self.tag_id,
            't_solve': self.t_solve,
            'x': self.pos[0],
            'y': self.pos[1],
            'z': self.pos[2],
            'accuracy': self.accuracy_m,
            'confidence': self.confidence,
            'algorithm': self.algorithm.value,
            'solver': self.solver.value,
            'num_readers': self.num_readers,
            'reader_ids': list(self.reader_ids),
            'residual_m': self.residual_m,
            'velocity': self.velocity,
        }
