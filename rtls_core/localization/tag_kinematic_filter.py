"""
Tag Kinematic Filter (Constant-Velocity).

Implements a 6D constant-velocity Kalman filter smoothing the raw
per-tag fixes of the position engine.

State: [x, y, z, vx, vy, vz] (3D position + velocity)

Process noise follows the discretised white-acceleration model, per axis:

    Q = q * [[dt^4/4, dt^3/2],
             [dt^3/2, dt^2  ]]

Measurement noise is the raw fix's accuracy: R = accuracy^2 * I.
"""

from dataclasses import dataclass, replace
from typing import Optional, Tuple

import numpy as np

from rtls_core.metrics import get_metrics
from rtls_core.proto.position_estimate import Algorithm, PositionEstimate


@dataclass
class TagKinematicFilterConfig:
    """
    Configuration for tag kinematic filter.

    Attributes:
        q_accel: White-acceleration noise intensity ((m/s^2)^2)
        initial_pos_std_m: Initial position uncertainty (m)
        initial_vel_std_m_s: Initial velocity uncertainty (m/s)
        min_measurement_std_m: Floor on measurement noise std (m)
        confidence_gain: Filtered confidence = min(1, raw * gain)
    """

    q_accel: float = 0.1
    initial_pos_std_m: float = 10.0
    initial_vel_std_m_s: float = 10.0
    min_measurement_std_m: float = 0.1
    confidence_gain: float = 1.2

    def __post_init__(self):
        """Validate configuration."""
        if self.q_accel < 0:
            raise ValueError(f"Process noise cannot be negative: {self.q_accel}")
        if self.initial_pos_std_m <= 0 or self.initial_vel_std_m_s <= 0:
            raise ValueError("Initial uncertainties must be positive")


class TagKinematicFilter:
    """
    Constant-velocity Kalman filter for tag position smoothing.

    Usage:
        kf = TagKinematicFilter("T1", config)

        raw = trilaterator.solve("T1", observations, t_now)
        smoothed = kf.update(raw)

    Notes:
        - The first update seeds the state and returns the raw estimate
          unchanged (no velocity yet)
        - Later updates return algorithm=kalman with a velocity
    """

    def __init__(self, tag_id: str, config: Optional[TagKinematicFilterConfig] = None):
        """
        Initialize kinematic filter.

        Args:
            tag_id: Tag ID
            config: Filter configuration (uses defaults if None)
        """
        self.tag_id = tag_id
        self.config = config or TagKinematicFilterConfig()
        self.metrics = get_metrics()

        # State: [x, y, z, vx, vy, vz]
        self._state: Optional[np.ndarray] = None

        # Covariance: 6x6
        self._covariance: Optional[np.ndarray] = None

        self._last_update_time: Optional[float] = None

    def is_initialized(self) -> bool:
        """Check if filter has been initialized."""
        return self._state is not None

    @property
    def covariance(self) -> Optional[np.ndarray]:
        return None if self._covariance is None else self._covariance.copy()

    def update(self, measurement: PositionEstimate) -> PositionEstimate:
        """
        Update filter with a raw position fix.

        Args:
            measurement: Raw PositionEstimate from any solver tier

        Returns:
            Filtered PositionEstimate (the measurement itself on first call)
        """
        t_now = measurement.t_solve

        if not self.is_initialized():
            self._initialize_from_measurement(measurement)
            self.metrics.increment('tag_filter_initialized')
            return measurement

        dt = t_now - self._last_update_time
        self._predict(dt)

        z = np.array(measurement.pos, dtype=float)
        r_std = max(measurement.accuracy_m, self.config.min_measurement_std_m)
        R = np.eye(3) * r_std ** 2

        H = np.hstack([np.eye(3), np.zeros((3, 3))])

        y = z - H @ self._state  # Innovation
        S = H @ self._covariance @ H.T + R
        K = np.linalg.solve(S, H @ self._covariance).T

        self._state = self._state + K @ y
        self._covariance = (np.eye(6) - K @ H) @ self._covariance
        # Keep symmetric against round-off
        self._covariance = 0.5 * (self._covariance + self._covariance.T)

        if t_now > self._last_update_time:
            self._last_update_time = t_now

        innovation_m = float(np.linalg.norm(y))
        pos_var = np.diag(self._covariance)[:3]

        filtered = replace(
            measurement,
            pos=(float(self._state[0]), float(self._state[1]), float(self._state[2])),
            accuracy_m=float(np.sqrt(np.max(pos_var))),
            confidence=min(1.0, measurement.confidence * self.config.confidence_gain),
            algorithm=Algorithm.KALMAN,
            velocity=(float(self._state[3]), float(self._state[4]), float(self._state[5])),
            innovation_m=innovation_m,
        )

        self.metrics.increment('tag_filter_updates')
        self.metrics.record_histogram('kalman_innovation_m', innovation_m)

        return filtered

    def _initialize_from_measurement(self, measurement: PositionEstimate):
        """Initialize filter from first measurement."""
        x, y, z = measurement.pos
        self._state = np.array([x, y, z, 0.0, 0.0, 0.0], dtype=float)

        pos_var = self.config.initial_pos_std_m ** 2
        vel_var = self.config.initial_vel_std_m_s ** 2
        self._covariance = np.diag([pos_var] * 3 + [vel_var] * 3)

        self._last_update_time = measurement.t_solve

    def _predict(self, dt: float):
        """Predict state forward by dt seconds."""
        if dt <= 0:
            return

        F = np.eye(6)
        F[0:3, 3:6] = np.eye(3) * dt

        q = self.config.q_accel
        Q = np.zeros((6, 6))
        Q[0:3, 0:3] = np.eye(3) * (dt ** 4 / 4.0) * q
        Q[0:3, 3:6] = np.eye(3) * (dt ** 3 / 2.0) * q
        Q[3:6, 0:3] = np.eye(3) * (dt ** 3 / 2.0) * q
        Q[3:6, 3:6] = np.eye(3) * (dt ** 2) * q

        self._state = F @ self._state
        self._covariance = F @ self._covariance @ F.T + Q

    def get_predicted_position(self, t_predict: float) -> Optional[Tuple[float, float, float]]:
        """
        Get predicted position at a given time without changing state.

        Returns:
            Predicted (x, y, z), or None if not initialized
        """
        if not self.is_initialized():
            return None

        dt = max(0.0, t_predict - self._last_update_time)
        pos = self._state[0:3] + self._state[3:6] * dt
        return (float(pos[0]), float(pos[1]), float(pos[2]))

    def reset(self):
        """Reset filter to uninitialized state."""
        self._state = None
        self._covariance = None
        self._last_update_time = None
        self.metrics.increment('tag_filter_resets')
