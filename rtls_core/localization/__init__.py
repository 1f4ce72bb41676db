"""
Localization Module: RSSI ranging, tiered solvers, Kalman smoothing.

- Path-loss ranging model
- Least-squares trilateration, weighted centroid, proximity fixes
- Fingerprint database (nearest neighbour)
- Constant-velocity tag filter
- Position engine selecting the tier per tag
"""

from .path_loss import PathLossConfig, PathLossModel
from .linalg import gaussian_elimination, solve_least_squares
from .measurement_buffer import MeasurementBuffer, ReaderObservation, aggregate_by_reader
from .trilateration import (
    TrilaterationConfig,
    Trilaterator,
    weighted_centroid,
    proximity_fix,
)
from .fingerprint import Fingerprint, FingerprintConfig, FingerprintDatabase
from .tag_kinematic_filter import TagKinematicFilter, TagKinematicFilterConfig
from .position_engine import PositionEngine, PositionEngineConfig

__all__ = [
    'PathLossConfig',
    'PathLossModel',
    'gaussian_elimination',
    'solve_least_squares',
    'MeasurementBuffer',
    'ReaderObservation',
    'aggregate_by_reader',
    'TrilaterationConfig',
    'Trilaterator',
    'weighted_centroid',
    'proximity_fix',
    'Fingerprint',
    'FingerprintConfig',
    'FingerprintDatabase',
    'TagKinematicFilter',
    'TagKinematicFilterConfig',
    'PositionEngine',
    'PositionEngineConfig',
]
