"""
Position Engine.

Turns a tag's recent measurements into one smoothed position estimate:

1. Recency filter (max_measurement_age_s against t_now or newest sample)
2. Per-reader aggregation and path-loss ranging
3. Tier selection by distinct reader count:
   - >= 4 readers: weighted least-squares trilateration
   - fingerprint database populated: nearest-neighbour match
   - 2-3 readers: 1/d^2 weighted centroid
   - 1 reader: proximity (confidence 0.3)
4. Per-tag constant-velocity Kalman smoothing

A degenerate trilateration or an unmatched fingerprint falls through to the
next tier; only an empty measurement set is an error.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from rtls_core.errors import DegenerateGeometry, InsufficientData
from rtls_core.localization.fingerprint import FingerprintConfig, FingerprintDatabase
from rtls_core.localization.measurement_buffer import ReaderObservation, aggregate_by_reader
from rtls_core.localization.path_loss import PathLossConfig, PathLossModel
from rtls_core.localization.tag_kinematic_filter import TagKinematicFilter, TagKinematicFilterConfig
from rtls_core.localization.trilateration import (
    TrilaterationConfig,
    Trilaterator,
    proximity_fix,
    weighted_centroid,
)
from rtls_core.metrics import get_metrics
from rtls_core.proto.measurement import Measurement
from rtls_core.proto.position_estimate import PositionEstimate

logger = logging.getLogger(__name__)


@dataclass
class PositionEngineConfig:
    """
    Configuration for the position engine.

    Attributes:
        max_measurement_age_s: Measurements older than this are ignored
        proximity_confidence: Confidence of single-reader fixes
        centroid_full_confidence_readers: Readers for centroid confidence 1.0
        enable_kalman: Smooth raw fixes with the kinematic filter
        random_seed: Seed for the proximity bearing (None = random)
        path_loss / trilateration / fingerprint / kalman: Sub-configs
    """

    max_measurement_age_s: float = 2.0
    proximity_confidence: float = 0.3
    centroid_full_confidence_readers: int = 4
    enable_kalman: bool = True
    random_seed: Optional[int] = None

    path_loss: PathLossConfig = field(default_factory=PathLossConfig)
    trilateration: TrilaterationConfig = field(default_factory=TrilaterationConfig)
    fingerprint: FingerprintConfig = field(default_factory=FingerprintConfig)
    kalman: TagKinematicFilterConfig = field(default_factory=TagKinematicFilterConfig)

    def __post_init__(self):
        """Validate configuration."""
        if self.max_measurement_age_s <= 0:
            raise ValueError(f"Max measurement age must be positive: {self.max_measurement_age_s}")
        if not 0 <= self.proximity_confidence <= 1:
            raise ValueError(f"Proximity confidence must be in [0,1]: {self.proximity_confidence}")


class PositionEngine:
    """
    Tiered RSSI localization with per-tag Kalman smoothing.

    Usage:
        engine = PositionEngine(PositionEngineConfig())
        estimate = engine.estimate("T1", buffer.get("T1"), t_now=time.time())
        engine.forget("T1")   # tag lost: next sighting starts fresh

    Notes:
        - Not thread-safe; the orchestrator serialises calls per tag
        - Repeated calls with no new measurement return the cached
          estimate instead of feeding the filter twice
    """

    def __init__(
        self,
        config: Optional[PositionEngineConfig] = None,
        fingerprints: Optional[FingerprintDatabase] = None,
    ):
        self.config = config or PositionEngineConfig()
        self.metrics = get_metrics()

        self.path_loss = PathLossModel(self.config.path_loss)
        self.trilaterator = Trilaterator(self.config.trilateration)
        self.fingerprints = fingerprints if fingerprints is not None else FingerprintDatabase(
            self.config.fingerprint
        )
        self._rng = np.random.default_rng(self.config.random_seed)

        self._filters: Dict[str, TagKinematicFilter] = {}
        # tag_id -> ((newest timestamp, sample count), estimate)
        self._cache: Dict[str, Tuple[Tuple[float, int], PositionEstimate]] = {}

    def estimate(
        self,
        tag_id: str,
        measurements: Sequence[Measurement],
        t_now: Optional[float] = None,
    ) -> PositionEstimate:
        """
        Estimate a tag's position.

        Args:
            tag_id: Tag to locate
            measurements: Buffered measurements for the tag (any age)
            t_now: Reference time for recency (newest measurement if None)

        Returns:
            Smoothed PositionEstimate

        Raises:
            InsufficientData: No measurement inside the recency window
        """
        recent = self._recent(tag_id, measurements, t_now)

        key = (max(m.timestamp for m in recent), len(recent))
        cached = self._cache.get(tag_id)
        if cached is not None and cached[0] == key:
            return cached[1]

        raw = self.estimate_raw(tag_id, recent, t_now)

        if self.config.enable_kalman:
            kf = self._filters.get(tag_id)
            if kf is None:
                kf = TagKinematicFilter(tag_id, self.config.kalman)
                self._filters[tag_id] = kf
            result = kf.update(raw)
        else:
            result = raw

        self._cache[tag_id] = (key, result)
        self.metrics.increment('position_estimates')
        self.metrics.increment(f'solver_{raw.solver.value}')
        return result

    def estimate_raw(
        self,
        tag_id: str,
        measurements: Sequence[Measurement],
        t_now: Optional[float] = None,
    ) -> PositionEstimate:
        """Unsmoothed fix from the tier the reader count selects."""
        recent = self._recent(tag_id, measurements, t_now)
        t_solve = max(m.timestamp for m in recent) if t_now is None else t_now

        observations = aggregate_by_reader(recent, self.path_loss)
        count = len(observations)

        if count >= self.config.trilateration.min_readers:
            try:
                return self.trilaterator.solve(tag_id, observations, t_solve)
            except DegenerateGeometry as e:
                self.metrics.increment_drop('degenerate_geometry')
                logger.debug("Tag %s: trilateration degenerate (%s), falling back", tag_id, e)

        if len(self.fingerprints) > 0:
            estimate = self.fingerprints.locate(tag_id, observations, t_solve)
            if estimate is not None:
                return estimate

        return self._range_free_fix(tag_id, observations, t_solve)

    def _range_free_fix(
        self,
        tag_id: str,
        observations: List[ReaderObservation],
        t_solve: float,
    ) -> PositionEstimate:
        if len(observations) >= 2:
            return weighted_centroid(
                tag_id, observations, t_solve,
                full_confidence_readers=self.config.centroid_full_confidence_readers,
            )
        return proximity_fix(
            tag_id, observations[0], t_solve,
            rng=self._rng, confidence=self.config.proximity_confidence,
        )

    def _recent(
        self,
        tag_id: str,
        measurements: Sequence[Measurement],
        t_now: Optional[float],
    ) -> List[Measurement]:
        if not measurements:
            self.metrics.increment_drop('insufficient_data')
            raise InsufficientData(tag_id)

        t_ref = t_now if t_now is not None else max(m.timestamp for m in measurements)
        max_age = self.config.max_measurement_age_s
        recent = [m for m in measurements if t_ref - m.timestamp <= max_age]

        if not recent:
            self.metrics.increment_drop('insufficient_data')
            raise InsufficientData(tag_id, f"no measurement within {max_age:.1f}s")
        return recent

    def predict_position(self, tag_id: str, t_predict: float) -> Optional[Tuple[float, float, float]]:
        """Filter prediction for a tag at t_predict (None without filter state)."""
        kf = self._filters.get(tag_id)
        if kf is None:
            return None
        return kf.get_predicted_position(t_predict)

    def has_state(self, tag_id: str) -> bool:
        """True while the engine holds filter state for a tag."""
        return tag_id in self._filters

    def tracked_tags(self) -> List[str]:
        return list(self._filters)

    def forget(self, tag_id: str):
        """Drop all per-tag state; the next estimate re-seeds the filter."""
        self._filters.pop(tag_id, None)
        self._cache.pop(tag_id, None)
