"""
RSSI Fingerprint Database (nearest neighbour).

Stores RSSI vectors recorded at known locations and matches a live vector
against them. Distance between two vectors:

    sqrt(mean((a_r - b_r)^2 for shared readers r)) + penalty * |readers in only one|

A vector sharing no reader with a fingerprint never matches it.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from rtls_core.localization.measurement_buffer import ReaderObservation
from rtls_core.metrics import get_metrics
from rtls_core.proto.position_estimate import Algorithm, PositionEstimate, SolverTier

logger = logging.getLogger(__name__)


@dataclass
class FingerprintConfig:
    """
    Configuration for fingerprint matching.

    Attributes:
        missing_reader_penalty_db: Added per reader present in only one vector
        max_match_distance_db: Best matches further than this are rejected
        meters_per_db: Accuracy reported per dB of match distance
        min_accuracy_m: Accuracy floor (survey grid resolution)
        confidence_scale_db: Match distance at which confidence reaches 0
    """

    missing_reader_penalty_db: float = 10.0
    max_match_distance_db: float = 25.0
    meters_per_db: float = 0.1
    min_accuracy_m: float = 0.5
    confidence_scale_db: float = 50.0

    def __post_init__(self):
        """Validate configuration."""
        if self.missing_reader_penalty_db < 0:
            raise ValueError("Missing reader penalty cannot be negative")
        if self.max_match_distance_db <= 0:
            raise ValueError("Max match distance must be positive")


@dataclass
class Fingerprint:
    """RSSI vector (reader_id -> dBm) recorded at a known location."""

    label: str
    position: Tuple[float, float, float]
    rssi_map: Dict[str, float]
    recorded_at: float = field(default_factory=time.time)


class FingerprintDatabase:
    """
    Thread-safe fingerprint store with nearest-neighbour matching.

    Usage:
        db = FingerprintDatabase()
        db.add("shelf-A3", (2.0, 4.5, 1.0), {"R1": -48.0, "R2": -61.0})
        result = db.match({"R1": -50.0, "R2": -60.0})
        if result is not None:
            fingerprint, distance_db = result
    """

    def __init__(self, config: Optional[FingerprintConfig] = None):
        self.config = config or FingerprintConfig()
        self.metrics = get_metrics()
        self._lock = threading.Lock()
        self._fingerprints: Dict[str, Fingerprint] = {}

    def add(self, label: str, position: Tuple[float, float, float], rssi_map: Mapping[str, float]) -> Fingerprint:
        """Add or replace the fingerprint for a label."""
        if not rssi_map:
            raise ValueError("Fingerprint needs at least one reader")
        fp = Fingerprint(
            label=label,
            position=tuple(float(v) for v in position),
            rssi_map={str(k): float(v) for k, v in rssi_map.items()},
        )
        with self._lock:
            self._fingerprints[label] = fp
        logger.info("Fingerprint '%s' recorded at %s with %d readers", label, fp.position, len(fp.rssi_map))
        return fp

    def record_calibration(
        self,
        label: str,
        position: Tuple[float, float, float],
        observations: Sequence[ReaderObservation],
    ) -> Fingerprint:
        """Record a live per-reader RSSI vector as the fingerprint for a known location."""
        return self.add(label, position, {o.reader_id: o.rssi for o in observations})

    def remove(self, label: str) -> bool:
        with self._lock:
            return self._fingerprints.pop(label, None) is not None

    def clear(self):
        with self._lock:
            self._fingerprints.clear()

    def fingerprints(self) -> List[Fingerprint]:
        with self._lock:
            return list(self._fingerprints.values())

    def distance(self, a: Mapping[str, float], b: Mapping[str, float]) -> float:
        """RSSI vector distance in dB (inf when no reader is shared)."""
        shared = set(a) & set(b)
        if not shared:
            return math.inf
        rms = math.sqrt(sum((a[r] - b[r]) ** 2 for r in shared) / len(shared))
        missing = len(set(a) ^ set(b))
        return rms + self.config.missing_reader_penalty_db * missing

    def match(self, rssi_map: Mapping[str, float]) -> Optional[Tuple[Fingerprint, float]]:
        """
        Nearest fingerprint to a live RSSI vector.

        Returns:
            (fingerprint, distance_db), or None if the database is empty or
            the best match exceeds max_match_distance_db
        """
        best: Optional[Fingerprint] = None
        best_distance = math.inf

        for fp in self.fingerprints():
            d = self.distance(rssi_map, fp.rssi_map)
            if d < best_distance:
                best, best_distance = fp, d

        if best is None or best_distance > self.config.max_match_distance_db:
            return None
        return best, best_distance

    def locate(
        self,
        tag_id: str,
        observations: Sequence[ReaderObservation],
        t_solve: float,
    ) -> Optional[PositionEstimate]:
        """Fingerprint-tier estimate for a tag, or None without a close enough match."""
        result = self.match({o.reader_id: o.rssi for o in observations})
        if result is None:
            self.metrics.increment_drop('no_fingerprint_match')
            return None

        fp, distance_db = result
        cfg = self.config
        self.metrics.record_histogram('fingerprint_match_distance_db', distance_db)

        return PositionEstimate(
            tag_id=tag_id,
            t_solve=t_solve,
            pos=fp.position,
            accuracy_m=max(cfg.min_accuracy_m, distance_db * cfg.meters_per_db),
            confidence=min(1.0, max(0.0, 1.0 - distance_db / cfg.confidence_scale_db)),
            algorithm=Algorithm.FINGERPRINT,
            solver=SolverTier.FINGERPRINT,
            num_readers=len(observations),
            reader_ids=[o.reader_id for o in observations],
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._fingerprints)
