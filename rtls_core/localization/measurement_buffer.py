"""
Per-Tag Measurement Buffer.

Holds recent measurements for each tag in arrival order, pruned to a short
recency window, and collapses them into one ranged observation per reader
for the solvers.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from rtls_core.localization.path_loss import PathLossModel
from rtls_core.proto.measurement import Measurement

logger = logging.getLogger(__name__)


@dataclass
class ReaderObservation:
    """
    All recent samples of one tag at one reader, collapsed.

    Attributes:
        reader_id: Observing reader
        position: Reader position (x, y, z)
        rssi: Mean RSSI over the window (dBm)
        distance_m: Path-loss distance for the mean RSSI
        num_samples: Samples averaged
        rssi_std: Sample standard deviation of RSSI (0 for one sample)
        last_timestamp: Newest sample time
    """

    reader_id: str
    position: Tuple[float, float, float]
    rssi: float
    distance_m: float
    num_samples: int
    rssi_std: float
    last_timestamp: float


def aggregate_by_reader(
    measurements: Sequence[Measurement],
    path_loss: PathLossModel,
) -> List[ReaderObservation]:
    """
    Collapse measurements into one observation per reader.

    Reader position and radio parameters are taken from the newest sample,
    so a reader whose power changed mid-window ranges with its new power.

    Returns:
        Observations sorted by reader_id (deterministic solver input)
    """
    by_reader: Dict[str, List[Measurement]] = defaultdict(list)
    for m in measurements:
        by_reader[m.reader_id].append(m)

    observations = []
    for reader_id in sorted(by_reader):
        samples = by_reader[reader_id]
        newest = max(samples, key=lambda m: m.timestamp)
        n = len(samples)
        mean_rssi = sum(m.rssi for m in samples) / n
        if n > 1:
            var = sum((m.rssi - mean_rssi) ** 2 for m in samples) / (n - 1)
        else:
            var = 0.0

        observations.append(ReaderObservation(
            reader_id=reader_id,
            position=newest.reader_position,
            rssi=mean_rssi,
            distance_m=path_loss.distance(
                mean_rssi,
                tx_power_dbm=newest.tx_power_dbm,
                frequency_mhz=newest.frequency_mhz,
            ),
            num_samples=n,
            rssi_std=var ** 0.5,
            last_timestamp=newest.timestamp,
        ))

    return observations


class MeasurementBuffer:
    """
    Recent measurements keyed by tag.

    Usage:
        buffer = MeasurementBuffer(window_s=2.0)
        buffer.append(measurement)
        recent = buffer.get("E200...")
        buffer.prune_all(t_now)

    Notes:
        - Not thread-safe; the orchestrator guards it with its lock
        - A tag whose samples all age out disappears from the buffer
    """

    def __init__(self, window_s: float = 2.0, max_per_tag: int = 256):
        if window_s <= 0:
            raise ValueError(f"Window must be positive: {window_s}")
        self.window_s = window_s
        self.max_per_tag = max_per_tag
        self._buffers: Dict[str, List[Measurement]] = {}

    def append(self, measurement: Measurement, t_now: Optional[float] = None):
        """Append in arrival order and prune that tag's samples."""
        self._buffers.setdefault(measurement.tag_id, []).append(measurement)

        ref = measurement.timestamp if t_now is None else max(t_now, measurement.timestamp)
        self._prune_tag(measurement.tag_id, ref)

        samples = self._buffers.get(measurement.tag_id, [])
        if len(samples) > self.max_per_tag:
            del samples[:len(samples) - self.max_per_tag]

    def get(self, tag_id: str) -> List[Measurement]:
        """Copy of the buffered measurements for a tag (empty if unknown)."""
        return list(self._buffers.get(tag_id, ()))

    def remove(self, tag_id: str):
        self._buffers.pop(tag_id, None)

    def prune_all(self, t_now: float) -> int:
        """
        Drop samples older than the window for every tag.

        Returns:
            Number of tags removed because they had no samples left
        """
        removed = 0
        for tag_id in list(self._buffers):
            self._prune_tag(tag_id, t_now)
            if tag_id not in self._buffers:
                removed += 1
        return removed

    def tags(self) -> List[str]:
        return list(self._buffers)

    def _prune_tag(self, tag_id: str, t_ref: float):
        samples = self._buffers.get(tag_id)
        if samples is None:
            return

        cutoff = t_ref - self.window_s
        kept = [m for m in samples if m.timestamp >= cutoff]
        if kept:
            self._buffers[tag_id] = kept
        else:
            del self._buffers[tag_id]

    def __contains__(self, tag_id: str) -> bool:
        return tag_id in self._buffers

    def __len__(self) -> int:
        return len(self._buffers)
