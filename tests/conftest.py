"""
Pytest configuration and shared fixtures for the docket RTLS tests.

Provides reader layouts, a noise-free RSSI generator built on the
path-loss model, and in-memory collaborators for orchestrator tests.
"""

import math
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from rtls_core.io.collaborators import (
    DocketInfo,
    InMemoryBroadcaster,
    InMemoryMetadataLookup,
    InMemoryPersistenceSink,
)
from rtls_core.localization.measurement_buffer import ReaderObservation
from rtls_core.localization.path_loss import PathLossModel
from rtls_core.metrics import reset_metrics
from rtls_core.proto import (
    Algorithm,
    Measurement,
    PositionEstimate,
    ReaderDescriptor,
    SolverTier,
    TagReadEvent,
    TagReading,
)

Point = Tuple[float, float, float]


# =============================================================================
# Metrics isolation
# =============================================================================


@pytest.fixture(autouse=True)
def fresh_metrics():
    """Every test starts with an empty process-wide collector."""
    reset_metrics()
    yield
    reset_metrics()


# =============================================================================
# Reader Layouts
# =============================================================================


@pytest.fixture
def square_readers() -> List[ReaderDescriptor]:
    """
    Four fixed readers on the corners of a 10 m square at tag height
    (zone 1) plus a short-range gate reader in zone 2.

    The gate reader never sees tags in the middle of the room.
    """
    return [
        ReaderDescriptor("R1", "north-west", "fixed", (0.0, 0.0, 1.0), zone_id=1),
        ReaderDescriptor("R2", "north-east", "fixed", (10.0, 0.0, 1.0), zone_id=1),
        ReaderDescriptor("R3", "south-west", "fixed", (0.0, 10.0, 1.0), zone_id=1),
        ReaderDescriptor("R4", "south-east", "fixed", (10.0, 10.0, 1.0), zone_id=1),
        ReaderDescriptor("G1", "dispatch gate", "gate", (5.0, 12.0, 1.0), read_range_m=1.0, zone_id=2),
    ]


@pytest.fixture
def corner_positions() -> List[Point]:
    """Reader positions of the 10 m square (planar, z = 1 m)."""
    return [
        (0.0, 0.0, 1.0),
        (10.0, 0.0, 1.0),
        (0.0, 10.0, 1.0),
        (10.0, 10.0, 1.0),
    ]


@pytest.fixture
def path_loss() -> PathLossModel:
    return PathLossModel()


# =============================================================================
# Measurement helpers
# =============================================================================


def observations_for(positions: Sequence[Point], tag_pos: Point) -> List[ReaderObservation]:
    """Exact-range observations (no RSSI involved) for solver tests."""
    observations = []
    for i, pos in enumerate(positions):
        observations.append(ReaderObservation(
            reader_id=f"R{i + 1}",
            position=tuple(pos),
            rssi=-50.0,
            distance_m=math.dist(pos, tag_pos),
            num_samples=1,
            rssi_std=0.0,
            last_timestamp=0.0,
        ))
    return observations


def simulate_measurements(
    tag_id: str,
    readers: Sequence[ReaderDescriptor],
    tag_pos: Point,
    t: float,
    model: Optional[PathLossModel] = None,
) -> List[Measurement]:
    """Noise-free measurements of a tag at tag_pos from every reader."""
    model = model or PathLossModel()
    measurements = []
    for reader in readers:
        rssi = model.rssi_at(
            math.dist(reader.position, tag_pos),
            tx_power_dbm=reader.antenna_power_dbm,
            frequency_mhz=reader.frequency_mhz,
        )
        reading = TagReading(tag_id=tag_id, reader_id=reader.reader_id, rssi=min(rssi, 0.0), timestamp=t)
        measurements.append(Measurement.from_reading(reading, reader))
    return measurements


def make_read(tag_id: str, reader_id: str, rssi: float, t: float, zone_id: int = 1) -> TagReadEvent:
    return TagReadEvent(
        reader_id=reader_id,
        tag=TagReading(tag_id=tag_id, reader_id=reader_id, rssi=rssi, timestamp=t),
        zone_id=zone_id,
    )


def make_estimate(tag_id: str, pos: Point, t: float = 0.0, accuracy: float = 1.0) -> PositionEstimate:
    return PositionEstimate(
        tag_id=tag_id,
        t_solve=t,
        pos=pos,
        accuracy_m=accuracy,
        confidence=0.8,
        algorithm=Algorithm.TRILATERATION,
        solver=SolverTier.LEAST_SQUARES,
        num_readers=4,
        reader_ids=["R1", "R2", "R3", "R4"],
    )


# =============================================================================
# Collaborators
# =============================================================================


class FakeClock:
    """Manually advanced clock for orchestrator tests."""

    def __init__(self, t: float = 1000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dockets() -> List[DocketInfo]:
    return [
        DocketInfo(docket_id=1, docket_code="DKT-001", tag_id="T1", zone_id=1),
        DocketInfo(docket_id=2, docket_code="DKT-002", tag_id="T2", zone_id=1, is_high_value=True),
        DocketInfo(docket_id=3, docket_code="DKT-NOTAG", tag_id="", zone_id=1),
    ]


@pytest.fixture
def metadata(dockets: List[DocketInfo]) -> InMemoryMetadataLookup:
    return InMemoryMetadataLookup(dockets, zone_names={1: "Store A", 2: "Dispatch"})


@pytest.fixture
def sink() -> InMemoryPersistenceSink:
    return InMemoryPersistenceSink()


@pytest.fixture
def broadcaster() -> InMemoryBroadcaster:
    return InMemoryBroadcaster()
