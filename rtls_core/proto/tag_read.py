"""
Tag Read Event Schemas.

Uniform events produced by the reader gateway regardless of the reader's
wire protocol: one tag read, or one reader status report.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class TagEventType(str, Enum):
    """Gateway-side classification of a read."""

    DETECTED = "detected"
    MOVED = "moved"
    LOST = "lost"


@dataclass(frozen=True)
class TagReading:
    """
    Single RFID tag observation.

    Attributes:
        tag_id: EPC of the tag
        reader_id: Reader that observed it
        rssi: Received signal strength (dBm)
        phase: Backscatter phase angle (radians)
        doppler: Doppler shift (Hz), used for movement hints
        antenna: Antenna port index on the reader
        timestamp: Observation time (seconds since epoch)
    """

    tag_id: str
    reader_id: str
    rssi: float
    phase: float = 0.0
    doppler: float = 0.0
    antenna: int = 1
    timestamp: float = 0.0

    def __post_init__(self):
        """Validate reading."""
        if not self.tag_id:
            raise ValueError("Tag id cannot be empty")
        if self.rssi > 0:
            raise ValueError(f"RSSI must be in dBm (<= 0): {self.rssi}")


@dataclass(frozen=True)
class TagReadEvent:
    """
    Tag read as delivered to the orchestrator.

    Attributes:
        reader_id: Emitting reader
        tag: The observation
        event_type: detected / moved / lost
        zone_id: Zone covered by the emitting reader
    """

    reader_id: str
    tag: TagReading
    event_type: TagEventType = TagEventType.DETECTED
    zone_id: int = 0

    @property
    def tag_id(self) -> str:
        return self.tag.tag_id

    @property
    def timestamp(self) -> float:
        return self.tag.timestamp

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'reader_id': self.reader_id,
            'tag': {
                'id': self.tag.tag_id,
                'rssi': self.tag.rssi,
                'phase': self.tag.phase,
                'doppler': self.tag.doppler,
                'antenna': self.tag.antenna,
                'timestamp': self.tag.timestamp,
            },
            'event_type': TagEventType(self.event_type).value,
            'zone_id': self.zone_id,
        }


@dataclass(frozen=True)
class ReaderStatusEvent:
    """Reader health report relayed to operator clients."""

    reader_id: str
    online: bool
    antenna_status: Dict[str, Any] = field(default_factory=dict)
    temperature: Optional[float] = None
    uptime: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            'reader_id': self.reader_id,
            'status': 'online' if self.online else 'offline',
            'antenna_status': dict(self.antenna_status),
            'temperature': self.temperature,
            'uptime': self.uptime,
        }
