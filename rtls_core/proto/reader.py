"""
Reader Descriptor Schema.

Static description of a fixed, handheld or gate reader: where it is, how
hard it transmits and which storage zone it covers.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Tuple


class ReaderKind(str, Enum):
    """Physical reader category."""

    FIXED = "fixed"
    HANDHELD = "handheld"
    GATE = "gate"


@dataclass
class ReaderDescriptor:
    """
    Registered RFID reader.

    Attributes:
        reader_id: Unique reader identifier
        name: Display name
        kind: Fixed, handheld or gate reader
        position: Reader antenna position (x, y, z) in building meters
        antenna_power_dbm: Current transmit power (dBm)
        read_range_m: Nominal read range (m)
        zone_id: Storage zone the reader covers
        enabled: False once disabled; readers are never removed
        frequency_mhz: Carrier frequency (UHF RFID default 915 MHz)
        antenna_gain_dbi: Antenna gain (dBi)

    Notes:
        - Only power and enable commands mutate a descriptor
    """

    reader_id: str
    name: str
    kind: ReaderKind
    position: Tuple[float, float, float]
    antenna_power_dbm: float = 30.0
    read_range_m: float = 9.0
    zone_id: int = 0
    enabled: bool = True
    frequency_mhz: float = 915.0
    antenna_gain_dbi: float = 6.0

    def __post_init__(self):
        """Validate descriptor."""
        if len(self.position) != 3:
            raise ValueError(f"Reader position must be (x, y, z): {self.position}")
        if self.read_range_m <= 0:
            raise ValueError(f"Read range must be positive: {self.read_range_m}")
        if self.frequency_mhz <= 0:
            raise ValueError(f"Frequency must be positive: {self.frequency_mhz}")
        self.kind = ReaderKind(self.kind)
        self.position = tuple(float(c) for c in self.position)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'id': self.reader_id,
            'name': self.name,
            'type': self.kind.value,
            'status': 'online' if self.enabled else 'offline',
            'location': {
                'zone_id': self.zone_id,
                'x': self.position[0],
                'y': self.position[1],
                'z': self.position[2],
            },
            'antenna_power': self.antenna_power_dbm,
            'read_range': self.read_range_m,
        }

    def copy(self) -> 'ReaderDescriptor':
        """Independent copy (registry lookups hand these out)."""
        return replace(self)
