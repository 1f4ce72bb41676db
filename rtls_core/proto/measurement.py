"""
Measurement Schema.

A tag reading joined with what the position engine needs to know about the
reader that produced it.
"""

from dataclasses import dataclass
from typing import Tuple

from .reader import ReaderDescriptor
from .tag_read import TagReading


@dataclass(frozen=True)
class Measurement:
    """
    Reader-tagged RSSI sample used for localization.

    Attributes:
        tag_id: Observed tag
        reader_id: Observing reader
        reader_position: Reader antenna position (x, y, z) in meters
        rssi: Received signal strength (dBm)
        phase: Backscatter phase (radians)
        timestamp: Observation time (seconds)
        tx_power_dbm: Reader transmit power at observation time
        antenna_gain_dbi: Reader antenna gain
        frequency_mhz: Carrier frequency
    """

    tag_id: str
    reader_id: str
    reader_position: Tuple[float, float, float]
    rssi: float
    phase: float
    timestamp: float
    tx_power_dbm: float = 30.0
    antenna_gain_dbi: float = 6.0
    frequency_mhz: float = 915.0

    @classmethod
    def from_reading(cls, reading: TagReading, reader: ReaderDescriptor) -> 'Measurement':
        """Pair a reading with its reader's current descriptor."""
        return cls(
            tag_id=reading.tag_id,
            reader_id=reader.reader_id,
            reader_position=reader.position,
            rssi=reading.rssi,
            phase=reading.phase,
            timestamp=reading.timestamp,
            tx_power_dbm=reader.antenna_power_dbm,
            antenna_gain_dbi=reader.antenna_gain_dbi,
            frequency_mhz=reader.frequency_mhz,
        )
