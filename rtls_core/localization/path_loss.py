"""
RSSI Path-Loss Ranging Model.

Log-distance path-loss model tuned for indoor UHF RFID. Converts an RSSI
reading into an estimated reader-to-tag distance and back.

    rssi(d) = rssi_ref - 10 * n * log10(d / 1 m)

rssi_ref is the RSSI at 1 m for the reference transmit power and carrier
frequency; readers transmitting at other powers/frequencies shift it by the
power delta and the free-space frequency term 20*log10(f / f_ref).
"""

import math
from dataclasses import dataclass
from typing import Optional


@dataclass
class PathLossConfig:
    """
    Configuration for the path-loss model.

    Attributes:
        rssi_at_1m_dbm: RSSI at 1 m for the reference power/frequency (dBm)
        path_loss_exponent: Environment exponent n (2.0 free space, ~2.7 indoor)
        reference_tx_power_dbm: Transmit power rssi_at_1m_dbm was calibrated at
        reference_frequency_mhz: Carrier frequency rssi_at_1m_dbm was calibrated at
        min_distance_m: Lower clamp on estimated distance
        max_distance_m: Upper clamp on estimated distance
    """

    rssi_at_1m_dbm: float = -30.0
    path_loss_exponent: float = 2.7
    reference_tx_power_dbm: float = 30.0
    reference_frequency_mhz: float = 915.0
    min_distance_m: float = 0.1
    max_distance_m: float = 100.0

    def __post_init__(self):
        """Validate configuration."""
        if self.path_loss_exponent <= 0:
            raise ValueError(f"Path loss exponent must be positive: {self.path_loss_exponent}")
        if not 0 < self.min_distance_m < self.max_distance_m:
            raise ValueError("Distance clamp must satisfy 0 < min < max")


class PathLossModel:
    """
    RSSI <-> distance conversion.

    Usage:
        model = PathLossModel()
        d = model.distance(-52.0, tx_power_dbm=30.0)
        rssi = model.rssi_at(d, tx_power_dbm=30.0)
    """

    def __init__(self, config: Optional[PathLossConfig] = None):
        self.config = config or PathLossConfig()

    def reference_rssi(
        self,
        tx_power_dbm: Optional[float] = None,
        frequency_mhz: Optional[float] = None,
    ) -> float:
        """RSSI expected at 1 m for the given transmit power and frequency."""
        cfg = self.config
        rssi_ref = cfg.rssi_at_1m_dbm

        if tx_power_dbm is not None:
            rssi_ref += tx_power_dbm - cfg.reference_tx_power_dbm

        if frequency_mhz is not None and frequency_mhz > 0:
            rssi_ref -= 20.0 * math.log10(frequency_mhz / cfg.reference_frequency_mhz)

        return rssi_ref

    def distance(
        self,
        rssi: float,
        tx_power_dbm: Optional[float] = None,
        frequency_mhz: Optional[float] = None,
    ) -> float:
        """
        Estimated distance (m) for an RSSI reading.

        Returns:
            Distance clamped to [min_distance_m, max_distance_m]
        """
        cfg = self.config
        exponent = (self.reference_rssi(tx_power_dbm, frequency_mhz) - rssi) / (
            10.0 * cfg.path_loss_exponent
        )
        distance = math.pow(10.0, exponent)
        return max(cfg.min_distance_m, min(cfg.max_distance_m, distance))

    def rssi_at(
        self,
        distance_m: float,
        tx_power_dbm: Optional[float] = None,
        frequency_mhz: Optional[float] = None,
    ) -> float:
        """Expected RSSI (dBm) at a distance; inverse of distance() inside the clamp."""
        d = max(distance_m, self.config.min_distance_m)
        return self.reference_rssi(tx_power_dbm, frequency_mhz) - (
            10.0 * self.config.path_loss_exponent * math.log10(d)
        )
