"""
Geiger-Counter Feedback.

Maps an operator-to-docket distance and the recent RSSI history onto
audio, haptic and visual feedback: beeping faster, vibrating harder and
turning green as the operator closes in.

    strength  = clamp(100 - 2 d, 0, 100)
    beep_rate = MIN + (MAX - MIN) * (1 - clamp(d, 0, 50) / 50)^2
    vibration = clamp(1.5 * strength, 0, 100)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence


class SignalTrend(str, Enum):
    """Direction of RSSI change."""

    CLOSER = "closer"
    FARTHER = "farther"
    STABLE = "stable"


@dataclass
class GeigerConfig:
    """
    Configuration for Geiger feedback.

    Attributes:
        min_beep_rate: Beeps/s at or beyond max_distance_m
        max_beep_rate: Beeps/s at zero distance
        max_distance_m: Distance at which feedback bottoms out
        trend_window: Samples averaged on each side of the trend comparison
        trend_dead_band_db: Mean RSSI change below which the trend is stable
        base_pitch_hz: Beep pitch at zero strength
        pitch_per_strength_hz: Pitch increase per strength point
        beep_duration_ms: Length of one beep
    """

    min_beep_rate: float = 0.5
    max_beep_rate: float = 20.0
    max_distance_m: float = 50.0
    trend_window: int = 3
    trend_dead_band_db: float = 2.0
    base_pitch_hz: float = 1000.0
    pitch_per_strength_hz: float = 10.0
    beep_duration_ms: int = 50

    def __post_init__(self):
        """Validate configuration."""
        if not 0 < self.min_beep_rate < self.max_beep_rate:
            raise ValueError("Beep rates must satisfy 0 < min < max")
        if self.max_distance_m <= 0:
            raise ValueError(f"Max distance must be positive: {self.max_distance_m}")
        if self.trend_window < 1:
            raise ValueError(f"Trend window must be >= 1: {self.trend_window}")


@dataclass
class GeigerReading:
    """One Geiger update for a finding session."""

    strength: float
    distance: float
    trend: SignalTrend
    beep_rate: float
    vibration_intensity: float
    rssi: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            'strength': self.strength,
            'distance': self.distance,
            'trend': self.trend.value,
            'beep_rate': self.beep_rate,
            'vibration_intensity': self.vibration_intensity,
            'rssi': self.rssi,
        }


def compute_trend(
    rssi_history: Sequence[float],
    window: int = 3,
    dead_band_db: float = 2.0,
) -> SignalTrend:
    """
    Compare the mean of the last `window` samples with the `window` before.

    Fewer than two samples, or no earlier samples, is stable.
    """
    if len(rssi_history) < 2:
        return SignalTrend.STABLE

    recent = list(rssi_history[-window:])
    older = list(rssi_history[-2 * window:-window])
    if not older:
        return SignalTrend.STABLE

    avg_recent = sum(recent) / len(recent)
    avg_older = sum(older) / len(older)

    if avg_recent > avg_older + dead_band_db:
        return SignalTrend.CLOSER
    if avg_recent < avg_older - dead_band_db:
        return SignalTrend.FARTHER
    return SignalTrend.STABLE


def signal_strength(distance_m: float) -> float:
    """Strength score 0-100 (100 at the docket, 0 beyond 50 m)."""
    return max(0.0, min(100.0, 100.0 - 2.0 * distance_m))


def beep_rate(distance_m: float, config: Optional[GeigerConfig] = None) -> float:
    """Beeps per second; non-increasing in distance, within [min, max]."""
    cfg = config or GeigerConfig()
    normalized = max(0.0, min(cfg.max_distance_m, distance_m)) / cfg.max_distance_m
    return cfg.min_beep_rate + (cfg.max_beep_rate - cfg.min_beep_rate) * (1.0 - normalized) ** 2


def compute_reading(
    distance_m: float,
    rssi_history: Sequence[float],
    config: Optional[GeigerConfig] = None,
) -> GeigerReading:
    """Full Geiger reading for a distance and RSSI history."""
    cfg = config or GeigerConfig()
    strength = signal_strength(distance_m)

    return GeigerReading(
        strength=strength,
        distance=distance_m,
        trend=compute_trend(rssi_history, cfg.trend_window, cfg.trend_dead_band_db),
        beep_rate=beep_rate(distance_m, cfg),
        vibration_intensity=max(0.0, min(100.0, strength * 1.5)),
        rssi=rssi_history[-1] if rssi_history else None,
    )


def feedback_payload(reading: GeigerReading, config: Optional[GeigerConfig] = None) -> dict:
    """Audio / haptic / visual cues for a handheld."""
    cfg = config or GeigerConfig()

    if reading.strength > 80:
        color = 'green'
    elif reading.strength > 40:
        color = 'yellow'
    else:
        color = 'red'

    return {
        'audio': {
            'frequency': cfg.base_pitch_hz + reading.strength * cfg.pitch_per_strength_hz,
            'duration': cfg.beep_duration_ms,
            'rate': reading.beep_rate,
        },
        'haptic': {
            'intensity': reading.vibration_intensity,
            'pattern': 'pulse' if reading.trend == SignalTrend.CLOSER else 'continuous',
        },
        'visual': {
            'color': color,
            'brightness': reading.strength,
        },
    }
