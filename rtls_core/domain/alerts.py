"""
Movement Classification and Alert Checks.

Run for every processed tag read:

- Movement: stationary / moving / fast from speed between fixes
- Unauthorized zone change: read zone differs from the docket's zone
- After-hours movement: read outside working hours
- High-value item movement
- Geofences: exclusion entry / inclusion exit, with containment tracked
  explicitly per (tag, geofence) so an alert fires once per crossing
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from rtls_core.io.collaborators import DocketInfo

logger = logging.getLogger(__name__)


class Movement(str, Enum):
    STATIONARY = "stationary"
    MOVING = "moving"
    FAST = "fast"


class AlertType(str, Enum):
    ZONE_CHANGE = "unauthorized"
    AFTER_HOURS = "after_hours"
    HIGH_VALUE = "high_value"
    GEOFENCE = "geofence"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class GeofenceKind(str, Enum):
    INCLUSION = "inclusion"
    EXCLUSION = "exclusion"


@dataclass
class AlertConfig:
    """
    Configuration for movement and alert checks.

    Attributes:
        moving_speed_m_s: Speeds above this are moving
        fast_speed_m_s: Speeds above this are fast
        work_start_hour: Reads before this local hour are after-hours
        work_end_hour: Reads after this local hour are after-hours
    """

    moving_speed_m_s: float = 0.1
    fast_speed_m_s: float = 2.0
    work_start_hour: int = 6
    work_end_hour: int = 22

    def __post_init__(self):
        """Validate configuration."""
        if not 0 <= self.moving_speed_m_s < self.fast_speed_m_s:
            raise ValueError("Speed thresholds must satisfy 0 <= moving < fast")
        if not 0 <= self.work_start_hour <= self.work_end_hour <= 23:
            raise ValueError("Working hours must satisfy 0 <= start <= end <= 23")


@dataclass
class Alert:
    """Alert raised for a tag read."""

    alert_type: AlertType
    severity: Severity
    tag_id: str
    message: str
    timestamp: float
    details: Dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'type': self.alert_type.value,
            'severity': self.severity.value,
            'tag_id': self.tag_id,
            'message': self.message,
            'timestamp': self.timestamp,
            'details': dict(self.details),
        }


@dataclass
class Geofence:
    """
    Axis-aligned box in building coordinates.

    A z range of None makes the fence apply at every height.
    """

    fence_id: str
    name: str
    kind: GeofenceKind
    min_x: float
    max_x: float
    min_y: float
    max_y: float
    min_z: Optional[float] = None
    max_z: Optional[float] = None
    authorized_tags: FrozenSet[str] = frozenset()
    alert_on_entry: bool = True
    alert_on_exit: bool = True
    active: bool = True

    def __post_init__(self):
        """Validate geofence."""
        self.kind = GeofenceKind(self.kind)
        self.authorized_tags = frozenset(self.authorized_tags)
        if self.min_x > self.max_x or self.min_y > self.max_y:
            raise ValueError(f"Geofence {self.fence_id} has inverted bounds")
        if (self.min_z is None) != (self.max_z is None):
            raise ValueError(f"Geofence {self.fence_id} needs both z bounds or neither")

    def contains(self, pos: Sequence[float]) -> bool:
        x, y, z = pos[0], pos[1], pos[2]
        inside = self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y
        if inside and self.min_z is not None:
            inside = self.min_z <= z <= self.max_z
        return inside


def classify_movement(speed_m_s: Optional[float], config: Optional[AlertConfig] = None) -> Movement:
    """Movement class for a speed (None is stationary)."""
    cfg = config or AlertConfig()
    if speed_m_s is None:
        return Movement.STATIONARY
    if speed_m_s > cfg.fast_speed_m_s:
        return Movement.FAST
    if speed_m_s > cfg.moving_speed_m_s:
        return Movement.MOVING
    return Movement.STATIONARY


def displacement_speed(
    prev_pos: Sequence[float],
    prev_time: float,
    pos: Sequence[float],
    t_now: float,
) -> Optional[float]:
    """Speed between two fixes, None when no time has passed."""
    dt = t_now - prev_time
    if dt <= 0:
        return None
    return math.dist(prev_pos, pos) / dt


class AlertChecker:
    """
    Stateful alert evaluation.

    Usage:
        checker = AlertChecker(AlertConfig(), geofences)
        alerts = checker.check("T1", docket, zone_id=3, pos=(1, 2, 0), t_now=now)
        checker.forget("T1")   # tag lost

    Notes:
        - Thread-safe; containment state is the only mutable state
    """

    def __init__(self, config: Optional[AlertConfig] = None, geofences: Optional[List[Geofence]] = None):
        self.config = config or AlertConfig()
        self._lock = threading.Lock()
        self._geofences: Dict[str, Geofence] = {g.fence_id: g for g in geofences or []}
        # (tag_id, fence_id) -> inside at last check
        self._inside: Dict[Tuple[str, str], bool] = {}

    def add_geofence(self, geofence: Geofence):
        with self._lock:
            self._geofences[geofence.fence_id] = geofence
            for key in [k for k in self._inside if k[1] == geofence.fence_id]:
                del self._inside[key]

    def remove_geofence(self, fence_id: str) -> bool:
        with self._lock:
            for key in [k for k in self._inside if k[1] == fence_id]:
                del self._inside[key]
            return self._geofences.pop(fence_id, None) is not None

    def geofences(self) -> List[Geofence]:
        with self._lock:
            return list(self._geofences.values())

    def is_inside(self, tag_id: str, fence_id: str) -> Optional[bool]:
        """Last known containment, None if never evaluated."""
        with self._lock:
            return self._inside.get((tag_id, fence_id))

    def check(
        self,
        tag_id: str,
        docket: Optional[DocketInfo],
        zone_id: int,
        pos: Optional[Sequence[float]],
        t_now: float,
    ) -> List[Alert]:
        """Evaluate every alert rule for one processed read."""
        alerts: List[Alert] = []

        if docket is not None and docket.zone_id != zone_id:
            alerts.append(Alert(
                AlertType.ZONE_CHANGE, Severity.HIGH, tag_id,
                "Unauthorized zone change detected", t_now,
                {'expected_zone': docket.zone_id, 'zone_id': zone_id, 'docket_code': docket.docket_code},
            ))

        if self.is_after_hours(t_now):
            alerts.append(Alert(
                AlertType.AFTER_HOURS, Severity.MEDIUM, tag_id,
                "After-hours movement detected", t_now,
            ))

        if docket is not None and docket.is_high_value:
            alerts.append(Alert(
                AlertType.HIGH_VALUE, Severity.MEDIUM, tag_id,
                "High-value item movement", t_now,
                {'docket_code': docket.docket_code},
            ))

        if pos is not None:
            alerts.extend(self._check_geofences(tag_id, pos, t_now))

        return alerts

    def is_after_hours(self, t_now: float) -> bool:
        hour = datetime.fromtimestamp(t_now).hour
        return hour < self.config.work_start_hour or hour > self.config.work_end_hour

    def _check_geofences(self, tag_id: str, pos: Sequence[float], t_now: float) -> List[Alert]:
        alerts = []
        with self._lock:
            for fence in self._geofences.values():
                if not fence.active:
                    continue

                key = (tag_id, fence.fence_id)
                was_inside = self._inside.get(key, False)
                inside = fence.contains(pos)
                self._inside[key] = inside

                if inside == was_inside:
                    continue

                details = {
                    'fence_id': fence.fence_id,
                    'zone': fence.name,
                    'position': tuple(pos),
                }
                if fence.kind == GeofenceKind.EXCLUSION and inside and fence.alert_on_entry:
                    if tag_id in fence.authorized_tags:
                        continue
                    alerts.append(Alert(
                        AlertType.GEOFENCE, Severity.HIGH, tag_id,
                        f"Tag {tag_id} entered restricted zone: {fence.name}", t_now,
                        dict(details, action='entered'),
                    ))
                elif fence.kind == GeofenceKind.INCLUSION and not inside and fence.alert_on_exit:
                    alerts.append(Alert(
                        AlertType.GEOFENCE, Severity.MEDIUM, tag_id,
                        f"Tag {tag_id} left authorized zone: {fence.name}", t_now,
                        dict(details, action='exited'),
                    ))

        for alert in alerts:
            logger.warning(alert.message)
        return alerts

    def forget(self, tag_id: str):
        """Drop containment state for a tag."""
        with self._lock:
            for key in [k for k in self._inside if k[0] == tag_id]:
                del self._inside[key]
