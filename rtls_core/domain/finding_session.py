r"""
Finding Session Machine.

One FindingSession per operator search for a docket:

    searching -> detected -> approaching -> found
        \____________\____________\______-> lost   (timeout or stop)

Status only moves forward; found and lost are terminal and release the
session. Every state change is returned as Notification objects which the
orchestrator publishes, so the finder itself never performs I/O except the
docket lookup in start().
"""

import logging
import math
import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional, Tuple

from rtls_core.domain.geiger import GeigerConfig, compute_reading, feedback_payload
from rtls_core.domain.navigation import NavigationConfig, bearing_deg, elevation_deg, next_instruction
from rtls_core.errors import DocketNotFound, TagNotFound
from rtls_core.io.collaborators import MetadataLookup
from rtls_core.localization.path_loss import PathLossModel
from rtls_core.metrics import get_metrics
from rtls_core.proto.position_estimate import PositionEstimate
from rtls_core.proto.tag_read import TagReadEvent

logger = logging.getLogger(__name__)

Point = Tuple[float, float, float]


class FindingStatus(str, Enum):
    SEARCHING = "searching"
    DETECTED = "detected"
    APPROACHING = "approaching"
    FOUND = "found"
    LOST = "lost"


class FindingMode(str, Enum):
    STANDARD = "standard"
    GEIGER = "geiger"
    NAVIGATION = "navigation"


_STATUS_RANK = {
    FindingStatus.SEARCHING: 0,
    FindingStatus.DETECTED: 1,
    FindingStatus.APPROACHING: 2,
    FindingStatus.FOUND: 3,
}

TERMINAL_STATUSES = frozenset({FindingStatus.FOUND, FindingStatus.LOST})


@dataclass
class Notification:
    """Message for operator clients produced by a state change."""

    topic: str
    payload: dict
    room: Optional[str] = None


@dataclass
class FindingSession:
    """
    Live search for one docket.

    Attributes:
        session_id: Unique session id
        docket_code: Docket being searched for
        tag_id: RFID tag carried by the docket
        mode: standard / geiger / navigation
        start_time: Session start (seconds)
        target_zone: Zone the docket was last recorded in
        docket_id: Docket primary key
        status: Current status (monotonic, see module docstring)
        time_elapsed: Seconds since start at the last update
        distance: Seeker-to-docket distance (m), None without a seeker fix
        signal_strength: Last RSSI of the docket tag (dBm)
        direction: (bearing_deg, elevation_deg) from seeker to docket
        current_position: Latest docket position estimate
        path: Bounded trail of docket position estimates
        route: Navigation waypoints from the last update
        rssi_history: Last N RSSI values of the docket tag
    """

    session_id: str
    docket_code: str
    tag_id: str
    mode: FindingMode
    start_time: float
    target_zone: Optional[int] = None
    docket_id: Optional[int] = None

    status: FindingStatus = FindingStatus.SEARCHING
    time_elapsed: float = 0.0
    distance: Optional[float] = None
    signal_strength: Optional[float] = None
    direction: Optional[Tuple[float, float]] = None
    current_position: Optional[Point] = None
    path: Deque[Point] = field(default_factory=lambda: deque(maxlen=100))
    route: List[Point] = field(default_factory=list)
    rssi_history: Deque[float] = field(default_factory=lambda: deque(maxlen=10))
    detected_at: Optional[float] = None
    ended_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def advance(self, new_status: FindingStatus) -> bool:
        """
        Move to new_status if that is forward progress.

        Returns:
            True if the status changed
        """
        if self.is_terminal or new_status == self.status:
            return False
        if new_status == FindingStatus.LOST:
            self.status = new_status
            return True
        if _STATUS_RANK[new_status] > _STATUS_RANK[self.status]:
            self.status = new_status
            return True
        return False

    def to_dict(self) -> dict:
        return {
            'id': self.session_id,
            'docket_code': self.docket_code,
            'rfid_tag': self.tag_id,
            'status': self.status.value,
            'mode': self.mode.value,
            'start_time': self.start_time,
            'time_elapsed': self.time_elapsed,
            'target_zone': self.target_zone,
            'distance': self.distance,
            'signal_strength': self.signal_strength,
            'direction': None if self.direction is None else {
                'bearing': self.direction[0],
                'elevation': self.direction[1],
            },
            'current_position': self.current_position,
            'path': list(self.path),
            'route': list(self.route),
        }


@dataclass
class SeekerFix:
    """Operator position and facing (deg, CCW from +x)."""

    position: Point
    heading_deg: float = 0.0


class SeekerLocator(ABC):
    """Source of the operator's (seeker's) current position."""

    @abstractmethod
    def locate(self, t_now: float) -> Optional[SeekerFix]:
        """Current seeker fix, None if unknown."""


class NoSeekerLocator(SeekerLocator):
    """No seeker positioning; distance-driven transitions never fire."""

    def locate(self, t_now: float) -> Optional[SeekerFix]:
        return None


class FixedSeekerLocator(SeekerLocator):
    """Seeker at a fixed, externally updated position (kiosk, handheld GPS feed)."""

    def __init__(self, position: Point, heading_deg: float = 0.0):
        self._lock = threading.Lock()
        self._fix = SeekerFix(tuple(position), heading_deg)

    def update(self, position: Point, heading_deg: Optional[float] = None):
        with self._lock:
            heading = self._fix.heading_deg if heading_deg is None else heading_deg
            self._fix = SeekerFix(tuple(position), heading)

    def locate(self, t_now: float) -> Optional[SeekerFix]:
        with self._lock:
            return self._fix


class TagSeekerLocator(SeekerLocator):
    """
    Seeker carrying its own RFID tag, located by the position engine.

    Heading follows the tag's velocity while it moves faster than
    min_heading_speed_m_s; otherwise the last heading is kept.
    """

    def __init__(
        self,
        tag_id: str,
        lookup: Callable[[str], Optional[PositionEstimate]],
        min_heading_speed_m_s: float = 0.1,
    ):
        self.tag_id = tag_id
        self._lookup = lookup
        self.min_heading_speed_m_s = min_heading_speed_m_s
        self._heading_deg = 0.0

    def locate(self, t_now: float) -> Optional[SeekerFix]:
        estimate = self._lookup(self.tag_id)
        if estimate is None:
            return None

        speed = estimate.speed_m_s
        if speed is not None and speed > self.min_heading_speed_m_s:
            vx, vy, _ = estimate.velocity
            self._heading_deg = math.degrees(math.atan2(vy, vx))
        return SeekerFix(estimate.pos, self._heading_deg)


@dataclass
class FinderConfig:
    """
    Configuration for the finder.

    Attributes:
        found_distance_m: Seeker distance below which the docket is found
        approaching_distance_m: Seeker distance below which it is approaching
        timeout_s: Sessions older than this become lost
        success_goal_s: Found within this many seconds emits finding-success
        rssi_history_size: RSSI values kept per session
        path_history_size: Position trail length per session
        outcome_history_size: Finished sessions kept for statistics
    """

    found_distance_m: float = 0.5
    approaching_distance_m: float = 5.0
    timeout_s: float = 300.0
    success_goal_s: float = 30.0
    rssi_history_size: int = 10
    path_history_size: int = 100
    outcome_history_size: int = 1000

    geiger: GeigerConfig = field(default_factory=GeigerConfig)
    navigation: NavigationConfig = field(default_factory=NavigationConfig)

    def __post_init__(self):
        """Validate configuration."""
        if not 0 < self.found_distance_m < self.approaching_distance_m:
            raise ValueError("Distances must satisfy 0 < found < approaching")
        if self.timeout_s <= 0:
            raise ValueError(f"Timeout must be positive: {self.timeout_s}")


@dataclass
class _Outcome:
    status: FindingStatus
    time_elapsed: float


class DocketFinder:
    """
    Registry and state machine for finding sessions.

    Usage:
        finder = DocketFinder(metadata, FinderConfig(), seeker=FixedSeekerLocator((0, 0, 0)))
        session, notes = finder.start("DKT-001", FindingMode.GEIGER, t_now)
        notes = finder.handle_read(event, estimate, t_now)
        notes = finder.check_timeouts(t_now)

    Notes:
        - Thread-safe; the docket lookup in start() runs outside the lock
        - Terminal sessions are removed from the registry immediately
    """

    def __init__(
        self,
        metadata: MetadataLookup,
        config: Optional[FinderConfig] = None,
        seeker: Optional[SeekerLocator] = None,
        path_loss: Optional[PathLossModel] = None,
    ):
        self.metadata = metadata
        self.config = config or FinderConfig()
        self.seeker = seeker or NoSeekerLocator()
        self.path_loss = path_loss or PathLossModel()
        self.metrics = get_metrics()

        self._lock = threading.RLock()
        self._sessions: Dict[str, FindingSession] = {}
        self._outcomes: Deque[_Outcome] = deque(maxlen=self.config.outcome_history_size)

    def start(
        self,
        docket_code: str,
        mode: FindingMode = FindingMode.STANDARD,
        t_now: Optional[float] = None,
    ) -> Tuple[FindingSession, List[Notification]]:
        """
        Open a session for a docket.

        Raises:
            DocketNotFound: Unknown docket code
            TagNotFound: Docket has no RFID tag
        """
        t_now = _now(t_now)
        docket = self.metadata.get_docket_by_code(docket_code)
        if docket is None:
            raise DocketNotFound(f"Docket {docket_code} not found")
        if not docket.tag_id:
            raise TagNotFound(f"Docket {docket_code} has no RFID tag")

        session = FindingSession(
            session_id=f"find-{uuid.uuid4().hex[:12]}",
            docket_code=docket_code,
            tag_id=docket.tag_id,
            mode=FindingMode(mode),
            start_time=t_now,
            target_zone=docket.zone_id,
            docket_id=docket.docket_id,
            path=deque(maxlen=self.config.path_history_size),
            rssi_history=deque(maxlen=self.config.rssi_history_size),
        )

        with self._lock:
            self._sessions[session.session_id] = session

        self.metrics.increment('finding_sessions_started')
        logger.info("Started finding session %s for docket %s in %s mode",
                    session.session_id, docket_code, session.mode.value)
        return session, [Notification('finding-started', session.to_dict())]

    def handle_read(
        self,
        event: TagReadEvent,
        estimate: Optional[PositionEstimate] = None,
        t_now: Optional[float] = None,
    ) -> List[Notification]:
        """Feed one tag read (and the tag's current estimate) to matching sessions."""
        t_now = _now(t_now)
        notifications: List[Notification] = []

        with self._lock:
            if not any(s.tag_id == event.tag_id for s in self._sessions.values()):
                return notifications

        # Seeker lookups may take other components' locks
        seeker = self.seeker.locate(t_now)

        with self._lock:
            matching = [s for s in self._sessions.values() if s.tag_id == event.tag_id]
            for session in matching:
                notifications.extend(self._update_session(session, event, estimate, seeker, t_now))
                if session.is_terminal:
                    self._release(session, t_now)

        return notifications

    def _update_session(
        self,
        session: FindingSession,
        event: TagReadEvent,
        estimate: Optional[PositionEstimate],
        seeker: Optional[SeekerFix],
        t_now: float,
    ) -> List[Notification]:
        cfg = self.config
        notes: List[Notification] = []
        session.time_elapsed = t_now - session.start_time

        if session.advance(FindingStatus.DETECTED):
            session.detected_at = t_now
            notes.append(Notification('docket-detected', session.to_dict()))

        rssi = event.tag.rssi
        session.signal_strength = rssi
        session.rssi_history.append(rssi)

        if estimate is not None:
            session.current_position = estimate.pos
            session.path.append(estimate.pos)

        if seeker is not None and session.current_position is not None:
            session.distance = math.dist(seeker.position, session.current_position)
            session.direction = (
                bearing_deg(seeker.position, session.current_position),
                elevation_deg(seeker.position, session.current_position),
            )
            if session.distance < cfg.found_distance_m:
                session.advance(FindingStatus.FOUND)
            elif session.distance < cfg.approaching_distance_m:
                session.advance(FindingStatus.APPROACHING)

        if session.mode == FindingMode.GEIGER:
            if session.distance is not None:
                distance = session.distance
            else:
                distance = self.path_loss.distance(rssi)
            reading = compute_reading(distance, list(session.rssi_history), cfg.geiger)
            notes.append(Notification('geiger-reading', {
                'session': session.to_dict(),
                'reading': reading.to_dict(),
                'feedback': feedback_payload(reading, cfg.geiger),
            }))

        elif session.mode == FindingMode.NAVIGATION:
            if seeker is not None and session.current_position is not None:
                instruction, route = next_instruction(
                    seeker.position, seeker.heading_deg, session.current_position, cfg.navigation,
                )
                session.route = route
                notes.append(Notification('navigation-instruction', {
                    'session': session.to_dict(),
                    'instruction': instruction.to_dict(),
                }))

        if session.status == FindingStatus.FOUND:
            notes.append(Notification('docket-found', session.to_dict()))
            self.metrics.increment('finding_sessions_found')
            self.metrics.record_histogram('finding_time_s', session.time_elapsed)
            logger.info("Docket %s found in %.1fs", session.docket_code, session.time_elapsed)
            if session.time_elapsed <= cfg.success_goal_s:
                notes.append(Notification('finding-success', {
                    'session': session.to_dict(),
                    'message': f"Found in {session.time_elapsed:.1f} seconds!",
                }))

        return notes

    def check_timeouts(self, t_now: Optional[float] = None) -> List[Notification]:
        """Expire sessions older than timeout_s; refresh time_elapsed on the rest."""
        t_now = _now(t_now)
        notes: List[Notification] = []

        with self._lock:
            for session in list(self._sessions.values()):
                session.time_elapsed = t_now - session.start_time
                if session.time_elapsed <= self.config.timeout_s:
                    continue

                session.advance(FindingStatus.LOST)
                self.metrics.increment_drop('session_timeout')
                logger.info("Finding session %s for docket %s timed out after %.0fs",
                            session.session_id, session.docket_code, session.time_elapsed)
                notes.append(Notification('docket-lost', session.to_dict()))
                self._release(session, t_now)

        return notes

    def stop(self, session_id: str, t_now: Optional[float] = None) -> List[Notification]:
        """Cancel a session. Unknown or already finished sessions are a no-op."""
        t_now = _now(t_now)
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return []
            session.time_elapsed = t_now - session.start_time
            session.advance(FindingStatus.LOST)
            self._release(session, t_now)

        logger.info("Stopped finding session %s", session_id)
        return [Notification('finding-stopped', session.to_dict())]

    def _release(self, session: FindingSession, t_now: float):
        session.ended_at = t_now
        self._sessions.pop(session.session_id, None)
        self._outcomes.append(_Outcome(session.status, session.time_elapsed))

    def get(self, session_id: str) -> Optional[FindingSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def active_sessions(self) -> List[FindingSession]:
        with self._lock:
            return list(self._sessions.values())

    def watched_tags(self) -> List[str]:
        with self._lock:
            return sorted({s.tag_id for s in self._sessions.values()})

    def target_zones(self) -> List[int]:
        """Zones of live sessions (for intensive scanning)."""
        with self._lock:
            return sorted({s.target_zone for s in self._sessions.values() if s.target_zone is not None})

    def statistics(self) -> dict:
        """Active and finished-session statistics."""
        with self._lock:
            active = len(self._sessions)
            outcomes = list(self._outcomes)

        found = [o for o in outcomes if o.status == FindingStatus.FOUND]
        avg_time = sum(o.time_elapsed for o in found) / len(found) if found else 0.0

        return {
            'active_sessions': active,
            'completed_sessions': len(found),
            'finished_sessions': len(outcomes),
            'average_finding_time': avg_time,
            'success_rate': (len(found) / len(outcomes)) * 100.0 if outcomes else 0.0,
            'under_30_seconds': sum(1 for o in found if o.time_elapsed <= self.config.success_goal_s),
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


def _now(t_now: Optional[float]) -> float:
    return time.time() if t_now is None else t_now
