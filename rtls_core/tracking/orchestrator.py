"""
Tracking Orchestrator.

Owns the shared tracking state and runs the periodic cycles:

- Ingest (per read, gateway thread): buffer measurement, enqueue event,
  route to live finding sessions
- Batch (batch_interval_s): position engine, metadata, movement, alerts,
  active map update, transactional persistence
- Broadcast (broadcast_interval_s): location updates, tracked-tag updates,
  finding-session timeouts
- Cleanup (cleanup_interval_s): idle / lost tags

Locking:
    One RLock guards the measurement buffer, the position engine, the
    active-tag map and the tracking-session registry. Code under the lock
    does in-memory work only; gateway commands, metadata lookups,
    persistence and publishing always run after it is released. The finder
    is never called while the orchestrator lock is held. The alert checker
    lock is a leaf lock.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from rtls_core.domain.alerts import Alert, AlertChecker, AlertConfig, AlertType, Movement, classify_movement, displacement_speed
from rtls_core.domain.finding_session import (
    DocketFinder,
    FinderConfig,
    FindingMode,
    FindingSession,
    Notification,
    SeekerLocator,
)
from rtls_core.errors import GatewayError, InsufficientData, PersistenceFailure, ReaderNotFound
from rtls_core.io.collaborators import Broadcaster, DocketInfo, MetadataLookup, PersistenceSink
from rtls_core.io.event_queue import BoundedEventQueue
from rtls_core.io.gateway import GatewayListener, ReaderGateway
from rtls_core.localization.measurement_buffer import MeasurementBuffer
from rtls_core.localization.position_engine import PositionEngine
from rtls_core.metrics import get_metrics
from rtls_core.proto.measurement import Measurement
from rtls_core.proto.position_estimate import PositionEstimate
from rtls_core.proto.tag_read import ReaderStatusEvent, TagReadEvent
from rtls_core.tracking.workers import PeriodicWorker

logger = logging.getLogger(__name__)

MOVEMENT_REASON = "Automatic RFID tracking"


@dataclass
class TrackingConfig:
    """
    Configuration for the orchestrator.

    Attributes:
        batch_size: Max events per batch cycle
        batch_interval_s: Batch cycle period
        broadcast_interval_s: Broadcast cycle period
        cleanup_interval_s: Cleanup cycle period
        active_window_s: Tags seen within this are broadcast
        idle_after_s: Unseen longer than this: idle
        lost_after_s: Unseen longer than this: lost and forgotten
        measurement_window_s: Per-tag measurement recency window
        queue_capacity: Bounded event queue size
        scan_power_boost_db: Antenna power boost during finding
        tracking_room: Room receiving location updates and tag-lost
        alerts: Movement/alert thresholds
    """

    batch_size: int = 100
    batch_interval_s: float = 1.0
    broadcast_interval_s: float = 0.1
    cleanup_interval_s: float = 30.0
    active_window_s: float = 5.0
    idle_after_s: float = 30.0
    lost_after_s: float = 60.0
    measurement_window_s: float = 2.0
    queue_capacity: int = 10000
    scan_power_boost_db: float = 3.0
    tracking_room: str = "rfid:tracking"
    alerts: AlertConfig = field(default_factory=AlertConfig)

    def __post_init__(self):
        """Validate configuration."""
        if self.batch_size < 1:
            raise ValueError(f"Batch size must be >= 1: {self.batch_size}")
        for name in ('batch_interval_s', 'broadcast_interval_s', 'cleanup_interval_s'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if not 0 < self.idle_after_s < self.lost_after_s:
            raise ValueError("Timeouts must satisfy 0 < idle_after_s < lost_after_s")


class TagStatus(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"
    LOST = "lost"


@dataclass
class TrackedTag:
    """Latest known state of a tag in the active map."""

    tag_id: str
    estimate: PositionEstimate
    zone_id: int
    zone_name: str
    last_seen: float
    docket_code: Optional[str] = None
    docket_id: Optional[int] = None
    status: TagStatus = TagStatus.ACTIVE
    movement: Movement = Movement.STATIONARY
    alerts: List[Alert] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'tag_id': self.tag_id,
            'docket_code': self.docket_code,
            'position': self.estimate.to_dict(),
            'zone': self.zone_name,
            'zone_id': self.zone_id,
            'last_seen': self.last_seen,
            'status': self.status.value,
            'movement': self.movement.value,
            'alerts': [a.message for a in self.alerts],
        }


@dataclass
class TrackingSession:
    """Client subscription to a set of tags."""

    session_id: str
    client_id: str
    tags: Set[str]
    start_time: float
    active: bool = True

    def to_dict(self) -> dict:
        return {
            'id': self.session_id,
            'client_id': self.client_id,
            'tags': sorted(self.tags),
            'start_time': self.start_time,
            'active': self.active,
        }


@dataclass
class _Processed:
    """One batch event after in-memory processing, ready to persist."""

    event: TagReadEvent
    docket: Optional[DocketInfo]
    estimate: Optional[PositionEstimate]
    zone_name: str


class TrackingOrchestrator(GatewayListener):
    """
    Ties gateway, position engine, finder, persistence and broadcast together.

    Usage:
        orchestrator = TrackingOrchestrator(gateway, sink, metadata, broadcaster)
        orchestrator.start()             # periodic worker threads
        session = orchestrator.start_finding("DKT-001", FindingMode.GEIGER)
        ...
        orchestrator.stop()

    Every cycle method takes an optional t_now; without one the injected
    clock is read.
    """

    def __init__(
        self,
        gateway: ReaderGateway,
        persistence: PersistenceSink,
        metadata: MetadataLookup,
        broadcaster: Broadcaster,
        config: Optional[TrackingConfig] = None,
        engine: Optional[PositionEngine] = None,
        finder_config: Optional[FinderConfig] = None,
        seeker: Optional[SeekerLocator] = None,
        alert_checker: Optional[AlertChecker] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.gateway = gateway
        self.persistence = persistence
        self.metadata = metadata
        self.broadcaster = broadcaster
        self.config = config or TrackingConfig()
        self.metrics = get_metrics()
        self.clock = clock

        self.engine = engine or PositionEngine()
        self.finder = DocketFinder(metadata, finder_config, seeker, path_loss=self.engine.path_loss)
        self.alerts = alert_checker or AlertChecker(self.config.alerts)
        self.queue = BoundedEventQueue(self.config.queue_capacity)
        self.buffer = MeasurementBuffer(self.config.measurement_window_s)

        self._lock = threading.RLock()
        self._scan_lock = threading.Lock()
        self._active: Dict[str, TrackedTag] = {}
        self._sessions: Dict[str, TrackingSession] = {}
        # reader_id -> power before the finding boost
        self._boosted: Dict[str, float] = {}

        self._started_at = clock()
        self._processed_total = 0
        self._workers: List[PeriodicWorker] = []

        gateway.set_listener(self)

    # Lifecycle

    def start(self):
        """Start the batch, broadcast and cleanup worker threads."""
        if self._workers:
            return
        cfg = self.config
        self._workers = [
            PeriodicWorker("rtls-batch", cfg.batch_interval_s, self.process_batch),
            PeriodicWorker("rtls-broadcast", cfg.broadcast_interval_s, self.broadcast),
            PeriodicWorker("rtls-cleanup", cfg.cleanup_interval_s, self.cleanup),
        ]
        for worker in self._workers:
            worker.start()
        logger.info("Tracking orchestrator started (batch=%d every %.2fs)", cfg.batch_size, cfg.batch_interval_s)

    def stop(self):
        for worker in self._workers:
            worker.stop()
        self._workers = []
        logger.info("Tracking orchestrator stopped")

    # Gateway listener

    def on_tag_read(self, event: TagReadEvent):
        self.handle_tag_read(event)

    def on_reader_status(self, event: ReaderStatusEvent):
        self.handle_reader_status(event)

    # Ingest

    def handle_tag_read(self, event: TagReadEvent, t_now: Optional[float] = None) -> bool:
        """
        Ingest one read.

        Returns:
            False if the read was dropped (unknown reader or stale)
        """
        self.metrics.increment('tag_reads_in')

        reader = self.gateway.registry.find(event.reader_id)
        if reader is None:
            self.metrics.increment_drop('unknown_reader')
            logger.debug("Dropping read of %s from unknown reader %s", event.tag_id, event.reader_id)
            return False

        t_now = self._now(t_now)
        if t_now - event.timestamp > self.config.measurement_window_s:
            self.metrics.increment_drop('stale')
            return False

        measurement = Measurement.from_reading(event.tag, reader)
        watched = event.tag_id in self.finder.watched_tags()

        estimate = None
        with self._lock:
            self.buffer.append(measurement, t_now)
            if watched:
                estimate = self._estimate_locked(event.tag_id)

        self.queue.push(event)

        if watched:
            notes = self.finder.handle_read(event, estimate, t_now)
            self._publish(notes)
            if any(n.topic == 'docket-found' for n in notes):
                self._sync_intensive_scan()
        return True

    def handle_reader_status(self, event: ReaderStatusEvent):
        self.broadcaster.publish('reader-status', event.to_dict())

    def _estimate_locked(self, tag_id: str) -> Optional[PositionEstimate]:
        try:
            return self.engine.estimate(tag_id, self.buffer.get(tag_id))
        except InsufficientData:
            return None

    # Batch cycle

    def process_batch(self, t_now: Optional[float] = None) -> int:
        """
        Process up to batch_size queued events.

        Events of a tag whose metadata lookup fails go back to the queue
        while the rest of the batch proceeds. Geofence alerts are published
        before persistence, since containment state has already moved on
        when a failed batch is replayed.

        Returns:
            Number of events persisted (0 if the batch was re-queued)
        """
        t_now = self._now(t_now)
        batch = self.queue.pop_batch(self.config.batch_size)
        if not batch:
            return 0

        started = time.perf_counter()

        # Metadata lookups (I/O) before taking the lock
        dockets, failed_tags = self._lookup_dockets({e.tag_id for e in batch})
        if failed_tags:
            retry = [e for e in batch if e.tag_id in failed_tags]
            batch = [e for e in batch if e.tag_id not in failed_tags]
            self.queue.requeue_front(retry)
            self.metrics.increment('metadata_lookup_failures', len(failed_tags))
            if not batch:
                return 0
        zone_names = {z: self._zone_name(z) for z in {e.zone_id for e in batch}}

        processed: List[_Processed] = []
        geofence_alerts: List[Alert] = []

        with self._lock:
            for event in batch:
                docket = dockets.get(event.tag_id)
                estimate = self._estimate_locked(event.tag_id)
                zone_name = zone_names[event.zone_id]

                if estimate is not None:
                    alerts = self.alerts.check(event.tag_id, docket, event.zone_id, estimate.pos, event.timestamp)
                    geofence_alerts.extend(a for a in alerts if a.alert_type == AlertType.GEOFENCE)
                    self._update_active_locked(event, estimate, docket, zone_name, alerts)

                processed.append(_Processed(event, docket, estimate, zone_name))

        for alert in geofence_alerts:
            self.broadcaster.publish('geofence-alert', alert.to_dict(), room=self.config.tracking_room)

        try:
            self._persist(processed)
        except PersistenceFailure as e:
            self.metrics.increment_drop('persistence_failed', len(batch))
            self.queue.requeue_front(batch)
            logger.warning("Persisting batch of %d events failed, re-queued: %s", len(batch), e)
            return 0
        except Exception:
            self.metrics.increment_drop('persistence_failed', len(batch))
            self.queue.requeue_front(batch)
            logger.exception("Unexpected error persisting batch of %d events, re-queued", len(batch))
            raise

        with self._lock:
            self._processed_total += len(batch)

        self.metrics.increment('tag_reads_processed', len(batch))
        self.metrics.increment('batches_persisted')
        self.metrics.record_histogram('batch_latency_ms', (time.perf_counter() - started) * 1000.0)
        return len(batch)

    def _lookup_dockets(self, tag_ids: Set[str]) -> Tuple[Dict[str, Optional[DocketInfo]], Set[str]]:
        """Docket per tag, plus the tags whose lookup raised."""
        dockets: Dict[str, Optional[DocketInfo]] = {}
        failed: Set[str] = set()
        for tag_id in tag_ids:
            try:
                dockets[tag_id] = self.metadata.get_docket_by_tag(tag_id)
            except Exception:
                failed.add(tag_id)
                logger.exception("Docket lookup for tag %s failed, events re-queued", tag_id)
        return dockets, failed

    def _zone_name(self, zone_id: int) -> str:
        try:
            return self.metadata.get_zone_name(zone_id)
        except Exception:
            logger.exception("Zone name lookup for zone %d failed", zone_id)
            return f"Zone {zone_id}"

    def _update_active_locked(
        self,
        event: TagReadEvent,
        estimate: PositionEstimate,
        docket: Optional[DocketInfo],
        zone_name: str,
        alerts: List[Alert],
    ):
        prev = self._active.get(event.tag_id)

        speed = estimate.speed_m_s
        if speed is None and prev is not None:
            speed = displacement_speed(prev.estimate.pos, prev.last_seen, estimate.pos, event.timestamp)

        last_seen = event.timestamp if prev is None else max(prev.last_seen, event.timestamp)

        self._active[event.tag_id] = TrackedTag(
            tag_id=event.tag_id,
            estimate=estimate,
            zone_id=event.zone_id,
            zone_name=zone_name,
            last_seen=last_seen,
            docket_code=docket.docket_code if docket else None,
            docket_id=docket.docket_id if docket else None,
            status=TagStatus.ACTIVE,
            movement=classify_movement(speed, self.config.alerts),
            alerts=alerts,
        )

    def _persist(self, processed: List[_Processed]):
        with self.persistence.transaction() as tx:
            for item in processed:
                event = item.event
                tag = event.tag
                position = None
                if item.estimate is not None:
                    position = {'x': item.estimate.x, 'y': item.estimate.y, 'z': item.estimate.z}

                tx.append_event(
                    tag_id=tag.tag_id,
                    reader_id=event.reader_id,
                    signal_strength=tag.rssi,
                    event_type=event.event_type.value,
                    zone_id=event.zone_id,
                    metadata={
                        'timestamp': tag.timestamp,
                        'phase': tag.phase,
                        'doppler': tag.doppler,
                        'antenna': tag.antenna,
                        'position': position,
                    },
                )

                if item.docket is not None and item.estimate is not None:
                    tx.update_docket_location(
                        item.docket.docket_id,
                        f"X:{item.estimate.x:.1f} Y:{item.estimate.y:.1f}",
                        event.zone_id,
                    )
                    tx.record_movement(item.docket.docket_id, item.zone_name, event.zone_id, MOVEMENT_REASON)

    # Broadcast cycle

    def broadcast(self, t_now: Optional[float] = None):
        """Publish recent locations and per-session updates; expire finding sessions."""
        t_now = self._now(t_now)
        with self._lock:
            updates = [
                tracked.to_dict() for tracked in self._active.values()
                if t_now - tracked.last_seen < self.config.active_window_s
            ]
            sessions = [(s.client_id, set(s.tags)) for s in self._sessions.values() if s.active]

        if updates:
            self.broadcaster.publish('location-update', updates, room=self.config.tracking_room)

        for client_id, tags in sessions:
            session_updates = [u for u in updates if u['tag_id'] in tags]
            if session_updates:
                self.broadcaster.publish('tracked-tags-update', session_updates, room=client_id)

        notes = self.finder.check_timeouts(t_now)
        if notes:
            self._publish(notes)
            self._sync_intensive_scan()

    # Cleanup cycle

    def cleanup(self, t_now: Optional[float] = None) -> List[str]:
        """
        Mark idle tags and forget lost ones.

        Returns:
            Tag ids declared lost in this pass
        """
        t_now = self._now(t_now)
        lost: List[TrackedTag] = []

        with self._lock:
            for tag_id, tracked in list(self._active.items()):
                unseen = t_now - tracked.last_seen
                if unseen > self.config.lost_after_s:
                    tracked.status = TagStatus.LOST
                    lost.append(tracked)
                    del self._active[tag_id]
                    self.buffer.remove(tag_id)
                    self.engine.forget(tag_id)
                elif unseen > self.config.idle_after_s:
                    tracked.status = TagStatus.IDLE
            self.buffer.prune_all(t_now)

        for tracked in lost:
            self.alerts.forget(tracked.tag_id)
            self.metrics.increment('tags_lost')
            logger.info("Tag %s lost (last seen %.0fs ago)", tracked.tag_id, t_now - tracked.last_seen)
            self.broadcaster.publish('tag-lost', {
                'tag_id': tracked.tag_id,
                'docket_code': tracked.docket_code,
                'last_seen': tracked.last_seen,
            }, room=self.config.tracking_room)

        return [t.tag_id for t in lost]

    # Tracking sessions

    def subscribe(self, client_id: str, tags: Iterable[str], t_now: Optional[float] = None) -> TrackingSession:
        """Start (or replace) a client's tracked-tag subscription."""
        session = TrackingSession(
            session_id=f"track-{uuid.uuid4().hex[:12]}",
            client_id=client_id,
            tags=set(tags),
            start_time=self._now(t_now),
        )
        with self._lock:
            self._sessions[client_id] = session
        logger.info("Client %s tracking %d tags", client_id, len(session.tags))
        return session

    def unsubscribe(self, client_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(client_id, None)
        if session is None:
            return False
        session.active = False
        return True

    # Finding

    def start_finding(
        self,
        docket_code: str,
        mode: FindingMode = FindingMode.STANDARD,
        t_now: Optional[float] = None,
    ) -> FindingSession:
        """
        Start a finding session and boost the target zone's readers.

        Raises:
            DocketNotFound / TagNotFound from the docket lookup
        """
        session, notes = self.finder.start(docket_code, mode, self._now(t_now))
        self._publish(notes)
        self._sync_intensive_scan()
        return session

    def stop_finding(self, session_id: str, t_now: Optional[float] = None) -> bool:
        notes = self.finder.stop(session_id, self._now(t_now))
        self._publish(notes)
        if notes:
            self._sync_intensive_scan()
        return bool(notes)

    def _sync_intensive_scan(self):
        """Boost readers in live sessions' target zones; restore the rest."""
        zones = set(self.finder.target_zones())
        readers = self.gateway.readers()

        with self._scan_lock:
            wanted = {r.reader_id: r for r in readers if r.zone_id in zones}
            to_boost = [r for rid, r in wanted.items() if rid not in self._boosted]
            to_restore = [(rid, power) for rid, power in self._boosted.items() if rid not in wanted]

            for reader in to_boost:
                self._boosted[reader.reader_id] = reader.antenna_power_dbm
                self._gateway_command(
                    self.gateway.set_antenna_power,
                    reader.reader_id,
                    reader.antenna_power_dbm + self.config.scan_power_boost_db,
                )
                self._gateway_command(self.gateway.start_inventory, reader.reader_id)

            for reader_id, power in to_restore:
                del self._boosted[reader_id]
                self._gateway_command(self.gateway.set_antenna_power, reader_id, power)

        if to_boost:
            logger.info("Intensive scan on %d readers in zones %s", len(to_boost), sorted(zones))

    def _gateway_command(self, command, *args) -> bool:
        try:
            command(*args)
            return True
        except (GatewayError, ReaderNotFound) as e:
            self.metrics.increment_drop('gateway_command_failed')
            logger.warning("Gateway command %s%s failed: %s", command.__name__, args, e)
            return False

    # Reader control

    def control_reader(self, reader_id: str, command: str, params: Optional[dict] = None):
        """
        Operator reader command: start, stop or power.

        Raises:
            ReaderNotFound: Unknown reader
            ValueError: Unknown command or missing power parameter
            GatewayError: The gateway rejected the command
        """
        self.gateway.get_reader(reader_id)

        if command == 'start':
            self.gateway.start_inventory(reader_id)
        elif command == 'stop':
            self.gateway.stop_inventory(reader_id)
        elif command == 'power':
            if not params or 'power' not in params:
                raise ValueError("Power command needs params['power']")
            self.gateway.set_antenna_power(reader_id, float(params['power']))
        else:
            raise ValueError(f"Unknown command: {command}")
        logger.info("Reader %s: %s %s", reader_id, command, params or '')

    # Queries

    def get_estimate(self, tag_id: str) -> Optional[PositionEstimate]:
        """Latest estimate in the active map (TagSeekerLocator lookup)."""
        with self._lock:
            tracked = self._active.get(tag_id)
            return None if tracked is None else tracked.estimate

    def get_tracked(self, tag_id: str) -> Optional[TrackedTag]:
        with self._lock:
            return self._active.get(tag_id)

    def active_tags(self) -> List[TrackedTag]:
        with self._lock:
            return list(self._active.values())

    def statistics(self, t_now: Optional[float] = None) -> dict:
        t_now = self._now(t_now)
        readers = self.gateway.readers()

        with self._lock:
            tags = list(self._active.values())
            sessions = list(self._sessions.values())
            processed = self._processed_total

        uptime = max(t_now - self._started_at, 1e-9)
        return {
            'readers': {
                'total': len(readers),
                'online': sum(1 for r in readers if r.enabled),
            },
            'tags': {
                'active': len(tags),
                'moving': sum(1 for t in tags if t.movement != Movement.STATIONARY),
                'alerts': sum(1 for t in tags if t.alerts),
            },
            'finding': self.finder.statistics(),
            'sessions': {
                'active': len(sessions),
                'total_tracked_tags': sum(len(s.tags) for s in sessions),
            },
            'queue': {
                'depth': len(self.queue),
                'shed': self.queue.shed_total,
            },
            'processing_rate': processed / uptime,
        }

    def current_state(self, t_now: Optional[float] = None) -> dict:
        """Snapshot for a newly joined client."""
        return {
            'readers': [r.to_dict() for r in self.gateway.readers()],
            'active_tags': [t.to_dict() for t in self.active_tags()],
            'statistics': self.statistics(t_now),
        }

    def _publish(self, notes: List[Notification]):
        for note in notes:
            self.broadcaster.publish(note.topic, note.payload, room=note.room)

    def _now(self, t_now: Optional[float]) -> float:
        return self.clock() if t_now is None else t_now
