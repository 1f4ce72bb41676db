"""
External Collaborator Interfaces.

The core talks to its surroundings through three narrow interfaces:

- MetadataLookup: docket/zone metadata (read-only)
- PersistenceSink: transactional writes of events, locations, movements
- Broadcaster: topic/room publish to operator clients

In-memory implementations back main.py and the tests.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Set, Tuple

from rtls_core.errors import PersistenceFailure

logger = logging.getLogger(__name__)

# (tag_id, reader_id, antenna, read timestamp)
EventKey = Tuple[str, str, Optional[int], Optional[float]]


@dataclass(frozen=True)
class DocketInfo:
    """Docket metadata joined to a tag."""

    docket_id: int
    docket_code: str
    tag_id: Optional[str]
    zone_id: int = 0
    is_high_value: bool = False


class MetadataLookup(ABC):
    """Read-only docket and zone metadata."""

    @abstractmethod
    def get_docket_by_tag(self, tag_id: str) -> Optional[DocketInfo]:
        """Docket carrying this tag, None if the tag is not assigned."""

    @abstractmethod
    def get_docket_by_code(self, docket_code: str) -> Optional[DocketInfo]:
        """Docket with this code, None if unknown."""

    def get_zone_name(self, zone_id: int) -> str:
        return f"Zone {zone_id}"


class PersistenceWriter(ABC):
    """Operations available inside one persistence transaction."""

    @abstractmethod
    def append_event(
        self,
        tag_id: str,
        reader_id: str,
        signal_strength: float,
        event_type: str,
        zone_id: int,
        metadata: Dict[str, Any],
    ):
        """Append one RFID event row."""

    @abstractmethod
    def update_docket_location(self, docket_id: int, location_label: str, zone_id: int):
        """Set the docket's current location."""

    @abstractmethod
    def record_movement(self, docket_id: int, to_location: str, zone_id: int, reason: str):
        """Append a movement history row."""


class PersistenceSink(ABC):
    """
    Transactional persistence.

    Usage:
        with sink.transaction() as tx:
            tx.append_event(...)
            tx.update_docket_location(...)

    Raises PersistenceFailure when the transaction cannot be committed;
    nothing of a failed transaction is visible afterwards.

    A failed batch is delivered again, so append_event must be idempotent
    per (tag_id, reader_id, metadata["antenna"], metadata["timestamp"]).
    Several readers report the same tag at the same timestamp in one
    inventory round, and each of those rows is kept.
    """

    @abstractmethod
    def transaction(self):
        """Context manager yielding a PersistenceWriter."""


class Broadcaster(ABC):
    """Publish to operator clients, optionally scoped to a room."""

    @abstractmethod
    def publish(self, topic: str, payload: Any, room: Optional[str] = None):
        """Deliver payload on topic (to every client when room is None)."""


class InMemoryMetadataLookup(MetadataLookup):
    """Dict-backed metadata lookup."""

    def __init__(self, dockets: Optional[List[DocketInfo]] = None, zone_names: Optional[Dict[int, str]] = None):
        self._lock = threading.Lock()
        self._by_code: Dict[str, DocketInfo] = {}
        self._by_tag: Dict[str, DocketInfo] = {}
        self._zone_names = dict(zone_names or {})
        for docket in dockets or []:
            self.add(docket)

    def add(self, docket: DocketInfo):
        with self._lock:
            self._by_code[docket.docket_code] = docket
            if docket.tag_id:
                self._by_tag[docket.tag_id] = docket

    def get_docket_by_tag(self, tag_id: str) -> Optional[DocketInfo]:
        with self._lock:
            return self._by_tag.get(tag_id)

    def get_docket_by_code(self, docket_code: str) -> Optional[DocketInfo]:
        with self._lock:
            return self._by_code.get(docket_code)

    def get_zone_name(self, zone_id: int) -> str:
        return self._zone_names.get(zone_id, super().get_zone_name(zone_id))


class _StagedWriter(PersistenceWriter):
    """Collects writes until the transaction commits."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []
        self.locations: List[Tuple[int, str, int]] = []
        self.movements: List[Dict[str, Any]] = []

    def append_event(self, tag_id, reader_id, signal_strength, event_type, zone_id, metadata):
        self.events.append({
            'tag_id': tag_id,
            'reader_id': reader_id,
            'signal_strength': signal_strength,
            'event_type': event_type,
            'zone_id': zone_id,
            'metadata': dict(metadata),
        })

    def update_docket_location(self, docket_id, location_label, zone_id):
        self.locations.append((docket_id, location_label, zone_id))

    def record_movement(self, docket_id, to_location, zone_id, reason):
        self.movements.append({
            'docket_id': docket_id,
            'to_location': to_location,
            'zone_id': zone_id,
            'reason': reason,
        })


class InMemoryPersistenceSink(PersistenceSink):
    """
    In-memory transactional sink.

    Events are deduplicated on (tag_id, reader_id, antenna, timestamp) so a
    batch re-delivered after a failure is not stored twice. Keys are kept
    for dedup_window_s behind the newest committed read.

    Attributes:
        fail_next: Number of upcoming commits that raise PersistenceFailure
    """

    def __init__(self, dedup_window_s: float = 300.0):
        if dedup_window_s <= 0:
            raise ValueError(f"Dedup window must be positive: {dedup_window_s}")
        self.dedup_window_s = dedup_window_s
        self._lock = threading.Lock()
        self.events: List[Dict[str, Any]] = []
        self.locations: Dict[int, Tuple[str, int]] = {}
        self.movements: List[Dict[str, Any]] = []
        self.fail_next = 0
        self.commits = 0
        self._seen_events: Set[EventKey] = set()
        # (timestamp, key) in commit order
        self._seen_order: Deque[Tuple[float, EventKey]] = deque()
        self._newest = float('-inf')

    @staticmethod
    def event_key(event: Dict[str, Any]) -> EventKey:
        metadata = event['metadata']
        return (event['tag_id'], event['reader_id'], metadata.get('antenna'), metadata.get('timestamp'))

    @contextmanager
    def transaction(self) -> Iterator[PersistenceWriter]:
        staged = _StagedWriter()
        yield staged

        with self._lock:
            if self.fail_next > 0:
                self.fail_next -= 1
                raise PersistenceFailure("simulated commit failure")

            for event in staged.events:
                key = self.event_key(event)
                if key in self._seen_events:
                    continue
                self._seen_events.add(key)
                timestamp = key[3] if key[3] is not None else self._newest
                self._seen_order.append((timestamp, key))
                self._newest = max(self._newest, timestamp)
                self.events.append(event)
            self._expire_seen_locked()

            for docket_id, label, zone_id in staged.locations:
                self.locations[docket_id] = (label, zone_id)
            self.movements.extend(staged.movements)
            self.commits += 1

    def _expire_seen_locked(self):
        cutoff = self._newest - self.dedup_window_s
        while self._seen_order and self._seen_order[0][0] < cutoff:
            _, key = self._seen_order.popleft()
            self._seen_events.discard(key)

    def dedup_size(self) -> int:
        with self._lock:
            return len(self._seen_events)


@dataclass
class PublishedMessage:
    topic: str
    payload: Any
    room: Optional[str] = None


class InMemoryBroadcaster(Broadcaster):
    """
    Records published messages and fans them out to local callbacks.

    Usage:
        broadcaster = InMemoryBroadcaster()
        broadcaster.subscribe(lambda msg: print(msg.topic))
        broadcaster.messages('tag-lost')
    """

    def __init__(self, max_messages: int = 10000):
        self._lock = threading.Lock()
        self._messages: Deque[PublishedMessage] = deque(maxlen=max_messages)
        self._callbacks: List[Callable[[PublishedMessage], None]] = []

    def subscribe(self, callback: Callable[[PublishedMessage], None]):
        with self._lock:
            self._callbacks.append(callback)

    def publish(self, topic: str, payload: Any, room: Optional[str] = None):
        message = PublishedMessage(topic, payload, room)
        with self._lock:
            self._messages.append(message)
            callbacks = list(self._callbacks)

        for callback in callbacks:
            try:
                callback(message)
            except Exception:
                logger.exception("Broadcast callback failed for topic %s", topic)

    def messages(self, topic: Optional[str] = None, room: Optional[str] = None) -> List[PublishedMessage]:
        with self._lock:
            return [
                m for m in self._messages
                if (topic is None or m.topic == topic) and (room is None or m.room == room)
            ]

    def clear(self):
        with self._lock:
            self._messages.clear()
