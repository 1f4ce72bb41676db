"""
Reader Gateway Contract.

The gateway normalises every reader protocol (MQTT, TCP, LLRP, serial
handhelds) into TagReadEvent / ReaderStatusEvent and accepts the three
operator commands. Protocol adapters live outside the core; the core ships
the abstract contract, a thread-safe reader registry, the gateway-side
event-type classifier and a simulator.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from rtls_core.errors import ReaderNotFound
from rtls_core.proto.reader import ReaderDescriptor
from rtls_core.proto.tag_read import ReaderStatusEvent, TagEventType, TagReadEvent, TagReading

logger = logging.getLogger(__name__)


class GatewayListener(ABC):
    """Receiver of gateway events (the orchestrator)."""

    @abstractmethod
    def on_tag_read(self, event: TagReadEvent):
        """Called once per tag read, in arrival order."""

    @abstractmethod
    def on_reader_status(self, event: ReaderStatusEvent):
        """Called when a reader reports status or goes on/offline."""


class ReaderGateway(ABC):
    """
    Uniform command/event surface over all reader hardware.

    Subclasses implement the three commands; event delivery goes through
    emit_tag_read / emit_reader_status to the attached listener.
    """

    def __init__(self, readers: Optional[List[ReaderDescriptor]] = None):
        self.registry = ReaderRegistry(readers or [])
        self._listener: Optional[GatewayListener] = None

    def set_listener(self, listener: Optional[GatewayListener]):
        self._listener = listener

    @abstractmethod
    def start_inventory(self, reader_id: str):
        """Start continuous inventory on a reader."""

    @abstractmethod
    def stop_inventory(self, reader_id: str):
        """Stop inventory on a reader."""

    @abstractmethod
    def set_antenna_power(self, reader_id: str, power_dbm: float):
        """Change a reader's transmit power."""

    def readers(self) -> List[ReaderDescriptor]:
        return self.registry.all()

    def get_reader(self, reader_id: str) -> ReaderDescriptor:
        """Raises ReaderNotFound for unknown ids."""
        return self.registry.get(reader_id)

    def emit_tag_read(self, event: TagReadEvent):
        if self._listener is not None:
            self._listener.on_tag_read(event)

    def emit_reader_status(self, event: ReaderStatusEvent):
        if self._listener is not None:
            self._listener.on_reader_status(event)


class ReaderRegistry:
    """
    Thread-safe set of reader descriptors.

    Readers are never removed; disabling sets enabled=False. Lookups return
    copies, so callers never observe a half-applied command.
    """

    def __init__(self, readers: List[ReaderDescriptor]):
        self._lock = threading.Lock()
        self._readers: Dict[str, ReaderDescriptor] = {}
        for reader in readers:
            self._readers[reader.reader_id] = reader

    def add(self, reader: ReaderDescriptor):
        with self._lock:
            self._readers[reader.reader_id] = reader

    def get(self, reader_id: str) -> ReaderDescriptor:
        with self._lock:
            reader = self._readers.get(reader_id)
            if reader is None:
                raise ReaderNotFound(reader_id)
            return reader.copy()

    def find(self, reader_id: str) -> Optional[ReaderDescriptor]:
        """Like get(), but None for unknown ids."""
        with self._lock:
            reader = self._readers.get(reader_id)
            return None if reader is None else reader.copy()

    def all(self) -> List[ReaderDescriptor]:
        with self._lock:
            return [r.copy() for r in self._readers.values()]

    def in_zone(self, zone_id: int) -> List[ReaderDescriptor]:
        with self._lock:
            return [r.copy() for r in self._readers.values() if r.zone_id == zone_id]

    def set_power(self, reader_id: str, power_dbm: float):
        with self._lock:
            reader = self._readers.get(reader_id)
            if reader is None:
                raise ReaderNotFound(reader_id)
            reader.antenna_power_dbm = float(power_dbm)

    def set_enabled(self, reader_id: str, enabled: bool):
        with self._lock:
            reader = self._readers.get(reader_id)
            if reader is None:
                raise ReaderNotFound(reader_id)
            reader.enabled = enabled

    def __contains__(self, reader_id: str) -> bool:
        with self._lock:
            return reader_id in self._readers

    def __len__(self) -> int:
        with self._lock:
            return len(self._readers)


class EventTypeClassifier:
    """
    Gateway-side classification of raw reads.

    - moved: |doppler| above threshold (tag in motion relative to antenna)
    - detected: first sighting, or re-sighting after redetect_after_s unseen
    - otherwise detected for a steady tag

    Usage:
        classifier = EventTypeClassifier()
        event_type = classifier.classify(reading)
    """

    def __init__(self, doppler_threshold_hz: float = 0.5, redetect_after_s: float = 30.0):
        self.doppler_threshold_hz = doppler_threshold_hz
        self.redetect_after_s = redetect_after_s
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def classify(self, reading: TagReading) -> TagEventType:
        with self._lock:
            last = self._last_seen.get(reading.tag_id)
            self._last_seen[reading.tag_id] = reading.timestamp

        if last is None or reading.timestamp - last > self.redetect_after_s:
            return TagEventType.DETECTED
        if abs(reading.doppler) > self.doppler_threshold_hz:
            return TagEventType.MOVED
        return TagEventType.DETECTED

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_seen)

    def forget_older_than(self, cutoff: float) -> int:
        """Drop tags last seen before cutoff; returns how many were dropped."""
        with self._lock:
            stale = [tag for tag, ts in self._last_seen.items() if ts < cutoff]
            for tag in stale:
                del self._last_seen[tag]
        return len(stale)
