"""
Unit tests for the reader gateway, its simulator and the in-memory
collaborators.

Tests cover:
- Reader registry copies and unknown readers
- Event-type classification from first sighting and Doppler
- Simulated inventory rounds (range, enable, inventory state)
- Transactional sink and room-scoped broadcaster
"""

import logging
from typing import List

import pytest

from rtls_core.errors import PersistenceFailure, ReaderNotFound
from rtls_core.io.collaborators import DocketInfo, InMemoryBroadcaster, InMemoryMetadataLookup, InMemoryPersistenceSink
from rtls_core.io.gateway import EventTypeClassifier, GatewayListener, ReaderRegistry
from rtls_core.io.simulator import SimulatedReaderGateway
from rtls_core.proto import ReaderStatusEvent, TagEventType, TagReadEvent, TagReading


class RecordingListener(GatewayListener):
    """Collects every gateway event."""

    def __init__(self):
        self.reads: List[TagReadEvent] = []
        self.statuses: List[ReaderStatusEvent] = []

    def on_tag_read(self, event):
        self.reads.append(event)

    def on_reader_status(self, event):
        self.statuses.append(event)


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def gateway(square_readers, listener) -> SimulatedReaderGateway:
    gw = SimulatedReaderGateway(square_readers, rssi_noise_db=0.0, seed=1)
    gw.set_listener(listener)
    return gw


class TestReaderRegistry:
    """Tests for the reader registry."""

    def test_get_returns_copy(self, square_readers):
        registry = ReaderRegistry(square_readers)

        reader = registry.get("R1")
        reader.antenna_power_dbm = 10.0

        assert registry.get("R1").antenna_power_dbm == 30.0

    def test_unknown_reader(self, square_readers):
        registry = ReaderRegistry(square_readers)

        with pytest.raises(ReaderNotFound):
            registry.get("R9")
        with pytest.raises(ReaderNotFound):
            registry.set_power("R9", 20.0)
        assert registry.find("R9") is None
        assert "R9" not in registry

    def test_zone_and_commands(self, square_readers):
        registry = ReaderRegistry(square_readers)

        registry.set_power("G1", 27.0)
        registry.set_enabled("R2", False)

        assert [r.reader_id for r in registry.in_zone(2)] == ["G1"]
        assert registry.get("G1").antenna_power_dbm == 27.0
        assert not registry.get("R2").enabled
        assert len(registry) == 5


class TestEventTypeClassifier:
    """Tests for gateway-side classification."""

    def _reading(self, t, doppler=0.0):
        return TagReading(tag_id="T1", reader_id="R1", rssi=-50.0, doppler=doppler, timestamp=t)

    def test_first_sighting_detected(self):
        assert EventTypeClassifier().classify(self._reading(0.0, doppler=5.0)) == TagEventType.DETECTED

    def test_doppler_means_moved(self):
        classifier = EventTypeClassifier()
        classifier.classify(self._reading(0.0))

        assert classifier.classify(self._reading(1.0, doppler=2.0)) == TagEventType.MOVED
        assert classifier.classify(self._reading(2.0, doppler=0.1)) == TagEventType.DETECTED

    def test_redetect_after_gap(self):
        classifier = EventTypeClassifier()
        classifier.classify(self._reading(0.0))

        assert classifier.classify(self._reading(31.0, doppler=2.0)) == TagEventType.DETECTED

    def test_forget_older_than(self):
        classifier = EventTypeClassifier()
        classifier.classify(self._reading(0.0))

        assert classifier.forget_older_than(10.0) == 1
        assert classifier.forget_older_than(10.0) == 0


class TestSimulatedGateway:
    """Tests for simulated inventory rounds."""

    def test_round_within_range(self, gateway, listener):
        gateway.add_tag("T1", (4.0, 6.0, 1.0))

        assert gateway.step(100.0) == 4

        assert sorted(e.reader_id for e in listener.reads) == ["R1", "R2", "R3", "R4"]
        assert all(e.zone_id == 1 for e in listener.reads)
        assert all(e.timestamp == 100.0 for e in listener.reads)

    def test_rssi_follows_path_loss(self, gateway, listener):
        gateway.add_tag("T1", (4.0, 6.0, 1.0))
        gateway.step(100.0)

        by_reader = {e.reader_id: e.tag.rssi for e in listener.reads}

        # R3 is the nearest reader, R2 the farthest
        assert by_reader["R3"] > by_reader["R1"] > by_reader["R2"]
        assert by_reader["R1"] == pytest.approx(by_reader["R4"])

    def test_gate_reader_short_range(self, gateway, listener):
        gateway.add_tag("T1", (5.0, 11.5, 1.0))
        gateway.step(100.0)

        gate = [e for e in listener.reads if e.reader_id == "G1"]
        assert len(gate) == 1
        assert gate[0].zone_id == 2

    def test_inventory_and_enable(self, gateway, listener, square_readers):
        gateway.add_tag("T1", (4.0, 6.0, 1.0))
        gateway.stop_inventory("R1")
        gateway.registry.set_enabled("R2", False)

        assert gateway.step(100.0) == 2
        assert not gateway.is_inventory_running("R1")

        gateway.start_inventory("R1")
        assert gateway.step(101.0) == 3

    def test_moving_tag_classified_moved(self, gateway, listener):
        gateway.add_tag("T1", (4.0, 6.0, 1.0), velocity=(1.0, 0.0, 0.0), t0=0.0)
        gateway.step(0.0)
        listener.reads.clear()

        gateway.step(1.0)

        assert len(listener.reads) == 4
        assert all(e.event_type == TagEventType.MOVED for e in listener.reads)
        assert all(abs(e.tag.doppler) > 0.5 for e in listener.reads)

    def test_remove_tag(self, gateway, listener):
        gateway.add_tag("T1", (4.0, 6.0, 1.0))
        gateway.remove_tag("T1")

        assert gateway.step(100.0) == 0

    def test_round_forgets_long_unseen_tags(self, gateway, listener):
        gateway.add_tag("T1", (4.0, 6.0, 1.0))
        gateway.step(0.0)
        assert len(gateway.classifier) == 1

        gateway.remove_tag("T1")
        gateway.step(40.0)

        assert len(gateway.classifier) == 0

    def test_set_antenna_power(self, gateway):
        gateway.set_antenna_power("R1", 25.0)

        assert gateway.get_reader("R1").antenna_power_dbm == 25.0
        with pytest.raises(ReaderNotFound):
            gateway.set_antenna_power("R9", 25.0)

    def test_inject_read(self, gateway, listener):
        event = gateway.inject_read("T5", "G1", -40.0, 50.0)

        assert listener.reads == [event]
        assert event.zone_id == 2
        with pytest.raises(ReaderNotFound):
            gateway.inject_read("T5", "R9", -40.0, 50.0)

    def test_report_status(self, gateway, listener):
        gateway.stop_inventory("R4")

        gateway.report_status(uptime=12.0)

        status = {s.reader_id: s for s in listener.statuses}
        assert len(status) == 5
        assert not status["R4"].online
        assert status["R1"].to_dict()['status'] == 'online'
        assert status["R1"].uptime == 12.0


class TestCollaborators:
    """Tests for the in-memory collaborators."""

    def _write_event(self, tx, t):
        tx.append_event("T1", "R1", -50.0, "detected", 1, {'timestamp': t})

    def test_commit(self, sink):
        with sink.transaction() as tx:
            self._write_event(tx, 1.0)
            tx.update_docket_location(1, "X:1.0 Y:2.0", 1)
            tx.record_movement(1, "Store A", 1, "test")

        assert len(sink.events) == 1
        assert sink.locations[1] == ("X:1.0 Y:2.0", 1)
        assert sink.movements[0]['to_location'] == "Store A"
        assert sink.commits == 1

    def test_failed_commit_writes_nothing(self, sink):
        sink.fail_next = 1

        with pytest.raises(PersistenceFailure):
            with sink.transaction() as tx:
                self._write_event(tx, 1.0)
                tx.update_docket_location(1, "X:1.0 Y:2.0", 1)

        assert sink.events == []
        assert sink.locations == {}
        assert sink.commits == 0

    def test_events_deduplicated(self, sink):
        for _ in range(2):
            with sink.transaction() as tx:
                self._write_event(tx, 1.0)

        assert len(sink.events) == 1
        assert sink.commits == 2

    def test_same_read_time_on_several_readers_kept(self, sink):
        with sink.transaction() as tx:
            for reader_id in ("R1", "R2", "R3"):
                tx.append_event("T1", reader_id, -50.0, "detected", 1, {'timestamp': 1.0, 'antenna': 1})
            tx.append_event("T1", "R1", -52.0, "detected", 1, {'timestamp': 1.0, 'antenna': 2})

        assert [e['reader_id'] for e in sink.events] == ["R1", "R2", "R3", "R1"]

    def test_dedup_window_is_bounded(self):
        sink = InMemoryPersistenceSink(dedup_window_s=10.0)
        for t in (1.0, 2.0, 20.0):
            with sink.transaction() as tx:
                self._write_event(tx, t)

        assert sink.dedup_size() == 1

        with sink.transaction() as tx:
            self._write_event(tx, 20.0)
        assert len(sink.events) == 3

    def test_invalid_dedup_window(self):
        with pytest.raises(ValueError):
            InMemoryPersistenceSink(dedup_window_s=0.0)

    def test_broadcaster_rooms(self):
        broadcaster = InMemoryBroadcaster()
        broadcaster.publish('location-update', [1])
        broadcaster.publish('tracked-tags-update', [2], room="client-1")

        assert len(broadcaster.messages()) == 2
        assert [m.payload for m in broadcaster.messages(room="client-1")] == [[2]]
        assert broadcaster.messages('tag-lost') == []

    def test_failing_callback_is_logged(self, caplog):
        broadcaster = InMemoryBroadcaster()
        received = []

        def boom(message):
            raise RuntimeError("client gone")

        broadcaster.subscribe(boom)
        broadcaster.subscribe(received.append)

        with caplog.at_level(logging.ERROR):
            broadcaster.publish('tag-lost', {'tag_id': "T1"})

        assert len(received) == 1
        assert "tag-lost" in caplog.text

    def test_metadata_lookup(self):
        lookup = InMemoryMetadataLookup([DocketInfo(1, "DKT-1", "T1", zone_id=3)], zone_names={3: "Cage"})

        assert lookup.get_docket_by_tag("T1").docket_code == "DKT-1"
        assert lookup.get_docket_by_code("DKT-9") is None
        assert lookup.get_zone_name(3) == "Cage"
        assert lookup.get_zone_name(4) == "Zone 4"
