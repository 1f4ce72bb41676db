"""
Docket RTLS server entry point.

Wires the tracking orchestrator to a reader gateway and the in-memory
collaborators, then runs until SIGINT/SIGTERM.
"""

import argparse
import logging
import signal
import sys
import time
from typing import Optional

import config
from rtls_core.domain.finding_session import FinderConfig
from rtls_core.domain.geiger import GeigerConfig
from rtls_core.io.collaborators import (
    DocketInfo,
    InMemoryBroadcaster,
    InMemoryMetadataLookup,
    InMemoryPersistenceSink,
    PublishedMessage,
)
from rtls_core.io.simulator import SimulatedReaderGateway
from rtls_core.localization.path_loss import PathLossConfig
from rtls_core.localization.position_engine import PositionEngine, PositionEngineConfig
from rtls_core.localization.tag_kinematic_filter import TagKinematicFilterConfig
from rtls_core.localization.trilateration import TrilaterationConfig
from rtls_core.metrics import get_metrics
from rtls_core.proto.reader import ReaderDescriptor
from rtls_core.tracking import PeriodicWorker, TrackingConfig, TrackingOrchestrator

logging.basicConfig(
    level=getattr(logging, config.LOGGING_CONFIG["level"]),
    format=config.LOGGING_CONFIG["format"]
)
logger = logging.getLogger(__name__)


def build_position_config() -> PositionEngineConfig:
    cfg = config.POSITION_CONFIG
    return PositionEngineConfig(
        max_measurement_age_s=cfg["max_measurement_age_s"],
        proximity_confidence=cfg["proximity_confidence"],
        centroid_full_confidence_readers=cfg["centroid_full_confidence_readers"],
        enable_kalman=cfg["enable_kalman"],
        path_loss=PathLossConfig(
            rssi_at_1m_dbm=cfg["rssi_at_1m_dbm"],
            path_loss_exponent=cfg["path_loss_exponent"],
        ),
        trilateration=TrilaterationConfig(min_readers=cfg["min_readers"]),
        kalman=TagKinematicFilterConfig(q_accel=cfg["q_accel"]),
    )


def build_finder_config() -> FinderConfig:
    return FinderConfig(
        geiger=GeigerConfig(**config.GEIGER_CONFIG),
        **config.FINDING_CONFIG
    )


class DocketRtlsServer:
    """
    Long-running locating server.

    Usage:
        server = DocketRtlsServer(simulate=True)
        server.start()   # blocks until stopped
    """

    def __init__(self, simulate: bool = True):
        self.running = False
        self.simulate = simulate
        sim = config.SIMULATION_CONFIG

        readers = [ReaderDescriptor(**r) for r in sim["readers"]]
        self.gateway = SimulatedReaderGateway(
            readers,
            rssi_noise_db=sim["rssi_noise_db"],
            seed=sim["seed"],
            auto_start=simulate,
        )

        self.metadata = InMemoryMetadataLookup(
            [DocketInfo(**d) for d in sim["dockets"]],
            zone_names=sim["zones"],
        )
        self.persistence = InMemoryPersistenceSink()
        self.broadcaster = InMemoryBroadcaster()
        self.broadcaster.subscribe(self._on_message)

        self.orchestrator = TrackingOrchestrator(
            self.gateway,
            self.persistence,
            self.metadata,
            self.broadcaster,
            config=TrackingConfig(**config.TRACKING_CONFIG),
            engine=PositionEngine(build_position_config()),
            finder_config=build_finder_config(),
        )

        self._workers = [
            PeriodicWorker("rtls-metrics", config.OUTPUT_CONFIG["metrics_interval_s"], self._log_status),
        ]
        if simulate:
            self._workers.append(
                PeriodicWorker("rtls-simulator", sim["step_interval_s"], self._simulation_step)
            )

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        logger.info("Docket RTLS server initialised with %d readers", len(readers))

    def _signal_handler(self, signum, frame):
        logger.info("Received signal %d, stopping...", signum)
        self.running = False

    def _on_message(self, message: PublishedMessage):
        if message.topic in ('location-update', 'tracked-tags-update'):
            return
        logger.info("[%s] %s", message.topic, message.room or '*')

    def _simulation_step(self):
        self.gateway.step(time.time())

    def _log_status(self):
        stats = self.orchestrator.statistics()
        logger.info(
            "Status: %d active tags (%d moving), queue depth %d, %d events persisted",
            stats['tags']['active'], stats['tags']['moving'],
            stats['queue']['depth'], len(self.persistence.events),
        )
        get_metrics().log_summary(logging.DEBUG)

    def _setup_simulation(self):
        t0 = time.time()
        for tag in config.SIMULATION_CONFIG["tags"]:
            self.gateway.add_tag(tag["tag_id"], tag["position"], tag["velocity"], t0=t0)
        logger.info("Simulating %d tags", len(config.SIMULATION_CONFIG["tags"]))

    def start(self):
        """Start workers and block until stopped."""
        if self.simulate:
            self._setup_simulation()
        else:
            logger.warning("Simulation disabled: no reads arrive until a gateway delivers them")

        self.orchestrator.start()
        for worker in self._workers:
            worker.start()

        self.running = True
        logger.info("Docket RTLS server running")
        try:
            while self.running:
                time.sleep(0.5)
        finally:
            self.stop()

    def stop(self):
        self.running = False
        for worker in self._workers:
            worker.stop()
        self.orchestrator.stop()

        stats = self.orchestrator.statistics()
        logger.info(
            "Stopped. Events persisted: %d, finding sessions: %s",
            len(self.persistence.events), stats['finding'],
        )
        get_metrics().log_summary()


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description='Docket RTLS server')
    parser.add_argument('--batch-size', type=int, default=None,
                        help='Max tag events per batch cycle')
    parser.add_argument('--batch-interval', type=float, default=None,
                        help='Batch cycle period (seconds)')
    parser.add_argument('--simulate', dest='simulate', action='store_true',
                        default=config.SIMULATION_CONFIG["enabled"],
                        help='Generate reads from simulated tags')
    parser.add_argument('--no-simulate', dest='simulate', action='store_false',
                        help='Disable the tag simulator')
    parser.add_argument('--debug', '-d', action='store_true',
                        help='Enable debug logging')

    args = parser.parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.batch_size is not None:
        config.TRACKING_CONFIG["batch_size"] = args.batch_size
    if args.batch_interval is not None:
        config.TRACKING_CONFIG["batch_interval_s"] = args.batch_interval

    try:
        server = DocketRtlsServer(simulate=args.simulate)
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    server.start()
    return 0


if __name__ == "__main__":
    sys.exit(main())
