"""
Tracking Module: Orchestration of the locating core.

- Ingest, batch, broadcast and cleanup cycles
- Active-tag map and client tracking sessions
- Intensive scanning for live finding sessions
"""

from .orchestrator import TagStatus, TrackedTag, TrackingConfig, TrackingOrchestrator, TrackingSession
from .workers import PeriodicWorker

__all__ = [
    'PeriodicWorker',
    'TagStatus',
    'TrackedTag',
    'TrackingConfig',
    'TrackingOrchestrator',
    'TrackingSession',
]
