"""
Domain Module: Docket finding and alerting logic.

- Finding session state machine (standard, Geiger, navigation modes)
- Geiger feedback computation
- Straight-line navigation instructions
- Movement classification, alerts and geofences
"""

from .finding_session import (
    DocketFinder,
    FinderConfig,
    FindingMode,
    FindingSession,
    FindingStatus,
    FixedSeekerLocator,
    NoSeekerLocator,
    Notification,
    SeekerFix,
    SeekerLocator,
    TagSeekerLocator,
)
from .geiger import GeigerConfig, GeigerReading, SignalTrend, compute_reading, compute_trend
from .navigation import InstructionType, NavigationConfig, NavigationInstruction, next_instruction, plan_route
from .alerts import (
    Alert,
    AlertChecker,
    AlertConfig,
    AlertType,
    Geofence,
    GeofenceKind,
    Movement,
    classify_movement,
)

__all__ = [
    'DocketFinder',
    'FinderConfig',
    'FindingMode',
    'FindingSession',
    'FindingStatus',
    'FixedSeekerLocator',
    'NoSeekerLocator',
    'Notification',
    'SeekerFix',
    'SeekerLocator',
    'TagSeekerLocator',
    'GeigerConfig',
    'GeigerReading',
    'SignalTrend',
    'compute_reading',
    'compute_trend',
    'InstructionType',
    'NavigationConfig',
    'NavigationInstruction',
    'next_instruction',
    'plan_route',
    'Alert',
    'AlertChecker',
    'AlertConfig',
    'AlertType',
    'Geofence',
    'GeofenceKind',
    'Movement',
    'classify_movement',
]
