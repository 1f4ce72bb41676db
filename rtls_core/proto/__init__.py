"""
Protocol Module: Message schemas shared by all components.

- Reader descriptors (static reader configuration)
- Tag read / reader status events (gateway output)
- Measurements (engine input)
- Position estimates (engine output)
"""

from .reader import (
    ReaderDescriptor,
    ReaderKind,
)
from .tag_read import (
    TagReading,
    TagReadEvent,
    TagEventType,
    ReaderStatusEvent,
)
from .measurement import Measurement
from .position_estimate import (
    PositionEstimate,
    Algorithm,
    SolverTier,
)

__all__ = [
    'ReaderDescriptor',
    'ReaderKind',
    'TagReading',
    'TagReadEvent',
    'TagEventType',
    'ReaderStatusEvent',
    'Measurement',
    'PositionEstimate',
    'Algorithm',
    'SolverTier',
]
