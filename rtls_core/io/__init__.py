"""
IO Module: Reader gateway contract and external collaborators.

- ReaderGateway / GatewayListener contract, reader registry
- Simulated gateway (path-loss driven)
- Metadata lookup, persistence sink, broadcaster interfaces
- Bounded event queue between ingestion and batch processing
"""

from .gateway import EventTypeClassifier, GatewayListener, ReaderGateway, ReaderRegistry
from .simulator import SimulatedReaderGateway, SimulatedTag
from .collaborators import (
    Broadcaster,
    DocketInfo,
    InMemoryBroadcaster,
    InMemoryMetadataLookup,
    InMemoryPersistenceSink,
    MetadataLookup,
    PersistenceSink,
    PersistenceWriter,
    PublishedMessage,
)
from .event_queue import BoundedEventQueue

__all__ = [
    'EventTypeClassifier',
    'GatewayListener',
    'ReaderGateway',
    'ReaderRegistry',
    'SimulatedReaderGateway',
    'SimulatedTag',
    'Broadcaster',
    'DocketInfo',
    'InMemoryBroadcaster',
    'InMemoryMetadataLookup',
    'InMemoryPersistenceSink',
    'MetadataLookup',
    'PersistenceSink',
    'PersistenceWriter',
    'PublishedMessage',
    'BoundedEventQueue',
]
