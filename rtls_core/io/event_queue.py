"""
Bounded Event Queue.

FIFO of tag read events between ingestion and batch processing. When full,
the oldest events are shed (counted as queue_full drops) so ingestion
never blocks. A batch whose persistence failed is put back at the front.
"""

import logging
import threading
from collections import deque
from typing import Deque, List, Sequence

from rtls_core.metrics import get_metrics
from rtls_core.proto.tag_read import TagReadEvent

logger = logging.getLogger(__name__)


class BoundedEventQueue:
    """
    Thread-safe bounded FIFO with shed-oldest overflow.

    Usage:
        queue = BoundedEventQueue(capacity=10000)
        queue.push(event)
        batch = queue.pop_batch(100)
        ...
        queue.requeue_front(batch)   # persistence failed
    """

    def __init__(self, capacity: int = 10000):
        if capacity <= 0:
            raise ValueError(f"Capacity must be positive: {capacity}")
        self.capacity = capacity
        self.metrics = get_metrics()
        self._lock = threading.Lock()
        self._items: Deque[TagReadEvent] = deque()
        self._shed_total = 0

    def push(self, event: TagReadEvent) -> bool:
        """
        Append an event.

        Returns:
            False if an older event was shed to make room
        """
        with self._lock:
            shed = len(self._items) >= self.capacity
            if shed:
                self._items.popleft()
                self._shed_total += 1
            self._items.append(event)

        if shed:
            self.metrics.increment_drop('queue_full')
            if self._shed_total == 1 or self._shed_total % 1000 == 0:
                logger.warning("Event queue full (%d), shed %d events so far", self.capacity, self._shed_total)
        return not shed

    def pop_batch(self, max_items: int) -> List[TagReadEvent]:
        """Remove and return up to max_items events, oldest first."""
        with self._lock:
            count = min(max_items, len(self._items))
            return [self._items.popleft() for _ in range(count)]

    def requeue_front(self, events: Sequence[TagReadEvent]) -> int:
        """
        Put events back at the head, preserving their order.

        Newer events at the tail are shed if the queue overflows.

        Returns:
            Number of events shed
        """
        with self._lock:
            self._items.extendleft(reversed(list(events)))
            shed = 0
            while len(self._items) > self.capacity:
                self._items.pop()
                shed += 1
            self._shed_total += shed

        if shed:
            self.metrics.increment_drop('queue_full', shed)
        return shed

    @property
    def shed_total(self) -> int:
        with self._lock:
            return self._shed_total

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
