"""Bounded in-memory registry of generated event keys.

The registry only knows about keys generated by this process within its
retention window. It reduces duplicate-key churn during a run; the unique
constraint of the persistent store remains the real dedup authority.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional


@dataclass
class EventKeyRecord:
    """Registry entry for one generated key."""

    key: str
    registered_at: int = field(default_factory=lambda: int(time.time() * 1000))
    metadata: Dict[str, Any] = field(default_factory=dict)


class BoundedKeyRegistry:
    """FIFO-evicting key registry with O(1) insert, lookup and eviction.

    Insertion order lives in a deque and records in a dict; when full, the
    oldest registered key is evicted.

    Note: This registry is not persistent and is empty after a restart.
    """

    def __init__(self, max_size: int = 10000) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._order: Deque[str] = deque()
        self._records: Dict[str, EventKeyRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: str) -> bool:
        return key in self._records

    def get(self, key: str) -> Optional[EventKeyRecord]:
        return self._records.get(key)

    def register(self, key: str, metadata: Optional[Dict[str, Any]] = None) -> EventKeyRecord:
        """Register a key, evicting the oldest entry when at capacity.

        Re-registering a known key refreshes its metadata without changing
        its eviction position.
        """
        record = self._records.get(key)
        if record is not None:
            record.metadata = dict(metadata or {})
            return record

        while len(self._records) >= self.max_size:
            oldest = self._order.popleft()
            self._records.pop(oldest, None)

        record = EventKeyRecord(key=key, metadata=dict(metadata or {}))
        self._records[key] = record
        self._order.append(key)
        return record

    def clear(self) -> None:
        self._order.clear()
        self._records.clear()
