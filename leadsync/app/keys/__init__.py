"""Idempotent identity keys for synchronized events."""

from leadsync.app.keys.generator import (
    EventKeyGenerator,
    KeyGeneratorStats,
    clean_component,
    to_epoch_ms,
)
from leadsync.app.keys.registry import BoundedKeyRegistry, EventKeyRecord

__all__ = [
    "EventKeyGenerator",
    "KeyGeneratorStats",
    "BoundedKeyRegistry",
    "EventKeyRecord",
    "clean_component",
    "to_epoch_ms",
]
