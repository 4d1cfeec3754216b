"""Storage backends for NotePocket.

``StorageAdapter`` lives in ``notepocket.storage.adapter``; it depends on the
services package, which in turn uses the backends exported here.
"""

from notepocket.storage.base import StorageBackend
from notepocket.storage.durable_store import DurableStore
from notepocket.storage.volatile_store import VolatileStore

__all__ = [
    "StorageBackend",
    "VolatileStore",
    "DurableStore",
]
