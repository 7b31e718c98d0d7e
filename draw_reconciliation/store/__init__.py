"""
Record stores for the draw reconciliation engine.

The engine only reads and writes persisted records through BaseRecordStore.
"""

from .base_store import BaseRecordStore
from .memory_store import InMemoryRecordStore
from .rest_store import RestRecordStore, RestResponse

__all__ = [
    "BaseRecordStore",
    "InMemoryRecordStore",
    "RestRecordStore",
    "RestResponse"
]
