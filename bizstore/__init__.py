from __future__ import annotations

from .disk_store import DiskKeyValueStore
from .errors import DocumentNotFoundError, DocumentStoreError, MalformedDataError, SubstrateIOError
from .interfaces import KeyValueStore
from .memory_store import MemoryKeyValueStore
from .models import Document, QueryFilter
from .repositories import BusinessDataRepository
from .store import DocumentStore

__all__ = [
    "KeyValueStore",
    "DiskKeyValueStore",
    "MemoryKeyValueStore",
    "Document",
    "QueryFilter",
    "DocumentStore",
    "BusinessDataRepository",
    "DocumentStoreError",
    "DocumentNotFoundError",
    "SubstrateIOError",
    "MalformedDataError",
]
