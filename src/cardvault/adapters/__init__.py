"""Adapters module - remote object store implementations.

- storage: the abstract StorageAdapter port and session providers
- memory: dictionary-backed store for tests and offline use
- drive: Google Drive v3 REST backend
"""

from .drive import DriveStorageAdapter
from .memory import InMemoryStorageAdapter
from .storage import (
    ObjectInfo,
    SessionProvider,
    StaticSessionProvider,
    StorageAdapter,
    StorageQuota,
)

__all__ = [
    "StorageAdapter",
    "ObjectInfo",
    "StorageQuota",
    "SessionProvider",
    "StaticSessionProvider",
    "InMemoryStorageAdapter",
    "DriveStorageAdapter",
]
