"""Storage package initialization."""

from .object_store import AppendResult, AppendStatus, MemoryObjectStore, ObjectStore
from .database import SQLiteObjectStore
from .manifest import ManifestIndex

__all__ = [
    'AppendResult',
    'AppendStatus',
    'ManifestIndex',
    'MemoryObjectStore',
    'ObjectStore',
    'SQLiteObjectStore',
]
