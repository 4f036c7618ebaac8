"""Ingestion package initialization."""

from .collection_file import CollectionFile, load_collection_file, read_collection_file
from .taxii_client import TAXIIMirror, mirror_from_all_servers

__all__ = [
    'CollectionFile',
    'TAXIIMirror',
    'load_collection_file',
    'mirror_from_all_servers',
    'read_collection_file',
]
