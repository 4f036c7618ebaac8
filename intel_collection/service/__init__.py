"""Service package initialization."""

from .collection import CollectionService
from .factory import open_collection

__all__ = ['CollectionService', 'open_collection']
