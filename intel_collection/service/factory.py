"""Build collection services from configuration."""

import logging
from typing import Optional

from intel_collection.config import Config
from intel_collection.service.collection import CollectionService
from intel_collection.storage import SQLiteObjectStore

logger = logging.getLogger(__name__)


def open_collection(config: Config, collection_id: Optional[str] = None) -> CollectionService:
    """
    Open a configured collection backed by the configured SQLite database.

    Args:
        config: Loaded configuration
        collection_id: Collection id or title; the first collection if None

    Raises:
        ConfigurationError: If the collection is not configured
    """
    descriptor = config.get_collection(collection_id)
    db_path = config.get_db_path()
    logger.debug(f"Opening collection {descriptor.id} in {db_path}")
    store = SQLiteObjectStore(db_path, descriptor.id)
    return CollectionService(descriptor, store=store)
