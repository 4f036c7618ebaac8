"""Manifest index: the queryable projection of an ObjectStore."""

import bisect
import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from intel_collection.models import ManifestEntry
from intel_collection.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)


def _timeline_key(entry: ManifestEntry) -> Tuple[datetime, str, datetime, str]:
    return (entry.date_added, entry.id, entry.version, entry.media_type)


class ManifestIndex:
    """
    Per-id manifest entries plus a collection-wide date_added timeline.

    Per-id sequences are kept as tuples ordered by (version, media_type) and
    replaced on every insert, so readers always hold an immutable snapshot.
    Entries are never removed.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._by_id: Dict[str, Tuple[ManifestEntry, ...]] = {}
        self._keys: Set[Tuple[str, datetime, str]] = set()
        # Parallel lists ordered by _timeline_key
        self._timeline: List[ManifestEntry] = []
        self._timeline_keys: List[Tuple[datetime, str, datetime, str]] = []
        self._timeline_dates: List[datetime] = []

    @classmethod
    def from_store(cls, store: ObjectStore) -> 'ManifestIndex':
        """Rebuild the projection from a store's registrations."""
        index = cls()
        count = 0
        for entry in store.registrations():
            if index.record(entry):
                count += 1
        logger.info(f"Rebuilt manifest index with {count} entries")
        return index

    def record(self, entry: ManifestEntry) -> bool:
        """
        Add an entry.

        Returns:
            False if an entry with the same (id, version, media_type) exists
        """
        with self._lock:
            if entry.key in self._keys:
                return False
            self._keys.add(entry.key)

            entries = list(self._by_id.get(entry.id, ()))
            bisect.insort(entries, entry)
            self._by_id[entry.id] = tuple(entries)

            key = _timeline_key(entry)
            position = bisect.bisect_right(self._timeline_keys, key)
            self._timeline_keys.insert(position, key)
            self._timeline_dates.insert(position, entry.date_added)
            self._timeline.insert(position, entry)
            return True

    def entries_for(self, object_id: str) -> Tuple[ManifestEntry, ...]:
        with self._lock:
            return self._by_id.get(object_id, ())

    def entries_since(self, timestamp: Optional[datetime] = None) -> List[ManifestEntry]:
        """
        Entries with date_added strictly after timestamp, oldest first.

        Ties on date_added are ordered by id, then version, then media type.
        """
        with self._lock:
            if timestamp is None:
                return list(self._timeline)
            start = bisect.bisect_right(self._timeline_dates, timestamp)
            return self._timeline[start:]

    def contains(self, object_id: str, version: datetime, media_type: str) -> bool:
        with self._lock:
            return (object_id, version, media_type) in self._keys

    def ids(self) -> List[str]:
        with self._lock:
            return sorted(self._by_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
