"""Append-only, multi-version object storage."""

import copy
import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from intel_collection.models import ManifestEntry, VersionedRecord

logger = logging.getLogger(__name__)


def canonical_body(body: Dict[str, Any]) -> str:
    """Canonical JSON text of a body; two bodies are identical when these match."""
    return json.dumps(body, sort_keys=True, separators=(',', ':'))


class AppendStatus(Enum):
    APPENDED = 'appended'
    ALREADY_EXISTS = 'already_exists'


@dataclass(frozen=True)
class AppendResult:
    """
    Outcome of ObjectStore.append.

    For ALREADY_EXISTS, ``existing`` is the stored revision, ``identical``
    tells whether the offered body matches it and ``registered`` whether a
    new media type registration was recorded for it.
    """

    status: AppendStatus
    existing: Optional[VersionedRecord] = None
    identical: bool = True
    registered: bool = False

    @property
    def appended(self) -> bool:
        return self.status is AppendStatus.APPENDED


class ObjectStore(ABC):
    """
    Ledger of immutable revisions keyed by (id, version).

    Stored revisions are never updated or deleted. Each (id, version,
    media_type) registration is kept so the manifest can be rebuilt.
    """

    @abstractmethod
    def append(self, record: VersionedRecord) -> AppendResult:
        """Store a revision unless (id, version) is already present."""

    @abstractmethod
    def get(self, object_id: str, version: datetime) -> Optional[VersionedRecord]:
        """Exact lookup; None when absent."""

    @abstractmethod
    def list_versions(self, object_id: str) -> List[datetime]:
        """Versions of an id in ascending order; empty for unknown ids."""

    @abstractmethod
    def all_ids(self) -> Set[str]:
        """Every id with at least one stored revision."""

    @abstractmethod
    def registrations(self) -> Iterator[ManifestEntry]:
        """Every media type registration, in ingestion order."""

    @abstractmethod
    def count(self) -> int:
        """Number of stored revisions."""


class MemoryObjectStore(ObjectStore):
    """In-process ObjectStore backed by dictionaries."""

    def __init__(self):
        self._lock = threading.Lock()
        self._revisions: Dict[str, Dict[datetime, VersionedRecord]] = {}
        self._registrations: List[ManifestEntry] = []
        self._registered: Set[Tuple[str, datetime, str]] = set()

    def append(self, record: VersionedRecord) -> AppendResult:
        entry = record.manifest_entry()
        with self._lock:
            versions = self._revisions.setdefault(record.id, {})
            existing = versions.get(record.version)

            if existing is not None:
                if canonical_body(existing.body) != canonical_body(record.body):
                    return AppendResult(AppendStatus.ALREADY_EXISTS, existing, identical=False)
                registered = self._register(entry)
                return AppendResult(AppendStatus.ALREADY_EXISTS, existing, registered=registered)

            versions[record.version] = VersionedRecord(
                id=record.id,
                version=record.version,
                spec_version=record.spec_version,
                media_type=record.media_type,
                body=copy.deepcopy(record.body),
                date_added=record.date_added,
                version_text=record.version_text,
            )
            self._register(entry)
            return AppendResult(AppendStatus.APPENDED)

    def _register(self, entry: ManifestEntry) -> bool:
        if entry.key in self._registered:
            return False
        self._registered.add(entry.key)
        self._registrations.append(entry)
        return True

    def get(self, object_id: str, version: datetime) -> Optional[VersionedRecord]:
        with self._lock:
            record = self._revisions.get(object_id, {}).get(version)
        if record is None:
            return None
        return record.registered_as(record.manifest_entry())

    def list_versions(self, object_id: str) -> List[datetime]:
        with self._lock:
            return sorted(self._revisions.get(object_id, {}))

    def all_ids(self) -> Set[str]:
        with self._lock:
            return {object_id for object_id, versions in self._revisions.items() if versions}

    def registrations(self) -> Iterator[ManifestEntry]:
        with self._lock:
            snapshot = list(self._registrations)
        return iter(snapshot)

    def count(self) -> int:
        with self._lock:
            return sum(len(versions) for versions in self._revisions.values())
