"""Collection service: the single entry point for ingesting and querying a collection."""

import base64
import binascii
import json
import logging
import threading
from collections import Counter, OrderedDict
from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime
from itertools import islice
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from intel_collection.errors import Conflict, IngestError, MalformedEnvelope, UnsupportedMediaType
from intel_collection.models import (
    CollectionDescriptor,
    IngestOutcome,
    IngestResult,
    IngestStatus,
    ManifestEntry,
    ObjectFilter,
    Page,
    VersionedRecord,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from intel_collection.normalization import build_record, unwrap_objects
from intel_collection.resolution import VersionResolver, filter_entries, matches_media_type, select
from intel_collection.storage import ManifestIndex, MemoryObjectStore, ObjectStore

logger = logging.getLogger(__name__)

Timestamp = Union[str, datetime]


def _object_type(object_id: str) -> str:
    return object_id.split('--', 1)[0]


def _body_id(body: Any) -> Optional[str]:
    object_id = body.get('id') if isinstance(body, Mapping) else getattr(body, 'id', None)
    return object_id if isinstance(object_id, str) else None


def _label(entry: ManifestEntry) -> str:
    return entry.to_dict()["version"]


def _timeline_order(entry: ManifestEntry):
    return (entry.date_added, entry.id, entry.version, entry.media_type)


def encode_page_token(entry: ManifestEntry) -> str:
    """Token resuming a listing strictly after ``entry`` in timeline order."""
    after = [
        format_timestamp(entry.date_added),
        entry.id,
        format_timestamp(entry.version),
        entry.media_type,
    ]
    raw = json.dumps({'after': after}).encode('utf-8')
    return base64.urlsafe_b64encode(raw).decode('ascii')


def decode_page_token(token: Optional[str]) -> Optional[tuple]:
    """Timeline position encoded by a page token, or None to start from the beginning."""
    if not token:
        return None
    try:
        data = json.loads(base64.urlsafe_b64decode(token.encode('ascii')))
        date_added, object_id, version, media_type = data['after']
        if not isinstance(object_id, str) or not isinstance(media_type, str):
            raise TypeError("id and media_type must be strings")
        return (parse_timestamp(date_added), object_id, parse_timestamp(version), media_type)
    except (binascii.Error, ValueError, KeyError, TypeError, UnicodeError) as e:
        raise ValueError(f"Invalid paging token: {token!r}") from e


class CollectionService:
    """
    Versioned STIX collection.

    Mutations are serialized by a per-collection lock that covers the store
    append and the manifest update together. Reads never take that lock:
    they resolve against immutable manifest snapshots, and a manifest entry
    is only published after its revision is stored.
    """

    def __init__(self,
                 descriptor: CollectionDescriptor,
                 store: Optional[ObjectStore] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the collection.

        Args:
            descriptor: Static collection description (id, media types, ...)
            store: Revision storage; an in-memory store if omitted
            clock: Source of date_added values; UTC now if omitted
        """
        self.descriptor = descriptor
        self.store = store if store is not None else MemoryObjectStore()
        self.manifest = ManifestIndex.from_store(self.store)
        self.resolver = VersionResolver(self.manifest)
        self._clock = clock or utc_now
        self._write_lock = threading.RLock()

    @property
    def collection_id(self) -> str:
        return self.descriptor.id

    # Ingestion

    def add_object(self, body: Any, declared_media_type: str, *,
                   date_added: Optional[Timestamp] = None) -> IngestResult:
        """
        Ingest one revision of a STIX object.

        Args:
            body: STIX object (dict or stix2 object)
            declared_media_type: e.g. 'application/stix+json;version=2.1'
            date_added: Explicit date_added, used when replaying an archived
                manifest; the collection clock is used otherwise

        Returns:
            IngestResult with outcome ADDED, REGISTERED (known revision under
            a new media type) or UNCHANGED (identical resubmission)

        Raises:
            UnsupportedMediaType: Media type not declared by the collection
            MalformedEnvelope: Missing id, unparsable version source or
                unparsable date_added
            Conflict: (id, version) already stored with a different body
        """
        if not self.descriptor.accepts(declared_media_type):
            raise UnsupportedMediaType(declared_media_type, self.descriptor.media_types)

        requested = None
        if date_added is not None:
            try:
                requested = parse_timestamp(date_added)
            except ValueError as e:
                raise MalformedEnvelope(f"Unparsable date_added {date_added!r}: {e}",
                                        _body_id(body)) from e
        record = build_record(body, declared_media_type, requested or self._clock())

        with self._write_lock:
            record = replace(record, date_added=self._date_added_for(record.id, record.date_added))
            result = self.store.append(record)
            entry = record.manifest_entry()

            if result.appended:
                self.manifest.record(entry)
                logger.info(f"Added {record.id} version {_label(entry)} as {record.media_type}")
                return IngestResult(IngestOutcome.ADDED, entry)

            if not result.identical:
                logger.warning(f"Conflict on {record.id} version {_label(entry)}")
                raise Conflict(
                    f"{record.id} version {_label(entry)} already exists with a different body",
                    record.id,
                )

            recorded = self.manifest.record(entry)
            if result.registered or recorded:
                logger.info(f"Registered {record.id} version {_label(entry)} as {record.media_type}")
                return IngestResult(IngestOutcome.REGISTERED, entry)

        logger.debug(f"Unchanged {record.id} version {_label(entry)}")
        existing = next(
            (e for e in self.manifest.entries_for(record.id) if e.key == entry.key),
            entry,
        )
        return IngestResult(IngestOutcome.UNCHANGED, existing)

    def _date_added_for(self, object_id: str, candidate: datetime) -> datetime:
        # date_added never goes backwards for an id
        entries = self.manifest.entries_for(object_id)
        if entries:
            latest = max(entry.date_added for entry in entries)
            if candidate < latest:
                logger.debug(f"Clamping date_added for {object_id} to {format_timestamp(latest)}")
                return latest
        return candidate

    def add_objects(self, payload: Any, media_type: str) -> IngestStatus:
        """
        Ingest a bundle, TAXII envelope or list of objects.

        Per-object failures are collected into the returned status; the
        remaining objects are still ingested.

        Raises:
            UnsupportedMediaType: Before any object is touched
        """
        if not self.descriptor.accepts(media_type):
            raise UnsupportedMediaType(media_type, self.descriptor.media_types)

        status = IngestStatus()
        for obj in unwrap_objects(payload):
            status.total_count += 1
            try:
                result = self.add_object(obj, media_type)
                status.successes.append({
                    'id': result.entry.id,
                    'version': _label(result.entry),
                    'message': result.outcome.value,
                })
            except IngestError as e:
                object_id = e.object_id
                if object_id is None and isinstance(obj, dict):
                    object_id = obj.get('id')
                status.failures.append({'id': object_id or '', 'message': str(e)})

        logger.info(
            f"Ingested {status.success_count}/{status.total_count} objects "
            f"into {self.collection_id} ({status.failure_count} failed)"
        )
        return status

    # Queries

    def get_object(self, object_id: str,
                   version: Optional[Timestamp] = None,
                   media_type: Optional[str] = None,
                   as_of: Optional[Timestamp] = None) -> Optional[VersionedRecord]:
        """
        Fetch one revision of an object.

        Args:
            object_id: Object id
            version: Exact version; the current version if omitted
            media_type: Only consider revisions registered under this media type
            as_of: Resolve the version the collection served at this time

        Returns:
            The revision, or None if nothing matches
        """
        if version is not None:
            resolved = parse_timestamp(version)
        elif as_of is not None:
            resolved = self.resolver.resolve_as_of(object_id, parse_timestamp(as_of), media_type)
        else:
            resolved = self.resolver.resolve_current(object_id, media_type)
        if resolved is None:
            return None

        entries = self.resolver.resolve_entries(object_id, resolved, media_type)
        if not entries:
            return None

        record = self.store.get(object_id, resolved)
        if record is None:
            return None
        if media_type is None:
            return record
        return record.registered_as(entries[0])

    def get_registrations(self, object_id: str,
                          version: Optional[Timestamp] = None) -> List[VersionedRecord]:
        """Every media type registration of one version, current version by default."""
        resolved = parse_timestamp(version) if version is not None else None
        entries = self.resolver.resolve_entries(object_id, resolved)
        if not entries:
            return []
        record = self.store.get(object_id, entries[0].version)
        if record is None:
            return []
        return [record.registered_as(entry) for entry in entries]

    def list_versions(self, object_id: str, media_type: Optional[str] = None) -> List[datetime]:
        """Distinct versions of an object, ascending."""
        entries = filter_entries(self.manifest.entries_for(object_id), media_type)
        return sorted({entry.version for entry in entries})

    def get_manifest(self, object_id: Optional[str] = None,
                     added_after: Optional[Timestamp] = None,
                     media_type: Optional[str] = None) -> List[ManifestEntry]:
        """
        Manifest entries, for one object or the whole collection.

        The collection-wide manifest is ordered by date_added; a single
        object's manifest is ordered by version, then media type.
        """
        after = parse_timestamp(added_after) if added_after is not None else None

        if object_id is not None:
            entries = self.manifest.entries_for(object_id)
            if after is not None:
                entries = [entry for entry in entries if entry.date_added > after]
        else:
            entries = self.manifest.entries_since(after)

        return [entry for entry in entries if matches_media_type(entry, media_type)]

    def _select_entries(self, object_filter: ObjectFilter) -> List[ManifestEntry]:
        timeline = self.manifest.entries_since(None)
        after = object_filter.added_after
        if after is not None:
            after = parse_timestamp(after)

        grouped: Dict[str, List[ManifestEntry]] = OrderedDict()
        for entry in timeline:
            if object_filter.types and _object_type(entry.id) not in object_filter.types:
                continue
            if object_filter.ids and entry.id not in object_filter.ids:
                continue
            grouped.setdefault(entry.id, []).append(entry)

        selected = []
        seen = set()
        for entries in grouped.values():
            visible = filter_entries(entries, object_filter.media_type, object_filter.spec_versions)
            chosen = select(visible, object_filter.versions, object_filter.clock)
            # Earliest registration of a version is the one reported
            for entry in sorted(chosen, key=_timeline_order):
                if after is not None and entry.date_added <= after:
                    continue
                if (entry.id, entry.version) in seen:
                    continue
                seen.add((entry.id, entry.version))
                selected.append(entry)

        selected.sort(key=_timeline_order)
        return selected

    def list_objects(self, object_filter: Optional[ObjectFilter] = None) -> Iterator[VersionedRecord]:
        """
        Lazily yield revisions matching a filter.

        A snapshot of the manifest is taken when iteration starts; bodies are
        fetched one at a time, so abandoning the iterator early is cheap.
        Each (id, version) is yielded once.
        """
        object_filter = object_filter or ObjectFilter()
        yield from self._fetch(self._select_entries(object_filter))

    def _fetch(self, entries: List[ManifestEntry]) -> Iterator[VersionedRecord]:
        for entry in entries:
            record = self.store.get(entry.id, entry.version)
            if record is None:
                logger.error(f"Manifest entry without stored revision: {entry.id} {entry.version}")
                continue
            yield record.registered_as(entry)

    def get_page(self, object_filter: Optional[ObjectFilter] = None,
                 limit: int = 100, next_token: Optional[str] = None) -> Page:
        """
        One page of list_objects.

        The returned ``next`` token holds the timeline position of the last
        object delivered and the next page resumes strictly after it, so
        revisions ingested between calls never shift unseen objects out of
        the listing. No cursor is kept by the service.
        """
        if limit < 1:
            raise ValueError("limit must be a positive integer")
        after = decode_page_token(next_token)
        entries = self._select_entries(object_filter or ObjectFilter())
        if after is not None:
            entries = [entry for entry in entries if _timeline_order(entry) > after]

        items = list(islice(self._fetch(entries), limit + 1))
        more = len(items) > limit
        items = items[:limit]
        return Page(
            objects=tuple(items),
            more=more,
            next=encode_page_token(items[-1].manifest_entry()) if more else None,
        )

    def statistics(self) -> Dict[str, Any]:
        entries = self.manifest.entries_since(None)
        ids = {entry.id for entry in entries}
        return {
            'collection_id': self.collection_id,
            'total_objects': len(ids),
            'total_revisions': self.store.count(),
            'manifest_entries': len(entries),
            'by_type': dict(Counter(_object_type(object_id) for object_id in ids)),
            'by_media_type': dict(Counter(entry.media_type for entry in entries)),
        }
