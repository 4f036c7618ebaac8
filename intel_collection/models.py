"""Data model for the versioned collection store."""

import copy
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from stix2.utils import parse_into_datetime

TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%S.%fZ'

MEDIA_TYPE_STIX_ANY = 'application/stix+json'
MEDIA_TYPE_PATTERN = re.compile(r'^application/stix\+json(;version=(\d\.\d))?$')

ANY_MEDIA_TYPE = '*'


def utc_now() -> datetime:
    """Current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a STIX timestamp into an aware UTC datetime.

    Args:
        value: Timestamp string (e.g. '2016-11-03T12:30:59.000Z') or datetime

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        ValueError: If the value is not a recognizable timestamp
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if not isinstance(value, str) or not value:
        raise ValueError(f"not a timestamp: {value!r}")
    parsed = parse_into_datetime(value)
    # stix2 hands back its own datetime subclass; keep plain datetimes
    return datetime(
        parsed.year, parsed.month, parsed.day,
        parsed.hour, parsed.minute, parsed.second, parsed.microsecond,
        tzinfo=timezone.utc,
    )


def format_timestamp(value: datetime) -> str:
    """Format a datetime as a STIX timestamp with microseconds."""
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def normalize_media_type(media_type: str) -> str:
    """Strip whitespace so 'a; version=2.1' and 'a;version=2.1' compare equal."""
    return ''.join(media_type.split()).lower()


def media_type_version(media_type: str) -> Optional[str]:
    """
    Extract the version parameter of a STIX media type.

    Returns:
        The 'X.Y' version string, or None if the media type carries none
        or is not a STIX media type.
    """
    match = MEDIA_TYPE_PATTERN.match(normalize_media_type(media_type))
    if not match:
        return None
    return match.group(2)


def stix_media_type(spec_version: str) -> str:
    return f"{MEDIA_TYPE_STIX_ANY};version={spec_version}"


class Clock(Enum):
    """Which timestamp orders revisions."""

    VERSION = 'by_version'
    DATE_ADDED = 'by_date_added'


@dataclass(frozen=True, order=True)
class ManifestEntry:
    """One queryable manifest row: (id, version, media_type, date_added)."""

    id: str
    version: datetime
    media_type: str
    date_added: datetime = field(compare=False)
    version_text: str = field(default='', compare=False)

    @property
    def key(self) -> Tuple[str, datetime, str]:
        return (self.id, self.version, self.media_type)

    @property
    def spec_version(self) -> Optional[str]:
        return media_type_version(self.media_type)

    def to_dict(self) -> Dict[str, str]:
        return {
            'id': self.id,
            'version': self.version_text or format_timestamp(self.version),
            'media_type': self.media_type,
            'date_added': format_timestamp(self.date_added),
        }


@dataclass(frozen=True)
class VersionedRecord:
    """
    One immutable revision of a STIX object.

    The (id, version) pair identifies the revision. media_type, spec_version
    and date_added describe the registration the record was served under.
    """

    id: str
    version: datetime
    spec_version: str
    media_type: str
    body: Dict[str, Any] = field(compare=False)
    date_added: datetime = field(compare=False)
    version_text: str = field(default='', compare=False)

    @property
    def object_type(self) -> str:
        body_type = self.body.get('type')
        if body_type:
            return body_type
        return self.id.split('--', 1)[0]

    def manifest_entry(self) -> ManifestEntry:
        return ManifestEntry(
            id=self.id,
            version=self.version,
            media_type=self.media_type,
            date_added=self.date_added,
            version_text=self.version_text,
        )

    def registered_as(self, entry: ManifestEntry) -> 'VersionedRecord':
        """Copy of this record tagged with another registration's metadata."""
        return replace(
            self,
            media_type=entry.media_type,
            spec_version=entry.spec_version or self.spec_version,
            date_added=entry.date_added,
            body=copy.deepcopy(self.body),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Export format: stored body plus the spec_version it was ingested under."""
        return {
            'spec_version': self.spec_version,
            'media_type': self.media_type,
            'date_added': format_timestamp(self.date_added),
            'object': copy.deepcopy(self.body),
        }


@dataclass(frozen=True)
class CollectionDescriptor:
    """Static description of a collection, loaded from configuration."""

    id: str
    title: str
    description: str = ''
    can_read: bool = True
    can_write: bool = True
    media_types: Tuple[str, ...] = (stix_media_type('2.1'),)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CollectionDescriptor':
        media_types = data.get('media_types') or [stix_media_type('2.1')]
        return cls(
            id=data['id'],
            title=data.get('title', data['id']),
            description=data.get('description', ''),
            can_read=bool(data.get('can_read', True)),
            can_write=bool(data.get('can_write', True)),
            media_types=tuple(normalize_media_type(m) for m in media_types),
        )

    def accepts(self, media_type: str) -> bool:
        return normalize_media_type(media_type) in self.media_types

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'can_read': self.can_read,
            'can_write': self.can_write,
            'media_types': list(self.media_types),
        }


@dataclass(frozen=True)
class VersionSelector:
    """
    TAXII match[version] semantics.

    Keywords 'first', 'last' and 'all' select by position along the chosen
    clock; any other value is an explicit version timestamp.
    """

    keywords: Tuple[str, ...] = ('last',)
    timestamps: Tuple[datetime, ...] = ()

    KEYWORDS = ('first', 'last', 'all')

    @classmethod
    def parse(cls, values: Optional[List[str]]) -> 'VersionSelector':
        if not values:
            return cls()
        keywords = []
        timestamps = []
        for value in values:
            for part in str(value).split(','):
                part = part.strip()
                if not part:
                    continue
                if part in cls.KEYWORDS:
                    keywords.append(part)
                else:
                    timestamps.append(parse_timestamp(part))
        return cls(keywords=tuple(keywords), timestamps=tuple(timestamps))

    @property
    def wants_all(self) -> bool:
        return 'all' in self.keywords


@dataclass(frozen=True)
class ObjectFilter:
    """Filter for list_objects and paging."""

    types: Tuple[str, ...] = ()
    ids: Tuple[str, ...] = ()
    added_after: Optional[datetime] = None
    media_type: Optional[str] = None
    spec_versions: Tuple[str, ...] = ()
    versions: VersionSelector = field(default_factory=VersionSelector)
    clock: Clock = Clock.VERSION


class IngestOutcome(Enum):
    ADDED = 'added'
    REGISTERED = 'registered'
    UNCHANGED = 'unchanged'


@dataclass(frozen=True)
class IngestResult:
    outcome: IngestOutcome
    entry: ManifestEntry

    @property
    def changed(self) -> bool:
        return self.outcome is not IngestOutcome.UNCHANGED


@dataclass
class IngestStatus:
    """Summary of a multi-object ingestion, shaped like a TAXII status resource."""

    total_count: int = 0
    successes: List[Dict[str, str]] = field(default_factory=list)
    failures: List[Dict[str, str]] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.successes)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def status(self) -> str:
        return 'complete'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'total_count': self.total_count,
            'success_count': self.success_count,
            'successes': list(self.successes),
            'failure_count': self.failure_count,
            'failures': list(self.failures),
            'pending_count': 0,
        }


@dataclass(frozen=True)
class Page:
    objects: Tuple[VersionedRecord, ...]
    more: bool
    next: Optional[str] = None
