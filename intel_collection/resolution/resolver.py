"""Version resolution over manifest snapshots."""

from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from intel_collection.models import (
    ANY_MEDIA_TYPE,
    Clock,
    ManifestEntry,
    VersionSelector,
    normalize_media_type,
)


def matches_media_type(entry: ManifestEntry, media_type: Optional[str]) -> bool:
    """Exact media type match; None or '*' matches anything."""
    if media_type is None or media_type == ANY_MEDIA_TYPE:
        return True
    return entry.media_type == normalize_media_type(media_type)


def filter_entries(entries: Iterable[ManifestEntry],
                   media_type: Optional[str] = None,
                   spec_versions: Sequence[str] = ()) -> List[ManifestEntry]:
    """Entries visible under a media type and (optionally) a set of spec versions."""
    return [
        entry for entry in entries
        if matches_media_type(entry, media_type)
        and (not spec_versions or entry.spec_version in spec_versions)
    ]


def _clock_key(clock: Clock):
    if clock is Clock.DATE_ADDED:
        # Later versions win ties on date_added
        return lambda entry: (entry.date_added, entry.version)
    return lambda entry: entry.version


def select(entries: Sequence[ManifestEntry],
           selector: Optional[VersionSelector] = None,
           clock: Clock = Clock.VERSION) -> List[ManifestEntry]:
    """
    Apply match[version] semantics to one object's entries.

    Args:
        entries: Manifest entries for a single id, already filtered
        selector: Which versions to keep; defaults to 'last'
        clock: Ordering used for 'first' and 'last'

    Returns:
        Selected entries ordered by (version, media_type). An entry that
        shares its version with the chosen one under another media type is
        kept as well.
    """
    if not entries:
        return []
    selector = selector or VersionSelector()
    if selector.wants_all:
        return sorted(entries)

    key = _clock_key(clock)
    wanted = set(selector.timestamps)
    if 'first' in selector.keywords:
        wanted.add(min(entries, key=key).version)
    if 'last' in selector.keywords:
        wanted.add(max(entries, key=key).version)

    return sorted(entry for entry in entries if entry.version in wanted)


class VersionResolver:
    """
    Answers "which version satisfies this query" from a manifest.

    The resolver holds no state of its own; each call reads one immutable
    snapshot of an id's entries via ``manifest.entries_for``.
    """

    def __init__(self, manifest):
        self._manifest = manifest

    def _entries(self, object_id: str, media_type: Optional[str]) -> List[ManifestEntry]:
        return filter_entries(self._manifest.entries_for(object_id), media_type)

    def resolve_current(self, object_id: str, media_type: Optional[str] = None) -> Optional[datetime]:
        """Maximum version among entries matching the media type filter."""
        entries = self._entries(object_id, media_type)
        if not entries:
            return None
        return max(entry.version for entry in entries)

    def resolve_as_of(self, object_id: str, timestamp: datetime,
                      media_type: Optional[str] = None) -> Optional[datetime]:
        """
        Version the collection would have served at ``timestamp``.

        Only entries whose date_added is at or before the timestamp are
        visible; among those, the maximum version wins.
        """
        visible = [
            entry for entry in self._entries(object_id, media_type)
            if entry.date_added <= timestamp
        ]
        if not visible:
            return None
        return max(entry.version for entry in visible)

    def resolve_latest(self, object_id: str, clock: Clock = Clock.VERSION,
                       media_type: Optional[str] = None) -> Optional[datetime]:
        """
        Latest version along the chosen clock.

        Clock.VERSION gives the newest revision of the intelligence;
        Clock.DATE_ADDED gives the revision the collection learned about last.
        """
        entries = self._entries(object_id, media_type)
        if not entries:
            return None
        return max(entries, key=_clock_key(clock)).version

    def resolve_entries(self, object_id: str, version: Optional[datetime] = None,
                        media_type: Optional[str] = None) -> List[ManifestEntry]:
        """
        All entries for the resolved version.

        With no media type filter this may return one entry per media type
        the version was registered under; no media type takes precedence.
        """
        entries = self._entries(object_id, media_type)
        if version is None:
            if not entries:
                return []
            version = max(entry.version for entry in entries)
        return [entry for entry in entries if entry.version == version]

    def select(self, object_id: str, selector: Optional[VersionSelector] = None,
               media_type: Optional[str] = None, spec_versions: Sequence[str] = (),
               clock: Clock = Clock.VERSION) -> List[ManifestEntry]:
        entries = filter_entries(self._manifest.entries_for(object_id), media_type, spec_versions)
        return select(entries, selector, clock)
