"""Resolution package initialization."""

from .resolver import VersionResolver, filter_entries, matches_media_type, select

__all__ = ['VersionResolver', 'filter_entries', 'matches_media_type', 'select']
