"""Exceptions raised by the collection store."""

from typing import Optional


class IngestError(Exception):
    """Base class for rejected ingestion. The store is left unchanged."""

    def __init__(self, message: str, object_id: Optional[str] = None):
        super().__init__(message)
        self.object_id = object_id


class MalformedEnvelope(IngestError):
    """The body lacks an id or a parsable version source."""


class Conflict(IngestError):
    """The (id, version) pair is already stored with a different body."""


class UnsupportedMediaType(IngestError):
    """The declared media type is not accepted by the collection."""

    def __init__(self, media_type: str, accepted, object_id: Optional[str] = None):
        super().__init__(
            f"Media type '{media_type}' is not accepted; expected one of: {', '.join(accepted)}",
            object_id,
        )
        self.media_type = media_type


class ConfigurationError(Exception):
    """Invalid or incomplete configuration."""
