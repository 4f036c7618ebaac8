"""Envelope normalization: derive revision identity from a raw STIX body."""

import copy
import json
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Dict

from stix2.base import _STIXBase

from intel_collection.errors import MalformedEnvelope
from intel_collection.models import (
    VersionedRecord,
    media_type_version,
    normalize_media_type,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

# Fields tried in order as the revision's version source
VERSION_FIELDS = ('modified', 'created')


def body_to_dict(body: Any) -> Dict[str, Any]:
    """
    Coerce an ingested body into a plain dict.

    Accepts mappings and stix2 objects. stix2 objects are Mappings too, so
    they are checked first and serialized to get STIX timestamp strings.
    """
    if isinstance(body, _STIXBase):
        return json.loads(body.serialize())
    if isinstance(body, Mapping):
        return copy.deepcopy(dict(body))
    raise MalformedEnvelope(f"Object body must be a JSON object, got {type(body).__name__}")


def extract_version(body: Dict[str, Any]) -> str:
    """Return the raw timestamp text the revision is versioned by."""
    for name in VERSION_FIELDS:
        value = body.get(name)
        if value:
            return value
    raise MalformedEnvelope(
        f"Object has none of the version fields: {', '.join(VERSION_FIELDS)}",
        body.get('id'),
    )


def build_record(body: Any, media_type: str, date_added: datetime) -> VersionedRecord:
    """
    Build a VersionedRecord from a raw body and declared media type.

    Args:
        body: Raw STIX object (dict or stix2 object)
        media_type: Declared media type, e.g. 'application/stix+json;version=2.1'
        date_added: Time the revision enters the store

    Returns:
        The record to append

    Raises:
        MalformedEnvelope: If the id or version source is missing or unparsable
    """
    obj = body_to_dict(body)

    object_id = obj.get('id')
    if not isinstance(object_id, str) or not object_id.strip():
        raise MalformedEnvelope("Object has no 'id'")

    raw_version = extract_version(obj)
    try:
        version = parse_timestamp(raw_version)
    except (TypeError, ValueError) as e:
        raise MalformedEnvelope(f"Unparsable version timestamp {raw_version!r}: {e}", object_id)

    media_type = normalize_media_type(media_type)
    spec_version = media_type_version(media_type) or obj.get('spec_version', '')

    version_text = raw_version if isinstance(raw_version, str) else ''
    logger.debug(f"Envelope {object_id} version={version.isoformat()} spec_version={spec_version}")

    return VersionedRecord(
        id=object_id,
        version=version,
        spec_version=spec_version,
        media_type=media_type,
        body=obj,
        date_added=date_added,
        version_text=version_text,
    )


def unwrap_objects(payload: Any):
    """
    Yield the objects of a bundle, TAXII envelope, list, or single object.
    """
    if isinstance(payload, Mapping):
        if payload.get('type') == 'bundle' or 'objects' in payload:
            yield from payload.get('objects') or []
            return
        yield payload
        return
    if isinstance(payload, (list, tuple)):
        yield from payload
        return
    yield payload
