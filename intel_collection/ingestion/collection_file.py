"""Load collection files: a descriptor, object bodies and their archived manifest."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from intel_collection.errors import IngestError, MalformedEnvelope
from intel_collection.models import (
    CollectionDescriptor,
    IngestStatus,
    parse_timestamp,
    stix_media_type,
)
from intel_collection.normalization.envelope import body_to_dict, extract_version

logger = logging.getLogger(__name__)


@dataclass
class CollectionFile:
    """Parsed contents of a collection file."""

    descriptor: Optional[CollectionDescriptor] = None
    objects: List[Dict[str, Any]] = field(default_factory=list)
    manifest: List[Dict[str, Any]] = field(default_factory=list)


def read_collection_file(source: Union[str, Path, Dict[str, Any]]) -> CollectionFile:
    """
    Read a collection file.

    The file is a JSON object with optional ``config`` (collection
    descriptor), ``objects`` (STIX bodies, ``object`` is accepted too) and
    ``manifest`` (rows of id, version, media_type, date_added).
    """
    if isinstance(source, dict):
        data = source
    else:
        with open(source, 'r', encoding='utf-8') as f:
            data = json.load(f)

    descriptor = None
    if data.get('config'):
        descriptor = CollectionDescriptor.from_dict(data['config'])

    objects = data.get('objects', data.get('object')) or []
    return CollectionFile(descriptor=descriptor, objects=list(objects), manifest=list(data.get('manifest') or []))


def _object_key(body: Dict[str, Any]) -> Tuple[str, Any]:
    return body.get('id'), parse_timestamp(extract_version(body))


def load_collection_file(service, source: Union[str, Path, Dict[str, Any], CollectionFile]) -> IngestStatus:
    """
    Replay a collection file into a collection service.

    Manifest rows are replayed in date_added order with their archived
    date_added. Objects no manifest row refers to are ingested afterwards
    under the media type matching their spec_version. Manifest rows without
    a matching object are skipped.

    Args:
        service: CollectionService to load into
        source: Path, parsed JSON, or CollectionFile

    Returns:
        IngestStatus counting one item per manifest row and unreferenced object
    """
    collection = source if isinstance(source, CollectionFile) else read_collection_file(source)
    status = IngestStatus()

    bodies: Dict[Tuple[str, Any], Dict[str, Any]] = {}
    for obj in collection.objects:
        try:
            body = body_to_dict(obj)
            bodies[_object_key(body)] = body
        except (MalformedEnvelope, ValueError, TypeError) as e:
            status.total_count += 1
            object_id = obj.get('id', '') if isinstance(obj, dict) else ''
            status.failures.append({'id': object_id, 'message': f"Unreadable object: {e}"})

    rows = []
    for row in collection.manifest:
        try:
            rows.append((parse_timestamp(row['date_added']), row['id'], parse_timestamp(row['version']), row))
        except (KeyError, ValueError, TypeError) as e:
            status.total_count += 1
            status.failures.append({'id': row.get('id', ''), 'message': f"Unreadable manifest row: {e}"})
    rows.sort(key=lambda item: item[:3])

    used = set()
    for date_added, object_id, version, row in rows:
        status.total_count += 1
        body = bodies.get((object_id, version))
        if body is None:
            logger.warning(f"Manifest row {object_id} {row['version']} has no object; skipping")
            status.failures.append({'id': object_id, 'message': 'No object for manifest row'})
            continue
        used.add((object_id, version))
        _replay(service, status, body, row.get('media_type') or stix_media_type('2.1'), date_added)

    for key, body in bodies.items():
        if key in used:
            continue
        status.total_count += 1
        media_type = stix_media_type(body.get('spec_version', '2.1'))
        _replay(service, status, body, media_type, None)

    logger.info(
        f"Loaded collection file into {service.collection_id}: "
        f"{status.success_count} succeeded, {status.failure_count} failed"
    )
    return status


def _replay(service, status: IngestStatus, body, media_type, date_added):
    try:
        result = service.add_object(body, media_type, date_added=date_added)
        status.successes.append({
            'id': result.entry.id,
            'version': result.entry.to_dict()['version'],
            'message': result.outcome.value,
        })
    except IngestError as e:
        logger.warning(f"Rejected {body.get('id')}: {e}")
        status.failures.append({'id': body.get('id', ''), 'message': str(e)})
