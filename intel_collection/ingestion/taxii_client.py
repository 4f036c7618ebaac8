"""Mirror remote TAXII 2.1 collections into a local collection."""

import os
from typing import List, Dict, Any, Optional
from datetime import datetime
import logging

from requests.auth import HTTPBasicAuth
from taxii2client.v21 import Server, as_pages

from intel_collection.errors import IngestError
from intel_collection.models import IngestStatus, format_timestamp, stix_media_type

logger = logging.getLogger(__name__)

MIRROR_MEDIA_TYPE = stix_media_type('2.1')


class TAXIIMirror:
    """Pulls objects from a TAXII 2.1 server into a CollectionService."""

    def __init__(self, server_config: Dict[str, Any]):
        """
        Initialize TAXII client.

        Args:
            server_config: Server configuration dictionary
        """
        self.server_config = server_config
        self.server_name = server_config.get('name', 'unknown')
        self.per_request = int(server_config.get('per_request', 100))

        # Setup authentication if required
        self.auth = None
        if server_config.get('auth_required'):
            username = os.getenv('TAXII_USERNAME')
            password = os.getenv('TAXII_PASSWORD')
            if username and password:
                self.auth = HTTPBasicAuth(username, password)

    def _connect(self) -> Server:
        discovery_url = self.server_config.get('discovery_url')
        logger.info(f"Connecting to TAXII server: {self.server_name} at {discovery_url}")
        return Server(discovery_url, auth=self.auth)

    def _find_api_root(self, server: Server):
        api_roots = server.api_roots
        if not api_roots:
            logger.warning(f"No API roots found for {self.server_name}")
            return None

        api_root_path = self.server_config.get('api_root', '')
        for root in api_roots:
            if api_root_path and api_root_path in root.url:
                return root
        return api_roots[0]

    def mirror(self, service,
               collection_name: Optional[str] = None,
               added_after: Optional[datetime] = None) -> IngestStatus:
        """
        Copy remote objects into ``service``.

        Args:
            service: Local CollectionService receiving the objects
            collection_name: Remote collection title or id; all configured
                collections if None
            added_after: Only pull objects the server added after this time

        Returns:
            Combined ingestion status. Connection and paging errors are
            logged and end the pull of the affected collection.
        """
        status = IngestStatus()

        try:
            server = self._connect()
            api_root = self._find_api_root(server)
            if api_root is None:
                return status
            logger.info(f"Using API root: {api_root.url}")

            names = [collection_name] if collection_name else self.server_config.get('collections', [])
            for name in names:
                remote = next(
                    (c for c in api_root.collections if name in (c.title, c.id)),
                    None,
                )
                if remote is None:
                    logger.warning(f"Collection '{name}' not found on {self.server_name}")
                    continue
                self._mirror_collection(service, remote, added_after, status)

        except Exception as e:
            logger.error(f"Error connecting to TAXII server {self.server_name}: {e}")

        logger.info(
            f"Mirrored {status.success_count}/{status.total_count} objects from {self.server_name}"
        )
        return status

    def _mirror_collection(self, service, remote, added_after, status: IngestStatus):
        logger.info(f"Fetching from collection: {remote.title}")

        filter_params = {}
        if added_after:
            filter_params['added_after'] = format_timestamp(added_after)

        try:
            for envelope in as_pages(remote.get_objects, per_request=self.per_request, **filter_params):
                for obj in envelope.get('objects', []):
                    status.total_count += 1
                    try:
                        result = service.add_object(obj, MIRROR_MEDIA_TYPE)
                        status.successes.append({
                            'id': result.entry.id,
                            'version': result.entry.to_dict()['version'],
                            'message': result.outcome.value,
                        })
                    except IngestError as e:
                        logger.warning(f"Rejected {obj.get('id')} from {remote.title}: {e}")
                        status.failures.append({'id': obj.get('id', ''), 'message': str(e)})
        except Exception as e:
            logger.error(f"Error fetching objects from collection {remote.title}: {e}")


def mirror_from_all_servers(service, server_configs: List[Dict[str, Any]],
                            added_after: Optional[datetime] = None) -> IngestStatus:
    """
    Mirror every enabled TAXII server into one collection.

    Args:
        service: Local CollectionService
        server_configs: List of server configuration dictionaries
        added_after: Only pull objects added after this date

    Returns:
        Combined status across all servers
    """
    combined = IngestStatus()

    for server_config in server_configs:
        if not server_config.get('enabled', True):
            continue

        status = TAXIIMirror(server_config).mirror(service, added_after=added_after)
        combined.total_count += status.total_count
        combined.successes.extend(status.successes)
        combined.failures.extend(status.failures)

    return combined
