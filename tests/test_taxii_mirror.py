"""TAXII mirroring tests with the remote server mocked out."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from intel_collection.ingestion import TAXIIMirror, mirror_from_all_servers

from conftest import INDICATOR_ID, MALWARE_ID, STIX_21, indicator, malware

SERVER_CONFIG = {
    'name': 'test-server',
    'discovery_url': 'https://taxii.example/taxii2/',
    'api_root': 'api1',
    'collections': ['High Value Indicator Collection'],
    'per_request': 50,
}


def remote_collection(title='High Value Indicator Collection', collection_id='remote-1'):
    collection = MagicMock()
    collection.title = title
    collection.id = collection_id
    return collection


@pytest.fixture
def remote():
    return remote_collection()


@pytest.fixture
def taxii_server(remote):
    other_root = MagicMock()
    other_root.url = 'https://taxii.example/other/'
    api_root = MagicMock()
    api_root.url = 'https://taxii.example/api1/'
    api_root.collections = [remote]

    with patch('intel_collection.ingestion.taxii_client.Server') as server_cls:
        server_cls.return_value.api_roots = [other_root, api_root]
        yield server_cls


class TestTAXIIMirror:

    def test_objects_are_ingested_page_by_page(self, service, taxii_server, remote):
        pages = [
            {'more': True, 'objects': [indicator('2016-11-03T12:30:59.000Z')]},
            {'more': False, 'objects': [indicator('2016-12-25T12:30:59.444Z'),
                                        malware('2017-01-27T13:49:53.997Z'),
                                        {'type': 'indicator', 'id': 'indicator--broken'}]},
        ]
        with patch('intel_collection.ingestion.taxii_client.as_pages', return_value=iter(pages)) as as_pages:
            status = TAXIIMirror(SERVER_CONFIG).mirror(service)

        as_pages.assert_called_once_with(remote.get_objects, per_request=50)
        assert status.total_count == 4
        assert status.success_count == 3
        assert status.failures[0]['id'] == 'indicator--broken'
        assert len(service.list_versions(INDICATOR_ID)) == 2
        assert service.get_object(MALWARE_ID, media_type=STIX_21) is not None

    def test_added_after_is_forwarded(self, service, taxii_server, remote):
        added_after = datetime(2017, 1, 1, tzinfo=timezone.utc)
        with patch('intel_collection.ingestion.taxii_client.as_pages', return_value=iter([])) as as_pages:
            TAXIIMirror(SERVER_CONFIG).mirror(service, added_after=added_after)

        as_pages.assert_called_once_with(remote.get_objects, per_request=50,
                                         added_after='2017-01-01T00:00:00.000000Z')

    def test_unknown_remote_collection(self, service, taxii_server):
        with patch('intel_collection.ingestion.taxii_client.as_pages') as as_pages:
            status = TAXIIMirror(SERVER_CONFIG).mirror(service, collection_name='Nope')

        as_pages.assert_not_called()
        assert status.total_count == 0

    def test_connection_errors_are_contained(self, service):
        with patch('intel_collection.ingestion.taxii_client.Server', side_effect=ConnectionError('refused')):
            status = TAXIIMirror(SERVER_CONFIG).mirror(service)

        assert status.total_count == 0
        assert service.get_manifest() == []

    def test_basic_auth_from_environment(self, monkeypatch):
        monkeypatch.setenv('TAXII_USERNAME', 'analyst')
        monkeypatch.setenv('TAXII_PASSWORD', 'secret')

        mirror = TAXIIMirror(dict(SERVER_CONFIG, auth_required=True))

        assert mirror.auth.username == 'analyst'


class TestMirrorFromAllServers:

    def test_disabled_servers_are_skipped(self, service, taxii_server):
        pages = [{'objects': [indicator('2016-11-03T12:30:59.000Z')]}]
        configs = [SERVER_CONFIG, dict(SERVER_CONFIG, name='off', enabled=False)]
        with patch('intel_collection.ingestion.taxii_client.as_pages', return_value=iter(pages)):
            status = mirror_from_all_servers(service, configs)

        assert taxii_server.call_count == 1
        assert status.success_count == 1
