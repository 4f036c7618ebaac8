"""Configuration loading tests."""

import pytest
import yaml

from intel_collection.config import Config
from intel_collection.errors import ConfigurationError

from conftest import STIX_20, STIX_21


@pytest.fixture
def custom_config(tmp_path):
    path = tmp_path / 'custom.yaml'
    path.write_text(yaml.safe_dump({
        'database': {'path': str(tmp_path / 'custom.db')},
        'collections': [
            {'id': 'collection-a', 'title': 'Alpha', 'media_types': [STIX_21]},
            {'id': 'collection-b', 'title': 'Beta', 'media_types': [STIX_20, STIX_21]},
        ],
        'taxii_servers': [
            {'name': 'on', 'discovery_url': 'https://on.example/taxii2/'},
            {'name': 'off', 'discovery_url': 'https://off.example/taxii2/', 'enabled': False},
        ],
    }))
    return str(path)


class TestConfig:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv('INTEL_COLLECTION_DB_PATH', raising=False)
        config = Config()

        assert config.get_db_path() == 'data/collections.db'
        assert config.get('paging.default_limit') == 100
        assert config.get('missing.key', 'fallback') == 'fallback'
        assert config.get_taxii_servers() == []

    def test_default_collection_accepts_both_media_types(self):
        descriptor = Config().get_collection()

        assert descriptor.id == '91a7b528-80eb-42ed-a74d-c6fbd5a26116'
        assert descriptor.accepts(STIX_20)
        assert descriptor.accepts(STIX_21)

    def test_custom_file_is_merged(self, custom_config, tmp_path, monkeypatch):
        monkeypatch.delenv('INTEL_COLLECTION_DB_PATH', raising=False)
        config = Config(custom_config)

        assert config.get_db_path() == str(tmp_path / 'custom.db')
        assert config.get('logging.level') == 'INFO'
        assert [d.id for d in config.get_collections()] == ['collection-a', 'collection-b']

    def test_collection_lookup_by_id_or_title(self, custom_config):
        config = Config(custom_config)

        assert config.get_collection('collection-b').title == 'Beta'
        assert config.get_collection('Alpha').id == 'collection-a'
        assert config.get_collection().id == 'collection-a'

    def test_unknown_collection(self, custom_config):
        with pytest.raises(ConfigurationError):
            Config(custom_config).get_collection('nope')

    def test_only_enabled_servers(self, custom_config):
        servers = Config(custom_config).get_taxii_servers()

        assert [s['name'] for s in servers] == ['on']

    def test_environment_overrides(self, custom_config, monkeypatch):
        monkeypatch.setenv('INTEL_COLLECTION_DB_PATH', '/tmp/override.db')
        monkeypatch.setenv('INTEL_COLLECTION_LOG_LEVEL', 'debug')

        config = Config(custom_config)

        assert config.get_db_path() == '/tmp/override.db'
        assert config.get_log_level() == 'DEBUG'
