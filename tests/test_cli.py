"""Command-line interface tests."""

import json

import pytest
import yaml
from click.testing import CliRunner

from intel_collection.cli import cli

from conftest import INDICATOR_ID, MALWARE_ID, STIX_20, STIX_21, indicator, malware, marking_definition


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    monkeypatch.delenv('INTEL_COLLECTION_DB_PATH', raising=False)
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump({
        'database': {'path': str(tmp_path / 'collections.db')},
        'logging': {'level': 'WARNING'},
        'collections': [{
            'id': 'test-collection',
            'title': 'Test Collection',
            'media_types': [STIX_21, STIX_20],
        }],
        'taxii_servers': [],
    }))
    return str(path)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def invoke(runner, config_path):
    def _invoke(*args):
        return runner.invoke(cli, ['--config', config_path] + list(args), obj={})
    return _invoke


def write_json(tmp_path, name, data):
    path = tmp_path / name
    path.write_text(json.dumps(data))
    return str(path)


@pytest.fixture
def populated(invoke, tmp_path):
    bundle = {
        'type': 'bundle',
        'id': 'bundle--5d0092c5-5f74-4287-9642-33f4c354e56d',
        'objects': [indicator('2016-11-03T12:30:59.000Z'), malware('2017-01-27T13:49:53.997Z')],
    }
    result = invoke('add', write_json(tmp_path, 'bundle.json', bundle))
    assert result.exit_code == 0, result.output

    result = invoke('add', write_json(tmp_path, 'update.json', indicator('2016-12-25T12:30:59.444Z')))
    assert result.exit_code == 0, result.output
    return invoke


class TestAdd:

    def test_reports_counts(self, invoke, tmp_path):
        result = invoke('add', write_json(tmp_path, 'one.json', [indicator('2016-11-03T12:30:59.000Z'),
                                                                  {'type': 'indicator'}]))

        assert result.exit_code == 0
        assert 'Ingested 1/2 object(s), 1 failure(s)' in result.output

    def test_rejected_media_type(self, invoke, tmp_path):
        path = write_json(tmp_path, 'one.json', indicator('2016-11-03T12:30:59.000Z'))

        result = invoke('add', path, '--media-type', 'application/taxii+json;version=2.1')

        assert result.exit_code == 1
        assert 'not accepted' in result.output

    def test_unknown_collection(self, runner, config_path, tmp_path):
        path = write_json(tmp_path, 'one.json', indicator('2016-11-03T12:30:59.000Z'))

        result = runner.invoke(cli, ['--config', config_path, '--collection', 'nope', 'add', path], obj={})

        assert result.exit_code != 0
        assert "Collection 'nope' not configured" in result.output


class TestQueries:

    def test_get_current(self, populated):
        result = populated('get', INDICATOR_ID)

        assert result.exit_code == 0
        record = json.loads(result.output)
        assert record['object']['modified'] == '2016-12-25T12:30:59.444Z'
        assert record['spec_version'] == '2.1'

    def test_get_exact_version(self, populated):
        result = populated('get', INDICATOR_ID, '--version', '2016-11-03T12:30:59.000Z')

        assert json.loads(result.output)['object']['modified'] == '2016-11-03T12:30:59.000Z'

    def test_get_missing(self, populated):
        result = populated('get', 'indicator--unknown')

        assert 'No matching revision of indicator--unknown' in result.output

    def test_get_bad_timestamp(self, populated):
        result = populated('get', INDICATOR_ID, '--as-of', 'yesterday')

        assert result.exit_code == 2

    def test_versions(self, populated):
        result = populated('versions', INDICATOR_ID)

        assert result.output.split() == ['2016-11-03T12:30:59.000000Z', '2016-12-25T12:30:59.444000Z']

    def test_manifest_json(self, populated):
        result = populated('manifest', '--id', INDICATOR_ID, '--format', 'json')

        rows = json.loads(result.output)['objects']
        assert [row['version'] for row in rows] == ['2016-11-03T12:30:59.000Z', '2016-12-25T12:30:59.444Z']
        assert {row['media_type'] for row in rows} == {STIX_21}

    def test_objects_json_paging(self, populated):
        first = json.loads(populated('objects', '--limit', '1', '--format', 'json').output)

        assert first['more'] is True
        second = json.loads(populated('objects', '--limit', '1', '--next', first['next'], '--format', 'json').output)
        assert second['more'] is False
        ids = {first['objects'][0]['id'], second['objects'][0]['id']}
        assert ids == {INDICATOR_ID, MALWARE_ID}

    def test_objects_all_versions_by_type(self, populated):
        result = populated('objects', '--type', 'indicator', '--version', 'all', '--format', 'json')

        assert len(json.loads(result.output)['objects']) == 2

    def test_objects_bad_token(self, populated):
        result = populated('objects', '--next', 'not-a-token')

        assert result.exit_code == 2

    def test_objects_table_when_empty(self, invoke):
        result = invoke('objects')

        assert 'No objects found' in result.output

    def test_stats(self, populated):
        result = populated('stats')

        assert 'Objects: 2' in result.output
        assert 'Revisions: 3' in result.output
        assert 'indicator: 1' in result.output


class TestCollectionsAndLoad:

    def test_collections_table(self, invoke):
        result = invoke('collections')

        assert result.exit_code == 0
        assert 'Test Collection' in result.output

    def test_load_collection_file(self, invoke, tmp_path):
        data = {
            'objects': [indicator('2016-11-03T12:30:59.000Z'), marking_definition()],
            'manifest': [{'id': INDICATOR_ID, 'version': '2016-11-03T12:30:59.000Z',
                          'media_type': STIX_21, 'date_added': '2016-11-03T12:30:59.000Z'}],
        }

        result = invoke('load', write_json(tmp_path, 'collection.json', data))
        assert 'Ingested 2/2 object(s), 0 failure(s)' in result.output

        manifest = json.loads(invoke('manifest', '--id', INDICATOR_ID, '--format', 'json').output)
        assert manifest['objects'][0]['date_added'] == '2016-11-03T12:30:59.000000Z'

    def test_mirror_without_servers(self, invoke):
        result = invoke('mirror')

        assert 'No TAXII servers configured' in result.output
