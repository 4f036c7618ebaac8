"""Shared fixtures: sample STIX objects, a controllable clock, collections."""

import copy
from datetime import datetime, timedelta, timezone

import pytest

from intel_collection.models import CollectionDescriptor
from intel_collection.service import CollectionService
from intel_collection.storage import MemoryObjectStore, SQLiteObjectStore

STIX_20 = 'application/stix+json;version=2.0'
STIX_21 = 'application/stix+json;version=2.1'

INDICATOR_ID = 'indicator--6770298f-0fd8-471a-ab8c-1c658a46574e'
MALWARE_ID = 'malware--c0931cc6-c75e-47e5-9036-78fabc95d4ec'
RELATIONSHIP_ID = 'relationship--2f9a9aa9-108a-4333-83e2-4fb25add0463'
MARKING_ID = 'marking-definition--34098fce-860f-48ae-8e50-ebd3cc5e41da'


def utc(text):
    return datetime.strptime(text, '%Y-%m-%dT%H:%M:%SZ').replace(tzinfo=timezone.utc)


def indicator(modified, description='Accessing this url will infect your machine with malware.'):
    return {
        'type': 'indicator',
        'spec_version': '2.1',
        'id': INDICATOR_ID,
        'created': '2016-11-03T12:30:59.000Z',
        'modified': modified,
        'name': 'Malicious site hosting downloader',
        'description': description,
        'pattern': "[url:value = 'http://x4z9arb.cn/4712']",
        'pattern_type': 'stix',
        'valid_from': '2017-01-27T13:49:53.935382Z',
    }


def malware(modified, name='Poison Ivy'):
    return {
        'type': 'malware',
        'spec_version': '2.1',
        'id': MALWARE_ID,
        'created': '2017-01-27T13:49:53.997Z',
        'modified': modified,
        'name': name,
        'description': 'Poison Ivy',
        'is_family': True,
    }


def relationship():
    return {
        'type': 'relationship',
        'spec_version': '2.1',
        'id': RELATIONSHIP_ID,
        'created': '2014-05-08T09:00:00.000Z',
        'modified': '2014-05-08T09:00:00.000Z',
        'relationship_type': 'indicates',
        'source_ref': INDICATOR_ID,
        'target_ref': MALWARE_ID,
    }


def marking_definition():
    return {
        'type': 'marking-definition',
        'spec_version': '2.1',
        'id': MARKING_ID,
        'created': '2017-01-20T00:00:00.000Z',
        'definition_type': 'tlp',
        'name': 'TLP:AMBER',
        'definition': {'tlp': 'amber'},
    }


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start='2017-01-01T00:00:00Z'):
        self.now = utc(start)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, text):
        self.now = utc(text)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def descriptor():
    return CollectionDescriptor(
        id='91a7b528-80eb-42ed-a74d-c6fbd5a26116',
        title='High Value Indicator Collection',
        description='This data collection is for collecting high value IOCs',
        media_types=(STIX_20, STIX_21),
    )


@pytest.fixture
def service(descriptor, clock):
    return CollectionService(descriptor, store=MemoryObjectStore(), clock=clock)


@pytest.fixture(params=['memory', 'sqlite'])
def store(request, tmp_path):
    if request.param == 'memory':
        return MemoryObjectStore()
    return SQLiteObjectStore(str(tmp_path / 'store.db'), 'test-collection')


@pytest.fixture
def sample_objects():
    return copy.deepcopy([
        indicator('2016-11-03T12:30:59.000Z'),
        malware('2017-01-27T13:49:53.997Z'),
        relationship(),
        marking_definition(),
    ])
