#!/usr/bin/env python3
"""
Demo script to showcase the versioned collection store.
Objects are added, revised and queried against an in-memory collection
with a fixed clock so the output is repeatable.
"""

import sys
import json
from datetime import datetime, timezone
from pathlib import Path

# Add the package to path
sys.path.insert(0, str(Path(__file__).parent))

from intel_collection.config import get_config
from intel_collection.errors import IngestError
from intel_collection.models import ObjectFilter, VersionSelector, parse_timestamp
from intel_collection.service import CollectionService
from intel_collection.storage import MemoryObjectStore

STIX_20 = 'application/stix+json;version=2.0'
STIX_21 = 'application/stix+json;version=2.1'

INDICATOR = {
    'type': 'indicator',
    'spec_version': '2.1',
    'id': 'indicator--6770298f-0fd8-471a-ab8c-1c658a46574e',
    'created': '2016-11-03T12:30:59.000Z',
    'modified': '2016-11-03T12:30:59.000Z',
    'name': 'Malicious site hosting downloader',
    'pattern': "[url:value = 'http://x4z9arb.cn/4712']",
    'pattern_type': 'stix',
    'valid_from': '2016-11-03T12:30:59.000Z',
}

MALWARE = {
    'type': 'malware',
    'spec_version': '2.1',
    'id': 'malware--c0931cc6-c75e-47e5-9036-78fabc95d4ec',
    'created': '2017-01-27T13:49:53.997Z',
    'modified': '2017-01-27T13:49:53.997Z',
    'name': 'Poison Ivy',
    'is_family': True,
}


class DemoClock:
    """Clock that returns whatever time the demo sets."""

    def __init__(self):
        self.now = datetime(2017, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


def main():
    print("=" * 70)
    print("VERSIONED STIX COLLECTION DEMO")
    print("=" * 70)
    print()

    descriptor = get_config().get_collection()
    clock = DemoClock()
    service = CollectionService(descriptor, store=MemoryObjectStore(), clock=clock)

    print(f"📁 Collection: {descriptor.title} ({descriptor.id})")
    print(f"📄 Media types: {', '.join(descriptor.media_types)}")
    print()

    # Step 1: Revisions
    print("🔧 Step 1: ADDING revisions of one indicator...")
    print("-" * 70)
    service.add_object(INDICATOR, STIX_21)
    clock.now = datetime(2017, 2, 1, tzinfo=timezone.utc)
    revised = dict(INDICATOR, modified='2016-12-25T12:30:59.444Z', name='Malicious site (revised)')
    service.add_object(revised, STIX_21)

    for version in service.list_versions(INDICATOR['id']):
        print(f"  • version {version.isoformat()}")
    print(f"✓ Current: {service.get_object(INDICATOR['id']).body['name']}")
    print()

    # Step 2: Time travel
    print("⏪ Step 2: AS-OF queries")
    print("-" * 70)
    for as_of in ('2016-12-31T00:00:00Z', '2017-01-15T00:00:00Z', '2017-03-01T00:00:00Z'):
        record = service.get_object(INDICATOR['id'], as_of=parse_timestamp(as_of))
        print(f"  {as_of}: {record.version_text if record else 'not yet added'}")
    print()

    # Step 3: Conflicts
    print("⚠ Step 3: CONFLICTING body for a stored version")
    print("-" * 70)
    try:
        service.add_object(dict(INDICATOR, name='Tampered'), STIX_21)
    except IngestError as e:
        print(f"  Rejected: {e}")
    print()

    # Step 4: Media types
    print("📄 Step 4: ONE revision under two media types")
    print("-" * 70)
    service.add_object(MALWARE, STIX_21)
    service.add_object(MALWARE, STIX_20)
    for record in service.get_registrations(MALWARE['id']):
        print(f"  • {record.media_type} (spec_version {record.spec_version})")
    print()

    # Step 5: Listing
    print("🔍 Step 5: LISTING every version")
    print("-" * 70)
    page = service.get_page(ObjectFilter(versions=VersionSelector.parse(['all'])), limit=10)
    for record in page.objects:
        print(f"  • {record.id} @ {record.version_text}")
    print()

    print("📊 Statistics")
    print("-" * 70)
    print(json.dumps(service.statistics(), indent=2))
    print()

    print("=" * 70)
    print("✅ DEMO COMPLETE!")
    print("=" * 70)
    print()
    print("Try these CLI commands:")
    print("  intel-collection add bundle.json")
    print("  intel-collection get indicator--6770298f-0fd8-471a-ab8c-1c658a46574e --as-of 2017-01-15T00:00:00Z")
    print("  intel-collection objects --version all")
    print("  intel-collection manifest --format json")
    print()


if __name__ == '__main__':
    main()
