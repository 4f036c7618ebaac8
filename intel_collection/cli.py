"""Command-line interface for the collection store."""

import click
import json
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
from tabulate import tabulate
from colorama import init, Fore, Style

# Initialize colorama for cross-platform colored output
init(autoreset=True)

from intel_collection.config import get_config
from intel_collection.errors import ConfigurationError, IngestError
from intel_collection.ingestion import TAXIIMirror, load_collection_file, mirror_from_all_servers
from intel_collection.models import (
    Clock,
    ObjectFilter,
    VersionSelector,
    format_timestamp,
    parse_timestamp,
)
from intel_collection.service import open_collection

logger = logging.getLogger(__name__)


def _timestamp(value: Optional[str], param: str) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        raise click.BadParameter(f"'{value}' is not a STIX timestamp (e.g. 2016-11-03T12:30:59.000Z)",
                                 param_hint=param)


def _service(ctx):
    if ctx.obj.get('service') is None:
        try:
            ctx.obj['service'] = open_collection(ctx.obj['config'], ctx.obj.get('collection_id'))
        except ConfigurationError as e:
            raise click.ClickException(str(e))
    return ctx.obj['service']


def _echo_status(status):
    color = Fore.GREEN if not status.failure_count else Fore.YELLOW
    click.echo(f"{color}Ingested {status.success_count}/{status.total_count} object(s), "
               f"{status.failure_count} failure(s){Style.RESET_ALL}")
    if status.failures:
        table_data = [[f.get('id', '')[:60], f.get('message', '')[:80]] for f in status.failures]
        click.echo(tabulate(table_data, headers=['Id', 'Reason'], tablefmt='grid'))


@click.group()
@click.option('--config', type=click.Path(exists=True), help='Path to custom config file')
@click.option('--collection', 'collection_id', help='Collection id or title (default: first configured)')
@click.pass_context
def cli(ctx, config, collection_id):
    """
    Versioned STIX Collection Store CLI

    Ingest STIX objects into an append-only collection and query any
    version of them, or the collection as it stood at an earlier time.
    """
    ctx.ensure_object(dict)
    ctx.obj['config'] = get_config(config)
    ctx.obj['collection_id'] = collection_id

    logging.basicConfig(
        level=ctx.obj['config'].get_log_level(),
        format=ctx.obj['config'].get('logging.format',
                                     '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    )


@cli.command()
@click.pass_context
def collections(ctx):
    """List configured collections."""
    config = ctx.obj['config']
    try:
        descriptors = config.get_collections()
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    if not descriptors:
        click.echo(f"{Fore.YELLOW}No collections configured{Style.RESET_ALL}")
        return

    table_data = [
        [d.id, d.title, d.can_read, d.can_write, '\n'.join(d.media_types)]
        for d in descriptors
    ]
    click.echo(tabulate(table_data, headers=['Id', 'Title', 'Read', 'Write', 'Media Types'],
                        tablefmt='grid'))


@cli.command()
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--media-type', help='Declared media type (default: first accepted by the collection)')
@click.pass_context
def add(ctx, path, media_type):
    """
    Add STIX objects from a JSON file.

    The file may hold a single object, a list of objects, or a bundle.
    """
    service = _service(ctx)
    media_type = media_type or service.descriptor.media_types[0]

    with open(path, 'r', encoding='utf-8') as f:
        payload = json.load(f)

    try:
        status = service.add_objects(payload, media_type)
    except IngestError as e:
        click.echo(f"{Fore.RED}Error: {e}{Style.RESET_ALL}")
        ctx.exit(1)
    _echo_status(status)


@cli.command()
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def load(ctx, path):
    """
    Load a collection file, replaying its manifest.

    Objects keep the date_added recorded in the file's manifest.
    """
    service = _service(ctx)
    click.echo(f"{Fore.YELLOW}Loading {path} into {service.collection_id}...{Style.RESET_ALL}")
    _echo_status(load_collection_file(service, path))


@cli.command()
@click.argument('object_id')
@click.option('--version', 'version', help='Exact version timestamp')
@click.option('--media-type', help='Only revisions registered under this media type')
@click.option('--as-of', help='Resolve the version served at this time')
@click.pass_context
def get(ctx, object_id, version, media_type, as_of):
    """Show one revision of an object (the current one by default)."""
    service = _service(ctx)
    record = service.get_object(
        object_id,
        version=_timestamp(version, '--version'),
        media_type=media_type,
        as_of=_timestamp(as_of, '--as-of'),
    )

    if record is None:
        click.echo(f"{Fore.YELLOW}No matching revision of {object_id}{Style.RESET_ALL}")
        return

    click.echo(json.dumps(record.to_dict(), indent=2, default=str))


@cli.command()
@click.argument('object_id')
@click.option('--media-type', help='Only versions registered under this media type')
@click.pass_context
def versions(ctx, object_id, media_type):
    """List the versions of an object, oldest first."""
    service = _service(ctx)
    found = service.list_versions(object_id, media_type=media_type)

    if not found:
        click.echo(f"{Fore.YELLOW}No versions of {object_id}{Style.RESET_ALL}")
        return

    for version in found:
        click.echo(format_timestamp(version))


@cli.command()
@click.option('--id', 'object_id', help='Only entries for this object')
@click.option('--added-after', help='Only entries added after this time')
@click.option('--media-type', help='Only entries with this media type')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']), default='table',
              help='Output format (default: table)')
@click.pass_context
def manifest(ctx, object_id, added_after, media_type, output_format):
    """Show the collection manifest."""
    service = _service(ctx)
    entries = service.get_manifest(
        object_id=object_id,
        added_after=_timestamp(added_after, '--added-after'),
        media_type=media_type,
    )

    if output_format == 'json':
        click.echo(json.dumps({'objects': [e.to_dict() for e in entries]}, indent=2))
        return

    if not entries:
        click.echo(f"{Fore.YELLOW}Manifest is empty{Style.RESET_ALL}")
        return

    table_data = []
    for entry in entries:
        row = entry.to_dict()
        table_data.append([row['id'], row['version'], row['media_type'], row['date_added']])
    click.echo(tabulate(table_data, headers=['Id', 'Version', 'Media Type', 'Date Added'],
                        tablefmt='grid'))


@cli.command()
@click.option('--type', 'types', multiple=True, help='Filter by STIX type (repeatable)')
@click.option('--id', 'ids', multiple=True, help='Filter by object id (repeatable)')
@click.option('--added-after', help='Only revisions added after this time')
@click.option('--media-type', help='Only revisions registered under this media type')
@click.option('--spec-version', 'spec_versions', multiple=True, help='Filter by spec version (repeatable)')
@click.option('--version', 'versions_', multiple=True,
              help="first, last, all, or a version timestamp (repeatable, default: last)")
@click.option('--clock', type=click.Choice([c.value for c in Clock]), default=Clock.VERSION.value,
              help='Clock ordering first/last (default: by_version)')
@click.option('--limit', type=int, help='Page size (default: paging.default_limit)')
@click.option('--next', 'next_token', help='Token from a previous page')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']), default='table',
              help='Output format (default: table)')
@click.pass_context
def objects(ctx, types, ids, added_after, media_type, spec_versions, versions_, clock,
            limit, next_token, output_format):
    """List objects in the collection, one page at a time."""
    service = _service(ctx)
    limit = limit or ctx.obj['config'].get('paging.default_limit', 100)

    try:
        selector = VersionSelector.parse(list(versions_))
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='--version')

    object_filter = ObjectFilter(
        types=tuple(types),
        ids=tuple(ids),
        added_after=_timestamp(added_after, '--added-after'),
        media_type=media_type,
        spec_versions=tuple(spec_versions),
        versions=selector,
        clock=Clock(clock),
    )

    try:
        page = service.get_page(object_filter, limit=limit, next_token=next_token)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='--next/--limit')

    if output_format == 'json':
        envelope = {'more': page.more, 'objects': [r.body for r in page.objects]}
        if page.next:
            envelope['next'] = page.next
        click.echo(json.dumps(envelope, indent=2, default=str))
        return

    if not page.objects:
        click.echo(f"{Fore.YELLOW}No objects found{Style.RESET_ALL}")
        return

    table_data = []
    for record in page.objects:
        table_data.append([
            record.object_type[:20],
            record.id[:60],
            record.version_text or format_timestamp(record.version),
            record.spec_version,
            format_timestamp(record.date_added),
        ])
    click.echo(tabulate(table_data, headers=['Type', 'Id', 'Version', 'Spec', 'Date Added'],
                        tablefmt='grid'))
    if page.more:
        click.echo(f"\nMore results: --next {page.next}")


@cli.command()
@click.option('--days', default=7, help='Number of days to look back (default: 7)')
@click.option('--server', help='Specific server name to mirror from')
@click.option('--remote-collection', help='Specific remote collection to mirror')
@click.pass_context
def mirror(ctx, days, server, remote_collection):
    """
    Mirror objects from configured TAXII servers into the collection.
    """
    click.echo(f"{Fore.CYAN}=== TAXII Mirror ==={Style.RESET_ALL}\n")

    config = ctx.obj['config']
    servers = config.get_taxii_servers()

    if server:
        servers = [s for s in servers if s['name'] == server]
        if not servers:
            click.echo(f"{Fore.RED}Error: Server '{server}' not found{Style.RESET_ALL}")
            return

    if not servers:
        click.echo(f"{Fore.YELLOW}No TAXII servers configured{Style.RESET_ALL}")
        return

    service = _service(ctx)
    added_after = datetime.now(timezone.utc) - timedelta(days=days)
    click.echo(f"Mirroring from {len(servers)} server(s) into {service.collection_id}...\n")

    if remote_collection:
        status = TAXIIMirror(servers[0]).mirror(service, collection_name=remote_collection,
                                                added_after=added_after)
    else:
        status = mirror_from_all_servers(service, servers, added_after=added_after)
    _echo_status(status)


@cli.command()
@click.pass_context
def stats(ctx):
    """
    Display collection statistics.
    """
    service = _service(ctx)
    stats = service.statistics()

    click.echo(f"{Fore.CYAN}=== Collection Statistics ==={Style.RESET_ALL}\n")
    click.echo(f"Collection: {stats['collection_id']}")
    click.echo(f"Objects: {stats['total_objects']}")
    click.echo(f"Revisions: {stats['total_revisions']}")
    click.echo(f"Manifest entries: {stats['manifest_entries']}\n")

    if stats['by_type']:
        click.echo("Objects by type:")
        for stix_type, count in sorted(stats['by_type'].items(), key=lambda x: x[1], reverse=True):
            click.echo(f"  {stix_type}: {count}")
        click.echo()

    if stats['by_media_type']:
        click.echo("Entries by media type:")
        for media_type, count in sorted(stats['by_media_type'].items(), key=lambda x: x[1], reverse=True):
            click.echo(f"  {media_type}: {count}")


def main():
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == '__main__':
    main()
