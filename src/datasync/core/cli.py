"""Command line interface for datasync."""

import sys
import json
from typing import Dict, Any, Optional, Tuple

import click

from .config import setup_logging, load_environment, get_int_env
from ..connectors import CONNECTOR_REGISTRY
from ..engine import SyncEngine, JsonFileBaselineStore
from ..exceptions import DataSyncException
from ..models import (
    SyncConfig, SyncResult, EndpointConfig, RetryPolicy,
    SyncDirection, SyncMode, ConflictPolicy
)
from ..version import __version__


def _endpoint_options(connector: str, tables: Optional[str]) -> Dict[str, Any]:
    if connector == "sqlite" and tables:
        return {"tables": [t.strip() for t in tables.split(",") if t.strip()]}
    return {}


def config_options(func):
    """Options shared by commands that build a SyncConfig."""
    options = [
        click.argument('source'),
        click.argument('destination'),
        click.option('--source-type', type=click.Choice(sorted(CONNECTOR_REGISTRY)), default='filesystem',
                     show_default=True, help='Connector type for SOURCE'),
        click.option('--destination-type', type=click.Choice(sorted(CONNECTOR_REGISTRY)), default='filesystem',
                     show_default=True, help='Connector type for DESTINATION'),
        click.option('--tables', help='Comma-separated tables to sync (sqlite endpoints)'),
        click.option('--include', multiple=True, help='Only sync keys matching this glob (repeatable)'),
        click.option('--exclude', multiple=True, help='Skip keys matching this glob (repeatable)'),
        click.option('--direction', type=click.Choice([d.value for d in SyncDirection]),
                     default=SyncDirection.SOURCE_TO_DESTINATION.value, show_default=True),
        click.option('--mode', type=click.Choice([m.value for m in SyncMode]),
                     default=SyncMode.MIRROR.value, show_default=True,
                     help='mirror deletes extra keys; insert_update never deletes'),
        click.option('--conflict-policy', type=click.Choice([p.value for p in ConflictPolicy]),
                     default=ConflictPolicy.MANUAL.value, show_default=True),
        click.option('--concurrency', type=int, default=None,
                     help='Transfers in flight (default: DATASYNC_CONCURRENCY or 4)'),
        click.option('--max-retries', type=int, default=None,
                     help='Attempts per item on transient errors (default: DATASYNC_MAX_RETRIES or 3)'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build_config(source: str, destination: str, source_type: str, destination_type: str,
                  tables: Optional[str], include: Tuple[str, ...], exclude: Tuple[str, ...],
                  direction: str, mode: str, conflict_policy: str, concurrency: Optional[int],
                  max_retries: Optional[int], **flags) -> SyncConfig:
    """Build a SyncConfig from CLI options, falling back to environment defaults."""
    if concurrency is None:
        concurrency = get_int_env("DATASYNC_CONCURRENCY", 4)
    if max_retries is None:
        max_retries = get_int_env("DATASYNC_MAX_RETRIES", 3)

    return SyncConfig(
        source=EndpointConfig(connector=source_type, locator=source,
                              options=_endpoint_options(source_type, tables)),
        destination=EndpointConfig(connector=destination_type, locator=destination,
                                   options=_endpoint_options(destination_type, tables)),
        include=include,
        exclude=exclude,
        direction=SyncDirection(direction),
        mode=SyncMode(mode),
        conflict_policy=ConflictPolicy(conflict_policy),
        concurrency_limit=concurrency,
        retry=RetryPolicy(max_attempts=max_retries),
        **flags
    )


@click.group()
@click.version_option(__version__, prog_name='datasync')
@click.option('--log-level', default='WARNING', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
              envvar='DATASYNC_LOG_LEVEL', help='Set the logging level')
@click.option('--env-file', type=click.Path(exists=True), help='Path to .env file')
def cli(log_level: str, env_file: Optional[str]) -> None:
    """Synchronize a source data set into a destination."""
    setup_logging(log_level)
    load_environment(env_file)


@cli.command()
@config_options
@click.option('--dry-run', is_flag=True, help='Show what would be synced without making changes')
@click.option('--abort-on-error', is_flag=True, help='Stop starting new transfers after the first failure')
@click.option('--no-verify', is_flag=True, help='Skip the post-write fingerprint check')
@click.option('--baseline', type=click.Path(dir_okay=False),
              help='JSON file of last synced fingerprints, enables conflict detection')
@click.option('--output', type=click.Choice(['table', 'json']), default='table',
              help='Output format')
@click.option('--show-log', is_flag=True, help='Print the run log after the summary')
def run(dry_run: bool, abort_on_error: bool, no_verify: bool, baseline: Optional[str],
        output: str, show_log: bool, **options) -> None:
    """Sync SOURCE into DESTINATION."""
    try:
        config = _build_config(dry_run=dry_run, abort_on_error=abort_on_error,
                               verify_writes=not no_verify, **options)
        baseline_store = JsonFileBaselineStore(baseline) if baseline else None
        result = SyncEngine(baseline_store=baseline_store).run_sync(config)

        if output == 'json':
            click.echo(result.model_dump_json(indent=2))
        else:
            _display_result(result, show_log)

        if not result.success:
            sys.exit(1)

    except DataSyncException as e:
        click.echo(f"Sync Error: {e}", err=True)
        sys.exit(1)
    except ValueError as e:
        click.echo(f"Configuration Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@config_options
def validate(**options) -> None:
    """Check a sync configuration without running it."""
    try:
        config = _build_config(**options)
    except ValueError as e:
        click.echo(f"Configuration Error: {e}", err=True)
        sys.exit(1)

    validation = SyncEngine().validate_config(config)
    for warning in validation["warnings"]:
        click.echo(f"Warning: {warning}")
    if not validation["valid"]:
        for error in validation["errors"]:
            click.echo(f"Error: {error}", err=True)
        sys.exit(1)
    click.echo("Configuration is valid.")


@cli.command()
@click.option('--output', type=click.Choice(['table', 'json']), default='table', help='Output format')
def connectors(output: str) -> None:
    """List the available connector types."""
    if output == 'json':
        click.echo(json.dumps({name: cls.__name__ for name, cls in sorted(CONNECTOR_REGISTRY.items())}, indent=2))
        return
    for name, cls in sorted(CONNECTOR_REGISTRY.items()):
        doc = (cls.__doc__ or "").strip().splitlines()
        click.echo(f"{name:<12} {doc[0] if doc else ''}")


def _display_result(result: SyncResult, show_log: bool) -> None:
    """Display a sync result as a short report."""
    click.echo(f"Status:   {result.status.value}")
    click.echo(f"Created:  {result.created}")
    click.echo(f"Updated:  {result.updated}")
    click.echo(f"Deleted:  {result.deleted}")
    click.echo(f"Skipped:  {result.skipped}")
    click.echo(f"Failed:   {result.failed}")
    click.echo(f"Conflicts: {result.conflicts}")
    click.echo(f"Duration: {result.duration_seconds:.2f}s")

    if result.failures:
        click.echo("\nFailures:")
        click.echo(f"{'Key':<40} Reason")
        click.echo("-" * 80)
        for failure in result.failures:
            click.echo(f"{failure.key:<40} {failure.reason}")

    if show_log and result.logs:
        click.echo("\nLog:")
        for line in result.logs:
            click.echo(f"  {line}")


def main() -> None:
    """Main entry point for the CLI."""
    cli()
