"""Operator CLI for connector configs, syncs, jobs and credentials."""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Coroutine
from datetime import timedelta
from typing import Any, TypeVar

import click

from ..exceptions import ConnectorConfigExistsError, KnowledgeIngestorError
from ..models.base import utcnow
from ..schemas.credentials import CredentialType
from ..schemas.sync import SyncResult
from ..services.runtime import IngestionServices, build_services
from ..utils.config import ensure_runtime_configuration, get_settings, load_yaml_config

T = TypeVar("T")

_CREDENTIAL_TYPES = click.Choice([item.value for item in CredentialType])


def _services(ctx: click.Context) -> IngestionServices:
    root = ctx.find_root()
    if not isinstance(root.obj, IngestionServices):
        ensure_runtime_configuration(get_settings())
        root.obj = build_services()
    return root.obj


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine, turning domain errors into ``Error [kind]: message`` and exit 1."""

    try:
        return asyncio.run(coro)
    except KnowledgeIngestorError as exc:
        click.echo(f"Error [{exc.kind}]: {exc}", err=True)
        sys.exit(1)


def _print_result(result: SyncResult) -> None:
    click.echo(f"Job:        {result.job_id}")
    click.echo(f"Status:     {result.status}")
    click.echo(f"Processed:  {result.items_processed}")
    click.echo(f"Failed:     {result.items_failed}")
    click.echo(f"Duration:   {result.duration_seconds:.2f}s")
    if result.next_cursor:
        click.echo(f"Cursor:     {result.next_cursor}")
    for error in result.errors:
        click.echo(f"  • {error}")


@click.group()
def cli() -> None:
    """Knowledge ingestion operator commands."""


@cli.group()
def connectors() -> None:
    """Manage connector configurations."""


@connectors.command("seed")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def seed_connectors(ctx: click.Context, path: str) -> None:
    """
    Create connector configurations from a YAML file.

    The file holds a ``connectors`` list; each entry has ``type``, ``name`` and
    ``configuration`` plus optional ``enabled`` and ``description``. Existing
    configurations are left untouched.
    """
    services = _services(ctx)

    async def _seed() -> tuple[int, int]:
        document = load_yaml_config(path)
        created = skipped = 0
        for entry in document.get("connectors") or []:
            try:
                await services.config_service.create_configuration(
                    entry["type"],
                    entry["name"],
                    entry.get("configuration") or {},
                    enabled=bool(entry.get("enabled", False)),
                    description=entry.get("description"),
                    created_by="cli",
                )
            except ConnectorConfigExistsError:
                click.echo(f"Skipping existing connector {entry['type']}/{entry['name']}")
                skipped += 1
                continue
            click.echo(f"Created connector {entry['type']}/{entry['name']}")
            created += 1
        return created, skipped

    created, skipped = _run(_seed())
    click.echo(f"{created} created, {skipped} skipped")


@connectors.command("list")
@click.pass_context
def list_connector_configs(ctx: click.Context) -> None:
    """List all connector configurations."""

    services = _services(ctx)
    configs = _run(services.config_service.list_all())
    if not configs:
        click.echo("No connector configurations")
        return
    for config in configs:
        state = "enabled" if config.enabled else "disabled"
        last_sync = config.last_sync_time.isoformat() if config.last_sync_time else "never"
        health = "healthy" if config.is_healthy else f"{config.consecutive_error_count} errors"
        click.echo(
            f"{config.full_name:<40} {state:<9} every {config.polling_interval_minutes}m "
            f"last_sync={last_sync} {health}"
        )


def _set_enabled(ctx: click.Context, connector_type: str, name: str, enabled: bool) -> None:
    services = _services(ctx)

    async def _toggle() -> None:
        config = await services.config_service.get_by_type_and_name(connector_type, name)
        await services.config_service.set_enabled(config.id, enabled)

    _run(_toggle())
    click.echo(f"{connector_type}/{name} {'enabled' if enabled else 'disabled'}")


@connectors.command("enable")
@click.argument("connector_type")
@click.argument("name")
@click.pass_context
def enable_connector(ctx: click.Context, connector_type: str, name: str) -> None:
    """Enable a connector configuration."""

    _set_enabled(ctx, connector_type, name, True)


@connectors.command("disable")
@click.argument("connector_type")
@click.argument("name")
@click.pass_context
def disable_connector(ctx: click.Context, connector_type: str, name: str) -> None:
    """Disable a connector configuration."""

    _set_enabled(ctx, connector_type, name, False)


@cli.group()
def sync() -> None:
    """Trigger syncs and connection tests."""


@sync.command("full")
@click.argument("connector_type")
@click.argument("name")
@click.pass_context
def sync_full(ctx: click.Context, connector_type: str, name: str) -> None:
    """Run a full sync, ignoring any stored cursor."""

    services = _services(ctx)
    result = _run(services.orchestrator.trigger_full_sync(connector_type, name))
    _print_result(result)
    if not result.success:
        sys.exit(1)


@sync.command("incremental")
@click.argument("connector_type")
@click.argument("name")
@click.pass_context
def sync_incremental(ctx: click.Context, connector_type: str, name: str) -> None:
    """Run an incremental sync from the last successful cursor."""

    services = _services(ctx)
    result = _run(services.orchestrator.trigger_incremental_sync(connector_type, name))
    _print_result(result)
    if not result.success:
        sys.exit(1)


@sync.command("test")
@click.argument("connector_type")
@click.argument("name")
@click.pass_context
def sync_test(ctx: click.Context, connector_type: str, name: str) -> None:
    """Test connectivity for a connector configuration."""

    services = _services(ctx)
    connected = _run(services.orchestrator.test_connection(connector_type, name))
    click.echo(f"{connector_type}/{name}: {'connected' if connected else 'connection failed'}")
    if not connected:
        sys.exit(1)


@cli.group()
def jobs() -> None:
    """Inspect ingestion jobs."""


@jobs.command("running")
@click.pass_context
def running_jobs(ctx: click.Context) -> None:
    """List RUNNING jobs."""

    services = _services(ctx)
    running = _run(services.job_service.list_running_jobs())
    if not running:
        click.echo("No running jobs")
        return
    for job in running:
        started = job.started_at.isoformat() if job.started_at else "-"
        click.echo(
            f"{job.id} {job.job_type:<12} started={started} "
            f"processed={job.items_processed} failed={job.items_failed}"
        )


@jobs.command("stats")
@click.option("--json", "output_json", is_flag=True, help="Output statistics as JSON")
@click.pass_context
def job_stats(ctx: click.Context, output_json: bool) -> None:
    """Show job totals and per-connector-type aggregates."""

    services = _services(ctx)

    async def _collect() -> tuple[Any, Any]:
        return (
            await services.job_service.get_job_statistics(),
            await services.job_service.stats_by_connector_type(),
        )

    totals, by_type = _run(_collect())
    if output_json:
        payload = {
            "totals": totals.model_dump(),
            "by_connector_type": [entry.model_dump() for entry in by_type],
        }
        click.echo(json.dumps(payload, indent=2, default=str))
        return

    click.echo(
        f"running={totals.running} completed={totals.completed} failed={totals.failed} "
        f"cancelled={totals.cancelled} total={totals.total}"
    )
    for entry in by_type:
        click.echo(
            f"  {entry.connector_type:<20} jobs={entry.total_jobs} running={entry.running_jobs} "
            f"processed={entry.total_items_processed} failed={entry.total_items_failed}"
        )


@cli.group()
def credentials() -> None:
    """Manage encrypted connector credentials."""


@credentials.command("store")
@click.argument("connector_type")
@click.argument("name")
@click.argument("credential_type", type=_CREDENTIAL_TYPES)
@click.option("--value", prompt=True, hide_input=True, help="Secret value (prompted if omitted)")
@click.option("--expires-in-days", type=click.IntRange(min=1), default=None)
@click.option("--description", default=None)
@click.pass_context
def store_credential(
    ctx: click.Context,
    connector_type: str,
    name: str,
    credential_type: str,
    value: str,
    expires_in_days: int | None,
    description: str | None,
) -> None:
    """Encrypt and store a new credential."""

    services = _services(ctx)
    expires_at = utcnow() + timedelta(days=expires_in_days) if expires_in_days else None

    async def _store() -> Any:
        config = await services.config_service.get_by_type_and_name(connector_type, name)
        return await services.vault.store(
            config.id, credential_type, value, expires_at=expires_at, description=description
        )

    summary = _run(_store())
    click.echo(f"Stored {credential_type} credential {summary.id} for {connector_type}/{name}")


@credentials.command("rotate")
@click.argument("connector_type")
@click.argument("name")
@click.argument("credential_type", type=_CREDENTIAL_TYPES)
@click.option("--value", prompt=True, hide_input=True, help="New secret value (prompted if omitted)")
@click.option("--expires-in-days", type=click.IntRange(min=1), default=None)
@click.pass_context
def rotate_credential(
    ctx: click.Context,
    connector_type: str,
    name: str,
    credential_type: str,
    value: str,
    expires_in_days: int | None,
) -> None:
    """Replace the active credential with a new value."""

    services = _services(ctx)
    expires_at = utcnow() + timedelta(days=expires_in_days) if expires_in_days else None

    async def _rotate() -> Any:
        config = await services.config_service.get_by_type_and_name(connector_type, name)
        return await services.vault.rotate(config.id, credential_type, value, expires_at=expires_at)

    summary = _run(_rotate())
    click.echo(f"Rotated {credential_type} credential for {connector_type}/{name}; active={summary.id}")


@credentials.command("expiring")
@click.option("--days", type=click.IntRange(min=1), default=7, show_default=True)
@click.pass_context
def expiring_credentials(ctx: click.Context, days: int) -> None:
    """List active credentials expiring within DAYS."""

    services = _services(ctx)
    expiring = _run(services.vault.list_expiring_with_urgency(days))
    if not expiring:
        click.echo(f"No credentials expire within {days} days")
        return
    for entry in expiring:
        credential = entry.credential
        click.echo(
            f"[{entry.urgency.value}] {credential.id} {credential.credential_type} "
            f"connector={credential.connector_config_id} "
            f"expires_in={entry.days_until_expiration}d"
        )


@credentials.command("stats")
@click.pass_context
def credential_stats(ctx: click.Context) -> None:
    """Show credential health per type."""

    services = _services(ctx)
    stats = _run(services.vault.stats())
    if not stats:
        click.echo("No credentials stored")
        return
    for entry in stats:
        click.echo(
            f"{entry.credential_type:<18} {entry.health_status.value:<8} "
            f"active={entry.active}/{entry.total} expired={entry.expired} "
            f"expiring_soon={entry.expiring_soon} health={entry.health_percentage}%"
        )


@cli.group()
def scheduler() -> None:
    """Run scheduler tasks in the foreground."""


@scheduler.command("tick")
@click.pass_context
def scheduler_tick(ctx: click.Context) -> None:
    """Run one scheduled-ingestion pass and print its summary."""

    services = _services(ctx)
    summary = _run(services.scheduler.run_scheduled_ingestion())
    click.echo(json.dumps(summary, indent=2, default=str))


if __name__ == "__main__":
    cli()
