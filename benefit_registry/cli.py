"""Benefit Registry CLI — manage benefit attachments in a local registry directory."""

import functools
import logging

import click
from rich.console import Console
from rich.table import Table

from benefit_registry import __version__

console = Console()


def registry_dir_option(func):
    return click.option(
        "--registry-dir",
        "-r",
        default=None,
        help="Registry directory (default: $BENEFIT_REGISTRY_DIR or .benefit_registry)",
    )(func)


def caller_option(func):
    return click.option(
        "--caller", "-c", required=True, help="Address performing the operation"
    )(func)


def _workspace(registry_dir: str | None):
    from benefit_registry.workspace import RegistryWorkspace

    return RegistryWorkspace(registry_dir)


def registry_errors(func):
    """Print registry rejections in red and exit with status 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        from benefit_registry.registry.errors import RegistryError

        try:
            return func(*args, **kwargs)
        except RegistryError as e:
            console.print(f"[red]{e.kind.value}:[/] {e.message}")
            raise SystemExit(1)

    return wrapper


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool):
    """Benefit Registry — attach benefits to tokens and token collections.

    Ownership comes from collection.yaml and settings from config.yaml in
    the registry directory.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ── Mutations ────────────────────────────────────────────────────────


@main.command()
@click.argument("token_id", type=int)
@click.argument("benefit_id", type=int)
@click.argument("metadata_uri")
@caller_option
@click.option("--payment", default=0, type=int, help="Payment sent with the attach")
@registry_dir_option
@registry_errors
def attach(token_id: int, benefit_id: int, metadata_uri: str, caller: str, payment: int, registry_dir):
    """Attach BENEFIT_ID to TOKEN_ID, pointing at METADATA_URI."""
    with _workspace(registry_dir).transaction() as reg:
        reg.attach_benefit(token_id, benefit_id, metadata_uri, caller, payment=payment)
    console.print(f"  [green]Attached[/] benefit {benefit_id} to token {token_id}")


@main.command(name="attach-collection")
@click.argument("benefit_id", type=int)
@click.argument("metadata_uri")
@caller_option
@click.option("--payment", default=0, type=int, help="Payment sent with the attach")
@registry_dir_option
@registry_errors
def attach_collection(benefit_id: int, metadata_uri: str, caller: str, payment: int, registry_dir):
    """Attach BENEFIT_ID to the whole collection."""
    with _workspace(registry_dir).transaction() as reg:
        reg.attach_collection_benefit(benefit_id, metadata_uri, caller, payment=payment)
    console.print(f"  [green]Attached[/] benefit {benefit_id} to the collection")


@main.command()
@click.argument("benefit_id", type=int)
@click.argument("metadata_uri")
@caller_option
@registry_dir_option
@registry_errors
def update(benefit_id: int, metadata_uri: str, caller: str, registry_dir):
    """Point BENEFIT_ID at a new METADATA_URI."""
    with _workspace(registry_dir).transaction() as reg:
        reg.update_benefit(benefit_id, metadata_uri, caller)
    console.print(f"  [green]Updated[/] benefit {benefit_id}")


@main.command()
@click.argument("benefit_id", type=int)
@caller_option
@registry_dir_option
@registry_errors
def remove(benefit_id: int, caller: str, registry_dir):
    """Remove BENEFIT_ID. The id can never be attached again."""
    with _workspace(registry_dir).transaction() as reg:
        reg.remove_benefit(benefit_id, caller)
    console.print(f"  [green]Removed[/] benefit {benefit_id}")


# ── Queries ──────────────────────────────────────────────────────────


@main.command()
@click.argument("benefit_id", type=int)
@registry_dir_option
@registry_errors
def uri(benefit_id: int, registry_dir):
    """Print the metadata URI of BENEFIT_ID."""
    reg = _workspace(registry_dir).load()
    click.echo(reg.benefit_uri(benefit_id))


@main.command(name="list")
@click.option("--token", "-t", "token_id", type=int, default=None, help="Only this token's benefits")
@registry_dir_option
def list_benefits(token_id: int | None, registry_dir):
    """List one token's benefits, or every benefit in the registry."""
    reg = _workspace(registry_dir).load()

    if token_id is not None:
        records = [reg.get_benefit(b) for b in reg.assigned_benefits(token_id)]
        title = f"Token {token_id} ({len(records)} benefits)"
    else:
        records = reg.list_all()
        title = f"Registry ({len(records)} benefits)"

    if not records:
        console.print("[yellow]No benefits found.[/]")
        return

    table = Table(title=title)
    table.add_column("Benefit", style="cyan", justify="right")
    table.add_column("Scope")
    table.add_column("Assigner", style="dim")
    table.add_column("Metadata URI")

    for record in records:
        table.add_row(str(record.benefit_id), str(record.scope), record.assigner, record.metadata_uri)

    console.print(table)


@main.command(name="is-assigner")
@click.argument("wallet")
@click.argument("benefit_id", type=int)
@registry_dir_option
def is_assigner(wallet: str, benefit_id: int, registry_dir):
    """Print whether WALLET assigned BENEFIT_ID."""
    reg = _workspace(registry_dir).load()
    click.echo("true" if reg.is_benefit_assigner(wallet, benefit_id) else "false")


@main.command()
@click.argument("interface_id", required=False)
@registry_dir_option
def supports(interface_id: str | None, registry_dir):
    """Check support for INTERFACE_ID, or print the supported interface ids."""
    from benefit_registry.registry.benefit_registry import (
        BENEFIT_REGISTRY_INTERFACE_ID,
        CAPABILITY_QUERY_INTERFACE_ID,
    )

    if interface_id is None:
        click.echo(f"capability-query  {CAPABILITY_QUERY_INTERFACE_ID}")
        click.echo(f"benefit-registry  {BENEFIT_REGISTRY_INTERFACE_ID}")
        return

    reg = _workspace(registry_dir).load()
    click.echo("true" if reg.supports_interface(interface_id) else "false")


# ── Audit ────────────────────────────────────────────────────────────


@main.command()
@click.option("--action", "-a", type=click.Choice(["attach", "update", "remove"]), default=None)
@click.option("--failed", is_flag=True, help="Only rejected attempts")
@click.option("--format", "fmt", type=click.Choice(["table", "json", "csv"]), default="table")
@click.option("--limit", "-n", default=50, help="Maximum number of entries")
@registry_dir_option
def audit(action: str | None, failed: bool, fmt: str, limit: int, registry_dir):
    """Show the audit trail of registry mutations."""
    from benefit_registry.config import resolve_registry_dir
    from benefit_registry.security.audit_log import AuditLogger

    logger = AuditLogger(resolve_registry_dir(registry_dir) / "audit_logs")
    filters = {"action": action, "success": False if failed else None}

    if fmt != "table":
        click.echo(logger.export_events(fmt, limit=limit, **filters))
        return

    entries = logger.get_events(limit=limit, **filters)
    if not entries:
        console.print("[yellow]No audit entries.[/]")
        return

    table = Table(title=f"Audit trail ({len(entries)} entries)")
    table.add_column("Time", style="dim")
    table.add_column("Actor")
    table.add_column("Action", style="cyan")
    table.add_column("Benefit", justify="right")
    table.add_column("Result")

    for e in entries:
        result = "[green]ok[/]" if e.success else f"[red]{e.error_kind}[/]"
        table.add_row(e.timestamp[:19], e.actor, e.action, e.resource_id, result)

    console.print(table)


# ── Webhooks ─────────────────────────────────────────────────────────


@main.group()
def webhook():
    """Manage webhooks that receive registry notifications."""


@webhook.command(name="add")
@click.argument("url")
@click.option("--event", "-e", "events", multiple=True, help="Event name (default: all)")
@click.option("--secret", default="", help="HMAC secret for signing payloads")
@click.option("--name", default="", help="Display name")
@registry_dir_option
def webhook_add(url: str, events: tuple, secret: str, name: str, registry_dir):
    """Register a webhook for URL."""
    from benefit_registry.config import resolve_registry_dir
    from benefit_registry.events.webhooks import WebhookManager

    manager = WebhookManager(resolve_registry_dir(registry_dir) / "webhooks")
    try:
        wh = manager.register_webhook(url, list(events), secret=secret, name=name)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--event")
    console.print(f"  [green]Registered[/] webhook {wh.id} for {', '.join(wh.events)}")


@webhook.command(name="list")
@registry_dir_option
def webhook_list(registry_dir):
    """List registered webhooks."""
    from benefit_registry.config import resolve_registry_dir
    from benefit_registry.events.webhooks import WebhookManager

    hooks = WebhookManager(resolve_registry_dir(registry_dir) / "webhooks").list_webhooks()
    if not hooks:
        console.print("[yellow]No webhooks registered.[/]")
        return

    table = Table(title=f"Webhooks ({len(hooks)})")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("URL")
    table.add_column("Events")
    table.add_column("Active", justify="center")

    for wh in hooks:
        active = "[green]Y[/]" if wh.active else "[red]N[/]"
        table.add_row(wh.id, wh.name, wh.url, ", ".join(wh.events), active)

    console.print(table)


# ── Web API ──────────────────────────────────────────────────────────


@main.command()
@click.option("--host", default="127.0.0.1", help="Interface to bind")
@click.option("--port", "-p", default=8000, type=int, help="Port to listen on")
@click.option("--cors-origin", "cors_origins", multiple=True, help="Allowed CORS origin")
@registry_dir_option
def serve(host: str, port: int, cors_origins: tuple, registry_dir):
    """Serve the HTTP API over the registry directory."""
    import uvicorn

    from benefit_registry.web.app import create_app_from_dir

    app = create_app_from_dir(registry_dir, cors_origins=list(cors_origins) or None)
    console.print(f"  Serving benefit registry API on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="info")


# ── Metadata ─────────────────────────────────────────────────────────


@main.command(name="schema")
def dump_schema():
    """Print the JSON Schema for benefit metadata documents."""
    import json

    from benefit_registry.metadata.schema import get_schema

    click.echo(json.dumps(get_schema(), indent=2))


@main.command(name="validate-metadata")
@click.argument("document_path", type=click.Path(exists=True, dir_okay=False))
def validate_metadata_cmd(document_path: str):
    """Check a benefit metadata document against the schema (advisory)."""
    import yaml

    from benefit_registry.metadata.schema_validator import load_metadata, validate_metadata

    try:
        document = load_metadata(document_path)
    except (ValueError, yaml.YAMLError) as e:
        console.print(f"  [red]Failed to parse:[/] {e}")
        raise SystemExit(1)

    issues = validate_metadata(document)
    if issues:
        console.print("[yellow]Metadata does not conform:[/]")
        for issue in issues:
            console.print(f"  [yellow]![/] {issue}")
        raise SystemExit(1)

    console.print("  [green]v[/] Metadata conforms to the schema")


if __name__ == "__main__":
    main()
