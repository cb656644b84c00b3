"""
ContentBridge CLI Main Entry Point.

Command-line interface for running imports against a remote export API
and for serving a local source as an export API.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, NoReturn

import click
import humanize
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from contentbridge import __version__
from contentbridge.core.config import DEFAULT_HOME, ContentBridgeConfig, load_config
from contentbridge.core.errors import ContentBridgeError
from contentbridge.core.job import JobProgress
from contentbridge.core.session import Session
from contentbridge.sync.driver import RunReport

console = Console()


def get_session(ctx: click.Context) -> Session:
    """Get or create the session for this invocation."""
    if "session" not in ctx.obj:
        config = ctx.obj.get("config") or load_config()
        session = Session(config=config)
        ctx.obj["session"] = session
        ctx.call_on_close(session.close)
    return ctx.obj["session"]


def fail(message: str) -> NoReturn:
    console.print(f"[red]✗ {message}[/red]")
    sys.exit(1)


def emit_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.version_option(version=__version__, prog_name="ContentBridge")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    help="Path to configuration file",
)
@click.option("--json", "json_output", is_flag=True, help="Output in JSON format")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    json_output: bool,
    quiet: bool,
) -> None:
    """
    ContentBridge - resumable content migration.

    Pulls posts, authors, terms, media and custom fields from a remote
    export API in batches, resuming from a per-type watermark.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path or DEFAULT_HOME / "config.json"
    ctx.obj["config"] = load_config(config_path)
    ctx.obj["json_output"] = json_output
    ctx.obj["quiet"] = quiet


@cli.command("types")
@click.pass_context
def list_types(ctx: click.Context) -> None:
    """List the post types offered by the remote site."""
    session = get_session(ctx)

    try:
        with console.status("Fetching post types..."):
            post_types = session.fetch_types()
    except ContentBridgeError as e:
        fail(e.message)

    if ctx.obj["json_output"]:
        emit_json({"post_types": [t.to_dict() for t in post_types]})
        return

    table = Table(title="Remote Post Types")
    table.add_column("Slug", style="cyan")
    table.add_column("Label", style="white")
    table.add_column("Watermark", style="green", justify="right")

    watermarks = session.get_watermarks()
    for post_type in post_types:
        table.add_row(post_type.slug, post_type.label, str(watermarks.get(post_type.slug, 0)))

    console.print(table)


@cli.command("import")
@click.option("--post-type", "-t", default=None, help="Content type to import")
@click.option("--status", "-s", default=None, help="Status to import")
@click.option("--batch-size", "-b", type=click.IntRange(1, 500), default=None, help="Records per page")
@click.option("--total", "target_total", type=click.IntRange(0), default=None, help="Stop after this many records")
@click.option("--start-id", type=click.IntRange(0), default=None, help="Start after this source id instead of the watermark")
@click.pass_context
def run_import(
    ctx: click.Context,
    post_type: str | None,
    status: str | None,
    batch_size: int | None,
    target_total: int | None,
    start_id: int | None,
) -> None:
    """Import records until the source is exhausted."""
    session = get_session(ctx)
    json_output = ctx.obj["json_output"]
    quiet = ctx.obj["quiet"]

    try:
        session.client
    except ContentBridgeError as e:
        fail(e.message)

    if json_output or quiet:
        result = session.run_import(
            post_type=post_type,
            status=status,
            batch_size=batch_size,
            target_total=target_total,
            start_id=start_id,
        )
    else:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            console=console,
        ) as progress:
            task = progress.add_task("Importing...", total=target_total or None)

            def update_progress(prog: JobProgress) -> None:
                progress.update(
                    task,
                    completed=prog.current,
                    total=prog.total or None,
                    description=prog.message,
                )

            result = session.run_import(
                post_type=post_type,
                status=status,
                batch_size=batch_size,
                target_total=target_total,
                start_id=start_id,
                progress_callback=update_progress,
            )

    report: RunReport | None = result.data

    if json_output:
        emit_json(
            {
                "success": result.success,
                "error": result.error,
                "report": report.to_dict() if report else None,
            }
        )
    elif report is not None:
        duration = result.duration_seconds or 0.0
        console.print(
            Panel(
                f"""[cyan]Type:[/cyan] {report.post_type} ({report.status})
[cyan]Imported:[/cyan] {humanize.intcomma(report.records_imported)} records in {report.pages} pages
[cyan]Cursor:[/cyan] {report.start_cursor} -> {report.final_cursor}
[cyan]Failed records:[/cyan] {", ".join(map(str, report.failed_records)) or "(none)"}
[cyan]Warnings:[/cyan] {len(report.warnings)}
[cyan]Duration:[/cyan] {humanize.naturaldelta(duration)}""",
                title="Import Summary",
            )
        )
        if report.warnings and not quiet:
            for warning in report.warnings[:20]:
                console.print(f"[yellow]! {warning}[/yellow]")

    if not result.success:
        fail(result.error or "Import failed")


@cli.command("step")
@click.option("--post-type", "-t", default=None, help="Content type to import")
@click.option("--status", "-s", default=None, help="Status to import")
@click.option("--batch-size", "-b", type=click.IntRange(1, 500), default=None, help="Records per page")
@click.option("--start-id", type=click.IntRange(0), default=None, help="Cursor (defaults to the watermark)")
@click.pass_context
def run_step(
    ctx: click.Context,
    post_type: str | None,
    status: str | None,
    batch_size: int | None,
    start_id: int | None,
) -> None:
    """Import a single page and print {imported, lastID, done}."""
    session = get_session(ctx)
    try:
        step = session.run_step(
            start_id=start_id, batch_size=batch_size, post_type=post_type, status=status
        )
    except ContentBridgeError as e:
        fail(e.message)

    click.echo(json.dumps(step.to_dict()))


@cli.command("status")
@click.pass_context
def show_status(ctx: click.Context) -> None:
    """Show the stored watermark of every content type."""
    session = get_session(ctx)
    watermarks = session.get_watermarks()

    if ctx.obj["json_output"]:
        emit_json(watermarks)
        return

    if not watermarks:
        console.print("[dim]No watermarks stored yet.[/dim]")
        return

    table = Table(title="Watermarks")
    table.add_column("Type", style="cyan")
    table.add_column("Last imported id", style="green", justify="right")
    for post_type, value in sorted(watermarks.items()):
        table.add_row(post_type, str(value))
    console.print(table)


@cli.command("reset-watermark")
@click.argument("post_type")
@click.option("--value", type=click.IntRange(0), default=0, help="New watermark value")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def reset_watermark(ctx: click.Context, post_type: str, value: int, yes: bool) -> None:
    """Move a watermark back so records are imported again."""
    session = get_session(ctx)
    current = session.watermarks.get(post_type)

    if not yes:
        click.confirm(
            f"Reset watermark for '{post_type}' from {current} to {value}?",
            abort=True,
        )

    session.reset_watermark(post_type, value)
    if not ctx.obj["quiet"]:
        console.print(f"[green]✓ Watermark for '{post_type}' set to {value}[/green]")


@cli.group("config")
def config_group() -> None:
    """Inspect or change the configuration file."""


@config_group.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Print the effective configuration (tokens masked)."""
    config: ContentBridgeConfig = ctx.obj["config"]
    data = config.model_dump(mode="json")
    for section in ("remote", "export"):
        if data[section].get("token"):
            data[section]["token"] = "***"
    emit_json(data)


@config_group.command("set-remote")
@click.argument("posts_url")
@click.argument("token")
@click.pass_context
def config_set_remote(ctx: click.Context, posts_url: str, token: str) -> None:
    """Store the remote posts endpoint URL and its bearer token."""
    config_path: Path = ctx.obj["config_path"]
    config = ContentBridgeConfig.load(config_path)
    config.remote.posts_url = posts_url.strip()
    config.remote.token = token.strip()
    config.save(config_path)
    ctx.obj["config"].remote = config.remote
    if not ctx.obj["quiet"]:
        console.print(f"[green]✓ Remote saved to {config_path}[/green]")


@cli.command("export-token")
@click.option("--regenerate", is_flag=True, help="Replace the current token")
@click.pass_context
def export_token(ctx: click.Context, regenerate: bool) -> None:
    """Print the export API token, generating it on first use."""
    from contentbridge.export.service import ensure_token

    config_path: Path = ctx.obj["config_path"]
    config = ContentBridgeConfig.load(config_path)
    if regenerate:
        if not click.confirm("Existing importers will need the new token. Continue?"):
            return
        config.export.token = ""
    click.echo(ensure_token(config, config_path))


@cli.command("serve")
@click.option(
    "--source",
    "source_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON dump of the records to export",
)
@click.option("--host", default=None, help="Bind address")
@click.option("--port", type=click.IntRange(1, 65535), default=None, help="Bind port")
@click.pass_context
def serve(ctx: click.Context, source_file: Path | None, host: str | None, port: int | None) -> None:
    """Serve a local source as an export API."""
    import uvicorn

    from contentbridge.core.logging import setup_logging
    from contentbridge.export.app import create_app
    from contentbridge.export.service import ExportService, ensure_token
    from contentbridge.export.source import InMemorySource

    config: ContentBridgeConfig = ctx.obj["config"]
    setup_logging(config.logging)

    source_path = source_file or config.export.source_file
    if source_path is None:
        fail("No source file given (use --source or set export.source_file)")

    try:
        source = InMemorySource.from_file(source_path)
    except (OSError, ValueError, ContentBridgeError) as e:
        fail(f"Cannot load source {source_path}: {e}")

    # Saved from the on-disk config so env overrides are never persisted
    config_path: Path = ctx.obj["config_path"]
    token = ensure_token(ContentBridgeConfig.load(config_path), config_path)
    service = ExportService(source, token, default_count=config.export.default_count)
    app = create_app(service, config.export.route_prefix)

    bind_host = host or config.export.host
    bind_port = port or config.export.port
    if not ctx.obj["quiet"]:
        console.print(
            f"[cyan]Serving {source_path.name} at "
            f"http://{bind_host}:{bind_port}{config.export.route_prefix}/posts[/cyan]"
        )
    uvicorn.run(app, host=bind_host, port=bind_port, log_level=config.logging.level.lower())


def main() -> None:
    """Main entry point."""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
