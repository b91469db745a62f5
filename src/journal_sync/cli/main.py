import asyncio
import logging
import os
import signal
import time
from dataclasses import replace
from datetime import timedelta
from typing import Optional

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from journal_sync.config import ENV_SERVER_TOKEN, Settings
from journal_sync.logging_config import configure_logging
from journal_sync.remote.http import HTTPDocumentStore
from journal_sync.store.record_store import LocalStore
from journal_sync.sync.engine import SyncEngine
from journal_sync.sync.scheduler import SyncScheduler
from journal_sync.sync.tombstones import TombstoneCollector

app = typer.Typer(help="Journal Sync CLI")
console = Console()
logger = logging.getLogger("journal_sync.cli")


def _settings(db_path: Optional[str], remote_url: Optional[str]) -> Settings:
    settings = Settings.from_env()
    overrides = {}
    if db_path:
        overrides["db_path"] = db_path
    if remote_url:
        overrides["remote_url"] = remote_url
    return replace(settings, **overrides)


def _require_remote(settings: Settings) -> HTTPDocumentStore:
    if not settings.remote_url:
        console.print("[red]No remote configured (--remote or JOURNAL_SYNC_REMOTE_URL)[/red]")
        raise typer.Exit(code=1)
    return HTTPDocumentStore(
        settings.remote_url,
        project_id=settings.project_id,
        auth_token=settings.auth_token,
    )


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, help="Log level (DEBUG, INFO, WARNING, ERROR)"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
    log_file: Optional[str] = typer.Option(None, help="Also write JSON logs to this file"),
):
    """Offline-first journal sync tools."""
    level = log_level or Settings.from_env().log_level
    configure_logging(level=level, json_format=json_logs, log_file=log_file)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Host to bind to"),
    port: int = typer.Option(8000, help="Port to bind to"),
    token: Optional[str] = typer.Option(None, help="Require this bearer token"),
):
    """Start the reference document store server."""
    if token:
        os.environ[ENV_SERVER_TOKEN] = token
    console.print(f"[bold green]Starting document store on http://{host}:{port}[/bold green]")
    uvicorn.run("journal_sync.server:app", host=host, port=port)


@app.command()
def sync(
    db_path: Optional[str] = typer.Option(None, "--db", help="Path to local database"),
    remote_url: Optional[str] = typer.Option(None, "--remote", help="Remote document store URL"),
    full: bool = typer.Option(False, "--full", help="Force a full sync"),
):
    """Run a single sync pass."""
    settings = _settings(db_path, remote_url)
    remote = _require_remote(settings)

    async def _run() -> bool:
        with LocalStore(settings.db_path) as store:
            engine = SyncEngine(store, remote)
            try:
                return await engine.sync_once(full=full)
            finally:
                await engine.dispose()
                await remote.close()

    console.print(f"Syncing {settings.db_path} with {settings.remote_url}...")
    if asyncio.run(_run()):
        console.print("[green]Sync completed successfully[/green]")
    else:
        console.print("[red]Sync failed, see log for details[/red]")
        raise typer.Exit(code=1)


@app.command()
def run(
    db_path: Optional[str] = typer.Option(None, "--db", help="Path to local database"),
    remote_url: Optional[str] = typer.Option(None, "--remote", help="Remote document store URL"),
    interval: Optional[float] = typer.Option(None, "--interval", "-i", help="Tick interval (seconds)"),
):
    """Keep the local store in sync until interrupted."""
    settings = _settings(db_path, remote_url)
    remote = _require_remote(settings)
    store = LocalStore(settings.db_path)
    store.initialize()

    engine = SyncEngine(store, remote, online=False)
    scheduler = SyncScheduler(
        engine,
        interval_seconds=interval or settings.sync_interval,
        on_state_change=lambda state: console.print(f"[dim]state: {state.value}[/dim]"),
    )

    stop_requested = [False]

    def handle_signal(signum, frame):
        console.print("\n[yellow]Shutdown signal received. Stopping gracefully...[/yellow]")
        stop_requested[0] = True

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    scheduler.start(in_background=True)
    console.print(f"[green]Sync daemon started against {settings.remote_url}. Press Ctrl+C to stop.[/green]")
    try:
        while not stop_requested[0]:
            time.sleep(1)
    finally:
        scheduler.stop()
        store.close()
        console.print("[green]Daemon stopped.[/green]")


@app.command()
def status(db_path: Optional[str] = typer.Option(None, "--db", help="Path to local database")):
    """Show local store status."""
    settings = _settings(db_path, None)

    with LocalStore(settings.db_path) as store:
        table = Table(title="Journal Sync Status")
        table.add_column("Kind", style="cyan")
        table.add_column("Active", style="magenta")
        table.add_column("Tombstones")
        table.add_column("Unsynced")
        table.add_column("Bodies cached")
        table.add_column("Last sync")

        for collection in store.collections():
            everything = collection.get_all_metadata(include_deleted=True)
            active = [m for m in everything if m.deleted_at is None]
            last_sync = collection.get_last_sync_time()
            table.add_row(
                collection.name,
                str(len(active)),
                str(len(everything) - len(active)),
                str(len(collection.get_unsynced_metadata())),
                str(len(collection.list_locally_cached_body_ids())),
                last_sync.isoformat() if last_sync else "never",
            )

        console.print(table)
        integrity = "[green]ok[/green]" if store.check_integrity() else "[red]FAILED[/red]"
        console.print(f"Database: {settings.db_path} (integrity {integrity})")


@app.command()
def gc(
    db_path: Optional[str] = typer.Option(None, "--db", help="Path to local database"),
    days: int = typer.Option(7, help="Retention window in days"),
):
    """Purge synced tombstones older than the retention window."""
    settings = _settings(db_path, None)
    collector = TombstoneCollector(retention=timedelta(days=days))

    with LocalStore(settings.db_path) as store:
        for collection in store.collections():
            purged = collector.collect(collection)
            console.print(f"{collection.name}: purged {len(purged)} tombstones")


@app.command(name="list")
def list_entries(
    db_path: Optional[str] = typer.Option(None, "--db", help="Path to local database"),
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Search text"),
):
    """List active entries, newest first."""
    settings = _settings(db_path, None)

    with LocalStore(settings.db_path) as store:
        table = Table(title="Entries")
        table.add_column("ID", style="dim")
        table.add_column("Title", style="cyan")
        table.add_column("Type")
        table.add_column("Updated")
        table.add_column("Synced")

        needle = (query or "").casefold()
        for metadata in store.entries.get_all_active():
            if needle and needle not in metadata.title.casefold() and needle not in metadata.preview.casefold():
                continue
            table.add_row(
                metadata.id[:8],
                metadata.title or "[dim](untitled)[/dim]",
                metadata.type.value,
                metadata.updated_at,
                "yes" if metadata.is_synced else "no",
            )
        console.print(table)


if __name__ == "__main__":
    app()
