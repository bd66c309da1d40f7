"""Sync commands: init, configure, now, status, schedule, export, count, reset, forget."""

from __future__ import annotations

import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import click
from rich.panel import Panel

from ..bookmarks import JsonFileBookmarkProvider, count_bookmarks, write_export
from ..errors import BookmarkSyncError, InvalidId
from ..server.store import normalize_id
from ..sync import RemoteStore, SettingsStore, SyncScheduler
from ..sync.scheduler import next_due
from ..timefmt import describe
from ._common import (
    SYNC_HOME,
    bookmarks_path,
    build_client,
    console,
    describe_result,
    fail,
    status_label,
)


def register_sync_commands(main: click.Group) -> None:
    """Register the sync command group."""

    @main.group()
    def sync():
        """Encrypted bookmark sync with a BookmarkSync server.

        Bookmarks are sealed with your passphrase before upload.
        The server only ever sees ciphertext.
        """

    @sync.command("generate-id")
    def sync_generate_id():
        """Print a fresh random sync id (no server call)."""
        console.print(str(uuid.uuid4()))

    @sync.command("init")
    @click.option("--home", default=SYNC_HOME, type=click.Path())
    @click.option("--server", "server_url", default=None, help="Server base URL.")
    def sync_init(home, server_url):
        """Allocate a new sync id on the server and save it."""
        store = SettingsStore(Path(home))
        state = store.load()
        url = server_url or state.server_url
        try:
            sync_id = RemoteStore(url).create()
        except BookmarkSyncError as exc:
            fail(exc, "Create sync id")
        store.update(server_url=url, sync_id=sync_id, last_known_modified=None,
                     last_synced_digest=None)
        console.print(f"\n  [green]Sync id created:[/] [cyan]{sync_id}[/]")
        console.print("  Use the same id and passphrase on your other devices.\n")

    @sync.command("configure")
    @click.option("--home", default=SYNC_HOME, type=click.Path())
    @click.option("--server", "server_url", default=None, help="Server base URL.")
    @click.option("--sync-id", default=None, help="Existing sync id to join.")
    @click.option("--passphrase", default=None, help="Encryption passphrase.")
    @click.option("--auto-sync/--no-auto-sync", default=None, help="Enable scheduled sync.")
    @click.option("--interval", type=click.IntRange(min=1), default=None,
                  help="Minutes between scheduled syncs.")
    @click.option("--bookmarks-file", type=click.Path(), default=None,
                  help="JSON file holding the local bookmark tree.")
    def sync_configure(home, server_url, sync_id, passphrase, auto_sync, interval,
                       bookmarks_file):
        """Save server, id, passphrase, and schedule settings."""
        store = SettingsStore(Path(home))
        state = store.load()
        changes: dict = {}

        if server_url is not None:
            changes["server_url"] = server_url
        if sync_id is not None:
            try:
                sync_id = normalize_id(sync_id)
            except InvalidId as exc:
                fail(exc, "Configure")
            if sync_id != state.sync_id:
                changes.update(sync_id=sync_id, last_known_modified=None,
                               last_synced_digest=None)
        if passphrase is not None:
            if not passphrase:
                console.print("[bold red]Passphrase must not be empty.[/]")
                sys.exit(1)
            changes["passphrase"] = passphrase
        if auto_sync is not None:
            changes["auto_sync"] = auto_sync
        if interval is not None:
            changes["interval_minutes"] = interval
        if bookmarks_file is not None:
            changes["bookmarks_file"] = Path(bookmarks_file)

        state = store.update(**changes)
        if not state.is_configured:
            console.print("[yellow]Saved. Sync id and passphrase are both required to sync.[/]")
        else:
            console.print("[green]Settings saved.[/]")

    @sync.command("now")
    @click.option("--home", default=SYNC_HOME, type=click.Path())
    def sync_now(home):
        """Sync immediately."""
        result = build_client(home).sync(manual=True)
        console.print(f"  {describe_result(result)}")
        if not result.ok:
            sys.exit(1)

    @sync.command("status")
    @click.option("--home", default=SYNC_HOME, type=click.Path())
    @click.option("--check-server/--no-check-server", default=True,
                  help="Query the server's /status endpoint.")
    def sync_status(home, check_server):
        """Show local sync state and server health."""
        home_path = Path(home).expanduser()
        state = SettingsStore(home_path).load()

        due = next_due(state)
        if due is None:
            next_run = "[dim]off[/]"
        elif state.last_attempt_at is None:
            next_run = "now"
        else:
            next_run = due.isoformat()

        lines = [
            f"Server: [cyan]{state.server_url}[/]",
            f"Sync ID: {state.sync_id or '[yellow]not set[/]'}",
            f"Passphrase: {'[green]set[/]' if state.passphrase else '[yellow]not set[/]'}",
            f"Auto-sync: {'on' if state.auto_sync else 'off'}"
            f" (every {state.interval_minutes} min)",
            f"Last status: {status_label(state.last_sync_status)}",
            f"Last sync: {state.last_sync_at or '[dim]never[/]'}",
            f"Server version seen: {describe(state.last_known_modified)}",
            f"Next scheduled: {next_run}",
        ]
        if state.last_error:
            lines.append(f"Last error ({state.last_error_kind}): [red]{state.last_error}[/]")

        console.print()
        console.print(Panel("\n".join(lines), title="BookmarkSync", border_style="cyan"))

        if check_server:
            try:
                info = RemoteStore(state.server_url, timeout=5).status()
                console.print(
                    f"  Server [green]{info.get('status', '?')}[/] "
                    f"v{info.get('version', '?')} "
                    f"(max {info.get('maxSyncSize', '?')} bytes)"
                )
            except BookmarkSyncError as exc:
                console.print(f"  Server [red]offline[/]: {exc}")
        console.print()

    @sync.command("schedule")
    @click.option("--home", default=SYNC_HOME, type=click.Path())
    @click.option("--tick", default=30.0, type=float, help="Seconds between due checks.")
    @click.option("--once", is_flag=True, help="Check once and exit.")
    def sync_schedule(home, tick, once):
        """Run scheduled syncs at the configured interval."""
        scheduler = SyncScheduler(build_client(home), tick_seconds=tick)
        if once:
            result = scheduler.tick()
            if result is None:
                console.print("  [dim]No sync due.[/]")
            else:
                console.print(f"  {describe_result(result)}")
            return

        console.print("  [dim]Scheduler running (Ctrl+C to stop)[/]")
        try:
            scheduler.run_forever()
        except KeyboardInterrupt:
            scheduler.stop()

    @sync.command("export")
    @click.option("--home", default=SYNC_HOME, type=click.Path())
    @click.option("--output", "-o", type=click.Path(), default=None,
                  help="Output file (default: bookmarks-<timestamp>.json).")
    def sync_export(home, output: Optional[str]):
        """Export the local bookmark tree as a plain JSON file."""
        home_path = Path(home).expanduser()
        state = SettingsStore(home_path).load()
        provider = JsonFileBookmarkProvider(bookmarks_path(home_path, state))
        if output is None:
            stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
            output = f"bookmarks-{stamp}.json"
        path = write_export(provider.export_tree(), Path(output))
        console.print(f"  [green]Exported to[/] {path}")

    @sync.command("count")
    @click.option("--home", default=SYNC_HOME, type=click.Path())
    def sync_count(home):
        """Count bookmarks in the local tree (folders excluded)."""
        home_path = Path(home).expanduser()
        state = SettingsStore(home_path).load()
        tree = JsonFileBookmarkProvider(bookmarks_path(home_path, state)).export_tree()
        console.print(count_bookmarks(tree))

    @sync.command("forget")
    @click.option("--home", default=SYNC_HOME, type=click.Path())
    @click.confirmation_option(prompt="Delete the server copy of your bookmarks?")
    def sync_forget(home):
        """Delete the remote record for this sync id."""
        store = SettingsStore(Path(home))
        state = store.load()
        if not state.sync_id:
            console.print("[yellow]No sync id configured.[/]")
            return
        try:
            RemoteStore(state.server_url).delete(state.sync_id)
        except BookmarkSyncError as exc:
            fail(exc, "Delete")
        store.update(last_known_modified=None, last_synced_digest=None)
        console.print("  [green]Server copy deleted.[/]")

    @sync.command("reset")
    @click.option("--home", default=SYNC_HOME, type=click.Path())
    @click.confirmation_option(prompt="This will delete all settings. Continue?")
    def sync_reset(home):
        """Delete all local sync settings and state."""
        SettingsStore(Path(home)).clear()
        console.print("  [green]Settings cleared.[/]")
