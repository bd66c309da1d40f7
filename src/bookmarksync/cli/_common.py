"""Shared utilities for the CLI command modules."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console

from .. import SYNC_HOME
from ..bookmarks import JsonFileBookmarkProvider
from ..errors import BookmarkSyncError
from ..models import ClientSyncState, SyncAction, SyncResult, SyncStatus
from ..sync import SettingsStore, SyncClient

console = Console()
logger = logging.getLogger("bookmarksync.cli")

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def setup_logging(verbose: bool = False) -> None:
    """Configure root logging once per process."""
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(logging.DEBUG if verbose else root.level)
        return
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
    )


def bookmarks_path(home: Path, state: ClientSyncState) -> Path:
    """Local bookmark file: configured path, or bookmarks.json in the home."""
    if state.bookmarks_file:
        return Path(state.bookmarks_file).expanduser()
    return home / "bookmarks.json"


def build_client(home: str) -> SyncClient:
    """Wire a SyncClient to the settings and bookmark file under ``home``."""
    home_path = Path(home).expanduser()
    settings = SettingsStore(home_path)
    provider = JsonFileBookmarkProvider(bookmarks_path(home_path, settings.load()))
    return SyncClient(settings, provider)


def fail(exc: BookmarkSyncError, what: str) -> None:
    """Print a taxonomy error and exit 1."""
    console.print(f"[bold red]{what} failed:[/] {exc}")
    sys.exit(1)


def describe_result(result: SyncResult) -> str:
    """Rich markup line for a sync outcome."""
    if result.action == SyncAction.NOT_CONFIGURED:
        return "[yellow]Sync not configured.[/] Run [cyan]bookmarksync sync configure[/]."
    if result.action == SyncAction.BUSY:
        return "[yellow]A sync is already running.[/]"
    if result.status == SyncStatus.ERROR:
        label = {
            "authentication": "Wrong passphrase or corrupted data",
            "malformed": "Server data is not a bookmark export",
            "network": "Server unreachable",
            "rate_limited": "Rate limited, try again shortly",
        }.get(result.error_kind or "", "Sync error")
        return f"[bold red]{label}:[/] {result.error}"
    return {
        SyncAction.UPLOADED: "[green]Uploaded[/] local bookmarks to server",
        SyncAction.DOWNLOADED: "[green]Downloaded[/] bookmarks from server",
        SyncAction.NOOP: "[green]Already in sync[/]",
    }.get(result.action, result.action.value)


def status_label(status: Optional[SyncStatus]) -> str:
    return {
        SyncStatus.SUCCESS: "[bold green]SUCCESS[/]",
        SyncStatus.ERROR: "[bold red]ERROR[/]",
    }.get(status, "[dim]never[/]")

