"""Server command: run the blob store over HTTP."""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading
from pathlib import Path

import click

from ..errors import StorageIO
from ..models import ServerConfig
from ._common import console, logger


def register_serve_commands(main: click.Group) -> None:
    """Register the serve command."""

    @main.command("serve")
    @click.option("--host", default=lambda: os.environ.get("BOOKMARKSYNC_HOST", "127.0.0.1"),
                  show_default="127.0.0.1", help="Interface to bind.")
    @click.option("--port", default=lambda: int(os.environ.get("BOOKMARKSYNC_PORT", "8080")),
                  type=int, show_default="8080", help="Port to listen on.")
    @click.option("--data-dir", default=lambda: os.environ.get("BOOKMARKSYNC_DATA_DIR", "./data"),
                  type=click.Path(), show_default="./data", help="Where blobs are stored.")
    @click.option("--rate-limit", default=30.0, type=float,
                  help="Seconds between accepted writes per sync id.")
    def serve(host: str, port: int, data_dir: str, rate_limit: float):
        """Run the BookmarkSync blob server.

        Stores encrypted blobs it cannot read. Put HTTPS termination
        in front of it for anything beyond localhost.
        """
        from ..server import create_server

        root = logging.getLogger()
        if root.level > logging.INFO:
            root.setLevel(logging.INFO)

        config = ServerConfig(
            host=host,
            port=port,
            data_dir=Path(data_dir),
            rate_limit_seconds=rate_limit,
        )
        try:
            server = create_server(config)
        except (StorageIO, OSError) as exc:
            console.print(f"[bold red]Cannot start server:[/] {exc}")
            sys.exit(1)

        def _handle_signal(signum, frame):
            logger.info("Received signal %s, shutting down", signal.Signals(signum).name)
            threading.Thread(target=server.shutdown, daemon=True).start()

        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, _handle_signal)

        console.print(
            f"\n  [green]BookmarkSync server[/] on [cyan]http://{host}:{server.port}[/]"
        )
        console.print(f"  Data: {config.data_dir}\n")
        try:
            server.serve_forever()
        finally:
            server.server_close()
            logger.info("Server stopped")
