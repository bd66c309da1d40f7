"""
BookmarkSync CLI.

Command groups live in their own modules and are attached to the
main Click group through register functions.

Entry point: bookmarksync.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="bookmarksync")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(verbose):
    """BookmarkSync: end-to-end encrypted bookmark sync."""
    from ._common import setup_logging

    setup_logging(verbose)


from .serve import register_serve_commands
from .sync_cmd import register_sync_commands

register_serve_commands(main)
register_sync_commands(main)
