"""
Bookmark tree providers.

The sync engine treats the tree as an opaque JSON value: it is
exported, serialized, sealed, and on the way back replaced wholesale.
A provider is whatever can hand the tree out and take a new one in.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol

from .models import PAYLOAD_VERSION, SyncPayload

logger = logging.getLogger("bookmarksync.bookmarks")


class BookmarkProvider(Protocol):
    """Source and sink for the local bookmark tree."""

    def export_tree(self) -> Any:
        """Return the current tree as a JSON-serializable value."""

    def replace_tree(self, tree: Any) -> None:
        """Replace the whole local tree with ``tree``."""


class JsonFileBookmarkProvider:
    """Keeps the bookmark tree in a JSON file.

    A missing file reads as an empty list. Replacement writes a temp
    file and renames it over the original.
    """

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()

    def export_tree(self) -> Any:
        if not self.path.exists():
            return []
        return json.loads(self.path.read_text(encoding="utf-8"))

    def replace_tree(self, tree: Any) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f".{self.path.name}.tmp")
        tmp_path.write_text(json.dumps(tree, indent=2), encoding="utf-8")
        tmp_path.replace(self.path)
        logger.info("Bookmark tree replaced: %s", self.path)


class MemoryBookmarkProvider:
    """In-memory provider for embedding and tests."""

    def __init__(self, tree: Any = None):
        self.tree = [] if tree is None else tree
        self.replacements = 0

    def export_tree(self) -> Any:
        return self.tree

    def replace_tree(self, tree: Any) -> None:
        self.tree = tree
        self.replacements += 1


def count_bookmarks(node: Any) -> int:
    """Count bookmark entries (nodes with a ``url``), ignoring folders."""
    if isinstance(node, list):
        return sum(count_bookmarks(child) for child in node)
    if not isinstance(node, dict):
        return 0
    count = 1 if node.get("url") else 0
    for child in node.get("children") or []:
        count += count_bookmarks(child)
    return count


def export_to_json(tree: Any, created: Optional[datetime] = None) -> SyncPayload:
    """Wrap a tree in the versioned export document.

    The same document is what gets sealed and uploaded.
    """
    return SyncPayload(
        version=PAYLOAD_VERSION,
        created=created or datetime.now(timezone.utc),
        bookmarks=tree,
    )


def write_export(tree: Any, output: Path) -> Path:
    """Write a pretty-printed export file and return its path."""
    payload = export_to_json(tree)
    output = Path(output).expanduser()
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(payload.model_dump_json(indent=2), encoding="utf-8")
    logger.info("Exported %d bookmarks to %s", count_bookmarks(tree), output)
    return output
