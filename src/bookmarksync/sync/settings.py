"""
Client settings store.

Two files under the client home (``~/.bookmarksync`` by default):

    config.yaml  -- what the user chose: id, passphrase, server, schedule
    state.json   -- what the engine recorded: lastKnownModified, status

Both are read into one ClientSyncState and written back with
tmp-then-rename so a process killed mid-write leaves the old file.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Optional

import yaml

from .. import SYNC_HOME
from ..models import CONFIG_FIELDS, ClientSyncState

logger = logging.getLogger("bookmarksync.sync.settings")

CONFIG_FILE = "config.yaml"
STATE_FILE = "state.json"


def _atomic_write(path: Path, text: str, mode: Optional[int] = None) -> None:
    tmp_path = path.with_name(f".{path.name}.tmp")
    tmp_path.write_text(text, encoding="utf-8")
    if mode is not None:
        tmp_path.chmod(mode)
    tmp_path.replace(path)


class SettingsStore:
    """Load and persist ClientSyncState.

    Args:
        home: Client home directory. Defaults to ``$BOOKMARKSYNC_HOME``
            or ``~/.bookmarksync``.
    """

    def __init__(self, home: Optional[Path] = None):
        self.home = Path(home or SYNC_HOME).expanduser()
        self.config_file = self.home / CONFIG_FILE
        self.state_file = self.home / STATE_FILE
        self._lock = threading.RLock()

    def _read_config(self) -> dict[str, Any]:
        if not self.config_file.exists():
            return {}
        try:
            data = yaml.safe_load(self.config_file.read_text(encoding="utf-8")) or {}
        except (yaml.YAMLError, OSError) as exc:
            logger.warning("Failed to load sync config: %s", exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed sync config: %s", self.config_file)
            return {}
        return {k: v for k, v in data.items() if k in CONFIG_FIELDS}

    def _read_state(self) -> dict[str, Any]:
        if not self.state_file.exists():
            return {}
        try:
            data = json.loads(self.state_file.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to load sync state: %s", exc)
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if k not in CONFIG_FIELDS}

    def load(self) -> ClientSyncState:
        """Read settings and state, falling back to defaults on damage."""
        with self._lock:
            merged = {**self._read_state(), **self._read_config()}
            try:
                return ClientSyncState(**merged)
            except ValueError as exc:
                logger.warning("Invalid sync settings, using defaults: %s", exc)
                return ClientSyncState()

    def save(self, state: ClientSyncState) -> None:
        """Persist both files."""
        data = state.model_dump(mode="json")
        config = {k: data[k] for k in CONFIG_FIELDS}
        runtime = {k: v for k, v in data.items() if k not in CONFIG_FIELDS}

        with self._lock:
            self.home.mkdir(parents=True, exist_ok=True)
            _atomic_write(
                self.config_file,
                yaml.dump(config, default_flow_style=False),
                mode=0o600,
            )
            _atomic_write(self.state_file, json.dumps(runtime, indent=2))

    def update(self, **fields: Any) -> ClientSyncState:
        """Load, apply ``fields``, validate, save, and return the result."""
        with self._lock:
            current = self.load()
            updated = ClientSyncState(**{**current.model_dump(), **fields})
            self.save(updated)
        return updated

    def clear(self) -> None:
        """Forget every setting and all recorded state."""
        with self._lock:
            for path in (self.config_file, self.state_file):
                path.unlink(missing_ok=True)
        logger.info("Cleared sync settings in %s", self.home)
