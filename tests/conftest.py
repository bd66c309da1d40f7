"""Shared test fixtures for bookmarksync."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from bookmarksync.models import ServerConfig
from bookmarksync.server import create_server
from bookmarksync.sync import SettingsStore

PASSPHRASE = "correct horse"
SYNC_ID = "11111111-1111-4111-8111-111111111111"


@pytest.fixture
def sync_home(tmp_path: Path) -> Path:
    """Provide an empty client home directory."""
    home = tmp_path / ".bookmarksync"
    home.mkdir()
    return home


@pytest.fixture
def configured_settings(sync_home: Path) -> SettingsStore:
    """A settings store with id, passphrase, and a dummy server URL."""
    store = SettingsStore(sync_home)
    store.update(sync_id=SYNC_ID, passphrase=PASSPHRASE, server_url="http://sync.test")
    return store


@pytest.fixture
def live_server(tmp_path: Path):
    """Run a blob server on an ephemeral port for the duration of a test."""
    config = ServerConfig(port=0, data_dir=tmp_path / "server-data")
    server = create_server(config)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    yield server

    server.shutdown()
    server.server_close()
    thread.join(timeout=5)


@pytest.fixture
def server_url(live_server) -> str:
    return f"http://127.0.0.1:{live_server.port}"
