"""Tests for the last-write-wins sync engine.

Covers:
- NotConfigured short-circuit
- upload / download / no-op branch selection and call counts
- failure handling: network, rate limit, wrong passphrase, malformed payload
- single-flight coalescing
"""

from __future__ import annotations

import json
import threading
from unittest.mock import MagicMock, call

import pytest

from bookmarksync.bookmarks import MemoryBookmarkProvider
from bookmarksync.crypto import derive_key, open_envelope, seal
from bookmarksync.errors import NetworkFailure, RateLimited
from bookmarksync.models import SyncAction, SyncPhase, SyncStatus
from bookmarksync.sync import SettingsStore, SyncClient
from bookmarksync.sync.engine import decode_payload, encode_payload, tree_digest
from bookmarksync.sync.remote import RemoteStore

from conftest import PASSPHRASE, SYNC_ID

LOCAL_TREE = [{"title": "Local", "url": "http://local"}]
REMOTE_TREE = [{"title": "Remote", "children": [{"title": "R", "url": "http://r"}]}]


@pytest.fixture(scope="module")
def key() -> bytes:
    return derive_key(PASSPHRASE)


@pytest.fixture
def remote() -> MagicMock:
    return MagicMock(spec=RemoteStore)


@pytest.fixture
def provider() -> MemoryBookmarkProvider:
    return MemoryBookmarkProvider(list(LOCAL_TREE))


@pytest.fixture
def client(configured_settings, provider, remote) -> SyncClient:
    return SyncClient(configured_settings, provider, remote_factory=lambda url: remote)


def _remote_envelope(key: bytes, tree) -> bytes:
    return seal(key, encode_payload(tree))


class TestNotConfigured:

    def test_missing_settings(self, sync_home, provider):
        factory = MagicMock()
        client = SyncClient(SettingsStore(sync_home), provider, remote_factory=factory)
        result = client.sync()
        assert result.action == SyncAction.NOT_CONFIGURED
        assert result.ok
        factory.assert_not_called()
        assert not (sync_home / "state.json").exists()

    def test_missing_passphrase(self, sync_home, provider, remote):
        SettingsStore(sync_home).update(sync_id=SYNC_ID)
        client = SyncClient(SettingsStore(sync_home), provider, remote_factory=lambda u: remote)
        assert client.sync().action == SyncAction.NOT_CONFIGURED
        assert remote.method_calls == []

    def test_scheduled_trigger_needs_auto_sync(self, client, remote):
        assert client.sync(manual=False).action == SyncAction.NOT_CONFIGURED
        assert remote.method_calls == []

    def test_scheduled_trigger_runs_when_enabled(self, client, configured_settings, remote):
        configured_settings.update(auto_sync=True)
        remote.info.return_value = None
        remote.put.return_value = 10
        assert client.sync(manual=False).action == SyncAction.UPLOADED


class TestUpload:

    def test_server_empty_uploads_once(self, client, remote, configured_settings, key):
        remote.info.return_value = None
        remote.put.return_value = 1_000

        result = client.sync()

        assert result.action == SyncAction.UPLOADED
        assert result.status == SyncStatus.SUCCESS
        remote.get.assert_not_called()
        assert remote.put.call_count == 1
        sent_id, envelope = remote.put.call_args.args
        assert sent_id == SYNC_ID
        payload = decode_payload(open_envelope(key, envelope))
        assert payload.bookmarks == LOCAL_TREE

        state = configured_settings.load()
        assert state.last_known_modified == 1_000
        assert state.last_sync_status == SyncStatus.SUCCESS
        assert state.last_synced_digest == tree_digest(LOCAL_TREE)

    def test_server_clock_is_authoritative(self, client, remote, configured_settings):
        remote.info.return_value = None
        remote.put.return_value = 42
        client.sync()
        assert configured_settings.load().last_known_modified == 42

    def test_local_change_pending_uploads(self, client, remote, configured_settings):
        configured_settings.update(
            last_known_modified=500, last_synced_digest=tree_digest(["old"])
        )
        remote.info.return_value = 500
        remote.put.return_value = 600

        assert client.sync().action == SyncAction.UPLOADED
        remote.get.assert_not_called()
        assert configured_settings.load().last_known_modified == 600

    def test_server_older_than_known_uploads(self, client, remote, configured_settings):
        configured_settings.update(last_known_modified=500)
        remote.info.return_value = 400
        remote.put.return_value = 700
        assert client.sync().action == SyncAction.UPLOADED


class TestNoOp:

    def test_equal_timestamps_only_check_info(self, client, remote, configured_settings):
        configured_settings.update(
            last_known_modified=500, last_synced_digest=tree_digest(LOCAL_TREE)
        )
        remote.info.return_value = 500

        result = client.sync()

        assert result.action == SyncAction.NOOP
        assert remote.method_calls == [call.info(SYNC_ID)]
        assert configured_settings.load().last_sync_status == SyncStatus.SUCCESS

    def test_equal_timestamps_without_digest(self, client, remote, configured_settings):
        configured_settings.update(last_known_modified=500)
        remote.info.return_value = 500
        assert client.sync().action == SyncAction.NOOP
        assert remote.method_calls == [call.info(SYNC_ID)]


class TestDownload:

    def test_server_newer_downloads_and_replaces(
        self, client, remote, provider, configured_settings, key
    ):
        configured_settings.update(last_known_modified=500)
        remote.info.return_value = 900
        remote.get.return_value = (_remote_envelope(key, REMOTE_TREE), 900)

        result = client.sync()

        assert result.action == SyncAction.DOWNLOADED
        assert remote.get.call_count == 1
        remote.put.assert_not_called()
        assert provider.tree == REMOTE_TREE
        assert provider.replacements == 1
        state = configured_settings.load()
        assert state.last_known_modified == 900
        assert state.last_synced_digest == tree_digest(REMOTE_TREE)

    def test_first_sync_on_new_device_downloads(self, client, remote, provider, key):
        remote.info.return_value = 900
        remote.get.return_value = (_remote_envelope(key, REMOTE_TREE), 900)
        assert client.sync().action == SyncAction.DOWNLOADED
        assert provider.tree == REMOTE_TREE

    def test_after_download_next_sync_is_noop(self, client, remote, key):
        remote.info.return_value = 900
        remote.get.return_value = (_remote_envelope(key, REMOTE_TREE), 900)
        client.sync()
        remote.reset_mock()
        remote.info.return_value = 900
        assert client.sync().action == SyncAction.NOOP
        assert remote.method_calls == [call.info(SYNC_ID)]

    def test_blob_vanished_falls_back_to_upload(self, client, remote):
        remote.info.return_value = 900
        remote.get.return_value = None
        remote.put.return_value = 950
        assert client.sync().action == SyncAction.UPLOADED


class TestFailures:

    def test_wrong_passphrase(self, client, remote, provider, configured_settings):
        configured_settings.update(last_known_modified=500)
        remote.info.return_value = 900
        remote.get.return_value = (_remote_envelope(derive_key("other"), REMOTE_TREE), 900)

        result = client.sync()

        assert result.action == SyncAction.FAILED
        assert result.error_kind == "authentication"
        assert provider.tree == LOCAL_TREE
        assert provider.replacements == 0
        state = configured_settings.load()
        assert state.last_known_modified == 500
        assert state.last_sync_status == SyncStatus.ERROR
        assert state.last_error_kind == "authentication"

    @pytest.mark.parametrize("plaintext", [
        b"not json at all",
        b"\xff\xfe\xfd",
        json.dumps({"version": 1}).encode(),
        json.dumps({"version": 2, "created": "2026-01-01T00:00:00Z", "bookmarks": []}).encode(),
    ])
    def test_malformed_payload(self, client, remote, provider, configured_settings, key, plaintext):
        remote.info.return_value = 900
        remote.get.return_value = (seal(key, plaintext), 900)

        result = client.sync()

        assert result.error_kind == "malformed"
        assert provider.replacements == 0
        assert configured_settings.load().last_known_modified is None

    def test_network_failure_on_info(self, client, remote, provider, configured_settings):
        configured_settings.update(last_known_modified=500)
        remote.info.side_effect = NetworkFailure("connection refused")

        result = client.sync()

        assert result.action == SyncAction.FAILED
        assert result.error_kind == "network"
        assert provider.replacements == 0
        state = configured_settings.load()
        assert state.last_known_modified == 500
        assert state.last_attempt_at is not None
        assert state.last_sync_status == SyncStatus.ERROR

    def test_rate_limited_upload(self, client, remote, configured_settings):
        remote.info.return_value = None
        remote.put.side_effect = RateLimited("slow down")
        result = client.sync()
        assert result.error_kind == "rate_limited"
        assert configured_settings.load().last_known_modified is None

    def test_success_clears_previous_error(self, client, remote, configured_settings):
        configured_settings.update(last_error="boom", last_error_kind="network")
        remote.info.return_value = None
        remote.put.return_value = 5
        client.sync()
        state = configured_settings.load()
        assert state.last_error is None
        assert state.last_error_kind is None


class TestSingleFlight:

    def test_overlapping_trigger_is_ignored(self, client, remote):
        started = threading.Event()
        release = threading.Event()

        def slow_info(sync_id):
            started.set()
            release.wait(timeout=5)
            return None

        remote.info.side_effect = slow_info
        remote.put.return_value = 1

        results = []
        worker = threading.Thread(target=lambda: results.append(client.sync()))
        worker.start()
        assert started.wait(timeout=5)

        assert client.in_flight
        assert client.phase == SyncPhase.CHECKING_REMOTE
        assert client.sync().action == SyncAction.BUSY

        release.set()
        worker.join(timeout=10)

        assert results[0].action == SyncAction.UPLOADED
        assert remote.info.call_count == 1
        assert client.phase == SyncPhase.IDLE
        assert not client.in_flight
