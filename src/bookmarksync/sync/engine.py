"""
Sync Engine -- last-write-wins bookmark synchronization.

One attempt:

    load settings -> info(id) -> compare timestamps -> upload | download | no-op
                                                   -> persist outcome

The server's clock is the only clock that matters: lastKnownModified is
always a value the server handed back, never a local timestamp. A
download is validated in full before the local tree is touched, and a
failed attempt leaves both the tree and lastKnownModified as they were.

The engine is single-flight: a trigger that arrives while an attempt
is running gets a BUSY result instead of starting a second one.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import ValidationError

from ..bookmarks import BookmarkProvider, export_to_json
from ..crypto import Cipher
from ..errors import BookmarkSyncError, MalformedPayload, NotConfigured
from ..models import (
    PAYLOAD_VERSION,
    ClientSyncState,
    SyncAction,
    SyncPayload,
    SyncPhase,
    SyncResult,
    SyncStatus,
)
from .remote import RemoteStore
from .settings import SettingsStore

logger = logging.getLogger("bookmarksync.sync.engine")


def tree_digest(tree: Any) -> str:
    """Stable SHA-256 of a bookmark tree, independent of key order."""
    canonical = json.dumps(tree, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def decode_payload(plaintext: bytes) -> SyncPayload:
    """Parse and validate a decrypted payload.

    Raises:
        MalformedPayload: Not UTF-8 JSON, wrong shape, or unknown version.
    """
    try:
        payload = SyncPayload.model_validate_json(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, ValidationError) as exc:
        raise MalformedPayload(f"Decrypted payload is not a bookmark export: {exc}") from exc
    if payload.version != PAYLOAD_VERSION:
        raise MalformedPayload(f"Unsupported payload version {payload.version}")
    return payload


def encode_payload(tree: Any) -> bytes:
    return export_to_json(tree).model_dump_json().encode("utf-8")


class SyncClient:
    """Decides and performs one upload, download, or no-op per call.

    Args:
        settings: Where ClientSyncState lives.
        provider: Local bookmark tree.
        remote_factory: Builds a RemoteStore for a server URL.
        clock: Returns the current UTC datetime.
    """

    def __init__(
        self,
        settings: SettingsStore,
        provider: BookmarkProvider,
        remote_factory: Callable[[str], RemoteStore] = RemoteStore,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.settings = settings
        self.provider = provider
        self._remote_factory = remote_factory
        self._clock = clock
        self._flight = threading.Lock()
        self._phase = SyncPhase.IDLE
        self._ciphers: dict[str, Cipher] = {}

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def in_flight(self) -> bool:
        return self._flight.locked()

    def _cipher(self, passphrase: str) -> Cipher:
        cipher = self._ciphers.get(passphrase)
        if cipher is None:
            self._ciphers = {passphrase: Cipher(passphrase)}
            cipher = self._ciphers[passphrase]
        return cipher

    def sync(self, manual: bool = True) -> SyncResult:
        """Run one sync attempt unless another is already running.

        Args:
            manual: True for a user-requested sync. Scheduled triggers
                pass False and are skipped while auto-sync is disabled.

        Returns:
            SyncResult describing what happened.
        """
        if not self._flight.acquire(blocking=False):
            logger.info("Sync already in progress, ignoring trigger")
            return SyncResult(action=SyncAction.BUSY)
        try:
            return self._attempt(manual)
        except NotConfigured as exc:
            logger.debug("Skipping sync: %s", exc)
            return SyncResult(action=SyncAction.NOT_CONFIGURED)
        finally:
            self._phase = SyncPhase.IDLE
            self._flight.release()

    def _attempt(self, manual: bool) -> SyncResult:
        state = self.settings.load()
        if not state.is_configured or (not manual and not state.auto_sync):
            raise NotConfigured("sync id, passphrase, or auto-sync is not set")

        attempted_at = self._clock()
        try:
            action, modified, digest = self._decide_and_run(state)
        except BookmarkSyncError as exc:
            logger.warning("Sync failed (%s): %s", exc.kind, exc)
            self.settings.update(
                last_attempt_at=attempted_at,
                last_sync_status=SyncStatus.ERROR,
                last_error=str(exc),
                last_error_kind=exc.kind,
            )
            return SyncResult(
                action=SyncAction.FAILED,
                status=SyncStatus.ERROR,
                last_modified=state.last_known_modified,
                error=str(exc),
                error_kind=exc.kind,
            )
        except (OSError, ValueError) as exc:
            logger.error("Sync failed reading or writing local bookmarks: %s", exc)
            self.settings.update(
                last_attempt_at=attempted_at,
                last_sync_status=SyncStatus.ERROR,
                last_error=str(exc),
                last_error_kind="local",
            )
            return SyncResult(
                action=SyncAction.FAILED,
                status=SyncStatus.ERROR,
                last_modified=state.last_known_modified,
                error=str(exc),
                error_kind="local",
            )

        self.settings.update(
            last_attempt_at=attempted_at,
            last_sync_at=attempted_at,
            last_known_modified=modified,
            last_synced_digest=digest,
            last_sync_status=SyncStatus.SUCCESS,
            last_error=None,
            last_error_kind=None,
        )
        logger.info("Sync finished: %s", action.value)
        return SyncResult(
            action=action, status=SyncStatus.SUCCESS, last_modified=modified
        )

    def _decide_and_run(
        self, state: ClientSyncState
    ) -> tuple[SyncAction, Optional[int], Optional[str]]:
        remote = self._remote_factory(state.server_url)

        self._phase = SyncPhase.CHECKING_REMOTE
        server_modified = remote.info(state.sync_id)
        known = state.last_known_modified

        if server_modified is None:
            logger.info("Server has no data for this id, uploading")
            return self._upload(remote, state)

        if known is None or server_modified > known:
            return self._download(remote, state)

        local_digest = tree_digest(self.provider.export_tree())
        pending = (
            state.last_synced_digest is not None
            and local_digest != state.last_synced_digest
        )
        if server_modified < known or pending:
            return self._upload(remote, state)

        self._phase = SyncPhase.NOOP
        logger.info("Already in sync")
        return SyncAction.NOOP, known, state.last_synced_digest

    def _upload(self, remote: RemoteStore, state: ClientSyncState):
        self._phase = SyncPhase.UPLOADING
        tree = self.provider.export_tree()
        envelope = self._cipher(state.passphrase).seal(encode_payload(tree))
        modified = remote.put(state.sync_id, envelope)
        logger.info("Uploaded %d bytes", len(envelope))
        return SyncAction.UPLOADED, modified, tree_digest(tree)

    def _download(self, remote: RemoteStore, state: ClientSyncState):
        self._phase = SyncPhase.DOWNLOADING
        fetched = remote.get(state.sync_id)
        if fetched is None:
            logger.info("Server data vanished before download, uploading")
            return self._upload(remote, state)

        envelope, modified = fetched
        plaintext = self._cipher(state.passphrase).open(envelope)
        payload = decode_payload(plaintext)

        self.provider.replace_tree(payload.bookmarks)
        logger.info("Downloaded %d bytes, local tree replaced", len(envelope))
        return SyncAction.DOWNLOADED, modified, tree_digest(payload.bookmarks)
