"""
BlobStore -- durable id -> (ciphertext, lastModified) mapping.

One file per id under the data root:

    <data_root>/<uuid>.blob

The file content is the raw ciphertext and the file's modification time
(nanoseconds) is the only record of lastModified. There is no separate
metadata file to drift out of sync.

Writes land in a hidden temp file beside the target and are renamed
over it, so a concurrent reader opens either the complete old blob or
the complete new one. Writers on the same id are serialised by a
per-id lock; different ids never contend.
"""

from __future__ import annotations

import logging
import os
import threading
import time
import uuid
import weakref
from pathlib import Path
from typing import Callable

from ..errors import InvalidId, NotFound, PayloadTooLarge, StorageIO

logger = logging.getLogger("bookmarksync.server.store")

MAX_SYNC_SIZE = 2 * 1024 * 1024
BLOB_SUFFIX = ".blob"
TMP_SUFFIX = ".tmp"


def normalize_id(sync_id: str) -> str:
    """Validate a sync id and return its canonical lower-case form.

    Args:
        sync_id: Candidate id from a URL path.

    Returns:
        The 36-character hyphenated UUID string.

    Raises:
        InvalidId: If the value is not a 36-character UUID.
    """
    if not isinstance(sync_id, str) or len(sync_id) != 36:
        raise InvalidId(f"Invalid sync id: {sync_id!r}")
    try:
        return str(uuid.UUID(sync_id))
    except ValueError as exc:
        raise InvalidId(f"Invalid sync id: {sync_id!r}") from exc


class BlobStore:
    """File-backed blob storage keyed by sync id.

    Args:
        data_dir: Root directory for blob files. Created if missing.
        max_size: Largest accepted blob in bytes.
        clock: Wall clock returning epoch nanoseconds.
    """

    def __init__(
        self,
        data_dir: Path,
        max_size: int = MAX_SYNC_SIZE,
        clock: Callable[[], int] = time.time_ns,
    ):
        self.data_dir = Path(data_dir).expanduser()
        self.max_size = max_size
        self._clock = clock
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageIO(f"Cannot create data dir {self.data_dir}: {exc}") from exc

        self._sweep_temp_files()

    def _path(self, sync_id: str) -> Path:
        return self.data_dir / f"{sync_id}{BLOB_SUFFIX}"

    def _lock_for(self, sync_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(sync_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[sync_id] = lock
            return lock

    def _sweep_temp_files(self) -> None:
        """Remove temp files left behind by a crash mid-write."""
        for stale in self.data_dir.glob(f".*{TMP_SUFFIX}"):
            try:
                stale.unlink()
                logger.info("Removed abandoned temp file: %s", stale.name)
            except OSError as exc:
                logger.warning("Could not remove %s: %s", stale.name, exc)

    def create(self) -> str:
        """Allocate a fresh random id. Nothing is written until the first put.

        No collision check is made against existing records; a UUID4
        collision is not a practical concern.
        """
        return str(uuid.uuid4())

    def get(self, sync_id: str) -> tuple[bytes, int]:
        """Read a blob and its lastModified.

        Body and timestamp come from the same open file descriptor, so
        they always describe the same version of the blob.

        Raises:
            InvalidId: Malformed id.
            NotFound: Nothing stored under this id.
            StorageIO: The file exists but could not be read.
        """
        sync_id = normalize_id(sync_id)
        try:
            with open(self._path(sync_id), "rb") as f:
                modified = os.fstat(f.fileno()).st_mtime_ns
                data = f.read()
        except FileNotFoundError as exc:
            raise NotFound(f"No data for {sync_id}") from exc
        except OSError as exc:
            logger.error("Error reading blob %s: %s", sync_id, exc)
            raise StorageIO(f"Read failed for {sync_id}") from exc
        return data, modified

    def info(self, sync_id: str) -> int:
        """Return lastModified without touching the blob body.

        Raises:
            InvalidId: Malformed id.
            NotFound: Nothing stored under this id.
        """
        sync_id = normalize_id(sync_id)
        try:
            return self._path(sync_id).stat().st_mtime_ns
        except FileNotFoundError as exc:
            raise NotFound(f"No data for {sync_id}") from exc
        except OSError as exc:
            logger.error("Error stating blob %s: %s", sync_id, exc)
            raise StorageIO(f"Stat failed for {sync_id}") from exc

    def put(self, sync_id: str, data: bytes) -> int:
        """Fully replace the blob stored under ``sync_id``.

        The new lastModified is the server's current clock, bumped to
        one nanosecond past the previous value if the clock has not
        moved forward, so lastModified never decreases.

        Returns:
            The stored lastModified, read back from the filesystem.

        Raises:
            InvalidId: Malformed id.
            PayloadTooLarge: ``data`` exceeds ``max_size``.
            StorageIO: The write or rename failed.
        """
        sync_id = normalize_id(sync_id)
        if len(data) > self.max_size:
            raise PayloadTooLarge(
                f"Payload of {len(data)} bytes exceeds {self.max_size}"
            )

        path = self._path(sync_id)
        tmp_path = self.data_dir / f".{sync_id}.{uuid.uuid4().hex}{TMP_SUFFIX}"

        with self._lock_for(sync_id):
            try:
                previous = path.stat().st_mtime_ns
            except FileNotFoundError:
                previous = None

            modified = self._clock()
            if previous is not None and modified <= previous:
                modified = previous + 1

            try:
                with open(tmp_path, "wb") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.utime(tmp_path, ns=(modified, modified))
                os.replace(tmp_path, path)
                stored = path.stat().st_mtime_ns
            except OSError as exc:
                logger.error("Error writing blob %s: %s", sync_id, exc)
                tmp_path.unlink(missing_ok=True)
                raise StorageIO(f"Write failed for {sync_id}") from exc

        logger.debug("Stored %d bytes for %s", len(data), sync_id)
        return stored

    def delete(self, sync_id: str) -> None:
        """Remove a blob. Deleting an absent id succeeds.

        Raises:
            InvalidId: Malformed id.
            StorageIO: The file exists but could not be removed.
        """
        sync_id = normalize_id(sync_id)
        with self._lock_for(sync_id):
            try:
                self._path(sync_id).unlink()
            except FileNotFoundError:
                return
            except OSError as exc:
                logger.error("Error deleting blob %s: %s", sync_id, exc)
                raise StorageIO(f"Delete failed for {sync_id}") from exc
        logger.debug("Deleted %s", sync_id)
