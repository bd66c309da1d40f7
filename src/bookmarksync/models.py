"""
Pydantic models for server configuration, client state, and the
sealed sync payload.

Timestamps that come from the server's clock are kept as ``int``
epoch nanoseconds. Timestamps that only the client ever reads
(attempt bookkeeping) are timezone-aware datetimes.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

DEFAULT_SERVER_URL = "https://sync.satoshihost.com"
DEFAULT_INTERVAL_MINUTES = 30
PAYLOAD_VERSION = 1


class ServerConfig(BaseModel):
    """Blob server settings."""

    host: str = "127.0.0.1"
    port: int = 8080
    data_dir: Path = Path("./data")
    rate_limit_seconds: float = 30.0
    max_sync_size: int = 2 * 1024 * 1024


class SyncStatus(str, Enum):
    """Outcome tag persisted after every attempt."""

    SUCCESS = "success"
    ERROR = "error"


class SyncPhase(str, Enum):
    """Where a sync attempt currently is."""

    IDLE = "idle"
    CHECKING_REMOTE = "checking_remote"
    UPLOADING = "uploading"
    DOWNLOADING = "downloading"
    NOOP = "noop"


class SyncAction(str, Enum):
    """What a finished attempt did."""

    UPLOADED = "uploaded"
    DOWNLOADED = "downloaded"
    NOOP = "noop"
    NOT_CONFIGURED = "not_configured"
    BUSY = "busy"
    FAILED = "failed"


class ClientSyncState(BaseModel):
    """Everything the client persists between attempts.

    The first group is user configuration, the second is written by
    the sync engine after each attempt.
    """

    sync_id: Optional[str] = None
    passphrase: Optional[str] = None
    server_url: str = DEFAULT_SERVER_URL
    auto_sync: bool = False
    interval_minutes: int = DEFAULT_INTERVAL_MINUTES
    bookmarks_file: Optional[Path] = None

    last_known_modified: Optional[int] = None
    last_sync_status: Optional[SyncStatus] = None
    last_attempt_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_kind: Optional[str] = None
    last_synced_digest: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.sync_id and self.passphrase)


CONFIG_FIELDS = (
    "sync_id",
    "passphrase",
    "server_url",
    "auto_sync",
    "interval_minutes",
    "bookmarks_file",
)


class SyncPayload(BaseModel):
    """The plaintext document that gets sealed and uploaded."""

    version: int = PAYLOAD_VERSION
    created: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    bookmarks: Any


class SyncResult(BaseModel):
    """Summary of one sync attempt."""

    action: SyncAction
    status: Optional[SyncStatus] = None
    last_modified: Optional[int] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != SyncStatus.ERROR
