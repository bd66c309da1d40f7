"""
Blob server -- stores sealed envelopes it cannot read.

BlobStore keeps one file per sync id, RateLimiter throttles writes,
and the HTTP app exposes both to clients.
"""

from .app import SyncServer, create_server
from .ratelimit import RateLimiter
from .store import BlobStore, normalize_id

__all__ = ["BlobStore", "RateLimiter", "SyncServer", "create_server", "normalize_id"]
