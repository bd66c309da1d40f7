"""
Client-side sync -- seal locally, store remotely, last write wins.

The engine decides between upload, download, and no-op by comparing
the server's lastModified with the last value this device saw.
"""

from .engine import SyncClient
from .remote import RemoteStore
from .scheduler import SyncScheduler
from .settings import SettingsStore

__all__ = ["RemoteStore", "SettingsStore", "SyncClient", "SyncScheduler"]
