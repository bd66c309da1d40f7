"""
BookmarkSync — end-to-end encrypted bookmark synchronization.

The client seals the bookmark tree before it leaves the device.
The server stores opaque blobs keyed by an unguessable id and
never sees plaintext or identity.
"""

import os

__version__ = "1.0.0"

SYNC_HOME = os.environ.get("BOOKMARKSYNC_HOME", "~/.bookmarksync")
