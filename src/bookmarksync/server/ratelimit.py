"""
Per-id write throttling.

At most one accepted write per sync id per window (30 seconds by
default). A rejected write leaves no trace: the window is neither
extended nor reset.

State lives in one dict behind one lock. Every operation is O(1), so
a global lock is fine even with many handler threads. Entries whose
window has expired are swept periodically; an expired entry would
accept the next write anyway, so sweeping never changes the outcome.
Nothing is persisted: a restart forgets every window.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

logger = logging.getLogger("bookmarksync.server.ratelimit")

DEFAULT_WINDOW_SECONDS = 30.0


class RateLimiter:
    """Fixed-window write limiter keyed by sync id.

    Args:
        window_seconds: Minimum spacing between accepted writes per id.
        sweep_every: Run an eviction pass after this many calls.
    """

    def __init__(
        self,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        sweep_every: int = 1024,
    ):
        self.window_seconds = window_seconds
        self.sweep_every = sweep_every
        self._lock = threading.Lock()
        self._last_accepted: dict[str, float] = {}
        self._calls = 0

    def should_accept(self, sync_id: str, now: Optional[float] = None) -> bool:
        """Decide whether a write for ``sync_id`` may proceed.

        Acceptance records ``now`` as the start of a new window.
        Rejection mutates nothing.

        Args:
            sync_id: Canonical sync id.
            now: Monotonic seconds. Defaults to ``time.monotonic()``.

        Returns:
            True if the write is accepted.
        """
        if now is None:
            now = time.monotonic()

        with self._lock:
            self._calls += 1
            if self._calls >= self.sweep_every:
                self._sweep_locked(now)

            last = self._last_accepted.get(sync_id)
            if last is not None and now - last < self.window_seconds:
                return False
            self._last_accepted[sync_id] = now
            return True

    def release(self, sync_id: str, accepted_at: float) -> bool:
        """Give back a window opened at ``accepted_at`` whose write failed.

        Only an acceptance would have opened the window, so the entry it
        replaced had already expired. Dropping the entry restores the
        observable state from before the call. A newer window is kept.

        Returns:
            True if the window was released.
        """
        with self._lock:
            if self._last_accepted.get(sync_id) != accepted_at:
                return False
            del self._last_accepted[sync_id]
        logger.debug("Released write window for %s", sync_id)
        return True

    def sweep(self, now: Optional[float] = None) -> int:
        """Evict entries whose window has expired.

        Returns:
            Number of entries removed.
        """
        if now is None:
            now = time.monotonic()
        with self._lock:
            return self._sweep_locked(now)

    def _sweep_locked(self, now: float) -> int:
        self._calls = 0
        expired = [
            key for key, last in self._last_accepted.items()
            if now - last >= self.window_seconds
        ]
        for key in expired:
            del self._last_accepted[key]
        if expired:
            logger.debug("Rate limiter swept %d expired entries", len(expired))
        return len(expired)

    def retry_after(self, sync_id: str, now: Optional[float] = None) -> float:
        """Seconds until ``sync_id`` may write again (0 if it may now)."""
        if now is None:
            now = time.monotonic()
        with self._lock:
            last = self._last_accepted.get(sync_id)
        if last is None:
            return 0.0
        return max(0.0, self.window_seconds - (now - last))

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_accepted)
