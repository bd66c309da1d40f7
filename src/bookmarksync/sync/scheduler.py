"""
Periodic sync trigger.

The process hosting the scheduler may be suspended or restarted at any
time, so there is no in-memory countdown. Each tick reloads the
persisted ``last_attempt_at`` and fires only if a full interval has
elapsed since then.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..models import ClientSyncState, SyncResult
from .engine import SyncClient

logger = logging.getLogger("bookmarksync.sync.scheduler")

DEFAULT_TICK_SECONDS = 30


def next_due(state: ClientSyncState) -> Optional[datetime]:
    """When the next scheduled attempt is due, or None if auto-sync is off."""
    if not state.auto_sync or not state.is_configured:
        return None
    if state.last_attempt_at is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    last = state.last_attempt_at
    if last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)
    return last + timedelta(minutes=max(1, state.interval_minutes))


def is_due(state: ClientSyncState, now: datetime) -> bool:
    due = next_due(state)
    return due is not None and now >= due


class SyncScheduler:
    """Fires scheduled syncs on a SyncClient.

    Args:
        client: The engine to trigger.
        tick_seconds: How often to re-check due-ness.
        clock: Returns the current UTC datetime.
    """

    def __init__(
        self,
        client: SyncClient,
        tick_seconds: float = DEFAULT_TICK_SECONDS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.client = client
        self.tick_seconds = tick_seconds
        self._clock = clock
        self._stop_event = threading.Event()

    def tick(self) -> Optional[SyncResult]:
        """Run a scheduled sync if one is due.

        Returns:
            The SyncResult, or None if nothing was due.
        """
        state = self.client.settings.load()
        if not is_due(state, self._clock()):
            return None
        logger.info("Scheduled sync due, starting")
        return self.client.sync(manual=False)

    def trigger(self) -> SyncResult:
        """Manual sync request. Coalesces with a running attempt."""
        return self.client.sync(manual=True)

    def run_forever(self) -> None:
        """Tick until :meth:`stop` is called."""
        logger.info("Scheduler started (tick every %ss)", self.tick_seconds)
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as exc:
                logger.error("Scheduled sync crashed: %s", exc)
            self._stop_event.wait(timeout=self.tick_seconds)
        logger.info("Scheduler stopped")

    def stop(self) -> None:
        self._stop_event.set()
