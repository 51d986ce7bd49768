# drop_relay/core/retention.py
"""Retention sweeper.

Undelivered mail is only ever removed here, so this is what bounds mailbox
growth. Runs once at start, then on a fixed period, on its own thread.
"""

import logging
import threading
from datetime import timedelta
from typing import Optional

from drop_relay.core.clock import Clock, utc_now
from drop_relay.core.message import MessageStore

logger = logging.getLogger(__name__)


class RetentionSweeper:

    def __init__(
        self,
        store: MessageStore,
        retention_seconds: int = 7 * 24 * 60 * 60,
        interval_seconds: float = 24 * 60 * 60,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.retention = timedelta(seconds=retention_seconds)
        self.interval_seconds = interval_seconds
        self.clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> int:
        """Delete mail older than the retention window. Never raises."""
        cutoff = self.clock() - self.retention
        logger.info("Starting scheduled cleanup of old messages", extra={"cutoff": cutoff.isoformat()})
        try:
            deleted = self.store.purge_older_than(cutoff)
        except Exception as e:
            # Retried on the next scheduled run
            logger.error("Failed to run scheduled cleanup", exc_info=True, extra={"error": str(e.__cause__ or e)})
            return 0

        logger.info("Completed scheduled cleanup", extra={"count": deleted})
        return deleted

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="retention-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self):
        while not self._stop.is_set():
            self.run_once()
            # wait() returns early once stop() is called
            if self._stop.wait(self.interval_seconds):
                break
