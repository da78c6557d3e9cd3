"""ETag seed cache for the wiki page."""

import hashlib
import logging
import threading
import time
from typing import Optional


logger = logging.getLogger(__name__)


class EtagSeedCache:
    """Holds the ETag served with the wiki page.

    The seed is an MD5 of the time it was computed. A background thread
    recomputes it every ``interval_seconds`` so browsers re-fetch the wiki
    periodically even when the file on disk has not changed.
    """

    def __init__(self, interval_seconds: int = 3600):
        self._interval = interval_seconds
        self._lock = threading.Lock()
        self._value = ""
        self._refresh_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self.refresh()

    @property
    def value(self) -> str:
        with self._lock:
            return self._value

    def refresh(self) -> str:
        """Recompute the seed and return it."""
        seed = str(int(time.time())).encode('ascii')
        value = hashlib.md5(seed).hexdigest()
        with self._lock:
            self._value = value
        logger.debug(f"ETag seed refreshed: {value}")
        return value

    def start(self) -> None:
        """Start background thread refreshing the seed."""
        if self._refresh_thread and self._refresh_thread.is_alive():
            logger.warning("ETag refresh already running")
            return

        self._stop_event.clear()
        self._refresh_thread = threading.Thread(
            target=self._refresh_loop,
            daemon=True,
            name="EtagSeedRefresh"
        )
        self._refresh_thread.start()

        logger.info(f"Started ETag seed refresh (interval: {self._interval}s)")

    def stop(self) -> None:
        """Stop background refresh thread."""
        if not self._refresh_thread or not self._refresh_thread.is_alive():
            return

        self._stop_event.set()
        self._refresh_thread.join(timeout=5)

        logger.info("Stopped ETag seed refresh")

    def _refresh_loop(self) -> None:
        while not self._stop_event.wait(timeout=self._interval):
            self.refresh()
