"""Background refresh scheduler.

A daemon thread wakes every ``interval`` seconds and calls :meth:`tick`.
Each tick reloads the credential from the :class:`CredentialStore`, not
from any in-memory copy, so it sees tokens written by a concurrent
``penfield login``. When the remaining lifetime is below the proactive
buffer the refresh callable is invoked.

The buffer (default 4 hours) is much larger than the tick period (default
60 minutes), so at least one tick falls inside the window even when ticks
are delayed or missed.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from penfield.auth.credential_store import CredentialStore
from penfield.models import Credential

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """Periodically refresh the stored credential before it expires.

    Args:
        store: Source of truth for the current credential.
        refresh: Called with the loaded credential when it is due. Usually
            :meth:`penfield.auth.service.TokenService.refresh`.
        interval: Seconds between ticks.
        buffer_ms: Refresh when fewer than this many milliseconds remain.
        clock: Wall clock in seconds since the epoch.
    """

    def __init__(
        self,
        store: CredentialStore,
        refresh: Callable[[Credential], object],
        interval: float,
        buffer_ms: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._refresh = refresh
        self._interval = interval
        self._buffer_ms = buffer_ms
        self._clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> bool:
        """Run one check. Never raises.

        Returns:
            ``True`` if a refresh was attempted, whether or not it succeeded.
        """
        attempted = False
        try:
            credential = self._store.load()
            if credential is None:
                logger.debug("No stored credential; nothing to refresh")
                return False

            remaining = credential.remaining_ms(int(self._clock() * 1000))
            if remaining >= self._buffer_ms:
                logger.debug("Token valid for another %d min", remaining // 60_000)
                return False

            logger.info("Token expires in %d min, refreshing", max(remaining, 0) // 60_000)
            attempted = True
            self._refresh(credential)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Background refresh check failed: %s", exc)
        return attempted

    def start(self) -> None:
        """Start the background thread. No-op if it is already running."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="penfield-refresh",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Signal the thread to exit and wait for it."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            self.tick()
