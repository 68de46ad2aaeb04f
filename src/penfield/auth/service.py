"""Long-lived token owner: in-memory cache, accessor, retries, and lifecycle.

A single :class:`TokenService` per process holds the current
:class:`~penfield.models.Credential`. Both the request path
(:meth:`TokenService.get_access_token`) and the background
:class:`~penfield.auth.scheduler.RefreshScheduler` go through
:meth:`TokenService.refresh`, which is guarded by a
:class:`~penfield.auth.single_flight.SingleFlight` so overlapping refresh
decisions cost one network round trip.

Lifecycle::

    service = TokenService(settings, CredentialStore(credentials_path(settings)))
    service.start()            # load credential, start the background thread
    token = service.get_access_token()
    service.stop()
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from penfield.auth.credential_store import CredentialStore
from penfield.auth.rotator import RetryPolicy, TokenRotator
from penfield.auth.scheduler import RefreshScheduler
from penfield.auth.single_flight import SingleFlight
from penfield.exceptions import NotAuthenticatedError, RefreshError
from penfield.models import Credential, Settings

logger = logging.getLogger(__name__)

LOGIN_HINT = "Run: penfield login"


class TokenService:
    """Provide a valid access token, refreshing it when due.

    Args:
        settings: Effective configuration (auth URL, buffer, interval).
        store: The credential file.
        rotator: Performs the refresh grant. Defaults to a
            :class:`~penfield.auth.rotator.TokenRotator` using
            ``settings.request_timeout``.
        clock: Wall clock in seconds since the epoch.
        sleep: Used for retry backoff.
        retry: Attempts and backoff for transient refresh failures.
    """

    def __init__(
        self,
        settings: Settings,
        store: CredentialStore,
        rotator: Optional[TokenRotator] = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        retry: RetryPolicy = RetryPolicy(),
    ) -> None:
        self._settings = settings
        self._store = store
        self._rotator = rotator or TokenRotator(timeout=settings.request_timeout)
        self._clock = clock
        self._sleep = sleep
        self._retry = retry
        self._lock = threading.Lock()
        self._credential: Optional[Credential] = None
        self._flight: SingleFlight[Credential] = SingleFlight()
        self._scheduler: Optional[RefreshScheduler] = None

    # ------------------------------------------------------------------ #
    # Cache
    # ------------------------------------------------------------------ #

    @property
    def credential(self) -> Optional[Credential]:
        """The cached credential, if any."""
        with self._lock:
            return self._credential

    def adopt(self, credential: Credential) -> None:
        """Replace the cached credential."""
        with self._lock:
            self._credential = credential

    def load(self) -> Optional[Credential]:
        """Reload the credential from the store into the cache.

        A missing or unreadable file leaves the cache untouched.
        """
        credential = self._store.load()
        if credential is not None:
            self.adopt(credential)
        return credential

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ------------------------------------------------------------------ #
    # Accessor
    # ------------------------------------------------------------------ #

    def get_access_token(self) -> str:
        """Return an access token that is valid now, refreshing if it is due.

        Raises:
            NotAuthenticatedError: No credential is stored, or the token has
                expired and could not be refreshed.
        """
        credential = self.credential or self.load()
        if credential is None:
            raise NotAuthenticatedError(f"Not authenticated. {LOGIN_HINT}")

        buffer_ms = self._settings.refresh_buffer_ms
        if not credential.is_due(self._now_ms(), buffer_ms):
            return credential.access_token

        # Another process (or a login) may already have written a newer token
        stored = self.load()
        if stored is not None:
            credential = stored
            if not credential.is_due(self._now_ms(), buffer_ms):
                return credential.access_token

        if not credential.refresh_token:
            if not credential.is_expired(self._now_ms()):
                return credential.access_token
            raise NotAuthenticatedError(f"Token expired. {LOGIN_HINT}")

        try:
            return self.refresh(credential).access_token
        except RefreshError as exc:
            if not credential.is_expired(self._now_ms()):
                logger.warning("Token refresh failed, using current token until it expires: %s", exc)
                return credential.access_token
            raise NotAuthenticatedError(f"Token refresh failed. {LOGIN_HINT}") from exc

    def is_authenticated(self) -> bool:
        """Whether a credential exists whose access token is not yet due."""
        credential = self.credential or self.load()
        if credential is None:
            return False
        return not credential.is_due(self._now_ms(), self._settings.refresh_buffer_ms)

    # ------------------------------------------------------------------ #
    # Refresh
    # ------------------------------------------------------------------ #

    def refresh(self, credential: Optional[Credential] = None) -> Credential:
        """Refresh *credential* (default: the cached one) and persist the result.

        Concurrent callers share a single in-flight refresh. Transient
        failures are retried according to the :class:`RetryPolicy`.

        A *credential* that has already been rotated in this process (the
        cache holds a newer, not yet due one) is not sent again: its refresh
        token is spent, and the cached credential is returned instead.

        Returns:
            The rotated credential as written to the store. If writing the
            file fails, the rotated credential is still returned and cached
            in memory, and a warning is logged.

        Raises:
            NotAuthenticatedError: There is no credential at all.
            RefreshError: The refresh failed terminally or retries ran out.
        """
        return self._flight.do(lambda: self._refresh_with_retry(credential))

    def _refresh_with_retry(self, credential: Optional[Credential]) -> Credential:
        current = self.credential
        if (
            credential is not None
            and current is not None
            and current.refresh_token != credential.refresh_token
            and current.expires_at > credential.expires_at
            and not current.is_due(self._now_ms(), self._settings.refresh_buffer_ms)
        ):
            # Already rotated since the caller read it; its refresh token is spent
            logger.debug("Skipping refresh of a superseded credential")
            return current

        credential = credential or current or self.load()
        if credential is None:
            raise NotAuthenticatedError(f"Not authenticated. {LOGIN_HINT}")
        if not credential.refresh_token:
            raise RefreshError("No refresh token available; automatic refresh is disabled")

        attempt = 0
        while True:
            attempt += 1
            try:
                grant = self._rotator.refresh(
                    self._settings.auth_url,
                    credential.refresh_token,
                    credential.client_id,
                )
                break
            except RefreshError as exc:
                if exc.transient and attempt < self._retry.attempts:
                    delay = self._retry.delay(attempt)
                    logger.warning(
                        "Transient error on refresh attempt %d/%d, retrying in %.0fs: %s",
                        attempt,
                        self._retry.attempts,
                        delay,
                        exc,
                    )
                    self._sleep(delay)
                    continue
                logger.warning("Token refresh failed: %s", exc)
                raise

        rotated = credential.rotated(grant, self._now_ms())
        # Cache first: the old refresh token may already be invalidated
        self.adopt(rotated)
        try:
            saved = self._store.save(rotated)
        except OSError as exc:
            logger.warning(
                "Token refreshed but could not be saved to %s; "
                "it is kept in memory only: %s",
                self._store.path,
                exc,
            )
            return rotated
        self.adopt(saved)

        if attempt > 1:
            logger.info("Token refreshed successfully after %d attempts", attempt)
        else:
            logger.info("Token refreshed successfully")
        return saved

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Load the stored credential and start background refresh. Idempotent."""
        if self.running:
            return

        credential = self.load()
        if credential is None:
            logger.info("No credentials found, running unauthenticated")
        elif credential.refresh_token:
            logger.info("Credentials loaded, starting background refresh")
        else:
            logger.info(
                "Credentials loaded (no refresh token, re-login required when expired)"
            )

        self._scheduler = RefreshScheduler(
            self._store,
            self.refresh,
            interval=self._settings.refresh_interval_seconds,
            buffer_ms=self._settings.refresh_buffer_ms,
            clock=self._clock,
        )
        self._scheduler.start()

    def stop(self) -> None:
        """Stop background refresh. Idempotent."""
        if self._scheduler is None:
            return
        self._scheduler.stop()
        self._scheduler = None
        logger.info("Token service stopped")
