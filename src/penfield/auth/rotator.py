"""Refresh-token grant with rotation (:rfc:`6749` section 6, :rfc:`9700`).

:class:`TokenRotator` performs exactly one refresh: it re-runs discovery to
get the current token endpoint, then POSTs ``grant_type=refresh_token``.
It never retries. Retrying is the caller's job, driven by
:class:`RetryPolicy` and the :attr:`~penfield.exceptions.RefreshError.transient`
flag on the raised error.

Failure classification:

* **transient** -- transport failures (connection refused, DNS, timeouts),
  discovery that failed at the transport level or with a 5xx, HTTP 5xx from
  the token endpoint, and the OAuth codes ``server_error`` and
  ``temporarily_unavailable``.
* **terminal** -- every other answer from the server, most importantly
  ``invalid_grant`` (the refresh token is dead and a new login is needed).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx
from pydantic import ValidationError

from penfield.auth.discovery import discover
from penfield.auth.oauth import FORM_HEADERS, REFRESH_TOKEN_GRANT, read_error, status_line
from penfield.exceptions import DiscoveryError, RefreshError
from penfield.models import TokenGrant

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_CODES = frozenset({"server_error", "temporarily_unavailable"})


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for refresh attempts.

    Attributes:
        attempts: Total attempts, including the first.
        base_delay: Delay in seconds before the second attempt; doubles for
            each following attempt.
    """

    attempts: int = 3
    base_delay: float = 1.0

    def delay(self, attempt: int) -> float:
        """Return the delay to wait after failed attempt number *attempt* (1-based)."""
        return self.base_delay * (2 ** (attempt - 1))


def _is_transient_discovery_failure(exc: DiscoveryError) -> bool:
    cause = exc.__cause__
    if isinstance(cause, httpx.TransportError):
        return True
    if isinstance(cause, httpx.HTTPStatusError):
        return cause.response.status_code >= 500
    return False


class TokenRotator:
    """Exchange a refresh token for a new access token.

    Args:
        timeout: HTTP timeout in seconds for discovery and the token request.

    Example::

        grant = TokenRotator().refresh("https://auth.penfield.app", "rt-1", "client-1")
        credential = credential.rotated(grant, now_ms)
    """

    def __init__(self, timeout: float = 30.0) -> None:
        self._timeout = timeout

    def refresh(self, auth_url: str, refresh_token: str, client_id: str) -> TokenGrant:
        """Perform a single refresh-token grant.

        The returned grant's ``refresh_token`` is ``None`` when the server
        did not rotate; :meth:`~penfield.models.Credential.rotated` then
        keeps the current one.

        Raises:
            RefreshError: With ``transient`` set as described in the module
                docstring.
        """
        try:
            doc = discover(auth_url, timeout=self._timeout)
        except DiscoveryError as exc:
            raise RefreshError(
                f"Token refresh failed: {exc}",
                transient=_is_transient_discovery_failure(exc),
            ) from exc

        data = {
            "grant_type": REFRESH_TOKEN_GRANT,
            "refresh_token": refresh_token,
            "client_id": client_id,
        }
        try:
            response = httpx.post(
                doc.token_endpoint,
                data=data,
                headers=FORM_HEADERS,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise RefreshError(
                f"Token refresh failed: {exc}",
                transient=isinstance(exc, httpx.TransportError),
            ) from exc

        if response.status_code >= 400:
            body = read_error(response)
            transient = response.status_code >= 500 or body.error in TRANSIENT_ERROR_CODES
            raise RefreshError(
                f"Token refresh failed: {body.describe(status_line(response))}",
                transient=transient,
                error_code=body.error,
            )

        try:
            grant = TokenGrant.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise RefreshError("Token refresh response missing 'access_token'") from exc

        logger.debug(
            "Refresh succeeded (expires_in=%ss, rotated=%s)",
            grant.expires_in,
            grant.refresh_token is not None,
        )
        return grant
