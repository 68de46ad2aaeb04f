"""Synchronous memory-API client with per-request bearer tokens.

:class:`ApiClient` wraps :class:`httpx.Client` and layers on:

- **Auth injection** -- every request asks the
  :class:`~penfield.auth.service.TokenService` for a token, so a token that
  became due between two calls is refreshed transparently.
- **Error mapping** -- HTTP status codes become typed exceptions from
  :mod:`penfield.exceptions`.
- **Envelope unwrapping** -- a top-level ``{"data": ...}`` object is
  returned as its ``data`` member.

No retries happen here; refresh retries live in the token service.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from penfield.auth.service import TokenService
from penfield.exceptions import (
    AuthError,
    ConnectionError_,
    NotFoundError,
    RateLimitError,
    ServerError,
)
from penfield.models import Settings

logger = logging.getLogger(__name__)


class ApiClient:
    """Blocking client for the memory API.

    Must be used as a context manager so that the underlying transport is
    opened and closed.

    Args:
        settings: Supplies ``api_url`` and ``request_timeout``.
        token_service: Source of access tokens.
        transport: Optional :class:`httpx.BaseTransport`, mainly for tests
            (:class:`httpx.MockTransport`).

    Example::

        with ApiClient(settings, service) as client:
            client.post("/api/v2/memories", json_body={"content": "..."})
    """

    def __init__(
        self,
        settings: Settings,
        token_service: TokenService,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._tokens = token_service
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    def __enter__(self) -> ApiClient:
        self._client = httpx.Client(
            base_url=self._settings.api_url.rstrip("/"),
            timeout=self._settings.request_timeout,
            transport=self._transport,
        )
        return self

    def __exit__(self, *args: object) -> None:
        if self._client:
            self._client.close()
            self._client = None

    def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[Any] = None,
    ) -> Any:
        """Send an authenticated request and return the decoded body.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE).
            path: URL path appended to ``api_url``.
            params: Query parameters.
            json_body: JSON-serialisable request body.

        Returns:
            The JSON body, unwrapped from a ``data`` envelope when present,
            or ``None`` for an empty response.

        Raises:
            NotAuthenticatedError: No usable token (run ``penfield login``).
            AuthError: On 401 / 403.
            NotFoundError: On 404.
            RateLimitError: On 429.
            ServerError: On 5xx and other 4xx.
            ConnectionError_: On network errors and timeouts.
        """
        assert self._client is not None, "Client not initialised -- use as context manager"

        headers = {
            "Authorization": f"Bearer {self._tokens.get_access_token()}",
            "Accept": "application/json",
        }
        logger.debug("%s %s", method.upper(), path)

        try:
            response = self._client.request(
                method,
                path,
                params=params,
                json=json_body,
                headers=headers,
            )
        except httpx.TimeoutException as exc:
            raise ConnectionError_(
                f"Request timed out after {self._settings.request_timeout:g}s: "
                f"{method.upper()} {path}"
            ) from exc
        except httpx.TransportError as exc:
            raise ConnectionError_(f"Connection failed: {exc}") from exc

        self._map_response_error(response)

        if not response.content:
            return None
        body = response.json()
        if isinstance(body, dict) and body.get("data") is not None:
            return body["data"]
        return body

    def get(self, path: str, **kwargs: Any) -> Any:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> Any:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> Any:
        return self.request("PUT", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Any:
        return self.request("DELETE", path, **kwargs)

    def _map_response_error(self, response: httpx.Response) -> None:
        """Raise a typed exception for error HTTP status codes."""
        status = response.status_code
        if status < 400:
            return

        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                f"Rate limit exceeded. Retry after {retry_after or '?'} seconds",
                retry_after=retry_after,
            )

        full_msg = f"API request failed: {status} {response.reason_phrase}".rstrip()
        detail = _error_message(response)
        if detail:
            full_msg = f"{full_msg} - {detail}"
        logger.error(full_msg)

        if status in (401, 403):
            raise AuthError(full_msg)
        if status == 404:
            raise NotFoundError(full_msg)
        raise ServerError(full_msg)


def _error_message(response: httpx.Response) -> str:
    """Pull a message out of ``{"error": {"message": ...}}`` or similar bodies."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] if response.text else ""
    if not isinstance(body, dict):
        return str(body)
    error = body.get("error")
    if isinstance(error, dict):
        return str(error.get("message") or "")
    return str(body.get("message") or error or body.get("detail") or "")
