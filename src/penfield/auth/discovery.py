"""Authorization server metadata discovery (:rfc:`8414`).

:func:`discover` fetches ``{auth_url}/.well-known/oauth-authorization-server``
and validates it into a :class:`~penfield.models.DiscoveryDocument`.

Nothing is cached: every caller re-fetches, trading a little latency for
endpoint URLs that are always current. The device flow, the registrar, and
the token rotator each call :func:`discover` on their own.
"""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import ValidationError

from penfield.exceptions import DiscoveryError
from penfield.models import DiscoveryDocument

WELL_KNOWN_PATH = "/.well-known/oauth-authorization-server"


def metadata_url(auth_url: str) -> str:
    """Return the well-known metadata URL for *auth_url*."""
    return auth_url.rstrip("/") + WELL_KNOWN_PATH


def discover(auth_url: str, timeout: float = 30.0) -> DiscoveryDocument:
    """Fetch and validate the authorization server metadata document.

    Args:
        auth_url: Base URL of the authorization server
            (e.g. ``https://auth.penfield.app``).
        timeout: HTTP timeout in seconds.

    Returns:
        The parsed :class:`~penfield.models.DiscoveryDocument`.

    Raises:
        DiscoveryError: On transport failure, non-2xx status, a body that is
            not JSON, or a document without ``token_endpoint``. Transport
            failures are chained as ``__cause__`` so callers can tell a
            network outage from a misconfigured server.
    """
    url = metadata_url(auth_url)
    try:
        response = httpx.get(
            url,
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
        response.raise_for_status()
        doc: Any = response.json()
    except httpx.HTTPStatusError as exc:
        raise DiscoveryError(
            f"OAuth discovery failed with status {exc.response.status_code}: "
            f"{exc.response.text}"
        ) from exc
    except httpx.HTTPError as exc:
        raise DiscoveryError(f"OAuth discovery failed: {exc}") from exc
    except ValueError as exc:
        raise DiscoveryError(f"OAuth discovery document at {url} is not valid JSON") from exc

    if not isinstance(doc, dict):
        raise DiscoveryError(f"OAuth discovery document at {url} is not a JSON object")
    if "token_endpoint" not in doc:
        raise DiscoveryError("OAuth discovery document missing 'token_endpoint'")

    try:
        return DiscoveryDocument.model_validate(doc)
    except ValidationError as exc:
        raise DiscoveryError(f"Malformed OAuth discovery document: {exc}") from exc
