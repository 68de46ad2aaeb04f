"""OAuth client identity: static client id or Dynamic Client Registration (:rfc:`7591`).

:func:`resolve_client_id` returns a configured client id unchanged, and
otherwise registers a new public client that may use the device-code and
refresh-token grants. Registration is a one-time bootstrap: the returned id
is stored in the :class:`~penfield.models.Credential` and threaded back in
on later logins.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from penfield.auth.discovery import discover
from penfield.auth.oauth import DEFAULT_SCOPE, DEVICE_CODE_GRANT, read_error, status_line
from penfield.exceptions import RegistrationError
from penfield.models import ClientRegistration

logger = logging.getLogger(__name__)

CLIENT_NAME = "penfield-cli"


def registration_request() -> dict[str, Any]:
    """Return the JSON body sent to the registration endpoint."""
    return {
        "client_name": CLIENT_NAME,
        "redirect_uris": ["http://localhost:8080/callback"],
        "grant_types": [DEVICE_CODE_GRANT, "refresh_token"],
        "response_types": ["code"],
        "token_endpoint_auth_method": "none",
        "scope": DEFAULT_SCOPE,
    }


def register_client(registration_endpoint: str, timeout: float = 30.0) -> ClientRegistration:
    """Submit a dynamic client registration request.

    Args:
        registration_endpoint: The server's advertised registration URL.
        timeout: HTTP timeout in seconds.

    Returns:
        The server's :class:`~penfield.models.ClientRegistration`.

    Raises:
        RegistrationError: If the request fails or the response lacks
            ``client_id``.
    """
    try:
        response = httpx.post(
            registration_endpoint,
            json=registration_request(),
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
    except httpx.HTTPError as exc:
        raise RegistrationError(f"Client registration failed: {exc}") from exc

    if response.status_code >= 400:
        detail = read_error(response).describe(status_line(response))
        raise RegistrationError(f"Client registration failed: {detail}")

    try:
        return ClientRegistration.model_validate(response.json())
    except (ValueError, ValidationError) as exc:
        raise RegistrationError("Client registration response missing 'client_id'") from exc


def resolve_client_id(
    auth_url: str,
    provided_client_id: Optional[str] = None,
    timeout: float = 30.0,
) -> str:
    """Return the OAuth client id to use, registering one if necessary.

    Args:
        auth_url: Base URL of the authorization server.
        provided_client_id: A pre-provisioned or previously registered id.
            When set it is returned as-is without any network call.
        timeout: HTTP timeout in seconds.

    Returns:
        The client id.

    Raises:
        DiscoveryError: If the metadata document cannot be fetched.
        RegistrationError: If the server does not advertise
            ``registration_endpoint`` or rejects the registration.
    """
    if provided_client_id:
        return provided_client_id

    doc = discover(auth_url, timeout=timeout)
    if not doc.registration_endpoint:
        raise RegistrationError(
            "DCR unsupported: registration_endpoint not advertised in OAuth discovery"
        )

    registration = register_client(doc.registration_endpoint, timeout=timeout)
    logger.info("Registered dynamic client %s", registration.client_id)
    return registration.client_id
