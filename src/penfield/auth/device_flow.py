"""OAuth2 Device Authorization Grant (:rfc:`8628`) executor.

For headless terminals (SSH, Docker, CI) and long-running agents where a
browser cannot be driven locally. Works like ``gcloud auth login
--no-browser``.

Flow (see :class:`FlowState`)::

    DISCOVERING -> RESOLVING_CLIENT -> REQUESTING_DEVICE_CODE
        -> AWAITING_USER_AUTHORIZATION -> POLLING
        -> SUCCEEDED | DENIED | EXPIRED | FAILED

1. Fetch the server metadata and require ``device_authorization_endpoint``.
2. Resolve the client id, registering a client dynamically if none is given.
3. POST to the device authorization endpoint for ``device_code`` +
   ``user_code``.
4. Show "visit {verification_uri} and enter {user_code}" and, optionally,
   open the URL in a browser (best effort).
5. Poll the token endpoint until the user authorizes, denies, or the code
   expires. ``slow_down`` adds five seconds to the interval, cumulatively.

The clock and sleep functions are injectable so that polling can be tested
without real delays. The loop stops with ``EXPIRED`` once the device code's
own ``expires_in`` window has passed, whether or not the server ever says
``expired_token``.

See Also:
    :mod:`penfield.commands.login` for the CLI that drives this executor
    and persists the result.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Optional, Union

import httpx
from pydantic import ValidationError

from penfield.auth.discovery import discover
from penfield.auth.oauth import (
    DEFAULT_SCOPE,
    DEVICE_CODE_GRANT,
    FORM_HEADERS,
    read_error,
    status_line,
)
from penfield.auth.registration import resolve_client_id
from penfield.exceptions import (
    AuthError,
    AuthorizationDenied,
    DeviceAuthorizationError,
    DeviceCodeExpired,
    DeviceFlowError,
)
from penfield.models import DeviceAuthorization, DeviceFlowResult, TokenGrant
from penfield.output import info

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 5
SLOW_DOWN_INCREMENT = 5


class FlowState(str, Enum):
    """States of the device authorization handshake."""

    DISCOVERING = "discovering"
    RESOLVING_CLIENT = "resolving_client"
    REQUESTING_DEVICE_CODE = "requesting_device_code"
    AWAITING_USER_AUTHORIZATION = "awaiting_user_authorization"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    DENIED = "denied"
    EXPIRED = "expired"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {FlowState.SUCCEEDED, FlowState.DENIED, FlowState.EXPIRED, FlowState.FAILED}
)


class PollSignal(str, Enum):
    """Non-terminal token endpoint answers that keep the loop polling."""

    AUTHORIZATION_PENDING = "authorization_pending"
    SLOW_DOWN = "slow_down"


PollOutcome = Union[TokenGrant, PollSignal]


def display_user_code(authorization: DeviceAuthorization) -> None:
    """Print the verification URI and user code to stderr."""
    info("")
    info("Penfield authorization required")
    info(f"To authorize, visit: {authorization.display_uri}")
    info(f"Or enter code: {authorization.user_code}")
    info("")
    info("Waiting for authorization...")


class DeviceFlowExecutor:
    """Drive the device authorization handshake to first-token issuance.

    Args:
        auth_url: Base URL of the authorization server.
        client_id: Optional client id. When ``None`` one is obtained by
            dynamic client registration.
        scope: Space-separated scopes to request.
        display: Called once with the
            :class:`~penfield.models.DeviceAuthorization` so the operator
            can see the verification URI and user code.
        open_url: Optional capability that opens a URL in a browser. Only
            ``verification_uri_complete`` is opened, since the plain URI
            would still need the code typed in. Failures are ignored and
            never affect flow state.
        clock: Monotonic clock in seconds, used for the expiry deadline.
        sleep: Sleep function in seconds, used between polls.
        timeout: HTTP timeout in seconds for every request.

    Example::

        executor = DeviceFlowExecutor("https://auth.penfield.app")
        result = executor.run()
        result.access_token
    """

    def __init__(
        self,
        auth_url: str,
        client_id: Optional[str] = None,
        *,
        scope: str = DEFAULT_SCOPE,
        display: Callable[[DeviceAuthorization], None] = display_user_code,
        open_url: Optional[Callable[[str], object]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = 30.0,
    ) -> None:
        self._auth_url = auth_url
        self._client_id = client_id
        self._scope = scope
        self._display = display
        self._open_url = open_url
        self._clock = clock
        self._sleep = sleep
        self._timeout = timeout
        self._state = FlowState.DISCOVERING

    @property
    def state(self) -> FlowState:
        """The current (or final) state of the flow."""
        return self._state

    def run(self) -> DeviceFlowResult:
        """Run the whole flow and return the issued tokens.

        Returns:
            A :class:`~penfield.models.DeviceFlowResult` carrying the client
            id and the token grant. The caller computes ``expiresAt`` and
            persists it.

        Raises:
            DiscoveryError: Metadata could not be fetched.
            RegistrationError: No client id and registration failed.
            DeviceAuthorizationError: The device endpoint is not advertised
                or rejected the request.
            AuthorizationDenied: The user rejected the request.
            DeviceCodeExpired: The code expired before authorization.
            DeviceFlowError: Any other error answer from the token endpoint.
        """
        try:
            return self._run()
        except AuthorizationDenied:
            self._transition(FlowState.DENIED)
            raise
        except DeviceCodeExpired:
            self._transition(FlowState.EXPIRED)
            raise
        except AuthError:
            self._transition(FlowState.FAILED)
            raise

    def _run(self) -> DeviceFlowResult:
        self._transition(FlowState.DISCOVERING)
        doc = discover(self._auth_url, timeout=self._timeout)
        if not doc.device_authorization_endpoint:
            raise DeviceAuthorizationError(
                "Device Authorization Grant not supported: "
                "device_authorization_endpoint not advertised in OAuth discovery"
            )

        self._transition(FlowState.RESOLVING_CLIENT)
        client_id = resolve_client_id(self._auth_url, self._client_id, timeout=self._timeout)

        self._transition(FlowState.REQUESTING_DEVICE_CODE)
        authorization = self.request_device_code(doc.device_authorization_endpoint, client_id)

        self._transition(FlowState.AWAITING_USER_AUTHORIZATION)
        self._display(authorization)
        self._try_open_url(authorization.verification_uri_complete)

        grant = self.poll(doc.token_endpoint, client_id, authorization)
        info("Authorization successful!")
        return DeviceFlowResult(client_id=client_id, **grant.model_dump())

    def request_device_code(self, endpoint: str, client_id: str) -> DeviceAuthorization:
        """POST to the device authorization endpoint.

        Args:
            endpoint: The device authorization endpoint URL.
            client_id: The OAuth2 client ID.

        Returns:
            The parsed :class:`~penfield.models.DeviceAuthorization`.

        Raises:
            DeviceAuthorizationError: On transport or HTTP errors, or if
                ``device_code``/``user_code`` are missing from the response.
        """
        data = {"client_id": client_id, "scope": self._scope}
        try:
            response = httpx.post(
                endpoint,
                data=data,
                headers=FORM_HEADERS,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise DeviceAuthorizationError(f"Device authorization request failed: {exc}") from exc

        if response.status_code >= 400:
            body = read_error(response)
            suffix = f" - {body.error}" if body.error else ""
            raise DeviceAuthorizationError(
                f"Device authorization failed: {status_line(response)}{suffix}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise DeviceAuthorizationError("Device authorization response is not JSON") from exc
        if not isinstance(payload, dict) or "device_code" not in payload:
            raise DeviceAuthorizationError("Device authorization response missing 'device_code'")
        if "user_code" not in payload:
            raise DeviceAuthorizationError("Device authorization response missing 'user_code'")
        if payload.get("interval") is None:
            payload = {**payload, "interval": DEFAULT_INTERVAL}

        try:
            return DeviceAuthorization.model_validate(payload)
        except ValidationError as exc:
            raise DeviceAuthorizationError(f"Malformed device authorization response: {exc}") from exc

    def poll(
        self,
        token_endpoint: str,
        client_id: str,
        authorization: DeviceAuthorization,
    ) -> TokenGrant:
        """Poll the token endpoint until the user authorizes or the code expires.

        Implements :rfc:`8628` section 3.5: ``authorization_pending`` keeps
        polling, ``slow_down`` adds :data:`SLOW_DOWN_INCREMENT` seconds to the
        interval, ``access_denied`` and ``expired_token`` are terminal.

        Raises:
            AuthorizationDenied: The user denied access.
            DeviceCodeExpired: The server said ``expired_token`` or the
                ``expires_in`` window passed.
            DeviceFlowError: Transport failure or any other error code.
        """
        self._transition(FlowState.POLLING)
        interval = max(authorization.interval, 1)
        deadline = self._clock() + authorization.expires_in

        while self._clock() < deadline:
            self._sleep(min(interval, max(deadline - self._clock(), 0)))
            if self._clock() >= deadline:
                break

            outcome = self._poll_once(token_endpoint, client_id, authorization.device_code)
            if isinstance(outcome, TokenGrant):
                self._transition(FlowState.SUCCEEDED)
                return outcome
            if outcome is PollSignal.SLOW_DOWN:
                interval += SLOW_DOWN_INCREMENT
                logger.debug("Server asked to slow down; polling every %ss", interval)

        raise DeviceCodeExpired("Device code expired -- please try again")

    def _poll_once(self, token_endpoint: str, client_id: str, device_code: str) -> PollOutcome:
        """Send one device-code token request and classify the answer."""
        data = {
            "grant_type": DEVICE_CODE_GRANT,
            "device_code": device_code,
            "client_id": client_id,
        }
        try:
            response = httpx.post(
                token_endpoint,
                data=data,
                headers=FORM_HEADERS,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise DeviceFlowError(f"Token polling failed: {exc}") from exc

        if response.status_code < 400:
            try:
                return TokenGrant.model_validate(response.json())
            except ValueError:
                pass  # no access_token; classify as an error body below

        body = read_error(response)
        if body.error == PollSignal.AUTHORIZATION_PENDING.value:
            return PollSignal.AUTHORIZATION_PENDING
        if body.error == PollSignal.SLOW_DOWN.value:
            return PollSignal.SLOW_DOWN
        if body.error == "access_denied":
            raise AuthorizationDenied("Authorization denied by user")
        if body.error == "expired_token":
            raise DeviceCodeExpired("Device code expired -- please try again")
        raise DeviceFlowError(f"Authorization failed: {body.describe(status_line(response))}")

    def _try_open_url(self, url: Optional[str]) -> None:
        if self._open_url is None or not url:
            return
        try:
            self._open_url(url)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Could not open %s: %s", url, exc)

    def _transition(self, state: FlowState) -> None:
        if state is not self._state:
            logger.debug("Device flow: %s -> %s", self._state.value, state.value)
        self._state = state
