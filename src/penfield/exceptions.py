"""Exception hierarchy for penfield.

All exceptions inherit from :class:`PenfieldError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`penfield.exit_codes`.
The top-level error handler in :func:`penfield.app.main` catches
``PenfieldError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    PenfieldError                     (exit 1)
    +-- ConfigError                   (exit 1)
    +-- StorageUnreadable             (never escapes the credential store)
    +-- AuthError                     (exit 3)
    |   +-- DiscoveryError
    |   +-- RegistrationError
    |   +-- DeviceAuthorizationError
    |   +-- DeviceFlowError
    |   |   +-- AuthorizationDenied
    |   |   +-- DeviceCodeExpired
    |   +-- RefreshError
    |   +-- NotAuthenticatedError
    +-- ApiError                      (exit 5)
        +-- NotFoundError             (exit 4)
        +-- ServerError               (exit 5)
        |   +-- RateLimitError
        +-- ConnectionError_          (exit 6)

The device-flow polling signals ``authorization_pending`` and ``slow_down``
are not errors; see :class:`penfield.auth.device_flow.PollSignal`.
"""

from __future__ import annotations

from typing import Optional

from penfield.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
)


class PenfieldError(Exception):
    """Base exception for all penfield errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`penfield.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(PenfieldError):
    """Raised for configuration problems (invalid JSON, unknown keys, bad values)."""

    exit_code = EXIT_GENERIC_FAILURE


class StorageUnreadable(PenfieldError):
    """Raised internally when the credential file cannot be read or parsed.

    :meth:`~penfield.auth.credential_store.CredentialStore.load` converts
    this into "no credential", so callers only ever see an absent value.
    """


class AuthError(PenfieldError):
    """Raised when authentication or authorisation fails."""

    exit_code = EXIT_AUTH_FAILURE


class DiscoveryError(AuthError):
    """The authorization server metadata could not be fetched or is malformed."""


class RegistrationError(AuthError):
    """Dynamic client registration is unsupported or was rejected."""


class DeviceAuthorizationError(AuthError):
    """The device authorization endpoint is missing or rejected the request."""


class DeviceFlowError(AuthError):
    """The device flow ended in the ``FAILED`` terminal state.

    Raised with the server's ``error_description`` (or ``error``) verbatim
    when the token endpoint answers with an unrecognised error code.
    """


class AuthorizationDenied(DeviceFlowError):
    """The resource owner rejected the authorization request."""


class DeviceCodeExpired(DeviceFlowError):
    """The device code expired before the user completed authorization."""


class RefreshError(AuthError):
    """A refresh-token grant failed.

    Args:
        message: Human-readable error description.
        transient: ``True`` for failures worth retrying (network trouble,
            5xx, ``temporarily_unavailable``); ``False`` when the server
            rejected the grant and a new login is required.
        error_code: The OAuth ``error`` value, when the server sent one.
    """

    def __init__(
        self,
        message: str,
        transient: bool = False,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.transient = transient
        self.error_code = error_code


class NotAuthenticatedError(AuthError):
    """No usable token is available; the operator must run ``penfield login``."""


class ApiError(PenfieldError):
    """Base class for failures talking to the memory API."""

    exit_code = EXIT_SERVER_ERROR


class NotFoundError(ApiError):
    """Raised when the API returns HTTP 404 (resource not found)."""

    exit_code = EXIT_NOT_FOUND


class ServerError(ApiError):
    """Raised when the API returns an HTTP 5xx or an unmapped 4xx error."""

    exit_code = EXIT_SERVER_ERROR


class RateLimitError(ServerError):
    """Raised on HTTP 429. ``retry_after`` holds the server's hint, if any."""

    def __init__(self, message: str, retry_after: Optional[str] = None):
        super().__init__(message)
        self.retry_after = retry_after


class ConnectionError_(ApiError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR
