"""Canonical Pydantic models shared across all penfield modules.

The models fall into three groups:

**Persisted state** -- :class:`Credential`, the durable token record written
by :class:`~penfield.auth.credential_store.CredentialStore`. It serialises
with camelCase keys so the on-disk file reads like the rest of the Penfield
tooling.

**Wire models** -- request-scoped values parsed from authorization-server
responses: :class:`DiscoveryDocument`, :class:`ClientRegistration`,
:class:`DeviceAuthorization`, :class:`TokenGrant`, and
:class:`DeviceFlowResult`. They ignore unknown keys so that servers may
advertise more than we use.

**Configuration** -- :class:`Settings`, serialised as JSON in the user's
config directory and resolved by :func:`penfield.config.resolve_settings`.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

CREDENTIAL_SCHEMA_VERSION = 1
"""Schema version written by this release."""

MIN_CREDENTIAL_SCHEMA_VERSION = 1
"""Oldest schema version :meth:`CredentialStore.load` still accepts."""

DEFAULT_TOKEN_LIFETIME = 3600
"""Lifetime in seconds assumed when a token response omits ``expires_in``."""

DEFAULT_AUTH_URL = "https://auth.penfield.app"
DEFAULT_API_URL = "https://api.penfield.app"


# --- Wire models ---


class TokenGrant(BaseModel):
    """A successful token-endpoint response (device-code or refresh grant).

    ``refresh_token`` is absent for clients without offline access, and may
    be absent on a refresh response when the server does not rotate.
    """

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = DEFAULT_TOKEN_LIFETIME
    scope: Optional[str] = None


class DeviceFlowResult(TokenGrant):
    """Outcome of a completed device flow: the grant plus the client it was issued to."""

    client_id: str


class DiscoveryDocument(BaseModel):
    """Authorization server metadata (:rfc:`8414`).

    Only ``token_endpoint`` is mandatory. ``device_authorization_endpoint``
    is required by the device flow and ``registration_endpoint`` only when
    no static client id is configured; each caller checks for what it needs.
    """

    model_config = ConfigDict(extra="ignore")

    issuer: Optional[str] = None
    token_endpoint: str
    device_authorization_endpoint: Optional[str] = None
    registration_endpoint: Optional[str] = None
    scopes_supported: list[str] = Field(default_factory=list)


class ClientRegistration(BaseModel):
    """The part of a dynamic client registration response we rely on."""

    model_config = ConfigDict(extra="ignore")

    client_id: str
    client_name: Optional[str] = None


class DeviceAuthorization(BaseModel):
    """Device authorization response (:rfc:`8628` section 3.2)."""

    model_config = ConfigDict(extra="ignore")

    device_code: str
    user_code: str
    verification_uri: str = ""
    verification_uri_complete: Optional[str] = None
    expires_in: int = 1800
    interval: int = 5

    @property
    def display_uri(self) -> str:
        """The URI to show the operator, preferring the one with the code embedded."""
        return self.verification_uri_complete or self.verification_uri


# --- Persisted state ---


class Credential(BaseModel):
    """The durable token record.

    Attributes:
        schema_version: Forward-compatibility guard; records outside the
            supported range are treated as unreadable.
        client_id: The OAuth client identifier the tokens were issued to.
        access_token: Opaque bearer token.
        refresh_token: Opaque refresh token, or ``None`` for clients without
            offline access.
        expires_at: Access-token expiry, milliseconds since the epoch.
        created_at: When this record was written, milliseconds since the
            epoch. Informational only.

    Example::

        cred = Credential(client_id="c1", access_token="a", expires_at=now_ms + 3_600_000)
        cred.model_dump(by_alias=True)["accessToken"]  # "a"
    """

    model_config = ConfigDict(populate_by_name=True)

    schema_version: int = Field(default=CREDENTIAL_SCHEMA_VERSION, ge=1, alias="schemaVersion")
    client_id: str = Field(alias="clientId")
    access_token: str = Field(alias="accessToken")
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")
    expires_at: int = Field(alias="expiresAt")
    created_at: int = Field(default=0, alias="createdAt")

    @classmethod
    def from_grant(cls, client_id: str, grant: TokenGrant, now_ms: int) -> Credential:
        """Build the first credential from a device-flow grant."""
        return cls(
            client_id=client_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=now_ms + grant.expires_in * 1000,
            created_at=now_ms,
        )

    def rotated(self, grant: TokenGrant, now_ms: int) -> Credential:
        """Return the credential that results from applying a refresh *grant*.

        Per :rfc:`9700` a refresh token in the response replaces ours
        entirely; when the response carries none, the current one is kept.
        """
        return self.model_copy(
            update={
                "access_token": grant.access_token,
                "refresh_token": grant.refresh_token or self.refresh_token,
                "expires_at": now_ms + grant.expires_in * 1000,
            }
        )

    def remaining_ms(self, now_ms: int) -> int:
        return self.expires_at - now_ms

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at

    def is_due(self, now_ms: int, buffer_ms: int) -> bool:
        """Whether the token is inside the proactive refresh window."""
        return self.remaining_ms(now_ms) < buffer_ms


# --- Configuration ---


class Settings(BaseModel):
    """Effective client configuration.

    Loaded from ``config.json`` and overlaid with environment variables and
    CLI flags by :func:`penfield.config.resolve_settings`.

    Example::

        Settings(auth_url="https://auth.example.com", refresh_buffer_minutes=120)
    """

    model_config = ConfigDict(extra="forbid")

    auth_url: str = Field(
        default=DEFAULT_AUTH_URL, description="Base URL of the authorization server"
    )
    api_url: str = Field(default=DEFAULT_API_URL, description="Base URL of the memory API")
    client_id: Optional[str] = Field(
        default=None,
        description="Pre-provisioned OAuth client id; dynamic registration is used when unset",
    )
    refresh_interval_minutes: int = Field(
        default=60, ge=1, description="Background refresh tick period"
    )
    refresh_buffer_minutes: int = Field(
        default=240, ge=1, description="Refresh tokens expiring within this window"
    )
    request_timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")
    open_browser: bool = Field(
        default=True, description="Open the verification URL automatically during login"
    )
    credentials_path: Optional[str] = Field(
        default=None, description="Override for the credential file location"
    )

    @property
    def refresh_interval_seconds(self) -> float:
        return self.refresh_interval_minutes * 60.0

    @property
    def refresh_buffer_ms(self) -> int:
        return self.refresh_buffer_minutes * 60 * 1000
