"""OAuth 2.0 authentication for the Penfield client.

Device Authorization Grant (:rfc:`8628`) for first login, Dynamic Client
Registration (:rfc:`7591`) for client bootstrap, and refresh-token rotation
(:rfc:`9700`) kept alive by a background scheduler.

The main entry points are:

- :class:`DeviceFlowExecutor` -- interactive first-token acquisition.
- :class:`CredentialStore` -- the crash-safe credential file.
- :class:`TokenService` -- in-memory token owner with
  :meth:`~TokenService.get_access_token`, single-flight refresh, and
  background refresh via :meth:`~TokenService.start`.

Typical usage::

    from penfield.auth import CredentialStore, TokenService
    from penfield.config import credentials_path, resolve_settings

    settings = resolve_settings()
    service = TokenService(settings, CredentialStore(credentials_path(settings)))
    token = service.get_access_token()
"""

from penfield.auth.credential_store import CredentialStore
from penfield.auth.device_flow import DeviceFlowExecutor, FlowState, PollSignal
from penfield.auth.discovery import discover
from penfield.auth.registration import resolve_client_id
from penfield.auth.rotator import RetryPolicy, TokenRotator
from penfield.auth.scheduler import RefreshScheduler
from penfield.auth.service import TokenService
from penfield.auth.single_flight import SingleFlight

__all__ = [
    "CredentialStore",
    "DeviceFlowExecutor",
    "FlowState",
    "PollSignal",
    "RefreshScheduler",
    "RetryPolicy",
    "SingleFlight",
    "TokenRotator",
    "TokenService",
    "discover",
    "resolve_client_id",
]
