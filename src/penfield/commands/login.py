"""Login command -- authenticate with the OAuth Device Authorization Grant.

Drives :class:`~penfield.auth.device_flow.DeviceFlowExecutor` end to end
and persists the resulting :class:`~penfield.models.Credential`. Works on
headless machines: the verification URL and user code are printed to
stderr and can be completed from any browser.

Example::

    penfield login
    penfield login --auth-url https://auth.example.com --no-browser
"""

from __future__ import annotations

import threading
import time
import webbrowser
from typing import Optional

import typer

from penfield.output import error, info, success, suggest, warning


def _open_in_background(url: str) -> None:
    """Open *url* in a browser without blocking the polling loop."""
    threading.Thread(target=webbrowser.open, args=(url,), daemon=True).start()


def login_command(
    auth_url: Optional[str] = typer.Option(
        None, "--auth-url", help="Authorization server base URL."
    ),
    client_id: Optional[str] = typer.Option(
        None, "--client-id", help="Pre-provisioned OAuth client id (skips registration)."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Do not open the verification URL automatically."
    ),
) -> None:
    """Authenticate with Penfield using the OAuth device flow.

    The client id is taken from ``--client-id``, then ``PENFIELD_CLIENT_ID``,
    then ``config.json``, then the previously stored credential. Only when
    none of these is set is a new client registered dynamically.

    Raises:
        typer.Exit: With the error's exit code if any step of the flow fails.
    """
    from penfield.auth.credential_store import CredentialStore
    from penfield.auth.device_flow import DeviceFlowExecutor
    from penfield.config import credentials_path, resolve_settings
    from penfield.exceptions import AuthError
    from penfield.models import Credential

    settings = resolve_settings(cli_auth_url=auth_url, cli_client_id=client_id)
    store = CredentialStore(credentials_path(settings))

    provided_client_id = settings.client_id
    if provided_client_id is None:
        existing = store.load()
        if existing is not None:
            provided_client_id = existing.client_id

    open_url = None if no_browser or not settings.open_browser else _open_in_background

    info(f"Authenticating with {settings.auth_url}")
    executor = DeviceFlowExecutor(
        settings.auth_url,
        provided_client_id,
        open_url=open_url,
        timeout=settings.request_timeout,
    )
    try:
        result = executor.run()
    except AuthError as exc:
        error(f"Login failed: {exc}")
        raise typer.Exit(code=exc.exit_code) from None

    credential = Credential.from_grant(result.client_id, result, int(time.time() * 1000))
    store.save(credential)

    success(f"Logged in. Credentials saved to {store.path}")
    if not credential.refresh_token:
        warning("No refresh token was issued; run `penfield login` again when the token expires.")
    else:
        suggest("Keep tokens fresh in the background: penfield serve")
