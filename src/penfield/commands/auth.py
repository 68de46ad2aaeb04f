"""Auth commands -- inspect and refresh the stored credential.

Typical workflow::

    penfield login          # device flow
    penfield auth status    # what is stored, and is it still valid?
    penfield auth refresh   # rotate the tokens now
"""

from __future__ import annotations

import time
from datetime import datetime, timezone

import typer

from penfield.output import error, get_output, info, success, suggest


auth_app = typer.Typer(no_args_is_help=True)


def _format_ms(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _format_remaining(remaining_ms: int) -> str:
    if remaining_ms <= 0:
        return "expired"
    minutes = remaining_ms // 60_000
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes:02d}m" if hours else f"{minutes}m"


def _mask(token: str) -> str:
    return token[:8] + "..." if len(token) > 8 else token


@auth_app.command("status")
def auth_status() -> None:
    """Show the stored credential and whether it is still valid.

    Prints a table with the client id, a truncated access token, expiry,
    and whether a refresh token is available.

    Raises:
        typer.Exit: With code 3 if no usable credential is stored.

    Example::

        penfield auth status
        penfield --json auth status
    """
    from penfield.auth.credential_store import CredentialStore
    from penfield.config import credentials_path, resolve_settings
    from penfield.exit_codes import EXIT_AUTH_FAILURE

    settings = resolve_settings()
    store = CredentialStore(credentials_path(settings))
    credential = store.load()
    if credential is None:
        info("Not logged in.")
        suggest("Log in: penfield login")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)

    now_ms = int(time.time() * 1000)
    if credential.is_expired(now_ms):
        state = "expired"
    elif credential.is_due(now_ms, settings.refresh_buffer_ms):
        state = "refresh due"
    else:
        state = "valid"

    rows = [
        ["Credential File", str(store.path)],
        ["Auth URL", settings.auth_url],
        ["Client ID", credential.client_id],
        ["Access Token", _mask(credential.access_token)],
        ["Expires At", _format_ms(credential.expires_at)],
        ["Remaining", _format_remaining(credential.remaining_ms(now_ms))],
        ["Refresh Token", "yes" if credential.refresh_token else "no"],
        ["Status", state],
    ]
    get_output().print_table(["Field", "Value"], rows, title="Stored Credential")


@auth_app.command("refresh")
def auth_refresh() -> None:
    """Refresh the stored tokens now.

    Uses the same retry policy as background refresh: transient failures
    are retried up to three times, while a rejected refresh token fails
    immediately.

    Raises:
        typer.Exit: With code 3 if there is nothing to refresh or the
            refresh fails.

    Example::

        penfield auth refresh
    """
    from penfield.auth.credential_store import CredentialStore
    from penfield.auth.service import TokenService
    from penfield.config import credentials_path, resolve_settings
    from penfield.exceptions import AuthError

    settings = resolve_settings()
    service = TokenService(settings, CredentialStore(credentials_path(settings)))
    try:
        credential = service.refresh()
    except AuthError as exc:
        error(str(exc))
        suggest("Log in again: penfield login")
        raise typer.Exit(code=exc.exit_code) from None

    success(f"Token refreshed. Expires at {_format_ms(credential.expires_at)}")
