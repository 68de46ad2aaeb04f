"""Serve command -- keep the stored tokens fresh in the background.

Starts a :class:`~penfield.auth.service.TokenService`, whose scheduler
thread checks the credential file every ``refresh_interval_minutes`` and
refreshes tokens that expire within ``refresh_buffer_minutes``. Runs until
interrupted. Refresh activity is logged to stderr through
:class:`rich.logging.RichHandler`.
"""

from __future__ import annotations

import logging
import time

import typer
from rich.console import Console
from rich.logging import RichHandler

from penfield.output import info


def configure_logging(verbose: bool = False) -> None:
    """Route library log records to stderr through Rich."""
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        markup=False,
    )
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _wait_forever() -> None:
    while True:
        time.sleep(3600)


def serve_command(ctx: typer.Context) -> None:
    """Run the background token refresh loop until interrupted.

    Example::

        penfield serve
        penfield --verbose serve
    """
    from penfield.auth.credential_store import CredentialStore
    from penfield.auth.service import TokenService
    from penfield.config import credentials_path, resolve_settings

    verbose = ctx.obj.get("verbose", False) if ctx.obj else False
    configure_logging(verbose)

    settings = resolve_settings()
    service = TokenService(settings, CredentialStore(credentials_path(settings)))
    service.start()
    info(
        f"Checking tokens every {settings.refresh_interval_minutes} min "
        f"(refresh window {settings.refresh_buffer_minutes} min). Press Ctrl-C to stop."
    )
    try:
        _wait_forever()
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()
