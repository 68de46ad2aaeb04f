"""Config commands -- view and modify settings.

Settings are persisted as ``config.json`` in the penfield config directory
and validated against :class:`~penfield.models.Settings`.
"""

from __future__ import annotations

import typer

from penfield.output import error, format_response, info, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show() -> None:
    """Show the effective configuration.

    Environment overrides (``PENFIELD_AUTH_URL`` and friends) are applied,
    so this is what ``penfield login`` and ``penfield serve`` will use.

    Example::

        penfield config show
        penfield --json config show
    """
    from penfield.config import credentials_path, get_config_dir, resolve_settings

    settings = resolve_settings()
    info(f"Config directory: {get_config_dir()}")
    data = settings.model_dump(mode="json")
    data["credentials_path"] = str(credentials_path(settings))
    format_response(data)


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Setting name, e.g. 'auth_url' or 'refresh-buffer-minutes'."),
    value: str = typer.Argument(help="Value to set. An empty string restores the default."),
) -> None:
    """Set a configuration value.

    Raises:
        typer.Exit: With code 2 if the key is unknown or the value invalid.

    Example::

        penfield config set auth_url https://auth.example.com
        penfield config set refresh_interval_minutes 30
        penfield config set client_id ""
    """
    from penfield.config import update_setting
    from penfield.exceptions import ConfigError
    from penfield.exit_codes import EXIT_INVALID_USAGE

    try:
        settings = update_setting(key, value)
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None

    field = key.replace("-", "_")
    success(f"Set {field} = {getattr(settings, field)}")
