"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for penfield:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.penfield/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Settings file** -- A single :class:`~penfield.models.Settings` JSON
  file (``config.json``) storing the auth/API URLs, an optional static
  client id, and refresh timing.
* **Precedence resolution** -- :func:`resolve_settings` merges CLI flags,
  environment variables, the settings file, and defaults into the effective
  configuration.
* **Credential location** -- :func:`credentials_path` names the single
  per-installation credential file.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from penfield.exceptions import ConfigError
from penfield.models import Settings

_APP_NAME = "penfield"
_CONFIG_FILENAME = "config.json"
_CREDENTIALS_FILENAME = "credentials.json"

ENV_AUTH_URL = "PENFIELD_AUTH_URL"
ENV_API_URL = "PENFIELD_API_URL"
ENV_CLIENT_ID = "PENFIELD_CLIENT_ID"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/penfield/`` (default ``~/.config/penfield/``).
    On macOS/Windows: ``~/.penfield/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (credentials, crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/penfield/`` (default ``~/.local/share/penfield/``).
    On macOS/Windows: ``~/.penfield/data/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def credentials_path(settings: Optional[Settings] = None) -> Path:
    """Return the credential file location.

    Uses ``settings.credentials_path`` when set, otherwise
    ``<data_dir>/credentials/credentials.json``. The directory is not
    created here; :class:`~penfield.auth.credential_store.CredentialStore`
    creates it with owner-only permissions on first save.
    """
    if settings is not None and settings.credentials_path:
        return Path(settings.credentials_path).expanduser()
    return get_data_dir() / "credentials" / _CREDENTIALS_FILENAME


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    On success the temp file is renamed over *path*; on any failure the temp
    file is cleaned up.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Settings file ---


def _settings_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_settings() -> Settings:
    """Load settings from the XDG config directory.

    Returns:
        The deserialised :class:`~penfield.models.Settings`. If the file
        does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = _settings_path()
    if not path.is_file():
        return Settings()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return Settings.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_settings(settings: Settings) -> None:
    """Persist settings atomically to disk.

    Only values that differ from the defaults are written, so that future
    default changes reach users who never customised them.
    """
    data = settings.model_dump(mode="json", exclude_defaults=True)
    _atomic_write(_settings_path(), json.dumps(data, indent=2) + "\n")


def update_setting(key: str, value: str) -> Settings:
    """Set a single settings key from its string form and persist the result.

    Args:
        key: A :class:`~penfield.models.Settings` field name. Dashes are
            accepted in place of underscores (``auth-url``).
        value: The new value; coerced by Pydantic. An empty string clears
            optional fields back to their default.

    Returns:
        The saved settings.

    Raises:
        ConfigError: If *key* is unknown or *value* fails validation.
    """
    field = key.replace("-", "_")
    if field not in Settings.model_fields:
        known = ", ".join(sorted(Settings.model_fields))
        raise ConfigError(f"Unknown setting '{key}'. Known settings: {known}")

    current = load_settings().model_dump(mode="json")
    if value == "":
        current.pop(field, None)
    else:
        current[field] = value
    try:
        settings = Settings.model_validate(current)
    except ValidationError as exc:
        raise ConfigError(f"Invalid value for '{key}': {exc}") from exc
    save_settings(settings)
    return settings


# --- Precedence resolution ---


def resolve_settings(
    cli_auth_url: Optional[str] = None,
    cli_api_url: Optional[str] = None,
    cli_client_id: Optional[str] = None,
) -> Settings:
    """Resolve settings with full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_auth_url``, ``cli_api_url``, ``cli_client_id``)
        2. Environment variables (``PENFIELD_AUTH_URL``, ``PENFIELD_API_URL``,
           ``PENFIELD_CLIENT_ID``)
        3. User config (``~/.config/penfield/config.json``)
        4. Defaults

    Returns:
        The effective :class:`~penfield.models.Settings`.
    """
    settings = load_settings()

    overrides: dict[str, Any] = {}
    for field, env_var, cli_value in (
        ("auth_url", ENV_AUTH_URL, cli_auth_url),
        ("api_url", ENV_API_URL, cli_api_url),
        ("client_id", ENV_CLIENT_ID, cli_client_id),
    ):
        env_value = os.environ.get(env_var)
        if cli_value is not None:
            overrides[field] = cli_value
        elif env_value:
            overrides[field] = env_value

    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings
