"""Crash-safe persistence for the single :class:`~penfield.models.Credential`.

The record lives at one fixed per-installation path (see
:func:`penfield.config.credentials_path`), typically
``~/.local/share/penfield/credentials/credentials.json``. Writes go to a
temporary file in the same directory, created with ``0o600`` permissions,
fsynced, then renamed over the target with :func:`os.replace`. A reader
therefore sees either the previous record or the new one, never a partial
write, and concurrent writers cannot corrupt the file: the last rename wins.

Reads never fail loudly. A missing file, corrupt JSON, a permission error,
or a ``schemaVersion`` outside the supported range all mean "no credential".

See Also:
    :class:`~penfield.auth.service.TokenService` -- the in-memory owner of
    the loaded credential.
"""

from __future__ import annotations

import json
import logging
import os
import stat
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional, Union

from pydantic import ValidationError

from penfield.exceptions import StorageUnreadable
from penfield.models import (
    CREDENTIAL_SCHEMA_VERSION,
    MIN_CREDENTIAL_SCHEMA_VERSION,
    Credential,
)

logger = logging.getLogger(__name__)


class CredentialStore:
    """Read and write the credential file.

    Args:
        path: Location of the credential file. Its parent directory is
            created with ``0o700`` permissions on first save. An existing
            directory is left as it is; a warning is logged if group or
            other users can access it.
        clock: Wall clock in seconds since the epoch, used for ``createdAt``.

    Example::

        store = CredentialStore(credentials_path())
        saved = store.save(credential)
        assert store.load() == saved
    """

    def __init__(
        self,
        path: Union[str, Path],
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._path = Path(path)
        self._clock = clock

    @property
    def path(self) -> Path:
        """The filesystem path to the credential file."""
        return self._path

    def save(self, credential: Credential) -> Credential:
        """Persist *credential* atomically with ``0o600`` permissions.

        The record is stamped with the current schema version and a fresh
        ``createdAt`` before writing.

        Returns:
            The credential exactly as written.

        Raises:
            OSError: If the file cannot be written (permissions, disk full, etc.).
        """
        record = credential.model_copy(
            update={
                "schema_version": CREDENTIAL_SCHEMA_VERSION,
                "created_at": int(self._clock() * 1000),
            }
        )
        text = json.dumps(record.model_dump(mode="json", by_alias=True), indent=2) + "\n"

        self._ensure_parent()

        fd = None
        tmp_path: Optional[str] = None
        try:
            fd = tempfile.NamedTemporaryFile(
                mode="w",
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
                encoding="utf-8",
            )
            tmp_path = fd.name
            # Restrict permissions before any secret is written
            os.chmod(tmp_path, 0o600)
            fd.write(text)
            fd.flush()
            os.fsync(fd.fileno())
            fd.close()
            fd = None
            os.replace(tmp_path, self._path)
        except BaseException:
            if fd is not None:
                fd.close()
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
            raise

        logger.debug("Saved credential to %s", self._path)
        return record

    def _ensure_parent(self) -> None:
        parent = self._path.parent
        if not parent.is_dir():
            parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            return
        if os.name != "posix":
            return
        mode = stat.S_IMODE(parent.stat().st_mode)
        if mode & 0o077:
            logger.warning(
                "Credential directory %s is accessible by other users (mode %o); "
                "consider: chmod 700 %s",
                parent,
                mode,
                parent,
            )

    def load(self) -> Optional[Credential]:
        """Load the stored credential.

        Returns:
            The :class:`~penfield.models.Credential`, or ``None`` if there is
            none or it cannot be used.
        """
        try:
            return self._read()
        except StorageUnreadable as exc:
            logger.warning("Ignoring credential file %s: %s", self._path, exc)
            return None

    def _read(self) -> Optional[Credential]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageUnreadable(f"cannot read file: {exc}") from exc

        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StorageUnreadable(f"invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageUnreadable("not a JSON object")

        version = data.get("schemaVersion")
        if not isinstance(version, int) or isinstance(version, bool):
            raise StorageUnreadable("missing schemaVersion")
        if not MIN_CREDENTIAL_SCHEMA_VERSION <= version <= CREDENTIAL_SCHEMA_VERSION:
            raise StorageUnreadable(f"unsupported schemaVersion {version}")

        try:
            return Credential.model_validate(data)
        except ValidationError as exc:
            raise StorageUnreadable(f"malformed record: {exc}") from exc
