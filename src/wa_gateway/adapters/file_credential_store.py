"""Filesystem-backed credential store."""

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from uuid import UUID

from wa_gateway.errors import CredentialPersistFailure
from wa_gateway.services.credentials import CredentialStore

_BLOB_NAME = "creds.bin"

_logger = logging.getLogger(__name__)


@dataclass
class FileCredentialStore(CredentialStore):
    """Stores each session's blob under ``<root>/<session_id>/creds.bin``."""

    root: Path

    def load(self, session_id: UUID) -> bytes:
        """Return the stored blob, or empty bytes if none exists."""
        path = self._blob_path(session_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return b""
        except OSError:
            _logger.exception("Failed to read credentials for %s", session_id)
            return b""

    def save(self, session_id: UUID, blob: bytes) -> None:
        """Atomically overwrite the stored blob."""
        path = self._blob_path(session_id)
        tmp_path = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(blob)
            os.replace(tmp_path, path)
        except OSError as exc:
            raise CredentialPersistFailure(session_id, str(exc)) from exc

    def purge(self, session_id: UUID) -> None:
        """Remove the session's credential directory."""
        shutil.rmtree(self.root / str(session_id), ignore_errors=True)

    def _blob_path(self, session_id: UUID) -> Path:
        return self.root / str(session_id) / _BLOB_NAME
