"""Credential storage interface for linked devices."""

from typing import Protocol
from uuid import UUID


class CredentialStore(Protocol):
    """Persistence interface for per-session authentication material."""

    def load(self, session_id: UUID) -> bytes:
        """Return the stored blob, or empty bytes when nothing is stored."""

    def save(self, session_id: UUID, blob: bytes) -> None:
        """Overwrite the stored blob. Raises CredentialPersistFailure."""

    def purge(self, session_id: UUID) -> None:
        """Irreversibly delete all stored material for the session."""
