"""Supabase-backed credential store."""

import base64
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from supabase import Client

from wa_gateway.errors import CredentialPersistFailure
from wa_gateway.services.credentials import CredentialStore

_logger = logging.getLogger(__name__)


@dataclass
class SupabaseCredentialStore(CredentialStore):
    """Stores credential blobs base64-encoded in ``wa_credentials``."""

    client: Client

    def load(self, session_id: UUID) -> bytes:
        """Return the stored blob, or empty bytes if missing or unreadable."""
        try:
            response = (
                self.client.table("wa_credentials")
                .select("blob_b64")
                .eq("session_id", str(session_id))
                .limit(1)
                .execute()
            )
        except Exception:
            _logger.exception("Failed to load credentials for session %s", session_id)
            return b""
        if not response.data or not response.data[0].get("blob_b64"):
            return b""
        return base64.b64decode(response.data[0]["blob_b64"])

    def save(self, session_id: UUID, blob: bytes) -> None:
        """Upsert the blob for the session."""
        try:
            self.client.table("wa_credentials").upsert(
                {
                    "session_id": str(session_id),
                    "blob_b64": base64.b64encode(blob).decode("ascii"),
                    "updated_at": datetime.now(tz=UTC).isoformat(),
                },
                on_conflict="session_id",
            ).execute()
        except Exception as exc:
            raise CredentialPersistFailure(session_id, str(exc)) from exc

    def purge(self, session_id: UUID) -> None:
        """Delete the stored blob."""
        try:
            self.client.table("wa_credentials").delete().eq(
                "session_id", str(session_id)
            ).execute()
        except Exception as exc:
            raise CredentialPersistFailure(session_id, str(exc)) from exc
