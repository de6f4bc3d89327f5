"""Supabase-backed session repository."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from supabase import Client

from wa_gateway.domain.sessions import SessionPool, SessionRecord, SessionState
from wa_gateway.services.sessions import SessionRepository

_COLUMNS = "id, name, pool, status, phone, last_seen"


@dataclass
class SupabaseSessionRepository(SessionRepository):
    """Supabase implementation for session records."""

    client: Client

    def create_session(self, display_name: str, pool: SessionPool) -> SessionRecord:
        """Create a session row and return it."""
        response = (
            self.client.table("wa_sessions")
            .insert(
                {
                    "name": display_name,
                    "pool": pool.value,
                    "status": SessionState.DISCONNECTED.value,
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create session")
        return _to_record(response.data[0])

    def get_session(self, session_id: UUID) -> SessionRecord | None:
        """Return a session by id, if present."""
        response = (
            self.client.table("wa_sessions")
            .select(_COLUMNS)
            .eq("id", str(session_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _to_record(response.data[0])

    def list_sessions(
        self, pools: set[SessionPool] | None = None
    ) -> list[SessionRecord]:
        """Return sessions ordered by creation time."""
        query = self.client.table("wa_sessions").select(_COLUMNS)
        if pools:
            query = query.in_("pool", sorted(pool.value for pool in pools))
        response = query.order("created_at", desc=False).execute()
        return [_to_record(row) for row in response.data or []]

    def update_state(
        self,
        session_id: UUID,
        state: SessionState,
        phone_identity: str | None,
        last_seen_at: datetime | None,
    ) -> None:
        """Persist the connection state of a session."""
        self.client.table("wa_sessions").update(
            {
                "status": state.value,
                "phone": phone_identity,
                "last_seen": last_seen_at.isoformat() if last_seen_at else None,
            }
        ).eq("id", str(session_id)).execute()

    def delete_session(self, session_id: UUID) -> None:
        """Delete a session row."""
        self.client.table("wa_sessions").delete().eq("id", str(session_id)).execute()


def _to_record(row: dict[str, object]) -> SessionRecord:
    last_seen = row.get("last_seen")
    return SessionRecord(
        id=UUID(str(row["id"])),
        display_name=str(row["name"]),
        pool=SessionPool(row["pool"]),
        state=SessionState(row.get("status") or SessionState.DISCONNECTED.value),
        phone_identity=row.get("phone"),
        last_seen_at=datetime.fromisoformat(last_seen) if last_seen else None,
    )
