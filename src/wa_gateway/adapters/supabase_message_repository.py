"""Supabase-backed message log repository."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from supabase import Client

from wa_gateway.domain.messages import MessageRecord
from wa_gateway.services.messages import MessageRepository

_COLUMNS = (
    "id, session_id, message_id, from_number, to_number, message_text, "
    "message_type, is_from_me, status, timestamp, error_text"
)


@dataclass
class SupabaseMessageRepository(MessageRepository):
    """Supabase implementation for the ``whatsapp_messages`` table."""

    client: Client

    def create_message(  # noqa: PLR0913
        self,
        session_id: UUID,
        message_id: str | None,
        from_number: str,
        to_number: str,
        message_text: str | None,
        message_type: str,
        is_from_me: bool,
        status: str,
        timestamp: datetime,
        error_text: str | None = None,
    ) -> MessageRecord:
        """Insert a message row and return it."""
        response = (
            self.client.table("whatsapp_messages")
            .insert(
                {
                    "session_id": str(session_id),
                    "message_id": message_id,
                    "from_number": from_number,
                    "to_number": to_number,
                    "message_text": message_text,
                    "message_type": message_type,
                    "is_from_me": is_from_me,
                    "status": status,
                    "timestamp": timestamp.isoformat(),
                    "error_text": error_text,
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to record message")
        return _to_record(response.data[0])

    def list_messages(self, session_id: UUID, limit: int) -> list[MessageRecord]:
        """Return the latest messages of a session."""
        response = (
            self.client.table("whatsapp_messages")
            .select(_COLUMNS)
            .eq("session_id", str(session_id))
            .order("timestamp", desc=True)
            .limit(limit)
            .execute()
        )
        return [_to_record(row) for row in response.data or []]

    def delete_for_session(self, session_id: UUID) -> None:
        """Delete every message of a session."""
        self.client.table("whatsapp_messages").delete().eq(
            "session_id", str(session_id)
        ).execute()


def _to_record(row: dict[str, object]) -> MessageRecord:
    return MessageRecord(
        id=UUID(str(row["id"])),
        session_id=UUID(str(row["session_id"])),
        message_id=row.get("message_id"),
        from_number=str(row["from_number"]),
        to_number=str(row["to_number"]),
        message_text=row.get("message_text"),
        message_type=str(row.get("message_type") or "text"),
        is_from_me=bool(row.get("is_from_me")),
        status=str(row.get("status") or "unknown"),
        timestamp=datetime.fromisoformat(str(row["timestamp"])),
        error_text=row.get("error_text"),
    )
