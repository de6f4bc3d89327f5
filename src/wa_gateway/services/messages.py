"""Message log for sent and received messages."""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID

from wa_gateway.domain.events import InboundMessage
from wa_gateway.domain.messages import MessageRecord


class MessageRepository(Protocol):
    """Persistence interface for logged messages."""

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
        """Create a message row and return it."""

    def list_messages(self, session_id: UUID, limit: int) -> list[MessageRecord]:
        """Return the most recent messages of a session, newest first."""

    def delete_for_session(self, session_id: UUID) -> None:
        """Delete every message of a session."""


@dataclass
class MessageLogService:
    """Records outbound sends and inbound messages."""

    repository: MessageRepository

    def record_sent(  # noqa: PLR0913
        self,
        session_id: UUID,
        from_number: str | None,
        to_address: str,
        text: str,
        message_id: str,
    ) -> MessageRecord:
        """Record a successfully sent message."""
        return self.repository.create_message(
            session_id=session_id,
            message_id=message_id,
            from_number=from_number or "unknown",
            to_number=to_address,
            message_text=text,
            message_type="text",
            is_from_me=True,
            status="sent",
            timestamp=datetime.now(tz=UTC),
        )

    def record_failed(
        self,
        session_id: UUID,
        from_number: str | None,
        to_address: str,
        text: str,
        error_text: str,
    ) -> MessageRecord:
        """Record a send that did not go through."""
        return self.repository.create_message(
            session_id=session_id,
            message_id=None,
            from_number=from_number or "unknown",
            to_number=to_address,
            message_text=text,
            message_type="text",
            is_from_me=True,
            status="failed",
            timestamp=datetime.now(tz=UTC),
            error_text=error_text,
        )

    def record_received(
        self, session_id: UUID, to_number: str | None, message: InboundMessage
    ) -> MessageRecord:
        """Record a message received on the session's device."""
        timestamp = (
            datetime.fromtimestamp(message.timestamp, tz=UTC)
            if message.timestamp
            else datetime.now(tz=UTC)
        )
        return self.repository.create_message(
            session_id=session_id,
            message_id=message.message_id,
            from_number=message.from_address,
            to_number=to_number or "unknown",
            message_text=message.text,
            message_type=message.message_type,
            is_from_me=False,
            status="received",
            timestamp=timestamp,
        )

    def recent(self, session_id: UUID, limit: int = 50) -> list[MessageRecord]:
        """Return recent messages for a session."""
        return self.repository.list_messages(session_id, max(1, min(limit, 200)))
