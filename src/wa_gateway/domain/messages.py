"""Domain models for the message log."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class MessageRecord:
    """A message sent or received through a session."""

    id: UUID
    session_id: UUID
    message_id: str | None
    from_number: str
    to_number: str
    message_text: str | None
    message_type: str
    is_from_me: bool
    status: str
    timestamp: datetime
    error_text: str | None = None
