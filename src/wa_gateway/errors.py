"""Gateway error taxonomy."""

from uuid import UUID

from wa_gateway.domain.events import DisconnectReason
from wa_gateway.domain.sessions import SessionState


class GatewayError(Exception):
    """Base class for errors surfaced by the gateway."""


class SessionNotFound(GatewayError):
    """No live entry and no persisted record exist for the id."""

    def __init__(self, session_id: UUID) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class NotConnected(GatewayError):
    """An operation needs a connected session."""

    def __init__(self, session_id: UUID, state: SessionState) -> None:
        super().__init__(f"Session {session_id} is {state.value}, not connected")
        self.session_id = session_id
        self.state = state


class TransportDropped(GatewayError):
    """The protocol transport closed or could not be reached."""

    def __init__(self, reason: DisconnectReason, detail: str | None = None) -> None:
        super().__init__(detail or f"Transport dropped: {reason.value}")
        self.reason = reason


class CredentialPersistFailure(GatewayError):
    """Credential material could not be written to storage."""

    def __init__(self, session_id: UUID, detail: str) -> None:
        super().__init__(f"Failed to persist credentials for {session_id}: {detail}")
        self.session_id = session_id
