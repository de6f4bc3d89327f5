"""Events exchanged with the protocol layer and live-update clients."""

from dataclasses import dataclass, field
from enum import StrEnum
from uuid import UUID


class DisconnectReason(StrEnum):
    """Why the protocol transport closed."""

    LOGGED_OUT = "logged_out"
    CONNECTION_CLOSED = "connection_closed"
    CONNECTION_LOST = "connection_lost"
    CONNECTION_REPLACED = "connection_replaced"
    TIMED_OUT = "timed_out"
    BAD_SESSION = "bad_session"
    RESTART_REQUIRED = "restart_required"
    MULTIDEVICE_MISMATCH = "multidevice_mismatch"
    FORBIDDEN = "forbidden"
    UNAVAILABLE_SERVICE = "unavailable_service"
    UNKNOWN = "unknown"

    @classmethod
    def from_status_code(cls, status_code: int | None) -> "DisconnectReason":
        """Map a protocol close status code to a reason."""
        if status_code is None:
            return cls.UNKNOWN
        return _STATUS_CODES.get(status_code, cls.UNKNOWN)


# 408 is shared by "connection lost" and "timed out" upstream.
_STATUS_CODES = {
    401: DisconnectReason.LOGGED_OUT,
    403: DisconnectReason.FORBIDDEN,
    408: DisconnectReason.CONNECTION_LOST,
    411: DisconnectReason.MULTIDEVICE_MISMATCH,
    428: DisconnectReason.CONNECTION_CLOSED,
    440: DisconnectReason.CONNECTION_REPLACED,
    500: DisconnectReason.BAD_SESSION,
    503: DisconnectReason.UNAVAILABLE_SERVICE,
    515: DisconnectReason.RESTART_REQUIRED,
}


class ProtocolEventType(StrEnum):
    """Progress notifications emitted by the protocol layer."""

    QR = "qr"
    PAIRING_CODE = "pairing_code"
    CREDENTIALS = "credentials"
    OPEN = "open"
    CLOSE = "close"
    MESSAGE = "message"


@dataclass(frozen=True)
class InboundMessage:
    """A message received on a linked device."""

    message_id: str | None
    from_address: str
    text: str | None
    message_type: str = "text"
    timestamp: int | None = None


@dataclass(frozen=True)
class ProtocolEvent:
    """One event from a connection attempt, in transport order."""

    session_id: UUID
    attempt_id: str
    type: ProtocolEventType
    qr: str | None = None
    pairing_code: str | None = None
    credentials: bytes | None = None
    identity: str | None = None
    reason: DisconnectReason = DisconnectReason.UNKNOWN
    message: InboundMessage | None = None


class SessionEventKind(StrEnum):
    """Live-update events published to dashboard clients."""

    QR = "qr"
    PAIRING_CODE = "pairingCode"
    STATE_CHANGED = "stateChanged"
    MESSAGE = "message"


@dataclass(frozen=True)
class SessionEvent:
    """A live-update event scoped to one session."""

    kind: SessionEventKind
    payload: dict[str, object] = field(default_factory=dict)

    def to_message(self, session_id: UUID) -> dict[str, object]:
        """Return the wire form sent to subscribers."""
        return {"type": self.kind.value, "session": str(session_id), **self.payload}
