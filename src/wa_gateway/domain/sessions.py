"""Domain models for WhatsApp device sessions."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from uuid import UUID


class SessionPool(StrEnum):
    """Usage partition a session belongs to."""

    CRM = "CRM"
    BLASTER = "BLASTER"
    WARMUP = "WARMUP"


class SessionState(StrEnum):
    """Connection state of a device session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    QR_REQUIRED = "qr_required"
    PAIRING_REQUIRED = "pairing_required"
    CONNECTED = "connected"


LIVE_STATES = frozenset(
    {
        SessionState.CONNECTING,
        SessionState.QR_REQUIRED,
        SessionState.PAIRING_REQUIRED,
        SessionState.CONNECTED,
    }
)
LINKING_STATES = frozenset({SessionState.QR_REQUIRED, SessionState.PAIRING_REQUIRED})


class LinkMethod(StrEnum):
    """How a device is linked during a handshake."""

    QR = "qr"
    PAIRING_CODE = "pairing_code"


class ConnectOutcome(StrEnum):
    """Result of a connect request."""

    STARTED = "started"
    ALREADY_CONNECTING = "already_connecting"
    ALREADY_CONNECTED = "already_connected"


@dataclass(frozen=True)
class SessionRecord:
    """Represents a persisted session."""

    id: UUID
    display_name: str
    pool: SessionPool
    state: SessionState
    phone_identity: str | None = None
    last_seen_at: datetime | None = None


@dataclass(frozen=True)
class LinkingArtifact:
    """A QR image or pairing code currently valid for linking."""

    method: LinkMethod
    value: str
    issued_at: datetime


@dataclass(frozen=True)
class SessionStatus:
    """Point-in-time view of a session's connection."""

    id: UUID
    state: SessionState
    phone_identity: str | None
    last_seen_at: datetime | None
    artifact: LinkingArtifact | None = None
    retrying: bool = False
    retry_attempt: int = 0

    @property
    def qr(self) -> str | None:
        if self.artifact and self.artifact.method is LinkMethod.QR:
            return self.artifact.value
        return None

    @property
    def pairing_code(self) -> str | None:
        if self.artifact and self.artifact.method is LinkMethod.PAIRING_CODE:
            return self.artifact.value
        return None
