"""Pydantic models for gateway requests and bridge webhook payloads."""

from uuid import UUID

from pydantic import Base64Bytes, BaseModel, Field, model_validator

from wa_gateway.domain.events import (
    DisconnectReason,
    InboundMessage,
    ProtocolEvent,
    ProtocolEventType,
)
from wa_gateway.domain.sessions import LinkMethod, SessionPool


class CreateSessionRequest(BaseModel):
    """Body of a session creation request."""

    display_name: str = Field(min_length=1, max_length=100)
    pool: SessionPool = SessionPool.CRM


class ConnectRequest(BaseModel):
    """Optional body of a connect request."""

    method: LinkMethod = LinkMethod.QR
    phone: str | None = None

    @model_validator(mode="after")
    def _require_phone_for_pairing(self) -> "ConnectRequest":
        if self.method is LinkMethod.PAIRING_CODE and not self.phone:
            raise ValueError("phone is required for pairing_code linking")
        return self


class SendRequest(BaseModel):
    """Body of a send request."""

    to: str = Field(min_length=1)
    text: str = Field(min_length=1, max_length=4096)


class BridgeMessage(BaseModel):
    """Inbound message relayed by the bridge."""

    id: str | None = None
    from_address: str = Field(alias="from")
    text: str | None = None
    type: str = "text"
    timestamp: int | None = None


class BridgeEvent(BaseModel):
    """One protocol event delivered by the bridge webhook."""

    session_id: UUID
    attempt_id: str
    type: ProtocolEventType
    qr: str | None = None
    code: str | None = None
    credentials: Base64Bytes | None = None
    identity: str | None = None
    reason: DisconnectReason | None = None
    status_code: int | None = None
    message: BridgeMessage | None = None

    def to_protocol_event(self) -> ProtocolEvent:
        """Convert the payload into a domain event."""
        message = None
        if self.message is not None:
            message = InboundMessage(
                message_id=self.message.id,
                from_address=self.message.from_address,
                text=self.message.text,
                message_type=self.message.type,
                timestamp=self.message.timestamp,
            )
        return ProtocolEvent(
            session_id=self.session_id,
            attempt_id=self.attempt_id,
            type=self.type,
            qr=self.qr,
            pairing_code=self.code,
            credentials=self.credentials,
            identity=self.identity,
            reason=self.reason or DisconnectReason.from_status_code(self.status_code),
            message=message,
        )
