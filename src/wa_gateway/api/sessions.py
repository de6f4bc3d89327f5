"""Session endpoints consumed by the dashboard, with token auth."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from wa_gateway.api.models import (  # noqa: TC001
    ConnectRequest,
    CreateSessionRequest,
    SendRequest,
)
from wa_gateway.config import parse_pool_filter

if TYPE_CHECKING:
    from wa_gateway.containers import AppContainer
    from wa_gateway.domain.messages import MessageRecord
    from wa_gateway.domain.sessions import SessionRecord, SessionStatus

router = APIRouter(tags=["sessions"])

_UNPROCESSABLE = 422


def _get_gateway_token(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.gateway_token


async def require_gateway_token(
    x_gateway_token: str | None = Header(default=None),
    gateway_token: str = Depends(_get_gateway_token),
) -> None:
    """Ensure requests include a valid gateway token."""
    if not x_gateway_token or x_gateway_token != gateway_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.post(
    "/sessions",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_gateway_token)],
)
async def create_session(
    payload: CreateSessionRequest, request: Request
) -> dict[str, object]:
    """Create a disconnected session."""
    container: AppContainer = request.app.state.container
    record = container.session_service.create_session(
        payload.display_name, payload.pool
    )
    return record_payload(record)


@router.get("/sessions", dependencies=[Depends(require_gateway_token)])
async def list_sessions(request: Request, pool: str | None = None) -> dict[str, object]:
    """Return sessions with their live state."""
    container: AppContainer = request.app.state.container
    records = container.session_service.list_sessions(parse_pool_filter(pool))
    return {"sessions": [record_payload(record) for record in records]}


@router.post(
    "/session/{session_id}/connect",
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_gateway_token)],
)
async def connect_session(
    session_id: UUID, request: Request, payload: ConnectRequest | None = None
) -> dict[str, str]:
    """Start connecting; progress arrives on the live channel."""
    container: AppContainer = request.app.state.container
    options = payload or ConnectRequest()
    try:
        outcome = await container.session_service.connect(
            session_id, options.method, options.phone
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=_UNPROCESSABLE, detail=str(exc)
        ) from exc
    return {"status": outcome.value}


@router.post(
    "/session/{session_id}/disconnect", dependencies=[Depends(require_gateway_token)]
)
async def disconnect_session(session_id: UUID, request: Request) -> dict[str, str]:
    """Disconnect a session, keeping its credentials."""
    container: AppContainer = request.app.state.container
    await container.session_service.disconnect(session_id)
    return {"status": "disconnected"}


@router.post(
    "/session/{session_id}/send", dependencies=[Depends(require_gateway_token)]
)
async def send_message(
    session_id: UUID, payload: SendRequest, request: Request
) -> dict[str, str]:
    """Send a text message through a connected session."""
    container: AppContainer = request.app.state.container
    try:
        message_id = await container.session_service.send_text(
            session_id, payload.to, payload.text
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=_UNPROCESSABLE, detail=str(exc)
        ) from exc
    return {"messageId": message_id}


@router.get(
    "/session/{session_id}/status", dependencies=[Depends(require_gateway_token)]
)
async def session_status(session_id: UUID, request: Request) -> dict[str, object]:
    """Return the current state and linking artifact of a session."""
    container: AppContainer = request.app.state.container
    return status_payload(container.session_service.status(session_id))


@router.get(
    "/session/{session_id}/messages", dependencies=[Depends(require_gateway_token)]
)
async def session_messages(
    session_id: UUID, request: Request, limit: int = 50
) -> dict[str, object]:
    """Return the recent message history of a session."""
    container: AppContainer = request.app.state.container
    messages = container.session_service.recent_messages(session_id, limit)
    return {"messages": [message_payload(message) for message in messages]}


@router.delete("/session/{session_id}", dependencies=[Depends(require_gateway_token)])
async def purge_session(session_id: UUID, request: Request) -> dict[str, str]:
    """Hard-delete a session and its credentials."""
    container: AppContainer = request.app.state.container
    await container.session_service.purge(session_id)
    return {"status": "purged"}


def record_payload(record: SessionRecord) -> dict[str, object]:
    """Serialize a session record."""
    return {
        "id": str(record.id),
        "displayName": record.display_name,
        "pool": record.pool.value,
        "state": record.state.value,
        "phoneIdentity": record.phone_identity,
        "lastSeenAt": record.last_seen_at.isoformat() if record.last_seen_at else None,
    }


def status_payload(session_status: SessionStatus) -> dict[str, object]:
    """Serialize a session status, including the current linking artifact.

    While a reconnect is pending the state stays ``disconnected``; clients
    tell it apart from a settled disconnect by ``retrying`` and
    ``retryAttempt``.
    """
    last_seen_at = session_status.last_seen_at
    return {
        "id": str(session_status.id),
        "state": session_status.state.value,
        "phoneIdentity": session_status.phone_identity,
        "lastSeenAt": last_seen_at.isoformat() if last_seen_at else None,
        "qr": session_status.qr,
        "pairingCode": session_status.pairing_code,
        "retrying": session_status.retrying,
        "retryAttempt": session_status.retry_attempt,
    }


def message_payload(message: MessageRecord) -> dict[str, object]:
    """Serialize a logged message."""
    return {
        "id": str(message.id),
        "messageId": message.message_id,
        "from": message.from_number,
        "to": message.to_number,
        "text": message.message_text,
        "type": message.message_type,
        "fromMe": message.is_from_me,
        "status": message.status,
        "timestamp": message.timestamp.isoformat(),
        "error": message.error_text,
    }
