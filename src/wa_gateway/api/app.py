"""FastAPI application factory."""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

from fastapi import (
    Depends,
    FastAPI,
    Header,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.responses import JSONResponse

from wa_gateway.api.models import BridgeEvent
from wa_gateway.api.sessions import router as sessions_router
from wa_gateway.api.sessions import status_payload
from wa_gateway.app_logging import configure_logging
from wa_gateway.containers import AppContainer
from wa_gateway.errors import GatewayError, NotConnected, SessionNotFound

_WS_POLICY_VIOLATION = 1008


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.container.settings.resume_on_startup:
            try:
                await app.state.container.session_service.resume_sessions()
            except Exception:
                logger.exception("Failed to resume sessions")
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(sessions_router)

    @app.exception_handler(SessionNotFound)
    async def session_not_found(request: Request, exc: SessionNotFound) -> JSONResponse:
        return _error_response(status.HTTP_404_NOT_FOUND, exc)

    @app.exception_handler(NotConnected)
    async def not_connected(request: Request, exc: NotConnected) -> JSONResponse:
        return _error_response(status.HTTP_409_CONFLICT, exc)

    @app.exception_handler(GatewayError)
    async def gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        logger.warning("Gateway error on %s: %s", request.url.path, exc)
        return _error_response(status.HTTP_502_BAD_GATEWAY, exc)

    def _require_bridge_secret(
        request: Request, x_bridge_secret: str | None = Header(default=None)
    ) -> None:
        state_container: AppContainer = request.app.state.container
        if x_bridge_secret != state_container.settings.bridge_secret:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)

    @app.get("/health")
    async def health(request: Request) -> dict[str, object]:
        """Health check with live session count."""
        state_container: AppContainer = request.app.state.container
        return {
            "status": "ok",
            "activeSessions": len(state_container.registry),
            "subscribers": state_container.broadcaster.subscriber_count,
        }

    @app.post("/bridge/events", dependencies=[Depends(_require_bridge_secret)])
    async def bridge_events(event: BridgeEvent, request: Request) -> dict[str, str]:
        """Receive protocol events from the bridge, in transport order."""
        state_container: AppContainer = request.app.state.container
        applied = await state_container.session_service.handle_protocol_event(
            event.to_protocol_event()
        )
        return {"status": "ok" if applied else "ignored"}

    @app.websocket("/events")
    async def live_events(
        websocket: WebSocket,
        token: str | None = None,
        session: list[UUID] | None = Query(default=None),
    ) -> None:
        """Live channel for qr, pairingCode, stateChanged and message events."""
        state_container: AppContainer = websocket.app.state.container
        if token != state_container.settings.gateway_token:
            await websocket.close(code=_WS_POLICY_VIOLATION)
            return
        await websocket.accept()
        broadcaster = state_container.broadcaster
        broadcaster.subscribe(websocket, set(session) if session else None)
        try:
            while True:
                reply = _handle_client_message(
                    state_container, await websocket.receive_text()
                )
                if reply is not None:
                    await websocket.send_json(reply)
        except WebSocketDisconnect:
            logger.debug("Live channel client left")
        finally:
            broadcaster.unsubscribe(websocket)

    return app


def _error_response(status_code: int, exc: GatewayError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


def _handle_client_message(
    container: AppContainer, raw: str
) -> dict[str, object] | None:
    """Answer a client request sent over the live channel."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return {"type": "error", "detail": "invalid json"}
    if not isinstance(data, dict) or data.get("type") != "request_state":
        return None
    try:
        session_id = UUID(str(data.get("session")))
        current = container.session_service.status(session_id)
    except (ValueError, SessionNotFound):
        return {"type": "error", "detail": "unknown session"}
    return {"type": "state", "session": str(session_id), **status_payload(current)}
