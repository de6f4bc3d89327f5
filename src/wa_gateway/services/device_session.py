"""Connection state machine for a single linked device."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID, uuid4

from wa_gateway.adapters.bridge_client import ProtocolClient
from wa_gateway.domain.events import (
    DisconnectReason,
    InboundMessage,
    ProtocolEvent,
    ProtocolEventType,
    SessionEvent,
    SessionEventKind,
)
from wa_gateway.domain.sessions import (
    LINKING_STATES,
    LIVE_STATES,
    ConnectOutcome,
    LinkingArtifact,
    LinkMethod,
    SessionState,
    SessionStatus,
)
from wa_gateway.errors import CredentialPersistFailure, NotConnected, TransportDropped
from wa_gateway.services.addressing import normalize_address, phone_from_identity
from wa_gateway.services.broadcaster import EventBroadcaster
from wa_gateway.services.credentials import CredentialStore
from wa_gateway.services.qr import render_qr_data_url
from wa_gateway.services.reconnect import ReconnectPolicy

_logger = logging.getLogger(__name__)


class SessionStateRepository(Protocol):
    """Persistence interface for a session's connection state."""

    def update_state(
        self,
        session_id: UUID,
        state: SessionState,
        phone_identity: str | None,
        last_seen_at: datetime | None,
    ) -> None:
        """Persist the current state, phone identity and last-seen time."""


@dataclass(eq=False)
class DeviceSession:
    """Owns one session's protocol connection and its transitions.

    ``disconnected -> connecting -> qr_required | pairing_required ->
    connected``; any live state drops back to ``disconnected`` when the
    transport closes. Handshake progress is driven by ``handle_event``;
    events from an attempt other than the current one are ignored.
    """

    session_id: UUID
    client: ProtocolClient
    credential_store: CredentialStore
    broadcaster: EventBroadcaster
    repository: SessionStateRepository
    reconnect_policy: ReconnectPolicy
    country_code: str = "62"
    render_qr: Callable[[str], str] = render_qr_data_url
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    state: SessionState = field(default=SessionState.DISCONNECTED, init=False)
    phone_identity: str | None = field(default=None, init=False)
    last_seen_at: datetime | None = field(default=None, init=False)
    artifact: LinkingArtifact | None = field(default=None, init=False)
    attempt_id: str | None = field(default=None, init=False)
    link_method: LinkMethod = field(default=LinkMethod.QR, init=False)
    pairing_phone: str | None = field(default=None, init=False)
    retry_attempts: int = field(default=0, init=False)
    _credentials: bytes = field(default=b"", init=False, repr=False)
    _retry_task: "asyncio.Task[None] | None" = field(
        default=None, init=False, repr=False
    )
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    @property
    def retry_pending(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    def snapshot(self) -> SessionStatus:
        """Return the current connection status."""
        return SessionStatus(
            id=self.session_id,
            state=self.state,
            phone_identity=self.phone_identity,
            last_seen_at=self.last_seen_at,
            artifact=self.artifact,
            retrying=self.retry_pending,
            retry_attempt=self.retry_attempts,
        )

    async def connect(
        self, method: LinkMethod = LinkMethod.QR, pairing_phone: str | None = None
    ) -> ConnectOutcome:
        """Start a handshake unless one is already running or done.

        Returns as soon as the transport has been asked to open; QR codes,
        pairing codes and the final outcome arrive as events.
        """
        if self.state is SessionState.CONNECTED:
            return ConnectOutcome.ALREADY_CONNECTED
        if self.state in LIVE_STATES:
            return ConnectOutcome.ALREADY_CONNECTING
        if method is LinkMethod.PAIRING_CODE and not pairing_phone:
            raise ValueError("Pairing-code linking requires a phone number")

        self._cancel_retry()
        self.link_method = method
        self.pairing_phone = (
            normalize_address(pairing_phone, self.country_code).partition("@")[0]
            if pairing_phone
            else None
        )
        attempt_id = uuid4().hex
        self.attempt_id = attempt_id
        self._credentials = self._load_credentials() or self._credentials
        self._enter(SessionState.CONNECTING)
        await self._announce()
        if self.attempt_id != attempt_id:
            # Torn down while announcing.
            return ConnectOutcome.STARTED

        try:
            await self.client.open(
                self.session_id,
                attempt_id,
                self._credentials or None,
                self.pairing_phone,
            )
        except TransportDropped as exc:
            _logger.warning("Session %s failed to open: %s", self.session_id, exc)
            if self.attempt_id == attempt_id:
                await self.on_connection_closed(exc.reason)
        except Exception:
            _logger.exception("Session %s failed to open", self.session_id)
            if self.attempt_id == attempt_id:
                await self.on_connection_closed(DisconnectReason.UNKNOWN)
        return ConnectOutcome.STARTED

    async def disconnect(self, logout: bool = False) -> None:
        """Tear down the transport; safe to call in any state.

        Credentials are kept unless ``logout`` unlinks the device.
        """
        self._cancel_retry()
        self.retry_attempts = 0
        attempt_id, self.attempt_id = self.attempt_id, None
        if attempt_id is not None or logout:
            await self._close_transport(logout=logout)
        self._enter(SessionState.DISCONNECTED)
        await self._announce()

    async def shutdown(self) -> None:
        """Close the transport at process exit, keeping the persisted state."""
        self._cancel_retry()
        attempt_id, self.attempt_id = self.attempt_id, None
        if attempt_id is not None:
            await self._close_transport()

    async def send_message(self, target: str, content: str) -> str:
        """Send a text message; only valid while connected."""
        if self.state is not SessionState.CONNECTED:
            raise NotConnected(self.session_id, self.state)
        jid = normalize_address(target, self.country_code)
        message_id = await self.client.send_text(self.session_id, jid, content)
        self.last_seen_at = datetime.now(tz=UTC)
        self._persist()
        return message_id

    async def handle_event(self, event: ProtocolEvent) -> bool:
        """Apply a protocol event in arrival order. Returns False if stale."""
        async with self._lock:
            if self.attempt_id is None or event.attempt_id != self.attempt_id:
                _logger.debug(
                    "Dropping stale %s event for session %s",
                    event.type.value,
                    self.session_id,
                )
                return False
            if event.type is ProtocolEventType.QR and event.qr:
                await self.on_qr_needed(event.qr)
            elif event.type is ProtocolEventType.PAIRING_CODE and event.pairing_code:
                await self.on_pairing_needed(event.pairing_code)
            elif event.type is ProtocolEventType.CREDENTIALS:
                await self.on_credentials_updated(event.credentials or b"")
            elif event.type is ProtocolEventType.OPEN and event.identity:
                await self.on_connection_open(event.identity)
            elif event.type is ProtocolEventType.CLOSE:
                await self.on_connection_closed(event.reason)
            elif event.type is ProtocolEventType.MESSAGE and event.message:
                await self.on_message_received(event.message)
            else:
                _logger.warning(
                    "Malformed %s event for session %s",
                    event.type.value,
                    self.session_id,
                )
                return False
            return True

    async def on_qr_needed(self, payload: str) -> None:
        """Show a fresh QR code; any previous one stops being valid."""
        if not self._accepts_linking(LinkMethod.QR):
            return
        image = self.render_qr(payload)
        await self._present(
            LinkingArtifact(LinkMethod.QR, image, datetime.now(tz=UTC)),
            SessionState.QR_REQUIRED,
        )
        await self.broadcaster.publish(
            self.session_id, SessionEvent(SessionEventKind.QR, {"qr": image})
        )

    async def on_pairing_needed(self, code: str) -> None:
        """Show a fresh pairing code; any previous one stops being valid."""
        if not self._accepts_linking(LinkMethod.PAIRING_CODE):
            return
        await self._present(
            LinkingArtifact(LinkMethod.PAIRING_CODE, code, datetime.now(tz=UTC)),
            SessionState.PAIRING_REQUIRED,
        )
        await self.broadcaster.publish(
            self.session_id,
            SessionEvent(SessionEventKind.PAIRING_CODE, {"code": code}),
        )

    async def on_credentials_updated(self, blob: bytes) -> None:
        """Keep the latest key material and persist it best-effort."""
        self._credentials = blob
        try:
            self.credential_store.save(self.session_id, blob)
        except CredentialPersistFailure:
            _logger.exception(
                "Keeping in-memory credentials for session %s", self.session_id
            )

    async def on_connection_open(self, identity: str) -> None:
        """Mark the session connected as ``identity``.

        A connection that opens with no credentials held is closed and ends
        as a ``bad_session`` closure.
        """
        if not self._credentials:
            _logger.warning(
                "Session %s opened before any credentials were stored; dropping",
                self.session_id,
            )
            await self._close_transport()
            await self.on_connection_closed(DisconnectReason.BAD_SESSION)
            return
        self.phone_identity = phone_from_identity(identity)
        self.retry_attempts = 0
        self._enter(SessionState.CONNECTED)
        await self._announce()

    async def on_connection_closed(self, reason: DisconnectReason) -> None:
        """Drop to disconnected and schedule a retry unless terminal."""
        self.attempt_id = None
        self._enter(SessionState.DISCONNECTED)
        delay = self._plan_retry(reason)
        if delay is not None:
            self._retry_task = asyncio.create_task(self._retry_after(delay))
        await self._announce(reason=reason)

    async def on_message_received(self, message: InboundMessage) -> None:
        """Relay an inbound message to live subscribers."""
        self.last_seen_at = datetime.now(tz=UTC)
        await self.broadcaster.publish(
            self.session_id,
            SessionEvent(
                SessionEventKind.MESSAGE,
                {
                    "from": message.from_address,
                    "message": message.text,
                    "messageId": message.message_id,
                    "timestamp": message.timestamp,
                },
            ),
        )

    def _accepts_linking(self, method: LinkMethod) -> bool:
        if self.link_method is not method:
            _logger.warning(
                "Ignoring %s for session %s linking by %s",
                method.value,
                self.session_id,
                self.link_method.value,
            )
            return False
        if self.state not in {SessionState.CONNECTING, *LINKING_STATES}:
            _logger.warning(
                "Ignoring %s for session %s in state %s",
                method.value,
                self.session_id,
                self.state.value,
            )
            return False
        return True

    async def _present(self, artifact: LinkingArtifact, state: SessionState) -> None:
        changed = self.state is not state
        self._enter(state)
        self.artifact = artifact
        if changed:
            await self._announce()
        else:
            self._persist()

    def _plan_retry(self, reason: DisconnectReason) -> float | None:
        if not self.reconnect_policy.should_retry(reason):
            _logger.info(
                "Session %s closed with %s; not reconnecting",
                self.session_id,
                reason.value,
            )
            self.retry_attempts = 0
            return None
        if not self.reconnect_policy.allows(self.retry_attempts):
            _logger.warning(
                "Session %s giving up after %s reconnect attempts",
                self.session_id,
                self.retry_attempts,
            )
            self.retry_attempts = 0
            return None
        delay = self.reconnect_policy.next_delay(self.retry_attempts)
        self.retry_attempts += 1
        _logger.info(
            "Session %s closed with %s; retry %s in %.1fs",
            self.session_id,
            reason.value,
            self.retry_attempts,
            delay,
        )
        return delay

    async def _retry_after(self, delay: float) -> None:
        await self.sleep(delay)
        if self.state is not SessionState.DISCONNECTED:
            return
        try:
            await self.connect(self.link_method, self.pairing_phone)
        except Exception:
            _logger.exception("Reconnect of session %s failed", self.session_id)

    def _load_credentials(self) -> bytes:
        try:
            return self.credential_store.load(self.session_id)
        except Exception:
            _logger.exception(
                "Failed to load credentials for session %s; relinking",
                self.session_id,
            )
            return b""

    async def _close_transport(self, logout: bool = False) -> None:
        try:
            await self.client.close(self.session_id, logout=logout)
        except TransportDropped as exc:
            _logger.warning(
                "Session %s transport close failed: %s", self.session_id, exc
            )

    def _cancel_retry(self) -> None:
        task = self._retry_task
        if task is None or task is asyncio.current_task():
            return
        self._retry_task = None
        if not task.done():
            task.cancel()

    def _enter(self, state: SessionState) -> None:
        if state is not self.state:
            _logger.info(
                "Session %s: %s -> %s",
                self.session_id,
                self.state.value,
                state.value,
            )
        self.state = state
        self.last_seen_at = datetime.now(tz=UTC)
        if state not in LINKING_STATES:
            self.artifact = None
        if state is SessionState.DISCONNECTED:
            self.phone_identity = None

    async def _announce(self, reason: DisconnectReason | None = None) -> None:
        status = self.snapshot()
        payload: dict[str, object] = {
            "state": status.state.value,
            "phoneIdentity": status.phone_identity,
            "lastSeenAt": (
                status.last_seen_at.isoformat() if status.last_seen_at else None
            ),
            "retrying": status.retrying,
            "retryAttempt": status.retry_attempt,
        }
        if reason is not None:
            payload["reason"] = reason.value
        self._persist()
        await self.broadcaster.publish(
            self.session_id, SessionEvent(SessionEventKind.STATE_CHANGED, payload)
        )

    def _persist(self) -> None:
        try:
            self.repository.update_state(
                self.session_id, self.state, self.phone_identity, self.last_seen_at
            )
        except Exception:
            _logger.exception("Failed to persist state of session %s", self.session_id)
