"""Application service for session lifecycle requests."""

import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID

from wa_gateway.domain.events import ProtocolEvent, ProtocolEventType
from wa_gateway.domain.messages import MessageRecord
from wa_gateway.domain.sessions import (
    ConnectOutcome,
    LinkMethod,
    SessionPool,
    SessionRecord,
    SessionState,
    SessionStatus,
)
from wa_gateway.errors import (
    CredentialPersistFailure,
    NotConnected,
    SessionNotFound,
    TransportDropped,
)
from wa_gateway.services.addressing import normalize_address
from wa_gateway.services.credentials import CredentialStore
from wa_gateway.services.device_session import DeviceSession, SessionStateRepository
from wa_gateway.services.messages import MessageLogService
from wa_gateway.services.registry import SessionRegistry

_logger = logging.getLogger(__name__)


class SessionRepository(SessionStateRepository, Protocol):
    """Persistence interface for session records."""

    def create_session(self, display_name: str, pool: SessionPool) -> SessionRecord:
        """Create a disconnected session record and return it."""

    def get_session(self, session_id: UUID) -> SessionRecord | None:
        """Return a session record by id, if present."""

    def list_sessions(
        self, pools: set[SessionPool] | None = None
    ) -> list[SessionRecord]:
        """Return session records, optionally limited to some pools."""

    def delete_session(self, session_id: UUID) -> None:
        """Delete a session record."""


@dataclass
class SessionService:
    """Routes API and bridge requests to the live device sessions."""

    repository: SessionRepository
    registry: SessionRegistry
    credential_store: CredentialStore
    message_log: MessageLogService

    def create_session(self, display_name: str, pool: SessionPool) -> SessionRecord:
        """Create a session record with an empty credential slot."""
        record = self.repository.create_session(display_name.strip(), pool)
        try:
            self.credential_store.save(record.id, b"")
        except CredentialPersistFailure:
            _logger.exception("Could not allocate credentials for %s", record.id)
        _logger.info("Created session %s in pool %s", record.id, pool.value)
        return record

    def list_sessions(
        self, pools: set[SessionPool] | None = None
    ) -> list[SessionRecord]:
        """Return session records with their live connection state."""
        records = []
        for record in self.repository.list_sessions(pools):
            live = self.registry.get(record.id)
            if live is not None:
                record = dataclasses.replace(
                    record,
                    state=live.state,
                    phone_identity=live.phone_identity,
                    last_seen_at=live.last_seen_at or record.last_seen_at,
                )
            elif record.state is not SessionState.DISCONNECTED:
                record = dataclasses.replace(
                    record, state=SessionState.DISCONNECTED, phone_identity=None
                )
            records.append(record)
        return records

    def status(self, session_id: UUID) -> SessionStatus:
        """Return the current status of a session."""
        live = self.registry.get(session_id)
        if live is not None:
            return live.snapshot()
        record = self._get_record(session_id)
        return SessionStatus(
            id=record.id,
            state=SessionState.DISCONNECTED,
            phone_identity=None,
            last_seen_at=record.last_seen_at,
        )

    async def connect(
        self,
        session_id: UUID,
        method: LinkMethod = LinkMethod.QR,
        pairing_phone: str | None = None,
    ) -> ConnectOutcome:
        """Start linking or resuming a session."""
        session = self._live_or_create(session_id)
        return await session.connect(method, pairing_phone)

    async def disconnect(self, session_id: UUID) -> None:
        """Disconnect a session without discarding its credentials."""
        session = self.registry.get(session_id)
        if session is None:
            self._get_record(session_id)
            return
        await session.disconnect()

    async def send_text(self, session_id: UUID, to: str, text: str) -> str:
        """Send a text message and log it in the message history."""
        session = self.registry.get(session_id)
        if session is None:
            self._get_record(session_id)
            raise NotConnected(session_id, SessionState.DISCONNECTED)
        try:
            message_id = await session.send_message(to, text)
        except TransportDropped as exc:
            self._log_message(
                lambda: self.message_log.record_failed(
                    session_id,
                    session.phone_identity,
                    normalize_address(to, self.registry.country_code),
                    text,
                    str(exc),
                )
            )
            raise
        self._log_message(
            lambda: self.message_log.record_sent(
                session_id,
                session.phone_identity,
                normalize_address(to, self.registry.country_code),
                text,
                message_id,
            )
        )
        return message_id

    def recent_messages(
        self, session_id: UUID, limit: int = 50
    ) -> list[MessageRecord]:
        """Return the recent message history of a session."""
        self._get_record(session_id)
        return self.message_log.recent(session_id, limit)

    async def purge(self, session_id: UUID) -> None:
        """Hard-delete a session: unlink, forget, and erase its credentials."""
        record = self.repository.get_session(session_id)
        if record is None and session_id not in self.registry:
            raise SessionNotFound(session_id)
        if session_id in self.registry:
            await self.registry.remove(session_id, logout=True)
        self.credential_store.purge(session_id)
        self.message_log.repository.delete_for_session(session_id)
        if record is not None:
            self.repository.delete_session(session_id)
        _logger.info("Purged session %s", session_id)

    async def handle_protocol_event(self, event: ProtocolEvent) -> bool:
        """Apply a protocol event to its live session. Returns False if ignored."""
        session = self.registry.get(event.session_id)
        if session is None:
            _logger.info(
                "Ignoring %s event for session %s with no live connection",
                event.type.value,
                event.session_id,
            )
            return False
        applied = await session.handle_event(event)
        if applied and event.type is ProtocolEventType.MESSAGE and event.message:
            message = event.message
            self._log_message(
                lambda: self.message_log.record_received(
                    event.session_id, session.phone_identity, message
                )
            )
        return applied

    async def resume_sessions(self) -> int:
        """Reconnect sessions that were live before the process stopped."""
        resumed = 0
        for record in self.repository.list_sessions():
            if record.state is SessionState.DISCONNECTED or record.id in self.registry:
                continue
            try:
                if self.credential_store.load(record.id):
                    await self.registry.get_or_create(record.id).connect()
                    resumed += 1
                    continue
                self.repository.update_state(
                    record.id,
                    SessionState.DISCONNECTED,
                    None,
                    datetime.now(tz=UTC),
                )
            except Exception:
                _logger.exception("Failed to resume session %s", record.id)
        if resumed:
            _logger.info("Resumed %s sessions", resumed)
        return resumed

    async def shutdown(self) -> None:
        """Close all live transports."""
        await self.registry.close_all()

    def _get_record(self, session_id: UUID) -> SessionRecord:
        record = self.repository.get_session(session_id)
        if record is None:
            raise SessionNotFound(session_id)
        return record

    def _live_or_create(self, session_id: UUID) -> DeviceSession:
        live = self.registry.get(session_id)
        if live is not None:
            return live
        self._get_record(session_id)
        return self.registry.get_or_create(session_id)

    @staticmethod
    def _log_message(write: Callable[[], MessageRecord]) -> None:
        try:
            write()
        except Exception:
            _logger.exception("Failed to record message")
