"""In-memory registry of live device sessions."""

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from uuid import UUID

from wa_gateway.adapters.bridge_client import ProtocolClient
from wa_gateway.services.broadcaster import EventBroadcaster
from wa_gateway.services.credentials import CredentialStore
from wa_gateway.services.device_session import DeviceSession, SessionStateRepository
from wa_gateway.services.reconnect import ReconnectPolicy

_logger = logging.getLogger(__name__)


@dataclass
class SessionRegistry:
    """Holds at most one DeviceSession per session id."""

    client: ProtocolClient
    credential_store: CredentialStore
    broadcaster: EventBroadcaster
    repository: SessionStateRepository
    reconnect_policy: ReconnectPolicy
    country_code: str = "62"
    _sessions: dict[UUID, DeviceSession] = field(default_factory=dict)

    def get_or_create(self, session_id: UUID) -> DeviceSession:
        """Return the live session for the id, creating a disconnected one."""
        session = self._sessions.get(session_id)
        if session is None:
            session = DeviceSession(
                session_id=session_id,
                client=self.client,
                credential_store=self.credential_store,
                broadcaster=self.broadcaster,
                repository=self.repository,
                reconnect_policy=self.reconnect_policy,
                country_code=self.country_code,
            )
            self._sessions[session_id] = session
        return session

    def get(self, session_id: UUID) -> DeviceSession | None:
        """Return the live session for the id, if any."""
        return self._sessions.get(session_id)

    async def remove(self, session_id: UUID, logout: bool = False) -> None:
        """Disconnect the session if present and forget it.

        Credentials stay in the store; purging them is the caller's job.
        """
        session = self._sessions.pop(session_id, None)
        if session is not None:
            await session.disconnect(logout=logout)

    async def close_all(self) -> None:
        """Close every transport at shutdown without touching persisted state."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            try:
                await session.shutdown()
            except Exception:
                _logger.exception("Failed to shut down session %s", session.session_id)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[DeviceSession]:
        return iter(list(self._sessions.values()))
