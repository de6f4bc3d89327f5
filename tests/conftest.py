"""Shared test fixtures."""

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from uuid import UUID, uuid4

import pytest

from wa_gateway.adapters.bridge_client import ProtocolClient
from wa_gateway.config import Settings
from wa_gateway.containers import AppContainer
from wa_gateway.domain.events import DisconnectReason
from wa_gateway.domain.messages import MessageRecord
from wa_gateway.domain.sessions import SessionPool, SessionRecord, SessionState
from wa_gateway.errors import CredentialPersistFailure, TransportDropped
from wa_gateway.services.broadcaster import EventBroadcaster
from wa_gateway.services.credentials import CredentialStore
from wa_gateway.services.messages import MessageLogService, MessageRepository
from wa_gateway.services.reconnect import ReconnectPolicy
from wa_gateway.services.registry import SessionRegistry
from wa_gateway.services.sessions import SessionRepository, SessionService


@dataclass
class InMemorySessionRepository(SessionRepository):
    """In-memory session repository for tests."""

    sessions: dict[UUID, SessionRecord] = field(default_factory=dict)
    updates: list[tuple[UUID, SessionState, str | None]] = field(default_factory=list)

    def create_session(self, display_name: str, pool: SessionPool) -> SessionRecord:
        record = SessionRecord(
            id=uuid4(),
            display_name=display_name,
            pool=pool,
            state=SessionState.DISCONNECTED,
        )
        self.sessions[record.id] = record
        return record

    def get_session(self, session_id: UUID) -> SessionRecord | None:
        return self.sessions.get(session_id)

    def list_sessions(
        self, pools: set[SessionPool] | None = None
    ) -> list[SessionRecord]:
        return [
            record
            for record in self.sessions.values()
            if pools is None or record.pool in pools
        ]

    def update_state(
        self,
        session_id: UUID,
        state: SessionState,
        phone_identity: str | None,
        last_seen_at: datetime | None,
    ) -> None:
        self.updates.append((session_id, state, phone_identity))
        record = self.sessions.get(session_id)
        if record is not None:
            self.sessions[session_id] = dataclasses.replace(
                record,
                state=state,
                phone_identity=phone_identity,
                last_seen_at=last_seen_at,
            )

    def delete_session(self, session_id: UUID) -> None:
        self.sessions.pop(session_id, None)


@dataclass
class InMemoryMessageRepository(MessageRepository):
    """In-memory message log for tests."""

    messages: list[MessageRecord] = field(default_factory=list)

    def create_message(  # noqa: PLR0913
        self,
        session_id: UUID,
        message_id: str | None,
        from_number: str,
        to_number: str,
        message_text: str | None,
        message_type: str,
        is_from_me: bool,
        status: str,
        timestamp: datetime,
        error_text: str | None = None,
    ) -> MessageRecord:
        record = MessageRecord(
            id=uuid4(),
            session_id=session_id,
            message_id=message_id,
            from_number=from_number,
            to_number=to_number,
            message_text=message_text,
            message_type=message_type,
            is_from_me=is_from_me,
            status=status,
            timestamp=timestamp,
            error_text=error_text,
        )
        self.messages.append(record)
        return record

    def list_messages(self, session_id: UUID, limit: int) -> list[MessageRecord]:
        matching = [m for m in self.messages if m.session_id == session_id]
        return list(reversed(matching))[:limit]

    def delete_for_session(self, session_id: UUID) -> None:
        self.messages = [m for m in self.messages if m.session_id != session_id]


@dataclass
class InMemoryCredentialStore(CredentialStore):
    """In-memory credential store that can be told to fail reads or writes."""

    blobs: dict[UUID, bytes] = field(default_factory=dict)
    fail_saves: bool = False
    fail_loads: set[UUID] = field(default_factory=set)
    purged: list[UUID] = field(default_factory=list)

    def load(self, session_id: UUID) -> bytes:
        if session_id in self.fail_loads:
            raise RuntimeError("storage offline")
        return self.blobs.get(session_id, b"")

    def save(self, session_id: UUID, blob: bytes) -> None:
        if self.fail_saves:
            raise CredentialPersistFailure(session_id, "disk full")
        self.blobs[session_id] = blob

    def purge(self, session_id: UUID) -> None:
        self.blobs.pop(session_id, None)
        self.purged.append(session_id)


@dataclass
class FakeProtocolClient(ProtocolClient):
    """Fake protocol client that records transport calls."""

    opened: list[tuple[UUID, str, bytes | None, str | None]] = field(
        default_factory=list
    )
    sent: list[tuple[UUID, str, str]] = field(default_factory=list)
    closed: list[tuple[UUID, bool]] = field(default_factory=list)
    open_error: DisconnectReason | None = None
    send_error: DisconnectReason | None = None

    async def open(
        self,
        session_id: UUID,
        attempt_id: str,
        credentials: bytes | None,
        pairing_phone: str | None = None,
    ) -> None:
        self.opened.append((session_id, attempt_id, credentials, pairing_phone))
        if self.open_error is not None:
            raise TransportDropped(self.open_error)

    async def send_text(self, session_id: UUID, jid: str, text: str) -> str:
        if self.send_error is not None:
            raise TransportDropped(self.send_error)
        self.sent.append((session_id, jid, text))
        return f"msg-{len(self.sent)}"

    async def close(self, session_id: UUID, logout: bool = False) -> None:
        self.closed.append((session_id, logout))

    def last_attempt(self) -> str:
        return self.opened[-1][1]


@dataclass(eq=False)
class FakeSubscriber:
    """Live-update client that records or rejects messages."""

    messages: list[dict[str, object]] = field(default_factory=list)
    fail: bool = False

    async def send_json(self, data: object) -> None:
        if self.fail:
            raise ConnectionError("client went away")
        assert isinstance(data, dict)
        self.messages.append(data)

    def of_type(self, kind: str) -> list[dict[str, object]]:
        return [message for message in self.messages if message["type"] == kind]


@dataclass
class RecordingSleep:
    """Replacement for asyncio.sleep that returns immediately."""

    delays: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="test.service.key",
        gateway_token="gateway-token",
        bridge_secret="bridge-secret",
        credentials_dir=tmp_path / "sessions",
        resume_on_startup=False,
    )


@pytest.fixture
def session_repository() -> InMemorySessionRepository:
    return InMemorySessionRepository()


@pytest.fixture
def message_repository() -> InMemoryMessageRepository:
    return InMemoryMessageRepository()


@pytest.fixture
def credential_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def protocol_client() -> FakeProtocolClient:
    return FakeProtocolClient()


@pytest.fixture
def container(
    settings: Settings,
    session_repository: InMemorySessionRepository,
    message_repository: InMemoryMessageRepository,
    credential_store: InMemoryCredentialStore,
    protocol_client: FakeProtocolClient,
) -> AppContainer:
    broadcaster = EventBroadcaster()
    registry = SessionRegistry(
        client=protocol_client,
        credential_store=credential_store,
        broadcaster=broadcaster,
        repository=session_repository,
        reconnect_policy=ReconnectPolicy(max_attempts=3),
        country_code=settings.default_country_code,
    )
    session_service = SessionService(
        repository=session_repository,
        registry=registry,
        credential_store=credential_store,
        message_log=MessageLogService(message_repository),
    )

    async def close_resources() -> None:
        await session_service.shutdown()

    return AppContainer(
        settings=settings,
        broadcaster=broadcaster,
        registry=registry,
        session_service=session_service,
        close_resources=close_resources,
    )
