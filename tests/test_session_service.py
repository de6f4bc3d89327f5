"""Tests for the session application service."""

import asyncio
import dataclasses
from uuid import UUID, uuid4

import pytest

from wa_gateway.containers import AppContainer
from wa_gateway.domain.events import (
    DisconnectReason,
    InboundMessage,
    ProtocolEvent,
    ProtocolEventType,
)
from wa_gateway.domain.sessions import ConnectOutcome, SessionPool, SessionState
from wa_gateway.errors import NotConnected, SessionNotFound, TransportDropped
from tests.conftest import (
    FakeProtocolClient,
    InMemoryCredentialStore,
    InMemoryMessageRepository,
    InMemorySessionRepository,
)


async def bring_online(
    container: AppContainer, client: FakeProtocolClient, session_id: UUID
) -> None:
    await container.session_service.connect(session_id)
    await container.session_service.handle_protocol_event(
        ProtocolEvent(
            session_id=session_id,
            attempt_id=client.last_attempt(),
            type=ProtocolEventType.CREDENTIALS,
            credentials=b"keys",
        )
    )
    await container.session_service.handle_protocol_event(
        ProtocolEvent(
            session_id=session_id,
            attempt_id=client.last_attempt(),
            type=ProtocolEventType.OPEN,
            identity="628111:2@s.whatsapp.net",
        )
    )


def test_create_session_allocates_credentials(
    container: AppContainer, credential_store: InMemoryCredentialStore
) -> None:
    record = container.session_service.create_session("  Support  ", SessionPool.CRM)

    assert record.display_name == "Support"
    assert record.state is SessionState.DISCONNECTED
    assert credential_store.blobs[record.id] == b""


def test_create_session_survives_credential_failure(
    container: AppContainer, credential_store: InMemoryCredentialStore
) -> None:
    credential_store.fail_saves = True

    record = container.session_service.create_session("Blast", SessionPool.BLASTER)

    assert record.pool is SessionPool.BLASTER
    assert credential_store.blobs == {}


def test_list_sessions_merges_live_state(
    container: AppContainer, session_repository: InMemorySessionRepository
) -> None:
    service = container.session_service
    live = service.create_session("Live", SessionPool.CRM)
    stale = service.create_session("Stale", SessionPool.WARMUP)
    session_repository.sessions[stale.id] = dataclasses.replace(
        stale, state=SessionState.CONNECTED, phone_identity="628@s.whatsapp.net"
    )

    asyncio.run(service.connect(live.id))
    records = {record.id: record for record in service.list_sessions()}
    warmup_only = service.list_sessions({SessionPool.WARMUP})

    assert records[live.id].state is SessionState.CONNECTING
    assert records[stale.id].state is SessionState.DISCONNECTED
    assert records[stale.id].phone_identity is None
    assert [record.id for record in warmup_only] == [stale.id]


def test_status_of_unknown_session_raises(container: AppContainer) -> None:
    with pytest.raises(SessionNotFound):
        container.session_service.status(uuid4())


def test_status_of_cold_session_is_disconnected(container: AppContainer) -> None:
    record = container.session_service.create_session("Cold", SessionPool.CRM)

    status = container.session_service.status(record.id)

    assert status.state is SessionState.DISCONNECTED
    assert status.qr is None


def test_connect_unknown_session_creates_nothing(container: AppContainer) -> None:
    with pytest.raises(SessionNotFound):
        asyncio.run(container.session_service.connect(uuid4()))

    assert len(container.registry) == 0


def test_connect_is_idempotent(
    container: AppContainer, protocol_client: FakeProtocolClient
) -> None:
    record = container.session_service.create_session("Main", SessionPool.CRM)

    async def scenario() -> list[ConnectOutcome]:
        first = await container.session_service.connect(record.id)
        second = await container.session_service.connect(record.id)
        return [first, second]

    outcomes = asyncio.run(scenario())

    assert outcomes == [ConnectOutcome.STARTED, ConnectOutcome.ALREADY_CONNECTING]
    assert len(protocol_client.opened) == 1


def test_send_on_cold_session_is_not_connected(
    container: AppContainer, protocol_client: FakeProtocolClient
) -> None:
    record = container.session_service.create_session("Main", SessionPool.CRM)

    with pytest.raises(NotConnected):
        asyncio.run(container.session_service.send_text(record.id, "0812", "hi"))
    with pytest.raises(SessionNotFound):
        asyncio.run(container.session_service.send_text(uuid4(), "0812", "hi"))

    assert protocol_client.sent == []


def test_send_logs_outbound_messages(
    container: AppContainer,
    protocol_client: FakeProtocolClient,
    message_repository: InMemoryMessageRepository,
) -> None:
    record = container.session_service.create_session("Main", SessionPool.CRM)

    async def scenario() -> str:
        await bring_online(container, protocol_client, record.id)
        message_id = await container.session_service.send_text(
            record.id, "0812-999", "hello"
        )
        protocol_client.send_error = DisconnectReason.CONNECTION_CLOSED
        with pytest.raises(TransportDropped):
            await container.session_service.send_text(record.id, "0812-999", "again")
        return message_id

    message_id = asyncio.run(scenario())

    sent, failed = message_repository.messages
    assert sent.message_id == message_id
    assert sent.status == "sent"
    assert sent.from_number == "628111@s.whatsapp.net"
    assert sent.to_number == "62812999@s.whatsapp.net"
    assert failed.status == "failed"
    assert failed.message_text == "again"


def test_inbound_message_is_logged(
    container: AppContainer,
    protocol_client: FakeProtocolClient,
    message_repository: InMemoryMessageRepository,
) -> None:
    record = container.session_service.create_session("Main", SessionPool.CRM)

    async def scenario() -> bool:
        await bring_online(container, protocol_client, record.id)
        return await container.session_service.handle_protocol_event(
            ProtocolEvent(
                session_id=record.id,
                attempt_id=protocol_client.last_attempt(),
                type=ProtocolEventType.MESSAGE,
                message=InboundMessage(
                    message_id="in-1",
                    from_address="628222@s.whatsapp.net",
                    text="ping",
                ),
            )
        )

    applied = asyncio.run(scenario())

    assert applied is True
    [received] = message_repository.messages
    assert received.status == "received"
    assert received.to_number == "628111@s.whatsapp.net"


def test_events_for_unknown_sessions_are_ignored(container: AppContainer) -> None:
    applied = asyncio.run(
        container.session_service.handle_protocol_event(
            ProtocolEvent(
                session_id=uuid4(), attempt_id="a", type=ProtocolEventType.QR, qr="x"
            )
        )
    )

    assert applied is False


def test_purge_removes_everything(
    container: AppContainer,
    protocol_client: FakeProtocolClient,
    session_repository: InMemorySessionRepository,
    credential_store: InMemoryCredentialStore,
    message_repository: InMemoryMessageRepository,
) -> None:
    record = container.session_service.create_session("Main", SessionPool.CRM)
    credential_store.blobs[record.id] = b"keys"

    async def scenario() -> None:
        await bring_online(container, protocol_client, record.id)
        await container.session_service.send_text(record.id, "0812", "bye")
        await container.session_service.purge(record.id)

    asyncio.run(scenario())

    assert record.id not in session_repository.sessions
    assert record.id not in container.registry
    assert credential_store.purged == [record.id]
    assert message_repository.messages == []
    assert protocol_client.closed == [(record.id, True)]
    with pytest.raises(SessionNotFound):
        asyncio.run(container.session_service.purge(record.id))


def test_resume_sessions_reconnects_linked_devices(
    container: AppContainer,
    protocol_client: FakeProtocolClient,
    session_repository: InMemorySessionRepository,
    credential_store: InMemoryCredentialStore,
) -> None:
    service = container.session_service
    linked = service.create_session("Linked", SessionPool.CRM)
    unlinked = service.create_session("Unlinked", SessionPool.CRM)
    idle = service.create_session("Idle", SessionPool.CRM)
    for record in (linked, unlinked):
        session_repository.sessions[record.id] = dataclasses.replace(
            record, state=SessionState.CONNECTED
        )
    credential_store.blobs[linked.id] = b"keys"

    resumed = asyncio.run(service.resume_sessions())

    assert resumed == 1
    assert [opened[0] for opened in protocol_client.opened] == [linked.id]
    assert protocol_client.opened[0][2] == b"keys"
    assert session_repository.sessions[unlinked.id].state is (
        SessionState.DISCONNECTED
    )
    assert idle.id not in container.registry


def test_disconnect_of_cold_session_creates_nothing(
    container: AppContainer, protocol_client: FakeProtocolClient
) -> None:
    record = container.session_service.create_session("Cold", SessionPool.CRM)

    asyncio.run(container.session_service.disconnect(record.id))

    assert len(container.registry) == 0
    assert protocol_client.closed == []
    with pytest.raises(SessionNotFound):
        asyncio.run(container.session_service.disconnect(uuid4()))


def test_resume_sessions_skips_unreadable_credentials(
    container: AppContainer,
    protocol_client: FakeProtocolClient,
    session_repository: InMemorySessionRepository,
    credential_store: InMemoryCredentialStore,
) -> None:
    service = container.session_service
    broken = service.create_session("Broken", SessionPool.CRM)
    linked = service.create_session("Linked", SessionPool.CRM)
    for record in (broken, linked):
        session_repository.sessions[record.id] = dataclasses.replace(
            record, state=SessionState.CONNECTED
        )
        credential_store.blobs[record.id] = b"keys"
    credential_store.fail_loads.add(broken.id)

    resumed = asyncio.run(service.resume_sessions())

    assert resumed == 1
    assert [opened[0] for opened in protocol_client.opened] == [linked.id]
    assert broken.id not in container.registry
