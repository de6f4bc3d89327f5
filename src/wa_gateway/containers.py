"""Dependency container wiring for the gateway."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from wa_gateway.adapters.bridge_client import HttpxBridgeClient
from wa_gateway.adapters.file_credential_store import FileCredentialStore
from wa_gateway.adapters.supabase_credential_store import SupabaseCredentialStore
from wa_gateway.adapters.supabase_message_repository import SupabaseMessageRepository
from wa_gateway.adapters.supabase_session_repository import (
    SupabaseSessionRepository,
)
from wa_gateway.config import Settings
from wa_gateway.services.broadcaster import EventBroadcaster
from wa_gateway.services.credentials import CredentialStore
from wa_gateway.services.messages import MessageLogService
from wa_gateway.services.reconnect import ReconnectPolicy
from wa_gateway.services.registry import SessionRegistry
from wa_gateway.services.sessions import SessionService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    broadcaster: EventBroadcaster
    registry: SessionRegistry
    session_service: SessionService
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    session_repository = SupabaseSessionRepository(supabase_client)
    message_repository = SupabaseMessageRepository(supabase_client)
    credential_store: CredentialStore
    if resolved_settings.credential_backend == "supabase":
        credential_store = SupabaseCredentialStore(supabase_client)
    else:
        credential_store = FileCredentialStore(resolved_settings.credentials_dir)
    bridge_client = HttpxBridgeClient.create(
        base_url=resolved_settings.bridge_url,
        secret=resolved_settings.bridge_secret,
    )
    broadcaster = EventBroadcaster()
    registry = SessionRegistry(
        client=bridge_client,
        credential_store=credential_store,
        broadcaster=broadcaster,
        repository=session_repository,
        reconnect_policy=ReconnectPolicy(
            base_delay=resolved_settings.reconnect_base_delay,
            max_delay=resolved_settings.reconnect_max_delay,
            factor=resolved_settings.reconnect_factor,
            max_attempts=resolved_settings.reconnect_max_attempts,
        ),
        country_code=resolved_settings.default_country_code,
    )
    session_service = SessionService(
        repository=session_repository,
        registry=registry,
        credential_store=credential_store,
        message_log=MessageLogService(message_repository),
    )

    async def close_resources() -> None:
        await session_service.shutdown()
        await bridge_client.aclose()

    return AppContainer(
        settings=resolved_settings,
        broadcaster=broadcaster,
        registry=registry,
        session_service=session_service,
        close_resources=close_resources,
    )
