"""Application configuration."""

import os
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from wa_gateway.domain.sessions import SessionPool

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    gateway_token: str
    bridge_url: str = "http://localhost:3001"
    bridge_secret: str
    credential_backend: Literal["file", "supabase"] = "file"
    credentials_dir: Path = Path("sessions")
    default_country_code: str = "62"
    reconnect_base_delay: float = 3.0
    reconnect_max_delay: float = 60.0
    reconnect_factor: float = 2.0
    reconnect_max_attempts: int | None = 10
    resume_on_startup: bool = True
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_pool_filter(raw: str | None) -> set[SessionPool] | None:
    """Parse a comma-separated pool filter; unknown names are skipped."""
    if raw is None:
        return None
    cleaned = raw.strip()
    if cleaned in {"", "*"}:
        return None
    pools: set[SessionPool] = set()
    for chunk in cleaned.split(","):
        value = chunk.strip().upper()
        if value in SessionPool.__members__:
            pools.add(SessionPool[value])
    return pools or None
