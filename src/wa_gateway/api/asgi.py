"""ASGI entrypoint for the session gateway."""

from wa_gateway.api.app import create_app
from wa_gateway.containers import build_container

app = create_app(build_container())
