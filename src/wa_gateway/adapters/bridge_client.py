"""Client for the protocol bridge that owns the WhatsApp sockets."""

import base64
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

import httpx

from wa_gateway.domain.events import DisconnectReason
from wa_gateway.errors import TransportDropped


class ProtocolClient(Protocol):
    """Interface to the device-linking protocol implementation.

    Handshake progress is not returned from ``open``; it arrives later as
    protocol events tagged with the same ``attempt_id``.
    """

    async def open(
        self,
        session_id: UUID,
        attempt_id: str,
        credentials: bytes | None,
        pairing_phone: str | None = None,
    ) -> None:
        """Start a connection attempt bound to the given credentials."""

    async def send_text(self, session_id: UUID, jid: str, text: str) -> str:
        """Send a text message and return the provider message id."""

    async def close(self, session_id: UUID, logout: bool = False) -> None:
        """End the transport; ``logout`` also unlinks the device."""


@dataclass
class HttpxBridgeClient(ProtocolClient):
    """Protocol client talking to the bridge over HTTP."""

    base_url: str
    secret: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(cls, base_url: str, secret: str) -> "HttpxBridgeClient":
        """Create a bridge client with a managed httpx session."""
        return cls(
            base_url=base_url.rstrip("/"),
            secret=secret,
            http_client=httpx.AsyncClient(),
        )

    async def open(
        self,
        session_id: UUID,
        attempt_id: str,
        credentials: bytes | None,
        pairing_phone: str | None = None,
    ) -> None:
        """Ask the bridge to open a socket for the session."""
        payload: dict[str, object] = {
            "attempt_id": attempt_id,
            "credentials": (
                base64.b64encode(credentials).decode("ascii") if credentials else None
            ),
        }
        if pairing_phone is not None:
            payload["pairing_phone"] = pairing_phone
        await self._post(f"/sessions/{session_id}/open", payload)

    async def send_text(self, session_id: UUID, jid: str, text: str) -> str:
        """Relay a text message through the session's socket."""
        response = await self._post(
            f"/sessions/{session_id}/messages", {"jid": jid, "text": text}
        )
        try:
            data = response.json()
        except ValueError as exc:
            raise TransportDropped(
                DisconnectReason.UNAVAILABLE_SERVICE,
                "Bridge returned a malformed reply",
            ) from exc
        message_id = data.get("message_id") if isinstance(data, dict) else None
        if not message_id:
            raise TransportDropped(
                DisconnectReason.UNAVAILABLE_SERVICE,
                "Bridge did not return a message id",
            )
        return str(message_id)

    async def close(self, session_id: UUID, logout: bool = False) -> None:
        """Ask the bridge to end the session's socket."""
        await self._post(f"/sessions/{session_id}/close", {"logout": logout})

    async def aclose(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()

    async def _post(self, path: str, payload: dict[str, object]) -> httpx.Response:
        try:
            response = await self.http_client.post(
                f"{self.base_url}{path}",
                json=payload,
                headers={"X-Bridge-Secret": self.secret},
                timeout=15,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TransportDropped(
                _reason_for_status(exc.response.status_code),
                f"Bridge returned {exc.response.status_code} for {path}",
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportDropped(
                DisconnectReason.UNAVAILABLE_SERVICE, f"Bridge unreachable: {exc}"
            ) from exc
        return response


def _reason_for_status(status_code: int) -> DisconnectReason:
    """Classify a bridge HTTP error."""
    if status_code == httpx.codes.NOT_FOUND:
        return DisconnectReason.CONNECTION_CLOSED
    if status_code == httpx.codes.UNAUTHORIZED:
        return DisconnectReason.FORBIDDEN
    return DisconnectReason.UNAVAILABLE_SERVICE
