"""Fan-out of live session events to connected dashboard clients."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol
from uuid import UUID

from wa_gateway.domain.events import SessionEvent

_logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    """A live-update client, e.g. a dashboard WebSocket."""

    async def send_json(self, data: object) -> None:
        """Deliver one JSON message to the client."""


@dataclass
class EventBroadcaster:
    """Best-effort, at-most-once delivery; nothing is queued for later."""

    send_timeout_seconds: float = 5.0
    _subscribers: dict[Subscriber, frozenset[UUID] | None] = field(
        default_factory=dict
    )

    def subscribe(
        self, subscriber: Subscriber, session_ids: set[UUID] | None = None
    ) -> None:
        """Register a subscriber, optionally limited to some sessions."""
        self._subscribers[subscriber] = (
            frozenset(session_ids) if session_ids else None
        )

    def unsubscribe(self, subscriber: Subscriber) -> None:
        """Remove a subscriber if registered."""
        self._subscribers.pop(subscriber, None)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, session_id: UUID, event: SessionEvent) -> None:
        """Send the event to every subscriber interested in the session."""
        targets = [
            subscriber
            for subscriber, session_filter in list(self._subscribers.items())
            if session_filter is None or session_id in session_filter
        ]
        if not targets:
            return
        message = event.to_message(session_id)
        results = await asyncio.gather(
            *(self._deliver(subscriber, message) for subscriber in targets),
            return_exceptions=True,
        )
        for subscriber, result in zip(targets, results, strict=True):
            if isinstance(result, Exception):
                _logger.warning(
                    "Dropping subscriber after failed %s delivery: %s",
                    event.kind.value,
                    result,
                )
                self.unsubscribe(subscriber)

    async def _deliver(
        self, subscriber: Subscriber, message: dict[str, object]
    ) -> None:
        async with asyncio.timeout(self.send_timeout_seconds):
            await subscriber.send_json(message)
