"""Retry decisions after a transport drop."""

from dataclasses import dataclass

from wa_gateway.domain.events import DisconnectReason

_TERMINAL_REASONS = frozenset({DisconnectReason.LOGGED_OUT})


@dataclass(frozen=True)
class ReconnectPolicy:
    """Exponential backoff with a ceiling and an optional attempt cap."""

    base_delay: float = 3.0
    max_delay: float = 60.0
    factor: float = 2.0
    max_attempts: int | None = None

    def should_retry(self, reason: DisconnectReason) -> bool:
        """Return False for a user-initiated logout, True for any other closure."""
        return reason not in _TERMINAL_REASONS

    def next_delay(self, attempt: int) -> float:
        """Return the delay in seconds before retry number ``attempt`` (0-based)."""
        if attempt < 0:
            raise ValueError("attempt must be non-negative")
        # factor < 1 would make the sequence decrease.
        growth = max(self.factor, 1.0) ** attempt
        return min(self.base_delay * growth, self.max_delay)

    def allows(self, attempt: int) -> bool:
        """Return whether retry number ``attempt`` may still be scheduled."""
        return self.max_attempts is None or attempt < self.max_attempts
