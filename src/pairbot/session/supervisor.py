"""Reconnect decisions for closed connections."""

from __future__ import annotations

from dataclasses import dataclass

from pairbot.transport.events import ConnectionUpdate, is_terminal
from pairbot.utils.retry import DEFAULT_JITTER, calculate_backoff_delay


@dataclass(frozen=True)
class ReconnectDecision:
    reconnect: bool
    delay: float = 0.0
    reason: str = ""


@dataclass(frozen=True)
class ReconnectPolicy:
    """Classifies ``close`` updates and schedules reconnects.

    A close is terminal when the remote service logged the device out or
    when the session is being deleted. Every other close is retried, with
    no attempt cap:

    - the first reconnect after a successful open happens immediately
    - each further reconnect that follows a failed attempt (one that never
      reached ``open``) waits ``base_delay * 2**(n-1)``, capped at
      ``max_delay``, with jitter

    Example:
        ```python
        policy = ReconnectPolicy(base_delay=1.0, max_delay=60.0)
        policy.decide(closed_event(status_code=428), attempts=0)   # now
        policy.decide(closed_event(status_code=428), attempts=3)   # ~4s later
        policy.decide(closed_event(status_code=401), attempts=0)   # terminal
        ```
    """

    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = DEFAULT_JITTER

    def delay_for(self, attempts: int) -> float:
        """Delay before reconnect number ``attempts + 1`` since the last open.

        Args:
            attempts: Reconnects already made since the session was last open
        """
        if attempts <= 0:
            return 0.0
        return calculate_backoff_delay(attempts - 1, self.base_delay, self.max_delay, self.jitter)

    def decide(
        self, update: ConnectionUpdate, attempts: int, *, stopping: bool = False
    ) -> ReconnectDecision:
        if stopping:
            return ReconnectDecision(reconnect=False, reason="session stopping")
        if is_terminal(update.status_code):
            return ReconnectDecision(reconnect=False, reason="logged out")
        return ReconnectDecision(
            reconnect=True,
            delay=self.delay_for(attempts),
            reason=f"status {update.status_code}" if update.status_code else "connection lost",
        )
