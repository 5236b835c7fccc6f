"""Poke Event Sinks — hand-off of accepted pokes to the notification dispatcher.

Invariants:
    - publish() is called only after every check passed and the pair slot was consumed
    - Delivery channels (email, webhook fan-out) live outside the engine

Design Decisions:
    - LoggingPokeEventSink is the default: a structured log line the dispatcher can tail
    - InMemoryPokeEventSink keeps events for local runs and tests
"""

import logging

from gitpoke.core.domain_types import PokeEvent

logger = logging.getLogger(__name__)


class LoggingPokeEventSink:
    async def publish(self, event: PokeEvent) -> None:
        logger.info(
            f"Poke {event.sender} -> {event.recipient}",
            extra={"event_id": str(event.id), "username": str(event.recipient)},
        )


class InMemoryPokeEventSink:
    def __init__(self):
        self.events: list[PokeEvent] = []

    async def publish(self, event: PokeEvent) -> None:
        self.events.append(event)
