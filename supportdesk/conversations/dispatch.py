"""Human hand-off queue receiving escalation events."""

from __future__ import annotations

import logging
import threading
from typing import List, Protocol

from .models import EscalationEvent

logger = logging.getLogger(__name__)


class EscalationQueue(Protocol):
    def publish(self, event: EscalationEvent) -> None: ...

    def pending(self, company_id: str | None = None) -> List[EscalationEvent]: ...

    def acknowledge(self, conversation_id: str) -> int: ...


class InMemoryEscalationQueue:
    """Keeps escalation events in memory until their conversation is resolved."""

    def __init__(self) -> None:
        self._events: List[EscalationEvent] = []
        self._lock = threading.Lock()

    def publish(self, event: EscalationEvent) -> None:
        with self._lock:
            self._events.append(event)
        logger.info(
            "Escalation queued for conversation %s (reason=%s)",
            event.conversation_id,
            event.reason,
        )

    def pending(self, company_id: str | None = None) -> List[EscalationEvent]:
        with self._lock:
            events = list(self._events)
        if company_id is None:
            return events
        return [e for e in events if e.company_id == company_id]

    def acknowledge(self, conversation_id: str) -> int:
        """Drop the events of ``conversation_id`` and return how many went."""
        with self._lock:
            kept = [e for e in self._events if e.conversation_id != conversation_id]
            removed = len(self._events) - len(kept)
            self._events = kept
        if removed:
            logger.debug(
                "Acknowledged %d escalation(s) for conversation %s",
                removed,
                conversation_id,
            )
        return removed
